# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""
Lexical analysis of raw tool-call arguments.

Turns a tool name plus its argument map into:
- search keywords (free-text fields, path terms, tool hints)
- the list of directly touched files
- a coarse task type
- domain tags derived from touched paths

Everything here is pure and synchronous. Malformed arguments are ignored,
never raised.
"""

import json
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from knowledge_context.analysis.tools import DEFAULT_TOOLS, ToolVocabulary
from knowledge_context.schemas import TaskType

MIN_TOKEN_LENGTH = 3
MAX_DOMAINS = 5

STOP_WORDS = frozenset(
    {
        "the", "a", "an", "is", "are", "was", "were", "be", "been", "being",
        "have", "has", "had", "do", "does", "did", "will", "would", "could",
        "should", "may", "might", "can", "shall", "to", "of", "in", "for",
        "on", "with", "at", "by", "from", "as", "into", "through", "during",
        "before", "after", "this", "that", "these", "those", "it", "its",
        "my", "your", "our", "and", "or", "but", "not", "no", "all", "each",
        "every", "if", "then", "else", "when", "up", "out", "so", "than",
    }
)

TEXT_FIELDS = ("query", "task", "goal", "title", "content", "description", "command")
PATH_FIELDS = ("path", "file_path", "files")

# Directory names that carry no topical meaning
STRUCTURAL_DIRS = frozenset({"src", "lib", "dist", "build", "node_modules", ".git"})
DOMAIN_SKIP_DIRS = STRUCTURAL_DIRS | {"test", "tests"}

# Insertion order breaks ties in detect_task_type
TASK_TYPE_PATTERNS: dict[TaskType, tuple[str, ...]] = {
    TaskType.BUGFIX: ("fix", "bug", "error", "issue", "broken", "crash", "fail", "wrong", "incorrect", "patch"),
    TaskType.FEATURE: ("add", "create", "implement", "new", "feature", "build", "introduce", "support"),
    TaskType.REFACTOR: ("refactor", "clean", "reorganize", "extract", "simplify", "restructure", "consolidate", "move"),
    TaskType.TESTING: ("test", "spec", "coverage", "assert", "mock", "fixture", "e2e", "unit", "integration"),
    TaskType.DOCUMENTATION: ("doc", "readme", "comment", "explain", "document", "guide", "tutorial"),
    TaskType.PERFORMANCE: ("perf", "optimize", "speed", "slow", "fast", "cache", "memory", "latency"),
    TaskType.CONFIGURATION: ("config", "setup", "deploy", "env", "install", "build", "ci", "cd", "docker"),
    TaskType.EXPLORATION: ("find", "search", "look", "understand", "explore", "investigate", "check", "review"),
}

_NON_WORD = re.compile(r"[^a-z0-9\s_-]")
_SEPARATORS = re.compile(r"[\s_-]+")
_CAMEL_BOUNDARY = re.compile(r"([a-z0-9])([A-Z])")
_EXTENSION = re.compile(r"\.[^.]+$")


@dataclass
class LexicalAnalysis:
    """Keywords, files, domains and task type of one tool call."""

    keywords: list[str] = field(default_factory=list)
    files: list[str] = field(default_factory=list)
    domains: list[str] = field(default_factory=list)
    task_type: TaskType = TaskType.UNKNOWN


def _unique(items: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(items))


def tokenize(text: str) -> list[str]:
    """Lowercase, strip punctuation and drop short or stop-word tokens."""
    cleaned = _NON_WORD.sub(" ", text.lower())
    return [
        t
        for t in _SEPARATORS.split(cleaned)
        if len(t) >= MIN_TOKEN_LENGTH and t not in STOP_WORDS
    ]


def extract_path_terms(path: str) -> list[str]:
    """Split a path into topical terms.

    ``src/authService/token-store.ts`` yields ``auth``, ``service``,
    ``token`` and ``store``.
    """
    terms: list[str] = []
    for part in path.split("/"):
        if not part or part in STRUCTURAL_DIRS:
            continue
        stem = _EXTENSION.sub("", part) if "." in part[1:] else part
        spaced = _CAMEL_BOUNDARY.sub(r"\1 \2", stem).lower()
        terms.extend(t for t in _SEPARATORS.split(spaced) if len(t) >= MIN_TOKEN_LENGTH)
    return terms


def _path_values(args: Mapping[str, Any]) -> list[str]:
    values: list[str] = []
    for key in PATH_FIELDS:
        value = args.get(key)
        if isinstance(value, str):
            values.append(value)
        elif isinstance(value, (list, tuple)):
            values.extend(v for v in value if isinstance(v, str))
    return values


def extract_keywords(
    tool_name: str,
    args: Mapping[str, Any],
    tools: ToolVocabulary = DEFAULT_TOOLS,
) -> list[str]:
    """Extract ordered, deduplicated search keywords from a tool call."""
    words: list[str] = []

    for key in TEXT_FIELDS:
        value = args.get(key)
        if isinstance(value, str):
            words.extend(tokenize(value))

    for path in _path_values(args):
        words.extend(extract_path_terms(path))

    if tool_name == tools.check:
        words.append("edit")
    if tool_name == tools.issue:
        words.append("issue")

    return _unique(words)


def extract_files(args: Mapping[str, Any]) -> list[str]:
    """Collect the file paths a tool call touches directly."""
    files: list[str] = []

    path_value = args.get("path") or args.get("file_path")
    if isinstance(path_value, str):
        files.append(path_value)

    files_value = args.get("files")
    if isinstance(files_value, (list, tuple)):
        files.extend(f for f in files_value if isinstance(f, str))

    raw_input = args.get("input")
    if isinstance(raw_input, str):
        try:
            parsed = json.loads(raw_input)
        except ValueError:
            parsed = None
        if isinstance(parsed, dict) and isinstance(parsed.get("file_path"), str):
            files.append(parsed["file_path"])

    return _unique(files)


def detect_task_type(keywords: Iterable[str]) -> TaskType:
    """Classify the task by counting keyword prefix hits per task type.

    Strictly higher counts win, so ties go to the type declared first.
    """
    scores: dict[TaskType, int] = {}
    for keyword in keywords:
        for task_type, patterns in TASK_TYPE_PATTERNS.items():
            for pattern in patterns:
                if keyword.startswith(pattern):
                    scores[task_type] = scores.get(task_type, 0) + 1

    best_type, best_score = TaskType.UNKNOWN, 0
    for task_type in TASK_TYPE_PATTERNS:
        score = scores.get(task_type, 0)
        if score > best_score:
            best_type, best_score = task_type, score
    return best_type


def extract_domains(files: Iterable[str]) -> list[str]:
    """Derive up to five domain tags from directory names of touched files."""
    domains: list[str] = []
    for path in files:
        for part in path.split("/"):
            if not part or part in DOMAIN_SKIP_DIRS or "." in part:
                continue
            if len(part) < MIN_TOKEN_LENGTH:
                continue
            domain = part.lower()
            if domain not in domains:
                domains.append(domain)
            if len(domains) >= MAX_DOMAINS:
                return domains
    return domains


def analyze_call(
    tool_name: str,
    args: Mapping[str, Any],
    tools: ToolVocabulary = DEFAULT_TOOLS,
) -> LexicalAnalysis:
    """Run the full lexical pass over one tool call."""
    keywords = extract_keywords(tool_name, args, tools)
    files = extract_files(args)
    return LexicalAnalysis(
        keywords=keywords,
        files=files,
        domains=extract_domains(files),
        task_type=detect_task_type(keywords),
    )
