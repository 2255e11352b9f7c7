# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Tool-name classes used by the lexical and trajectory analyzers.

The host exposes the knowledge store as a family of tools sharing a common
prefix (``memory_check``, ``memory_query``, ...). Pattern detection only
cares which class a call belongs to.
"""

from dataclasses import dataclass

DEFAULT_TOOL_PREFIX = "memory_"


@dataclass(frozen=True)
class ToolVocabulary:
    """Names of the knowledge-store tools, grouped by behaviour.

    Attributes:
        prefix: Common prefix of every tool name.
    """

    prefix: str = DEFAULT_TOOL_PREFIX

    def name(self, suffix: str) -> str:
        return f"{self.prefix}{suffix}"

    @property
    def check(self) -> str:
        return self.name("check")

    @property
    def issue(self) -> str:
        return self.name("issue")

    @property
    def check_tools(self) -> frozenset[str]:
        """Calls that inspect specific files before acting on them."""
        return frozenset({self.name("check"), self.name("context")})

    @property
    def read_tools(self) -> frozenset[str]:
        return frozenset(
            self.name(s) for s in ("query", "check", "predict", "suggest", "enrich", "context")
        )

    @property
    def write_tools(self) -> frozenset[str]:
        return frozenset(self.name(s) for s in ("file_add", "decision_add", "learn_add"))

    def is_error_signal(self, tool_name: str, files: list[str]) -> bool:
        """True when a call indicates the session is dealing with errors."""
        return (
            tool_name == self.issue
            or "error" in tool_name
            or any("error" in f for f in files)
        )


DEFAULT_TOOLS = ToolVocabulary()
