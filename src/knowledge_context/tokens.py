# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Token estimation used uniformly for budget accounting."""

import math
from typing import Protocol, runtime_checkable

CHARS_PER_TOKEN = 4


@runtime_checkable
class TokenEstimator(Protocol):
    """Estimates how many model tokens a piece of text consumes."""

    def estimate(self, text: str) -> int: ...


class CharTokenEstimator:
    """Character-based estimate: one token per four characters, rounded up."""

    def __init__(self, chars_per_token: int = CHARS_PER_TOKEN):
        self.chars_per_token = chars_per_token

    def estimate(self, text: str) -> int:
        if not text:
            return 0
        return math.ceil(len(text) / self.chars_per_token)


def estimate_tokens(text: str) -> int:
    """Estimate tokens with the default character heuristic."""
    return CharTokenEstimator().estimate(text)
