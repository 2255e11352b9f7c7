# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Typed query outcomes for best-effort storage access.

Every lookup the engine makes is optional: a missing table or a failing
replica must degrade to "no data". Rather than wrapping each call site in a
blanket try/except, callers go through BestEffortStore and receive a
QueryOutcome they can inspect (``unsupported`` drives full-text fallbacks) or
collapse with ``unwrap_or``.
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Generic, Optional, TypeVar

from knowledge_context.storage.protocols import (
    Params,
    Row,
    RunResult,
    Storage,
    StorageError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

_UNSUPPORTED_PATTERN = re.compile(
    r"no such (table|column|module|function)|fts5|unable to use function MATCH",
    re.IGNORECASE,
)


class OutcomeKind(str, Enum):
    OK = "ok"
    UNSUPPORTED = "unsupported"
    FAILED = "failed"


@dataclass(frozen=True)
class QueryOutcome(Generic[T]):
    """Result of a best-effort query.

    Attributes:
        kind: OK, UNSUPPORTED (schema or feature missing) or FAILED.
        value: The query result when kind is OK.
        error: Error message when the query did not succeed.
    """

    kind: OutcomeKind
    value: Optional[T] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.kind is OutcomeKind.OK

    @property
    def unsupported(self) -> bool:
        return self.kind is OutcomeKind.UNSUPPORTED

    def unwrap_or(self, default: T) -> T:
        """Return the value on success, otherwise ``default``."""
        if self.kind is OutcomeKind.OK and self.value is not None:
            return self.value
        return default

    @classmethod
    def success(cls, value: T) -> "QueryOutcome[T]":
        return cls(kind=OutcomeKind.OK, value=value)

    @classmethod
    def from_error(cls, error: BaseException) -> "QueryOutcome[T]":
        if is_unsupported(error):
            return cls(kind=OutcomeKind.UNSUPPORTED, error=str(error))
        return cls(kind=OutcomeKind.FAILED, error=str(error))


def is_unsupported(error: BaseException) -> bool:
    """Classify an error as "this store cannot answer that query"."""
    if isinstance(error, StorageError) and error.unsupported:
        return True
    return bool(_UNSUPPORTED_PATTERN.search(str(error)))


class BestEffortStore:
    """Wraps a Storage so that no query ever raises.

    Failures are logged at debug level and returned as QueryOutcome values.
    """

    def __init__(self, store: Storage):
        self._store = store

    @property
    def inner(self) -> Storage:
        return self._store

    async def get(self, query: str, params: Params = ()) -> QueryOutcome[Optional[Row]]:
        try:
            row = await self._store.get(query, params)
        except Exception as e:
            logger.debug(f"Storage get degraded: {e}")
            return QueryOutcome.from_error(e)
        return QueryOutcome(kind=OutcomeKind.OK, value=row)

    async def all(self, query: str, params: Params = ()) -> QueryOutcome[list[Row]]:
        try:
            rows = await self._store.all(query, params)
        except Exception as e:
            logger.debug(f"Storage query degraded: {e}")
            return QueryOutcome.from_error(e)
        return QueryOutcome.success(list(rows or []))

    async def run(self, query: str, params: Params = ()) -> QueryOutcome[RunResult]:
        try:
            result = await self._store.run(query, params)
        except Exception as e:
            logger.debug(f"Storage write degraded: {e}")
            return QueryOutcome.from_error(e)
        return QueryOutcome.success(result)


def best_effort(store: "Storage | BestEffortStore") -> BestEffortStore:
    """Wrap ``store`` unless it is already best-effort."""
    if isinstance(store, BestEffortStore):
        return store
    return BestEffortStore(store)
