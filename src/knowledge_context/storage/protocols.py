# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Storage contract for the knowledge store.

The context engine never owns the knowledge store. It reads rows through this
narrow async contract, and the persistence of raw rows, migrations and
replication live behind it.
"""

from dataclasses import dataclass
from typing import Any, Optional, Protocol, Sequence, runtime_checkable

# Protocol version for compatibility tracking
STORAGE_PROTOCOL_VERSION = "1.0.0"

Row = dict[str, Any]
Params = Sequence[Any]


class StorageError(Exception):
    """A query against the knowledge store failed.

    Attributes:
        unsupported: True when the failure means the query cannot work against
            this store at all (missing table, column or full-text module), as
            opposed to a transient failure.
    """

    def __init__(self, message: str, unsupported: bool = False):
        super().__init__(message)
        self.unsupported = unsupported


@dataclass(frozen=True)
class RunResult:
    """Outcome of a write statement."""

    last_id: Optional[int]
    changes: int


@runtime_checkable
class Storage(Protocol):
    """Async query interface over the knowledge store.

    Methods:
        get: Fetch the first row of a query, or None.
        all: Fetch every row of a query.
        run: Execute a write statement.

    All three raise StorageError (or any other exception) on failure; callers
    in this package go through BestEffortStore, which never raises.
    """

    async def get(self, query: str, params: Params = ()) -> Optional[Row]: ...

    async def all(self, query: str, params: Params = ()) -> list[Row]: ...

    async def run(self, query: str, params: Params = ()) -> RunResult: ...
