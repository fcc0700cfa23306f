"""
Tagged results for strategies that may fail in expected ways.

Err carries a `kind`:
  - "contention": the store refused the write because the limit would be
    exceeded or another writer got there first
  - "unavailable": the strategy cannot run on this backend (e.g. missing RPC)
  - "error": infrastructure failure
"""

from dataclasses import dataclass
from typing import Any, Union


@dataclass(frozen=True)
class Ok:
    value: Any = None


@dataclass(frozen=True)
class Err:
    kind: str
    reason: str = ""

    @property
    def is_contention(self) -> bool:
        return self.kind == "contention"


Result = Union[Ok, Err]
