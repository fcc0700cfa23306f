"""
Cooperative cancellation for long-running reads and checks.

A caller hands a CancellationToken down to the service; the service looks at
it between store round trips and short-circuits to an empty/negative result.
Nothing is ever interrupted forcibly.
"""

import asyncio
from typing import Optional


class CancellationToken:
    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


def is_cancelled(token: Optional[CancellationToken]) -> bool:
    return token is not None and token.cancelled
