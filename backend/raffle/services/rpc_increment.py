"""
Atomic increment through the store's increment_number_sold_safely procedure.

The procedure checks and writes in one statement on the server, so this is
the preferred path. It may legitimately be missing or failing; any Err sends
the counter mutator on to the next strategy.
"""

from raffle.core.result import Err, Ok, Result
from raffle.infrastructure.store import RpcNotFoundError, StoreClient, StoreError
from raffle.services.interfaces.increment import IncrementStrategy
from raffle.services.limit_store import LimitStore

INCREMENT_PROCEDURE = "increment_number_sold_safely"
DECREMENT_PROCEDURE = "decrement_number_sold_safely"


class AtomicRpcIncrement(IncrementStrategy):
    name = "rpc"

    def __init__(self, store: StoreClient, limits: LimitStore) -> None:
        self._store = store
        self._limits = limits

    async def apply(self, limit_id: str, quantity: int) -> Result:
        # The procedure takes the ceiling explicitly; read the current one
        try:
            current = await self._limits.fetch_fresh(limit_id)
        except (LookupError, StoreError) as e:
            return Err("error", str(e))

        try:
            applied = await self._store.rpc(
                INCREMENT_PROCEDURE,
                {"p_limit_id": limit_id, "p_increment": quantity, "p_max_times": current.max_times},
            )
        except RpcNotFoundError as e:
            return Err("unavailable", str(e))
        except StoreError as e:
            return Err("error", str(e))

        if applied:
            return Ok(True)
        return Err("contention", "procedure refused increment")
