"""
Increment strategy interface.
Each strategy is one way of adding to a limit's times_sold without letting it
pass max_times.
"""

from abc import ABC, abstractmethod

from raffle.core.result import Result


class IncrementStrategy(ABC):
    """
    Interface for sold-count increment strategies.

    Implementations:
    - AtomicRpcIncrement: server-side procedure, one round trip
    - ConditionalUpdateIncrement: fresh read, then UPDATE ... WHERE times_sold < threshold

    The counter mutator tries them in order and takes the first Ok.
    """

    name: str = "strategy"

    @abstractmethod
    async def apply(self, limit_id: str, quantity: int) -> Result:
        """
        Add `quantity` to the limit's times_sold.

        Returns:
            Ok(True) when the store applied the increment
            Err("contention") when the limit would be exceeded
            Err("unavailable") when this strategy cannot run here
            Err("error") on infrastructure failure
        """
        pass
