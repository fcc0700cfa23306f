from raffle.models.number_limit import NumberLimitRecord
from raffle.models.ticket import TicketRecord

__all__ = ["NumberLimitRecord", "TicketRecord"]
