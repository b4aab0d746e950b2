from ticketing.models.user import User
from ticketing.models.event import Event
from ticketing.models.promotion import Promotion
from ticketing.models.transaction import Transaction

__all__ = ["User", "Event", "Promotion", "Transaction"]
