from ticketing.schemas.transaction import (
    PaymentProofUpload,
    Pagination,
    RegistrationCheckResponse,
    TicketEventResponse,
    TicketResponse,
    TransactionActionResponse,
    TransactionCreate,
    TransactionListResponse,
    TransactionResponse,
    TransactionStatsResponse,
    UserTransactionListResponse,
    UserTransactionResponse,
)

__all__ = [
    "PaymentProofUpload", "Pagination", "RegistrationCheckResponse", "TicketEventResponse", "TicketResponse",
    "TransactionActionResponse", "TransactionCreate", "TransactionListResponse",
    "TransactionResponse", "TransactionStatsResponse",
    "UserTransactionListResponse", "UserTransactionResponse",
]
