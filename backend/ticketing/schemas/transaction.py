"""
Pydantic schemas for transaction-related request/response validation.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from ticketing.domain import TransactionStatus


class TransactionCreate(BaseModel):
    event_id: int
    quantity: int = Field(default=1, gt=0)
    points_used: int = Field(default=0, ge=0)
    promotion_code: Optional[str] = Field(None, max_length=50)
    payment_method: Optional[str] = Field(None, max_length=50)
    notes: Optional[str] = Field(None, max_length=500)


class PaymentProofUpload(BaseModel):
    # Remote image URL or data:image/...;base64 URI
    payment_proof: str = Field(..., min_length=1)


class TransactionResponse(BaseModel):
    id: int
    user_id: int
    event_id: int
    quantity: int
    total_amount: int
    points_used: int
    discount_amount: int
    final_amount: int
    status: TransactionStatus
    payment_deadline: Optional[datetime]
    confirmation_deadline: Optional[datetime] = None
    payment_proof: Optional[str] = None
    promotion_id: Optional[int] = None
    payment_method: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class UserTransactionResponse(TransactionResponse):
    can_cancel: bool
    can_upload_payment: bool
    is_expired: bool
    can_review: bool
    # UPCOMING, ONGOING or ENDED from the event dates; None when the event is gone
    event_status: Optional[str] = None


class TicketEventResponse(BaseModel):
    id: int
    organizer_id: int
    title: str
    start_date: datetime
    end_date: datetime

    model_config = {"from_attributes": True}


class TicketResponse(BaseModel):
    id: int
    event: Optional[TicketEventResponse]
    quantity: int
    final_amount: int
    status: TransactionStatus
    payment_deadline: Optional[datetime]
    payment_proof: Optional[str] = None
    created_at: datetime
    can_review: bool


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int
    has_next: bool
    has_prev: bool

    model_config = {"from_attributes": True}


class UserTransactionListResponse(BaseModel):
    data: list[UserTransactionResponse]
    pagination: Pagination


class TransactionListResponse(BaseModel):
    data: list[TransactionResponse]
    pagination: Pagination


class TransactionActionResponse(BaseModel):
    message: str
    transaction_id: int
    status: TransactionStatus
    changed: bool = True


class RegistrationCheckResponse(BaseModel):
    event_id: int
    is_registered: bool


class TransactionStatsResponse(BaseModel):
    total: int
    WAITING_PAYMENT: int
    WAITING_CONFIRMATION: int
    DONE: int
    CANCELLED: int
    REJECTED: int
    EXPIRED: int
