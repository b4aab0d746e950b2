"""
Transaction endpoints: registration, payment proof, and the organizer decisions.
"""

from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from ticketing.api.deps import get_transaction_service
from ticketing.core.errors import NotFoundError
from ticketing.core.security import CurrentUser, get_current_user, require_admin
from ticketing.domain import TransactionRecord, TransactionStatus
from ticketing.schemas.transaction import (
    Pagination,
    PaymentProofUpload,
    RegistrationCheckResponse,
    TicketResponse,
    TransactionActionResponse,
    TransactionCreate,
    TransactionListResponse,
    TransactionResponse,
    TransactionStatsResponse,
    UserTransactionListResponse,
    UserTransactionResponse,
)
from ticketing.services.transaction_service import TransactionService

router = APIRouter(prefix="/transactions", tags=["Transactions"])

STATUS_FILTER_PATTERN = "^(ALL|" + "|".join(s.value for s in TransactionStatus) + ")$"


async def _visible_transaction(
    service: TransactionService, transaction_id: int, user: CurrentUser
) -> TransactionRecord:
    """Owner, event organizer or admin. Anyone else gets 404, as if the transaction did not exist."""
    record = await service.get_transaction(transaction_id)
    if record.user_id != user.id and not user.is_admin:
        if not await service.verify_event_ownership(record.event_id, user.id):
            raise NotFoundError("Transaction", transaction_id)
    return record


@router.post("/", response_model=TransactionResponse, status_code=status.HTTP_201_CREATED)
async def create_transaction(
    data: TransactionCreate,
    user: CurrentUser = Depends(get_current_user),
    service: TransactionService = Depends(get_transaction_service),
):
    """
    Register for an event.

    Seats (and any points used) are held until the payment deadline.
    409 distinguishes a sold-out event from a duplicate registration via the `code` field.
    """
    return await service.create_transaction(
        user_id=user.id,
        event_id=data.event_id,
        quantity=data.quantity,
        points_requested=data.points_used,
        promotion_code=data.promotion_code,
        payment_method=data.payment_method,
        notes=data.notes,
    )


@router.get("/my-transactions", response_model=UserTransactionListResponse)
async def list_my_transactions(
    status_filter: Optional[str] = Query("ALL", alias="status", pattern=STATUS_FILTER_PATTERN),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    user: CurrentUser = Depends(get_current_user),
    service: TransactionService = Depends(get_transaction_service),
):
    result = await service.get_transactions_by_user(user.id, status_filter, page, limit)
    return UserTransactionListResponse(
        data=[
            UserTransactionResponse.model_validate(
                {
                    **asdict(item.transaction),
                    "can_cancel": item.can_cancel,
                    "can_upload_payment": item.can_upload_payment,
                    "is_expired": item.is_expired,
                    "can_review": item.can_review,
                    "event_status": item.event_status,
                }
            )
            for item in result.items
        ],
        pagination=Pagination.model_validate(result),
    )


@router.get("/my-tickets", response_model=list[TicketResponse])
async def list_my_tickets(
    user: CurrentUser = Depends(get_current_user),
    service: TransactionService = Depends(get_transaction_service),
):
    """Every registration of the caller with its event, newest first."""
    tickets = await service.get_my_tickets(user.id)
    return [
        TicketResponse.model_validate(
            {
                **asdict(ticket.transaction),
                "event": asdict(ticket.event) if ticket.event is not None else None,
                "can_review": ticket.can_review,
            }
        )
        for ticket in tickets
    ]


@router.get("/check/{event_id}", response_model=RegistrationCheckResponse)
async def check_registration(
    event_id: int,
    user: CurrentUser = Depends(get_current_user),
    service: TransactionService = Depends(get_transaction_service),
):
    return RegistrationCheckResponse(
        event_id=event_id,
        is_registered=await service.is_user_registered(user.id, event_id),
    )


@router.get("/event/{event_id}", response_model=list[TransactionResponse])
async def list_event_transactions(
    event_id: int,
    user: CurrentUser = Depends(get_current_user),
    service: TransactionService = Depends(get_transaction_service),
):
    """All transactions for an event. Organizer of the event or admin only."""
    await service.ensure_can_manage(event_id, user.id, user.is_admin)
    return await service.get_transactions_by_event(event_id)


@router.get("/admin/all", response_model=TransactionListResponse)
async def list_all_transactions(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    _: CurrentUser = Depends(require_admin),
    service: TransactionService = Depends(get_transaction_service),
):
    result = await service.get_all_transactions(page, limit)
    return TransactionListResponse(
        data=[TransactionResponse.model_validate(record) for record in result.items],
        pagination=Pagination.model_validate(result),
    )


@router.get("/admin/stats", response_model=TransactionStatsResponse)
async def transaction_stats(
    _: CurrentUser = Depends(require_admin),
    service: TransactionService = Depends(get_transaction_service),
):
    return await service.get_transaction_stats()


@router.get("/{transaction_id}", response_model=TransactionResponse)
async def get_transaction(
    transaction_id: int,
    user: CurrentUser = Depends(get_current_user),
    service: TransactionService = Depends(get_transaction_service),
):
    """Visible to its owner, the event's organizer and admins."""
    return await _visible_transaction(service, transaction_id, user)


@router.post("/{transaction_id}/payment-proof", response_model=TransactionResponse)
async def upload_payment_proof(
    transaction_id: int,
    data: PaymentProofUpload,
    user: CurrentUser = Depends(get_current_user),
    service: TransactionService = Depends(get_transaction_service),
):
    """
    Attach proof of payment. Must arrive before the payment deadline;
    a late proof expires the registration and returns 410.
    """
    return await service.upload_payment_proof(transaction_id, user.id, data.payment_proof)


@router.post("/{transaction_id}/cancel", response_model=TransactionActionResponse)
async def cancel_transaction(
    transaction_id: int,
    user: CurrentUser = Depends(get_current_user),
    service: TransactionService = Depends(get_transaction_service),
):
    """
    Cancel a waiting registration and release its seats and points.

    The owner may cancel while waiting for payment or confirmation. The event
    organizer or an admin may only cancel before a proof is uploaded.
    """
    record = await _visible_transaction(service, transaction_id, user)
    if record.user_id == user.id:
        changed = await service.cancel_transaction(transaction_id, user_id=user.id)
    else:
        changed = await service.cancel_transaction(transaction_id)
    return TransactionActionResponse(
        message="Transaction cancelled successfully" if changed else "Transaction was already cancelled",
        transaction_id=transaction_id,
        status=TransactionStatus.CANCELLED,
        changed=changed,
    )


@router.post("/{transaction_id}/accept", response_model=TransactionResponse)
async def accept_payment(
    transaction_id: int,
    user: CurrentUser = Depends(get_current_user),
    service: TransactionService = Depends(get_transaction_service),
):
    record = await _visible_transaction(service, transaction_id, user)
    await service.ensure_can_manage(record.event_id, user.id, user.is_admin)
    return await service.accept_payment(transaction_id)


@router.post("/{transaction_id}/reject", response_model=TransactionActionResponse)
async def reject_payment(
    transaction_id: int,
    user: CurrentUser = Depends(get_current_user),
    service: TransactionService = Depends(get_transaction_service),
):
    record = await _visible_transaction(service, transaction_id, user)
    await service.ensure_can_manage(record.event_id, user.id, user.is_admin)
    changed = await service.reject_payment(transaction_id)
    return TransactionActionResponse(
        message="Payment rejected" if changed else "Payment was already rejected",
        transaction_id=transaction_id,
        status=TransactionStatus.REJECTED,
        changed=changed,
    )
