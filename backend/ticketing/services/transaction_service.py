"""
Transaction lifecycle and seat/points reservation engine.

CONCURRENCY STRATEGY: Conditional Writes inside a Unit of Work
===============================================================

Problem:
  Two users try to register for the last seat simultaneously.
  Both read available_seats=1, both decrement to 0, both succeed.
  Result: Oversell. The same race exists on a user's point balance
  and on a promotion's use count.

Solution:
  Every counter write is a single conditional statement
  (UPDATE ... SET n = n - k WHERE n >= k); the store reports whether the
  precondition held. The reads before it (seat pre-check, duplicate check,
  point balance) are advisory and only produce friendly errors early.

  Reserve seats, reserve points, count the promotion use and insert the row
  all happen inside one unit of work. A lost race raises out of the block and
  the unit of work rolls every earlier write back, so no hold is orphaned.

  Releases go the other way: the status compare-and-set runs first
  (UPDATE ... WHERE status IN (...)), and seats/points/promotion use are only
  given back when that update matched. A second cancel/reject/expire finds the
  status already moved and releases nothing.

  The partial unique index on (user_id, event_id) over active statuses is the
  last line of defense against two concurrent registrations by one user.

Lifecycle:
  WAITING_PAYMENT      -> WAITING_CONFIRMATION  proof uploaded before payment_deadline
  WAITING_PAYMENT      -> EXPIRED               payment_deadline passed (sweep, or late upload)
  WAITING_PAYMENT      -> CANCELLED             user/organizer cancels
  WAITING_CONFIRMATION -> DONE                  organizer/admin accepts
  WAITING_CONFIRMATION -> REJECTED              organizer/admin rejects, or confirmation_deadline passed
  WAITING_CONFIRMATION -> CANCELLED             user cancels
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Iterable, Optional

from ticketing.core.config import Settings, get_settings
from ticketing.core.errors import (
    AlreadyRegisteredError,
    DuplicateRegistration,
    ForbiddenError,
    InsufficientSeatsError,
    InvalidPromotionError,
    InvalidRequestError,
    InvalidTransitionError,
    NotFoundError,
    PaymentExpiredError,
    PointsConflict,
    PromotionConflict,
    ReservationConflictError,
    SeatConflict,
    UploadFailureError,
)
from ticketing.core.logging import get_logger
from ticketing.core.metrics import (
    record_sweep_rows,
    record_transaction_attempt,
    record_transition,
    reservation_latency,
)
from ticketing.core.time_utils import Clock, utcnow
from ticketing.domain import (
    EventInfo,
    NewTransaction,
    Page,
    TransactionRecord,
    TransactionStatus,
    compute_amounts,
)
from ticketing.infrastructure.image_store import ImageStore, UploadError
from ticketing.services import ledger_service
from ticketing.services.promotion_service import resolve_promotion
from ticketing.stores.interfaces import Storage, UnitOfWork

logger = get_logger(__name__)

WAITING_STATUSES = (TransactionStatus.WAITING_PAYMENT, TransactionStatus.WAITING_CONFIRMATION)


@dataclass(frozen=True)
class UserTransaction:
    """A transaction as listed to its owner, with the actions currently open to them."""

    transaction: TransactionRecord
    can_cancel: bool
    can_upload_payment: bool
    is_expired: bool
    can_review: bool
    event_status: Optional[str]


@dataclass(frozen=True)
class Ticket:
    """A transaction with its event, as shown on the user's ticket page."""

    transaction: TransactionRecord
    event: Optional[EventInfo]
    can_review: bool


def event_phase(event: Optional[EventInfo], now: datetime) -> Optional[str]:
    """UPCOMING before start_date, ENDED after end_date, ONGOING in between. Derived from the clock, not the stored status."""
    if event is None:
        return None
    if event.start_date > now:
        return "UPCOMING"
    if event.end_date < now:
        return "ENDED"
    return "ONGOING"


def is_reviewable(record: TransactionRecord, event: Optional[EventInfo], now: datetime) -> bool:
    """Only completed purchases of events that are over can be reviewed."""
    return record.status == TransactionStatus.DONE and event is not None and now > event.end_date


class TransactionService:
    def __init__(
        self,
        storage: Storage,
        image_store: ImageStore,
        clock: Clock = utcnow,
        settings: Optional[Settings] = None,
    ):
        settings = settings or get_settings()
        self.storage = storage
        self.image_store = image_store
        self.clock = clock
        self.payment_window = timedelta(hours=settings.PAYMENT_WINDOW_HOURS)
        self.confirmation_window = timedelta(days=settings.CONFIRMATION_WINDOW_DAYS)
        self.max_attempts = max(1, settings.MAX_RESERVATION_ATTEMPTS)

    # ------------------------------------------------------------------
    # Reservation
    # ------------------------------------------------------------------

    async def create_transaction(
        self,
        user_id: int,
        event_id: int,
        quantity: int = 1,
        points_requested: int = 0,
        promotion_code: Optional[str] = None,
        payment_method: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> TransactionRecord:
        """
        Register a user for an event.
        Retries once on a points race; every other failure is final and leaves no writes behind.
        """
        if quantity < 1:
            raise InvalidRequestError("quantity must be at least 1")

        for attempt in range(1, self.max_attempts + 1):
            try:
                with reservation_latency.time():
                    record = await self._reserve(
                        user_id,
                        event_id,
                        quantity,
                        max(0, points_requested),
                        promotion_code,
                        payment_method,
                        notes,
                    )
            except SeatConflict:
                # Another registration took the seats between the pre-check and the write
                available = await self._available_seats(event_id)
                record_transaction_attempt("insufficient_seats")
                raise InsufficientSeatsError(available, quantity)
            except DuplicateRegistration:
                record_transaction_attempt("already_registered")
                raise AlreadyRegisteredError(user_id, event_id)
            except PromotionConflict:
                record_transaction_attempt("invalid_promotion")
                raise InvalidPromotionError("Promotion code has reached maximum usage limit")
            except PointsConflict:
                logger.info(
                    "transaction_retry",
                    user_id=user_id,
                    event_id=event_id,
                    attempt=attempt,
                    reason="points_conflict",
                )
                continue
            except InsufficientSeatsError:
                record_transaction_attempt("insufficient_seats")
                raise
            except AlreadyRegisteredError:
                record_transaction_attempt("already_registered")
                raise
            except InvalidPromotionError:
                record_transaction_attempt("invalid_promotion")
                raise
            except NotFoundError:
                record_transaction_attempt("not_found")
                raise

            record_transaction_attempt("created")
            logger.info(
                "transaction_created",
                transaction_id=record.id,
                user_id=user_id,
                event_id=event_id,
                quantity=quantity,
                points_used=record.points_used,
                final_amount=record.final_amount,
                attempt=attempt,
            )
            return record

        record_transaction_attempt("conflict")
        logger.warning("transaction_failed_conflict", user_id=user_id, event_id=event_id)
        raise ReservationConflictError()

    async def _reserve(
        self,
        user_id: int,
        event_id: int,
        quantity: int,
        points_requested: int,
        promotion_code: Optional[str],
        payment_method: Optional[str],
        notes: Optional[str],
    ) -> TransactionRecord:
        now = self.clock()
        async with self.storage.unit_of_work() as uow:
            event = await uow.events.get(event_id)
            if event is None:
                raise NotFoundError("Event", event_id)

            if event.available_seats < quantity:
                logger.warning(
                    "transaction_failed_no_seats",
                    event_id=event_id,
                    requested=quantity,
                    available=event.available_seats,
                )
                raise InsufficientSeatsError(event.available_seats, quantity)

            if await uow.transactions.find_active(user_id, event_id):
                raise AlreadyRegisteredError(user_id, event_id)

            user = await uow.users.get(user_id)
            if user is None:
                raise NotFoundError("User", user_id)
            points_used = min(points_requested, user.points)

            total_amount = event.price * quantity
            promotion, discount_amount = await resolve_promotion(
                uow, promotion_code, event, total_amount, now
            )
            amounts = compute_amounts(event.price, quantity, points_used, discount_amount)

            await ledger_service.reserve_seats(uow, event_id, quantity)
            await ledger_service.reserve_points(uow, user_id, points_used)
            if promotion is not None:
                await ledger_service.redeem_promotion(uow, promotion.id)

            record = await uow.transactions.insert(
                NewTransaction(
                    user_id=user_id,
                    event_id=event_id,
                    quantity=quantity,
                    total_amount=amounts.total_amount,
                    points_used=amounts.points_used,
                    discount_amount=amounts.discount_amount,
                    final_amount=amounts.final_amount,
                    payment_deadline=now + self.payment_window,
                    promotion_id=promotion.id if promotion else None,
                    payment_method=payment_method,
                    notes=notes,
                )
            )
            await uow.commit()
        return record

    async def _available_seats(self, event_id: int) -> int:
        async with self.storage.unit_of_work() as uow:
            event = await uow.events.get(event_id)
        return event.available_seats if event else 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def upload_payment_proof(self, transaction_id: int, user_id: int, proof: str) -> TransactionRecord:
        """
        Attach a payment proof and move WAITING_PAYMENT -> WAITING_CONFIRMATION.

        A proof arriving after payment_deadline expires the transaction instead
        and raises PaymentExpiredError, even if the sweep has not run yet.
        Upload failures leave the transaction untouched.
        """
        now = self.clock()
        current = await self._get_owned(transaction_id, user_id)
        target = TransactionStatus.WAITING_CONFIRMATION

        if current.status != TransactionStatus.WAITING_PAYMENT:
            raise InvalidTransitionError(
                current.status.value, target.value, "Transaction is not waiting for payment"
            )

        if current.payment_deadline is not None and now > current.payment_deadline:
            logger.warning(
                "payment_proof_late",
                transaction_id=transaction_id,
                payment_deadline=current.payment_deadline.isoformat(),
            )
            await self.expire_transaction(transaction_id, trigger="user")
            raise PaymentExpiredError(transaction_id)

        try:
            url = await self.image_store.upload(proof)
        except UploadError as e:
            logger.error("payment_proof_rejected_upload", transaction_id=transaction_id, error=str(e))
            raise UploadFailureError(str(e)) from e

        async with self.storage.unit_of_work() as uow:
            updated = await uow.transactions.transition(
                transaction_id,
                (TransactionStatus.WAITING_PAYMENT,),
                target,
                payment_proof=url,
                confirmation_deadline=now + self.confirmation_window,
            )
            if updated is None:
                latest = await uow.transactions.get(transaction_id)
                raise InvalidTransitionError(latest.status.value, target.value)
            await uow.commit()

        record_transition(target.value, "user")
        logger.info("payment_proof_uploaded", transaction_id=transaction_id, user_id=user_id)
        return updated

    async def cancel_transaction(self, transaction_id: int, user_id: Optional[int] = None) -> bool:
        """
        Cancel a waiting transaction and give its seats/points back.

        With user_id (the owner) both waiting statuses can be cancelled.
        Without it (organizer/admin) only WAITING_PAYMENT can; a submitted
        proof is accepted or rejected instead.
        Returns False if it was already cancelled.
        """
        if user_id is not None:
            return await self._release_transition(
                transaction_id,
                WAITING_STATUSES,
                TransactionStatus.CANCELLED,
                trigger="user",
                user_id=user_id,
            )
        return await self._release_transition(
            transaction_id,
            (TransactionStatus.WAITING_PAYMENT,),
            TransactionStatus.CANCELLED,
            trigger="organizer",
            hint="Payment proof was submitted; accept or reject it instead",
        )

    async def reject_payment(self, transaction_id: int, trigger: str = "organizer") -> bool:
        """Reject a submitted proof. Returns False if it was already rejected."""
        return await self._release_transition(
            transaction_id,
            (TransactionStatus.WAITING_CONFIRMATION,),
            TransactionStatus.REJECTED,
            trigger=trigger,
        )

    async def expire_transaction(self, transaction_id: int, trigger: str = "scheduler") -> bool:
        """Expire an unpaid transaction. Returns False if it was already expired."""
        return await self._release_transition(
            transaction_id,
            (TransactionStatus.WAITING_PAYMENT,),
            TransactionStatus.EXPIRED,
            trigger=trigger,
        )

    async def accept_payment(self, transaction_id: int) -> TransactionRecord:
        """Finalize the sale. Seats and points stay consumed. Accepting a DONE transaction returns it unchanged."""
        target = TransactionStatus.DONE
        async with self.storage.unit_of_work() as uow:
            updated = await uow.transactions.transition(
                transaction_id, (TransactionStatus.WAITING_CONFIRMATION,), target
            )
            if updated is None:
                current = await uow.transactions.get(transaction_id)
                if current is None:
                    raise NotFoundError("Transaction", transaction_id)
                if current.status == target:
                    return current
                raise InvalidTransitionError(current.status.value, target.value)
            await uow.commit()

        record_transition(target.value, "organizer")
        logger.info("transaction_accepted", transaction_id=transaction_id)
        return updated

    async def _release_transition(
        self,
        transaction_id: int,
        from_statuses: Iterable[TransactionStatus],
        to_status: TransactionStatus,
        trigger: str,
        user_id: Optional[int] = None,
        hint: Optional[str] = None,
    ) -> bool:
        async with self.storage.unit_of_work() as uow:
            current = await uow.transactions.get(transaction_id)
            if current is None or (user_id is not None and current.user_id != user_id):
                raise NotFoundError("Transaction", transaction_id)

            updated = await uow.transactions.transition(transaction_id, from_statuses, to_status)
            if updated is None:
                latest = await uow.transactions.get(transaction_id)
                if latest.status == to_status:
                    logger.info(
                        "transition_noop",
                        transaction_id=transaction_id,
                        status=to_status.value,
                    )
                    return False
                if latest.status == TransactionStatus.WAITING_CONFIRMATION and hint:
                    raise InvalidTransitionError(latest.status.value, to_status.value, hint)
                raise InvalidTransitionError(latest.status.value, to_status.value)

            await self._release_holds(uow, updated)
            await uow.commit()

        record_transition(to_status.value, trigger)
        logger.info(
            "transaction_released",
            transaction_id=transaction_id,
            status=to_status.value,
            trigger=trigger,
            seats=updated.quantity,
            points=updated.points_used,
        )
        return True

    async def _release_holds(self, uow: UnitOfWork, record: TransactionRecord) -> None:
        await ledger_service.release_seats(uow, record.event_id, record.quantity)
        await ledger_service.release_points(uow, record.user_id, record.points_used)
        if record.promotion_id is not None:
            await ledger_service.release_promotion(uow, record.promotion_id)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_transaction(self, transaction_id: int) -> TransactionRecord:
        async with self.storage.unit_of_work() as uow:
            record = await uow.transactions.get(transaction_id)
        if record is None:
            raise NotFoundError("Transaction", transaction_id)
        return record

    async def _get_owned(self, transaction_id: int, user_id: int) -> TransactionRecord:
        record = await self.get_transaction(transaction_id)
        if record.user_id != user_id:
            raise NotFoundError("Transaction", transaction_id)
        return record

    async def get_transactions_by_user(
        self,
        user_id: int,
        status: Optional[str] = None,
        page: int = 1,
        limit: int = 10,
    ) -> Page:
        """Newest first. status=None or "ALL" lists every status."""
        status_filter = self._parse_status_filter(status)
        page, limit = max(1, page), max(1, limit)
        now = self.clock()

        async with self.storage.unit_of_work() as uow:
            records, total = await uow.transactions.list_by_user(
                user_id, status_filter, (page - 1) * limit, limit
            )
            events = await self._events_for(uow, records)

        items = []
        for record in records:
            event = events.get(record.event_id)
            payable = record.payment_deadline is None or record.payment_deadline > now
            waiting_payment = record.status == TransactionStatus.WAITING_PAYMENT
            items.append(
                UserTransaction(
                    transaction=record,
                    can_cancel=(waiting_payment and payable)
                    or record.status == TransactionStatus.WAITING_CONFIRMATION,
                    can_upload_payment=waiting_payment and payable,
                    is_expired=record.status == TransactionStatus.EXPIRED
                    or (waiting_payment and not payable),
                    can_review=is_reviewable(record, event, now),
                    event_status=event_phase(event, now),
                )
            )
        return Page(items=items, total=total, page=page, limit=limit)

    async def get_my_tickets(self, user_id: int) -> list[Ticket]:
        """Every transaction of the user with its event, newest first. Not paginated."""
        now = self.clock()
        async with self.storage.unit_of_work() as uow:
            records, _ = await uow.transactions.list_by_user(user_id, None, 0, None)
            events = await self._events_for(uow, records)

        return [
            Ticket(
                transaction=record,
                event=events.get(record.event_id),
                can_review=is_reviewable(record, events.get(record.event_id), now),
            )
            for record in records
        ]

    @staticmethod
    def _parse_status_filter(status: Optional[str]) -> Optional[TransactionStatus]:
        if status in (None, "ALL"):
            return None
        try:
            return TransactionStatus(status)
        except ValueError:
            raise InvalidRequestError(f"Unknown status filter: {status}")

    @staticmethod
    async def _events_for(uow: UnitOfWork, records: Iterable[TransactionRecord]) -> dict[int, EventInfo]:
        events = {}
        for event_id in {record.event_id for record in records}:
            event = await uow.events.get(event_id)
            if event is not None:
                events[event_id] = event
        return events

    async def get_transactions_by_event(self, event_id: int) -> list[TransactionRecord]:
        async with self.storage.unit_of_work() as uow:
            return await uow.transactions.list_by_event(event_id)

    async def get_all_transactions(self, page: int = 1, limit: int = 10) -> Page:
        page, limit = max(1, page), max(1, limit)
        async with self.storage.unit_of_work() as uow:
            records, total = await uow.transactions.list_all((page - 1) * limit, limit)
        return Page(items=records, total=total, page=page, limit=limit)

    async def get_transaction_stats(self) -> dict[str, int]:
        async with self.storage.unit_of_work() as uow:
            counts = await uow.transactions.count_by_status()
        stats = {status.value: counts.get(status, 0) for status in TransactionStatus}
        stats["total"] = sum(counts.values())
        return stats

    async def is_user_registered(self, user_id: int, event_id: int) -> bool:
        async with self.storage.unit_of_work() as uow:
            return await uow.transactions.find_active(user_id, event_id) is not None

    async def verify_event_ownership(self, event_id: int, user_id: int) -> bool:
        async with self.storage.unit_of_work() as uow:
            event = await uow.events.get(event_id)
        if event is None:
            raise NotFoundError("Event", event_id)
        return event.organizer_id == user_id

    async def ensure_can_manage(self, event_id: int, user_id: int, is_admin: bool = False) -> None:
        """Organizer-side actions are open to the event's organizer and to admins."""
        if is_admin:
            return
        if not await self.verify_event_ownership(event_id, user_id):
            raise ForbiddenError("You can only manage transactions for your own events")

    # ------------------------------------------------------------------
    # Sweeps
    # ------------------------------------------------------------------

    async def sweep_expired_payments(self) -> int:
        """Expire every WAITING_PAYMENT transaction past its payment_deadline."""
        async with self.storage.unit_of_work() as uow:
            ids = await uow.transactions.list_expired_payments(self.clock())
        return await self._sweep(
            "sweep_expired_payments",
            ids,
            lambda tx_id: self.expire_transaction(tx_id, trigger="scheduler"),
        )

    async def sweep_expired_confirmations(self) -> int:
        """Reject every WAITING_CONFIRMATION transaction past its confirmation_deadline."""
        async with self.storage.unit_of_work() as uow:
            ids = await uow.transactions.list_expired_confirmations(self.clock())
        return await self._sweep(
            "sweep_expired_confirmations",
            ids,
            lambda tx_id: self.reject_payment(tx_id, trigger="scheduler"),
        )

    async def _sweep(
        self,
        job: str,
        ids: list[int],
        apply: Callable[[int], Awaitable[bool]],
    ) -> int:
        """Apply one transition per row. A failed row is logged and skipped."""
        processed = failed = 0
        for tx_id in ids:
            try:
                if await apply(tx_id):
                    processed += 1
            except InvalidTransitionError as e:
                # Moved by a request between listing and applying
                logger.info("sweep_row_skipped", job=job, transaction_id=tx_id, reason=e.message)
            except Exception:
                failed += 1
                logger.exception("sweep_row_failed", job=job, transaction_id=tx_id)

        record_sweep_rows(job, processed, failed)
        logger.info("sweep_completed", job=job, candidates=len(ids), processed=processed, failed=failed)
        return processed
