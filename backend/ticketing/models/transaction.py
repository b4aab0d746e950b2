"""
Transaction model: one registration attempt for one event.

Key design decisions:
- Partial unique index on (user_id, event_id) over active statuses: the last line of
  defense behind the service-level "already registered" check. Released transactions
  (cancelled/rejected/expired) do not block a new registration.
- Status changes instead of deletes; rows are never physically removed
- Deadline columns are indexed together with status for the expiry sweeps
"""

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Index, CheckConstraint, text
from sqlalchemy.orm import relationship

from ticketing.db.base import Base, TimestampMixin

ACTIVE_STATUS_SQL = "status IN ('WAITING_PAYMENT', 'WAITING_CONFIRMATION', 'DONE')"


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    event_id = Column(Integer, ForeignKey("events.id"), nullable=False, index=True)
    promotion_id = Column(Integer, ForeignKey("promotions.id"), nullable=True)
    quantity = Column(Integer, nullable=False, default=1)
    total_amount = Column(Integer, nullable=False)
    points_used = Column(Integer, nullable=False, default=0)
    discount_amount = Column(Integer, nullable=False, default=0)
    final_amount = Column(Integer, nullable=False)
    payment_method = Column(String(50), nullable=True)
    payment_proof = Column(String(1024), nullable=True)
    notes = Column(String(500), nullable=True)
    status = Column(String(30), nullable=False, default="WAITING_PAYMENT")
    payment_deadline = Column(DateTime(timezone=True), nullable=True)
    confirmation_deadline = Column(DateTime(timezone=True), nullable=True)

    user = relationship("User", back_populates="transactions")
    event = relationship("Event", back_populates="transactions")

    __table_args__ = (
        Index(
            "uq_transactions_active_user_event",
            "user_id",
            "event_id",
            unique=True,
            postgresql_where=text(ACTIVE_STATUS_SQL),
        ),
        Index("ix_transactions_status_payment_deadline", "status", "payment_deadline"),
        Index("ix_transactions_status_confirmation_deadline", "status", "confirmation_deadline"),
        CheckConstraint("quantity > 0", name="check_transaction_quantity_positive"),
        CheckConstraint("points_used >= 0", name="check_points_used_non_negative"),
        CheckConstraint("final_amount >= 0", name="check_final_amount_non_negative"),
        CheckConstraint(
            "status IN ('WAITING_PAYMENT', 'WAITING_CONFIRMATION', 'DONE', 'CANCELLED', 'REJECTED', 'EXPIRED')",
            name="check_transaction_status",
        ),
    )

    def __repr__(self) -> str:
        return f"<Transaction(id={self.id}, user={self.user_id}, event={self.event_id}, status={self.status})>"
