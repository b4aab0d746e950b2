"""
Event model with seat inventory tracking.

Key design decisions:
- `available_seats` is denormalized: it is the seat ledger, mutated only through
  conditional UPDATEs (see stores.sql_store.SqlEventStore)
- CHECK constraints keep 0 <= available_seats <= total_seats even if a code path misbehaves
- Index on (status, start_date, end_date) serves the status-sync sweep
"""

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Index, CheckConstraint
from sqlalchemy.orm import relationship

from ticketing.db.base import Base, TimestampMixin


class Event(Base, TimestampMixin):
    __tablename__ = "events"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=False)
    description = Column(String(2000), nullable=True)
    location = Column(String(255), nullable=True)
    start_date = Column(DateTime(timezone=True), nullable=False)
    end_date = Column(DateTime(timezone=True), nullable=False)
    price = Column(Integer, nullable=False, default=0)
    total_seats = Column(Integer, nullable=False)
    available_seats = Column(Integer, nullable=False)
    status = Column(String(20), nullable=False, default="UPCOMING")
    organizer_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    organizer = relationship("User", back_populates="events")
    transactions = relationship("Transaction", back_populates="event")

    __table_args__ = (
        CheckConstraint("available_seats >= 0", name="check_available_seats_non_negative"),
        CheckConstraint("total_seats > 0", name="check_total_seats_positive"),
        CheckConstraint("available_seats <= total_seats", name="check_available_lte_total"),
        CheckConstraint("price >= 0", name="check_price_non_negative"),
        CheckConstraint("end_date >= start_date", name="check_event_window"),
        CheckConstraint(
            "status IN ('UPCOMING', 'ACTIVE', 'ENDED', 'CANCELLED')", name="check_event_status"
        ),
        Index("ix_events_status_window", "status", "start_date", "end_date"),
    )

    def __repr__(self) -> str:
        return f"<Event(id={self.id}, title={self.title}, available={self.available_seats}/{self.total_seats})>"
