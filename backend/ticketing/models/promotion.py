"""
Promotion (discount code) model.
"""

from sqlalchemy import Column, Integer, String, DateTime, Boolean, ForeignKey, CheckConstraint

from ticketing.db.base import Base, TimestampMixin


class Promotion(Base, TimestampMixin):
    __tablename__ = "promotions"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(50), unique=True, index=True, nullable=False)
    discount_percent = Column(Integer, nullable=False)
    valid_until = Column(DateTime(timezone=True), nullable=False)
    max_uses = Column(Integer, nullable=True)
    current_uses = Column(Integer, nullable=False, default=0)
    min_purchase = Column(Integer, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    event_id = Column(Integer, ForeignKey("events.id"), nullable=True, index=True)

    __table_args__ = (
        CheckConstraint("discount_percent BETWEEN 0 AND 100", name="check_discount_percent_range"),
        CheckConstraint("current_uses >= 0", name="check_current_uses_non_negative"),
    )

    def __repr__(self) -> str:
        return f"<Promotion(id={self.id}, code={self.code}, active={self.is_active})>"
