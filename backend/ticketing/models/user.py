"""
User model. Credentials live with the account service; this core only needs
the loyalty point balance and the role.
"""

from sqlalchemy import Column, Integer, String, Boolean, CheckConstraint
from sqlalchemy.orm import relationship

from ticketing.db.base import Base, TimestampMixin


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    full_name = Column(String(255), nullable=True)
    role = Column(String(20), nullable=False, default="CUSTOMER")
    points = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, default=True, nullable=False)

    events = relationship("Event", back_populates="organizer")
    transactions = relationship("Transaction", back_populates="user")

    __table_args__ = (
        CheckConstraint("points >= 0", name="check_user_points_non_negative"),
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email}, points={self.points})>"
