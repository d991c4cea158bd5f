"""
Default leave balance policy.

Versions are append-only; the single pointer row names the current one.
"""
from sqlalchemy import Column, Integer, Numeric, Text, DateTime, ForeignKey
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from app.database import Base


class DefaultBalance(Base):
    __tablename__ = "default_balances"

    id = Column(Integer, primary_key=True, index=True)
    version = Column(Integer, unique=True, nullable=False)
    annual_leave = Column(Numeric(4, 1), nullable=False, default=20)
    sick_leave = Column(Numeric(4, 1), nullable=False, default=10)
    personal_leave = Column(Numeric(4, 1), nullable=False, default=5)
    max_carry_over = Column(Numeric(4, 1), nullable=False, default=5)
    updated_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class DefaultBalancePointer(Base):
    __tablename__ = "default_balance_pointer"

    id = Column(Integer, primary_key=True)  # always 1
    current_id = Column(Integer, ForeignKey("default_balances.id"), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    current = relationship("DefaultBalance")
