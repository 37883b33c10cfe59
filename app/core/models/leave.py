"""Leave allocation rules, per-period balances and the balance audit trail."""

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.db.session import Base


class LeaveConfig(Base):
    __tablename__ = "leave_configs"
    __table_args__ = (
        CheckConstraint("allocation_period IN ('Monthly','Yearly')", name="chk_leave_config_period"),
        CheckConstraint("allowed_days BETWEEN 0 AND 365", name="chk_leave_config_allowed_days"),
        {"schema": "leave"},
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    campus_id = Column(UUID(as_uuid=True), ForeignKey("core.campuses.id"), nullable=False)
    employee_type = Column(String(100), nullable=False)
    role_name = Column(String(100), nullable=False)
    leave_type = Column(String(50), nullable=False)  # Sick Leave, Casual Leave ...
    allocation_period = Column(String(20), nullable=False)
    allowed_days = Column(Integer, nullable=False)
    is_carry_forward = Column(Boolean, nullable=False, default=False)
    max_carry_forward_days = Column(Integer, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)


class LeaveBalance(Base):
    """One row per (employee, leave type, year[, month]). month is NULL for yearly balances."""

    __tablename__ = "leave_balances"
    __table_args__ = (
        UniqueConstraint("employee_id", "leave_type", "year", "month", name="uq_leave_balance_period"),
        # month IS NULL rows are not covered by the constraint above.
        Index(
            "uq_leave_balance_yearly",
            "employee_id",
            "leave_type",
            "year",
            unique=True,
            postgresql_where=text("month IS NULL"),
            sqlite_where=text("month IS NULL"),
        ),
        {"schema": "leave"},
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    employee_id = Column(UUID(as_uuid=True), ForeignKey("core.employees.id", ondelete="CASCADE"), nullable=False, index=True)
    campus_id = Column(UUID(as_uuid=True), ForeignKey("core.campuses.id"), nullable=False)
    leave_type = Column(String(50), nullable=False)
    year = Column(Integer, nullable=False)
    month = Column(Integer, nullable=True)
    total_allocated = Column(Numeric(6, 2), nullable=False)
    used = Column(Numeric(6, 2), nullable=False, default=0)
    carried_forward = Column(Numeric(6, 2), nullable=False, default=0)
    created_by = Column(String(100), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_by = Column(String(100), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=True)

    employee = relationship("Employee")

    @property
    def available(self) -> Decimal:
        return Decimal(self.total_allocated or 0) + Decimal(self.carried_forward or 0) - Decimal(self.used or 0)


class LeaveBalanceHistory(Base):
    """Append-only trail of every balance-affecting action."""

    __tablename__ = "leave_balance_histories"
    __table_args__ = {"schema": "leave"}

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    employee_id = Column(UUID(as_uuid=True), ForeignKey("core.employees.id", ondelete="CASCADE"), nullable=False, index=True)
    campus_id = Column(UUID(as_uuid=True), ForeignKey("core.campuses.id"), nullable=False)
    leave_balance_id = Column(UUID(as_uuid=True), ForeignKey("leave.leave_balances.id", ondelete="SET NULL"), nullable=True)
    leave_type = Column(String(50), nullable=False)
    action_type = Column(String(100), nullable=False)  # MonthlyRollover, YearlyRollover, Used, Adjustment
    amount = Column(Numeric(6, 2), nullable=False)
    balance_before = Column(Numeric(6, 2), nullable=False)
    balance_after = Column(Numeric(6, 2), nullable=False)
    remarks = Column(String(500), nullable=True)
    leave_request_id = Column(UUID(as_uuid=True), nullable=True)
    created_by = Column(String(100), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
