"""Payroll deduction used to settle an employee-parent's child fee."""

import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.db.session import Base


class SalaryDeduction(Base):
    """Append-only. Summed per (employee, month, year) to find salary already used by siblings."""

    __tablename__ = "salary_deductions"
    __table_args__ = (
        UniqueConstraint("student_id", "for_month", "for_year", name="uq_salary_deduction_student_period"),
        {"schema": "payroll"},
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    student_id = Column(UUID(as_uuid=True), ForeignKey("core.students.id", ondelete="RESTRICT"), nullable=False)
    employee_id = Column(UUID(as_uuid=True), ForeignKey("core.employees.id", ondelete="RESTRICT"), nullable=False, index=True)
    billing_master_id = Column(
        UUID(as_uuid=True),
        ForeignKey("finance.billing_masters.id", ondelete="RESTRICT"),
        nullable=False,
    )
    amount_deducted = Column(Numeric(12, 2), nullable=False)
    for_month = Column(Integer, nullable=False)
    for_year = Column(Integer, nullable=False)
    deduction_date = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    created_by = Column(String(100), nullable=False)
    campus_id = Column(UUID(as_uuid=True), ForeignKey("core.campuses.id"), nullable=False)

    billing_master = relationship("BillingMaster", backref="salary_deductions")
    employee = relationship("Employee")
