"""Billing cycle records: one master per (student, month, year) plus its payment events."""

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, Numeric, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.db.session import Base


class BillingMaster(Base):
    """
    Fee components are snapshot values captured at billing time, never recomputed.
    dues is stored, not derived: every writer that appends a transaction or
    reconciles fee/fine must keep it consistent.
    """

    __tablename__ = "billing_masters"
    __table_args__ = (
        UniqueConstraint("student_id", "for_month", "for_year", name="uq_billing_student_period"),
        {"schema": "finance"},
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    student_id = Column(UUID(as_uuid=True), ForeignKey("core.students.id", ondelete="RESTRICT"), nullable=False, index=True)
    class_id = Column(UUID(as_uuid=True), ForeignKey("core.classes.id", ondelete="RESTRICT"), nullable=False)
    campus_id = Column(UUID(as_uuid=True), ForeignKey("core.campuses.id"), nullable=False, index=True)
    for_month = Column(Integer, nullable=False)  # 1 = January
    for_year = Column(Integer, nullable=False)

    tuition_fee = Column(Numeric(12, 2), nullable=False, default=0)
    admission_fee = Column(Numeric(12, 2), nullable=False, default=0)
    miscellaneous_charges = Column(Numeric(12, 2), nullable=False, default=0)
    fine = Column(Numeric(12, 2), nullable=False, default=0)
    previous_dues = Column(Numeric(12, 2), nullable=False, default=0)
    dues = Column(Numeric(12, 2), nullable=False, default=0)

    remarks = Column(Text, nullable=True)
    remarks_previous_dues = Column(Text, nullable=True)
    created_by = Column(String(100), nullable=False)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    modified_by = Column(String(100), nullable=True)
    modified_at = Column(DateTime(timezone=True), nullable=True)

    student = relationship("Student")
    transactions = relationship(
        "BillingTransaction",
        back_populates="billing_master",
        order_by="BillingTransaction.payment_date",
        lazy="selectin",
    )

    @property
    def total_payable(self) -> Decimal:
        return (
            Decimal(self.tuition_fee or 0)
            + Decimal(self.admission_fee or 0)
            + Decimal(self.fine or 0)
            + Decimal(self.previous_dues or 0)
            + Decimal(self.miscellaneous_charges or 0)
        )

    @property
    def total_paid(self) -> Decimal:
        return sum((Decimal(t.amount_paid) for t in self.transactions), Decimal("0"))


class BillingTransaction(Base):
    """Immutable payment event. Several may target one master (partial payments)."""

    __tablename__ = "billing_transactions"
    __table_args__ = {"schema": "finance"}

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    billing_master_id = Column(
        UUID(as_uuid=True),
        ForeignKey("finance.billing_masters.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    amount_paid = Column(Numeric(12, 2), nullable=False)
    cash_paid = Column(Numeric(12, 2), nullable=False, default=0)
    online_paid = Column(Numeric(12, 2), nullable=False, default=0)
    online_account_id = Column(UUID(as_uuid=True), ForeignKey("finance.bank_accounts.id", ondelete="SET NULL"), nullable=True)
    transaction_reference = Column(String(100), nullable=True)
    idempotency_key = Column(String(100), nullable=True, unique=True)
    payment_date = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    received_by = Column(String(100), nullable=False)
    campus_id = Column(UUID(as_uuid=True), ForeignKey("core.campuses.id"), nullable=False)

    billing_master = relationship("BillingMaster", back_populates="transactions")
    online_account = relationship("BankAccount")


class BankAccount(Base):
    __tablename__ = "bank_accounts"
    __table_args__ = {"schema": "finance"}

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    campus_id = Column(UUID(as_uuid=True), ForeignKey("core.campuses.id"), nullable=False)
    bank_name = Column(String(100), nullable=False)
    account_title = Column(String(150), nullable=False)
    account_number = Column(String(50), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
