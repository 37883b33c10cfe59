"""Extra charges on top of tuition, their per-student assignment and the payment ledger."""

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.db.session import Base


class ClassFeeExtraCharge(Base):
    """Charge definition. class_id NULL means campus-wide. Soft delete via is_deleted."""

    __tablename__ = "class_fee_extra_charges"
    __table_args__ = (
        CheckConstraint(
            "category IN ('MonthlyCharges','OncePerLifetime','OncePerClass')",
            name="chk_extra_charge_category",
        ),
        {"schema": "finance"},
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    campus_id = Column(UUID(as_uuid=True), ForeignKey("core.campuses.id"), nullable=False, index=True)
    class_id = Column(UUID(as_uuid=True), ForeignKey("core.classes.id", ondelete="SET NULL"), nullable=True)
    charge_name = Column(String(100), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    category = Column(String(50), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    is_deleted = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    school_class = relationship("SchoolClass")


class StudentChargeAssignment(Base):
    __tablename__ = "student_charge_assignments"
    __table_args__ = (
        UniqueConstraint("student_id", "charge_id", name="uq_student_charge_assignment"),
        {"schema": "finance"},
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    student_id = Column(UUID(as_uuid=True), ForeignKey("core.students.id", ondelete="CASCADE"), nullable=False, index=True)
    charge_id = Column(
        UUID(as_uuid=True),
        ForeignKey("finance.class_fee_extra_charges.id", ondelete="CASCADE"),
        nullable=False,
    )
    campus_id = Column(UUID(as_uuid=True), ForeignKey("core.campuses.id"), nullable=False)
    is_assigned = Column(Boolean, nullable=False, default=True)
    assigned_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    charge = relationship("ClassFeeExtraCharge", backref="assignments")


class ClassFeeExtraChargeExclusion(Base):
    """Opt-out of a class-wide or campus-wide charge for one student."""

    __tablename__ = "class_fee_extra_charge_exclusions"
    __table_args__ = (
        UniqueConstraint("student_id", "charge_id", name="uq_extra_charge_exclusion"),
        {"schema": "finance"},
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    student_id = Column(UUID(as_uuid=True), ForeignKey("core.students.id", ondelete="CASCADE"), nullable=False)
    charge_id = Column(
        UUID(as_uuid=True),
        ForeignKey("finance.class_fee_extra_charges.id", ondelete="CASCADE"),
        nullable=False,
    )
    campus_id = Column(UUID(as_uuid=True), ForeignKey("core.campuses.id"), nullable=False)
    excluded_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    excluded_by = Column(String(100), nullable=True)


class ClassFeeExtraChargePaymentHistory(Base):
    """
    Append-only ledger of extra charge payments. Sole source of truth for
    OncePerLifetime / OncePerClass eligibility.
    """

    __tablename__ = "class_fee_extra_charge_payment_histories"
    __table_args__ = (
        UniqueConstraint("student_id", "charge_id", "billing_master_id", name="uq_charge_history_bill"),
        {"schema": "finance"},
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    student_id = Column(UUID(as_uuid=True), ForeignKey("core.students.id", ondelete="CASCADE"), nullable=False, index=True)
    charge_id = Column(
        UUID(as_uuid=True),
        ForeignKey("finance.class_fee_extra_charges.id", ondelete="RESTRICT"),
        nullable=False,
    )
    # Only stamped for OncePerClass charges
    class_id_paid_for = Column(UUID(as_uuid=True), ForeignKey("core.classes.id", ondelete="SET NULL"), nullable=True)
    billing_master_id = Column(
        UUID(as_uuid=True),
        ForeignKey("finance.billing_masters.id", ondelete="RESTRICT"),
        nullable=False,
    )
    amount_paid = Column(Numeric(12, 2), nullable=False)
    payment_date = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    campus_id = Column(UUID(as_uuid=True), ForeignKey("core.campuses.id"), nullable=False)

    charge = relationship("ClassFeeExtraCharge")
    billing_master = relationship("BillingMaster", backref="charge_payments")
