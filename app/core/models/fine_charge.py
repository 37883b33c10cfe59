"""Ad-hoc fines/charges raised against a student, settled by the next billing."""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Numeric, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.db.session import Base


class StudentFineCharge(Base):
    __tablename__ = "student_fine_charges"
    __table_args__ = {"schema": "finance"}

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    student_id = Column(UUID(as_uuid=True), ForeignKey("core.students.id", ondelete="CASCADE"), nullable=False, index=True)
    campus_id = Column(UUID(as_uuid=True), ForeignKey("core.campuses.id"), nullable=False)
    charge_name = Column(String(200), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    description = Column(Text, nullable=True)
    charge_date = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    is_paid = Column(Boolean, nullable=False, default=False)
    paid_date = Column(DateTime(timezone=True), nullable=True)
    billing_master_id = Column(
        UUID(as_uuid=True),
        ForeignKey("finance.billing_masters.id", ondelete="SET NULL"),
        nullable=True,
    )
    is_active = Column(Boolean, nullable=False, default=True)
    modified_by = Column(String(100), nullable=True)
    modified_at = Column(DateTime(timezone=True), nullable=True)

    billing_master = relationship("BillingMaster", backref="settled_fines")
