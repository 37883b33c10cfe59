"""Student directory record as seen by the billing engine."""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Numeric, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.db.session import Base


class Student(Base):
    """
    Read model owned by the student directory.
    The billing engine only ever flips admission_fee_paid.
    """

    __tablename__ = "students"
    __table_args__ = {"schema": "core"}

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    campus_id = Column(UUID(as_uuid=True), ForeignKey("core.campuses.id"), nullable=False, index=True)
    class_id = Column(UUID(as_uuid=True), ForeignKey("core.classes.id"), nullable=False)
    full_name = Column(String(200), nullable=False)
    has_left = Column(Boolean, nullable=False, default=False)
    tuition_fee_discount_percent = Column(Numeric(5, 2), nullable=True)
    # Percentage, despite the legacy "amount" naming in the admission form.
    admission_fee_discount_percent = Column(Numeric(5, 2), nullable=True)
    admission_fee_paid = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    campus = relationship("Campus")
    school_class = relationship("SchoolClass")
