"""Per-class tuition and admission fee."""

import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Numeric, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.db.session import Base


class ClassFee(Base):
    __tablename__ = "class_fees"
    __table_args__ = (
        UniqueConstraint("class_id", name="uq_class_fee_class"),
        {"schema": "finance"},
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    class_id = Column(UUID(as_uuid=True), ForeignKey("core.classes.id", ondelete="CASCADE"), nullable=False)
    campus_id = Column(UUID(as_uuid=True), ForeignKey("core.campuses.id"), nullable=False)
    tuition_fee = Column(Numeric(12, 2), nullable=False, default=0)
    admission_fee = Column(Numeric(12, 2), nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    school_class = relationship("SchoolClass")
