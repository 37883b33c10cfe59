"""Student categories (Regular, EmployeeParent, Sibling ...) and their assignments."""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Numeric, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.db.session import Base


class StudentCategory(Base):
    __tablename__ = "student_categories"
    __table_args__ = {"schema": "core"}

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    campus_id = Column(UUID(as_uuid=True), ForeignKey("core.campuses.id"), nullable=False)
    name = Column(String(100), nullable=False)
    category_type = Column(String(50), nullable=False)  # see StudentCategoryType
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)


class StudentCategoryAssignment(Base):
    """
    Links a student to a category. For EmployeeParent the employee whose salary
    pays the fee is recorded together with the payment mode.
    """

    __tablename__ = "student_category_assignments"
    __table_args__ = {"schema": "core"}

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    student_id = Column(UUID(as_uuid=True), ForeignKey("core.students.id", ondelete="CASCADE"), nullable=False, index=True)
    student_category_id = Column(UUID(as_uuid=True), ForeignKey("core.student_categories.id"), nullable=False)
    employee_id = Column(UUID(as_uuid=True), ForeignKey("core.employees.id", ondelete="SET NULL"), nullable=True, index=True)
    payment_mode = Column(String(20), nullable=True)  # CutFromSalary, CustomRatio
    custom_admission_percent = Column(Numeric(5, 2), nullable=True)
    custom_tuition_percent = Column(Numeric(5, 2), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    assigned_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    student = relationship("Student", backref="category_assignments")
    student_category = relationship("StudentCategory")
    employee = relationship("Employee")
