"""Employees, their role history and salary definitions."""

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Numeric, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.db.session import Base


class Employee(Base):
    __tablename__ = "employees"
    __table_args__ = {"schema": "core"}

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    campus_id = Column(UUID(as_uuid=True), ForeignKey("core.campuses.id"), nullable=False, index=True)
    full_name = Column(String(200), nullable=False)
    employee_type = Column(String(100), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    campus = relationship("Campus")


class EmployeeRoleConfig(Base):
    """Role catalogue: (employee_type, role_name) pairs that leave configs are keyed on."""

    __tablename__ = "employee_role_configs"
    __table_args__ = {"schema": "core"}

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    role_name = Column(String(100), nullable=False)
    employee_type = Column(String(100), nullable=False)  # Teacher, Admin, Accountant, Guard ...
    description = Column(String(500), nullable=True)


class EmployeeRole(Base):
    """An employee holding a role from from_date; to_date set when the role ends."""

    __tablename__ = "employee_roles"
    __table_args__ = {"schema": "core"}

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    employee_id = Column(UUID(as_uuid=True), ForeignKey("core.employees.id", ondelete="CASCADE"), nullable=False, index=True)
    role_config_id = Column(UUID(as_uuid=True), ForeignKey("core.employee_role_configs.id"), nullable=False)
    campus_id = Column(UUID(as_uuid=True), ForeignKey("core.campuses.id"), nullable=False)
    from_date = Column(Date, nullable=False)
    to_date = Column(Date, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    employee = relationship("Employee", backref="roles")
    role_config = relationship("EmployeeRoleConfig")


class SalaryDefinition(Base):
    """Monthly salary structure. Net salary caps what payroll deductions may take."""

    __tablename__ = "salary_definitions"
    __table_args__ = {"schema": "payroll"}

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    employee_id = Column(UUID(as_uuid=True), ForeignKey("core.employees.id", ondelete="CASCADE"), nullable=False, index=True)
    basic_salary = Column(Numeric(12, 2), nullable=False)
    house_rent_allowance = Column(Numeric(12, 2), nullable=False, default=0)
    medical_allowance = Column(Numeric(12, 2), nullable=False, default=0)
    transportation_allowance = Column(Numeric(12, 2), nullable=False, default=0)
    other_allowances = Column(Numeric(12, 2), nullable=False, default=0)
    provident_fund = Column(Numeric(12, 2), nullable=False, default=0)
    tax_deduction = Column(Numeric(12, 2), nullable=False, default=0)
    other_deductions = Column(Numeric(12, 2), nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    employee = relationship("Employee", backref="salary_definitions")

    @property
    def total_allowances(self) -> Decimal:
        return sum(
            (Decimal(v or 0) for v in (
                self.house_rent_allowance,
                self.medical_allowance,
                self.transportation_allowance,
                self.other_allowances,
            )),
            Decimal("0"),
        )

    @property
    def gross_salary(self) -> Decimal:
        return Decimal(self.basic_salary or 0) + self.total_allowances

    @property
    def total_deductions(self) -> Decimal:
        return sum(
            (Decimal(v or 0) for v in (self.provident_fund, self.tax_deduction, self.other_deductions)),
            Decimal("0"),
        )

    @property
    def net_salary(self) -> Decimal:
        return self.gross_salary - self.total_deductions
