from app.core.models.campus import Campus
from app.core.models.class_model import SchoolClass
from app.core.models.student import Student
from app.core.models.employee import Employee, EmployeeRole, EmployeeRoleConfig, SalaryDefinition
from app.core.models.class_fee import ClassFee
from app.core.models.student_category import StudentCategory, StudentCategoryAssignment
from app.core.models.billing import BankAccount, BillingMaster, BillingTransaction
from app.core.models.extra_charge import (
    ClassFeeExtraCharge,
    ClassFeeExtraChargeExclusion,
    ClassFeeExtraChargePaymentHistory,
    StudentChargeAssignment,
)
from app.core.models.fine_charge import StudentFineCharge
from app.core.models.salary_deduction import SalaryDeduction
from app.core.models.leave import LeaveBalance, LeaveBalanceHistory, LeaveConfig

__all__ = [
    "BankAccount",
    "BillingMaster",
    "BillingTransaction",
    "Campus",
    "ClassFee",
    "ClassFeeExtraCharge",
    "ClassFeeExtraChargeExclusion",
    "ClassFeeExtraChargePaymentHistory",
    "Employee",
    "EmployeeRole",
    "EmployeeRoleConfig",
    "LeaveBalance",
    "LeaveBalanceHistory",
    "LeaveConfig",
    "SalaryDeduction",
    "SalaryDefinition",
    "SchoolClass",
    "Student",
    "StudentCategory",
    "StudentCategoryAssignment",
    "StudentChargeAssignment",
    "StudentFineCharge",
]
