from enum import Enum


class ChargeCategory(str, Enum):
    MONTHLY_CHARGES = "MonthlyCharges"
    ONCE_PER_LIFETIME = "OncePerLifetime"
    ONCE_PER_CLASS = "OncePerClass"


class ChargeApplicabilityPolicy(str, Enum):
    ASSIGNMENT_ONLY = "ASSIGNMENT_ONLY"
    CLASS_AND_ASSIGNMENT = "CLASS_AND_ASSIGNMENT"
    GLOBAL_AND_ASSIGNMENT = "GLOBAL_AND_ASSIGNMENT"


class StudentCategoryType(str, Enum):
    REGULAR = "Regular"
    DISABLED = "Disabled"
    EMPLOYEE_PARENT = "EmployeeParent"
    SIBLING = "Sibling"
    ALUMNI = "Alumni"
    CUSTOM = "Custom"


class PaymentMode(str, Enum):
    CUT_FROM_SALARY = "CutFromSalary"
    CUSTOM_RATIO = "CustomRatio"


SALARY_PAYMENT_MODES = (PaymentMode.CUT_FROM_SALARY.value, PaymentMode.CUSTOM_RATIO.value)


class AllocationPeriod(str, Enum):
    MONTHLY = "Monthly"
    YEARLY = "Yearly"


class LeaveActionType(str, Enum):
    MONTHLY_ROLLOVER = "MonthlyRollover"
    YEARLY_ROLLOVER = "YearlyRollover"
    USED = "Used"
    ADJUSTMENT = "Adjustment"


FINE_ITEM_CATEGORY = "Fine/Charge"
SALARY_DEDUCTION_RECEIVER = "System-SalaryDeduction"
