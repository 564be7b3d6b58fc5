from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class EntryKind(str, Enum):
    income = "income"
    expense = "expense"


class GoalPriority(str, Enum):
    low = "low"
    medium = "medium"
    high = "high"


class Theme(str, Enum):
    light = "light"
    dark = "dark"
    system = "system"


class ReportPeriod(str, Enum):
    month = "month"
    quarter = "quarter"
    year = "year"


class ExportFormat(str, Enum):
    json = "json"
    csv = "csv"


Money = Annotated[Decimal, Field(ge=Decimal("0"), max_digits=14, decimal_places=2)]


class ApiErrorDetail(BaseModel):
    field: str
    message: str


class ApiErrorPayload(BaseModel):
    code: str
    message: str
    details: list[ApiErrorDetail] = Field(default_factory=list)


class ApiErrorResponse(BaseModel):
    error: ApiErrorPayload


class HealthResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")
    status: str


class SuccessResponse(BaseModel):
    success: bool = True


class RegisterRequest(BaseModel):
    email: str
    password: str = Field(min_length=8, max_length=128)
    name: Optional[str] = None

    @field_validator("email")
    @classmethod
    def validate_email(cls, value: str) -> str:
        v = value.strip().lower()
        if "@" not in v or "." not in v.split("@")[-1]:
            raise ValueError("invalid email format")
        return v


class LoginRequest(BaseModel):
    email: str
    password: str = Field(min_length=8, max_length=128)
    rememberMe: bool = False

    @field_validator("email")
    @classmethod
    def validate_email(cls, value: str) -> str:
        return value.strip().lower()


class AuthResponse(BaseModel):
    token: str
    userId: str
    email: str
    name: Optional[str] = None


class PrincipalResponse(BaseModel):
    userId: str
    email: str
    name: str
    image: str


class EntryFilter(BaseModel):
    """Predicates accepted by entry listings. All optional, combined with AND."""

    model_config = ConfigDict(frozen=True)

    category: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    limit: Optional[int] = Field(default=None, ge=1)


class EntryCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    description: str = Field(min_length=1, max_length=500)
    amount: Money
    category: str = Field(min_length=1, max_length=100)
    date: date


class TransactionCreate(EntryCreate):
    type: EntryKind

    @field_validator("type", mode="before")
    @classmethod
    def validate_type(cls, value: object) -> object:
        if isinstance(value, str):
            return value.lower().strip()
        return value


class EntryResponse(BaseModel):
    id: str
    userId: str
    description: str
    amount: Decimal
    category: str
    date: date
    createdAt: datetime
    updatedAt: datetime


class RecentTransaction(EntryResponse):
    type: EntryKind


class GoalCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1, max_length=200)
    targetAmount: Decimal = Field(gt=Decimal("0"), max_digits=14, decimal_places=2)
    currentAmount: Decimal = Field(default=Decimal("0"), ge=Decimal("0"), max_digits=14, decimal_places=2)
    startDate: date
    targetDate: date
    category: str = Field(min_length=1, max_length=100)
    priority: GoalPriority = GoalPriority.medium
    notes: Optional[str] = None

    @model_validator(mode="after")
    def validate_period(self) -> "GoalCreate":
        if self.targetDate < self.startDate:
            raise ValueError("targetDate must be >= startDate")
        return self


class GoalUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    targetAmount: Optional[Decimal] = Field(default=None, gt=Decimal("0"), max_digits=14, decimal_places=2)
    currentAmount: Optional[Decimal] = Field(default=None, ge=Decimal("0"), max_digits=14, decimal_places=2)
    startDate: Optional[date] = None
    targetDate: Optional[date] = None
    category: Optional[str] = Field(default=None, min_length=1, max_length=100)
    priority: Optional[GoalPriority] = None
    notes: Optional[str] = None


class GoalResponse(BaseModel):
    id: str
    userId: str
    name: str
    targetAmount: Decimal
    currentAmount: Decimal
    startDate: date
    targetDate: date
    category: str
    priority: GoalPriority
    notes: Optional[str] = None
    progress: Decimal
    createdAt: datetime
    updatedAt: datetime


class BudgetCategoryCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1, max_length=100)
    amount: Money


class BudgetCategoryResponse(BaseModel):
    id: str
    budgetId: str
    name: str
    amount: Decimal
    spent: Optional[Decimal] = None


class BudgetCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1, max_length=200)
    amount: Money
    period: str = Field(default="monthly", min_length=1, max_length=50)
    startDate: date
    endDate: Optional[date] = None
    categories: list[BudgetCategoryCreate] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_period(self) -> "BudgetCreate":
        if self.endDate is not None and self.endDate < self.startDate:
            raise ValueError("endDate must be >= startDate")
        return self


class BudgetResponse(BaseModel):
    id: str
    userId: str
    name: str
    amount: Decimal
    period: str
    startDate: date
    endDate: Optional[date] = None
    categories: list[BudgetCategoryResponse] = Field(default_factory=list)
    createdAt: datetime


class NotificationCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: str = Field(min_length=1, max_length=50)
    message: str = Field(min_length=1, max_length=1000)


class NotificationResponse(BaseModel):
    id: str
    userId: str
    type: str
    message: str
    read: bool
    createdAt: datetime


class ProfileUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    currency: Optional[str] = None
    language: Optional[str] = Field(default=None, min_length=2, max_length=10)
    theme: Optional[Theme] = None
    dateFormat: Optional[str] = Field(default=None, min_length=1, max_length=20)
    notifications: Optional[bool] = None

    @field_validator("currency")
    @classmethod
    def validate_currency(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        up = value.upper()
        if len(up) != 3:
            raise ValueError("must be 3-letter ISO code")
        return up


class ProfileResponse(BaseModel):
    id: str
    userId: str
    currency: str
    language: str
    theme: Theme
    dateFormat: str
    notifications: bool


class ChartPoint(BaseModel):
    label: str
    income: Decimal
    expenses: Decimal


class DashboardSummary(BaseModel):
    balance: Decimal
    income: Decimal
    expenses: Decimal
    savingsRate: Decimal
    incomeChange: Decimal
    expensesChange: Decimal
    recentTransactions: list[RecentTransaction]


class MonthlyPoint(ChartPoint):
    savings: Decimal


class CategoryShare(BaseModel):
    category: str
    amount: Decimal
    percentage: Decimal


class CategoryBreakdown(BaseModel):
    income: list[CategoryShare]
    expenses: list[CategoryShare]


class PeriodChanges(BaseModel):
    income: Decimal
    expenses: Decimal
    savings: Decimal


class PeriodSummary(BaseModel):
    totalIncome: Decimal
    totalExpenses: Decimal
    netSavings: Decimal
    savingsRate: Decimal
    changes: PeriodChanges


class DateRange(BaseModel):
    start: date
    end: date


class PeriodReport(BaseModel):
    summary: PeriodSummary
    categoryBreakdown: CategoryBreakdown
    monthlyData: list[MonthlyPoint]
    period: ReportPeriod
    dateRange: DateRange


class RecordCounts(BaseModel):
    income: int
    expenses: int
    total: int


class ExportSummary(BaseModel):
    dateRange: DateRange
    totalIncome: Decimal
    totalExpenses: Decimal
    netSavings: Decimal
    savingsRate: Decimal
    recordCounts: RecordCounts


class ExportTransaction(BaseModel):
    id: str
    date: date
    amount: Decimal
    category: str
    description: str


class ExportTransactions(BaseModel):
    income: list[ExportTransaction]
    expenses: list[ExportTransaction]


class ExportTotals(BaseModel):
    income: dict[str, Decimal]
    expenses: dict[str, Decimal]


class ExportReport(BaseModel):
    summary: ExportSummary
    transactions: ExportTransactions
    categoryBreakdown: ExportTotals
    generatedAt: datetime


class BudgetTemplateCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1, max_length=200)
    categories: list[BudgetCategoryCreate]


class BudgetTemplate(BaseModel):
    id: str
    name: str
    categories: list[BudgetCategoryCreate]
