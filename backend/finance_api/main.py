import logging
from datetime import date
from typing import Any, Optional

from fastapi import APIRouter, Depends, FastAPI, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, RedirectResponse, StreamingResponse

from .auth import IdentityProvider, Principal, SessionStore, extract_token, require_principal, resolve
from .budget_templates import build_template, list_templates
from .config import Settings, settings as default_settings
from .errors import FinanceError, NoActiveBudget, Unauthorized
from .persistence import Persistence, get_persistence
from .reports import (
    budget_spent,
    dashboard_summary,
    export_csv,
    export_report,
    goal_progress,
    monthly_series,
    period_report,
)
from .schemas import (
    ApiErrorDetail,
    ApiErrorPayload,
    ApiErrorResponse,
    AuthResponse,
    BudgetCategoryCreate,
    BudgetCategoryResponse,
    BudgetCreate,
    BudgetResponse,
    BudgetTemplate,
    BudgetTemplateCreate,
    ChartPoint,
    DashboardSummary,
    EntryCreate,
    EntryFilter,
    EntryKind,
    EntryResponse,
    ExportFormat,
    ExportReport,
    GoalCreate,
    GoalResponse,
    GoalUpdate,
    HealthResponse,
    LoginRequest,
    NotificationCreate,
    NotificationResponse,
    PeriodReport,
    PrincipalResponse,
    ProfileResponse,
    ProfileUpdate,
    RecentTransaction,
    RegisterRequest,
    ReportPeriod,
    SuccessResponse,
    TransactionCreate,
)

logger = logging.getLogger(__name__)

PROTECTED_PREFIXES = (
    "/profile",
    "/settings",
    "/budgets",
    "/expenses",
    "/income",
    "/reports",
    "/assistant",
    "/receipts",
)
AUTH_PAGES = {"/auth/login", "/auth/register"}
PUBLIC_API_PATHS = {"/api/health", "/api/auth/register", "/api/auth/login", "/api/auth/logout"}
LOGIN_PAGE = "/auth/login"
REMEMBER_ME_SECONDS = 60 * 60 * 24 * 30

router = APIRouter()


def get_store(request: Request) -> Persistence:
    return request.app.state.persistence


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def build_error_response(status_code: int, code: str, message: str, details: Optional[list[ApiErrorDetail]] = None) -> JSONResponse:
    payload = ApiErrorResponse(error=ApiErrorPayload(code=code, message=message, details=details or []))
    return JSONResponse(status_code=status_code, content=payload.model_dump())


async def finance_error_handler(request: Request, exc: FinanceError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("request %s %s failed: %s", request.method, request.url.path, exc.code)
    details = [ApiErrorDetail(**d) for d in exc.details]
    return build_error_response(exc.status_code, exc.code, exc.message, details)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    # Body decoding runs ahead of dependencies, so the session is checked here too.
    path = request.url.path
    if path.startswith("/api/") and path not in PUBLIC_API_PATHS and resolve(request) is None:
        return await finance_error_handler(request, Unauthorized())
    details: list[ApiErrorDetail] = []
    for err in exc.errors():
        if err.get("type") == "json_invalid":
            details.append(ApiErrorDetail(field="body", message=err.get("msg", "invalid JSON")))
            continue
        loc = ".".join(str(item) for item in err.get("loc", []) if item not in ("body", "query"))
        details.append(ApiErrorDetail(field=loc or "body", message=err.get("msg", "validation error")))
    return build_error_response(422, "VALIDATION_ERROR", "Invalid request payload", details)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled error on %s %s", request.method, request.url.path)
    return build_error_response(500, "INTERNAL_ERROR", "Internal Error")


async def page_gate_middleware(request: Request, call_next):
    path = request.url.path
    if path.startswith(PROTECTED_PREFIXES) or path in AUTH_PAGES:
        authenticated = resolve(request) is not None
        if path in AUTH_PAGES and authenticated:
            return RedirectResponse(url="/", status_code=302)
        if path.startswith(PROTECTED_PREFIXES) and not authenticated:
            return RedirectResponse(url=LOGIN_PAGE, status_code=302)
    return await call_next(request)


def _entry_out(row: dict[str, Any]) -> EntryResponse:
    return EntryResponse(
        id=row["id"],
        userId=row["user_id"],
        description=row["description"],
        amount=row["amount"],
        category=row["category"],
        date=row["date"],
        createdAt=row["created_at"],
        updatedAt=row["updated_at"],
    )


def _goal_out(row: dict[str, Any]) -> GoalResponse:
    return GoalResponse(
        id=row["id"],
        userId=row["user_id"],
        name=row["name"],
        targetAmount=row["target_amount"],
        currentAmount=row["current_amount"],
        startDate=row["start_date"],
        targetDate=row["target_date"],
        category=row["category"],
        priority=row["priority"],
        notes=row.get("notes"),
        progress=goal_progress(row),
        createdAt=row["created_at"],
        updatedAt=row["updated_at"],
    )


def _category_out(row: dict[str, Any]) -> BudgetCategoryResponse:
    return BudgetCategoryResponse(
        id=row["id"],
        budgetId=row["budget_id"],
        name=row["name"],
        amount=row["amount"],
        spent=row.get("spent"),
    )


def _budget_out(row: dict[str, Any]) -> BudgetResponse:
    return BudgetResponse(
        id=row["id"],
        userId=row["user_id"],
        name=row["name"],
        amount=row["amount"],
        period=row["period"],
        startDate=row["start_date"],
        endDate=row["end_date"],
        categories=[_category_out(c) for c in row["categories"]],
        createdAt=row["created_at"],
    )


def _notification_out(row: dict[str, Any]) -> NotificationResponse:
    return NotificationResponse(
        id=row["id"],
        userId=row["user_id"],
        type=row["type"],
        message=row["message"],
        read=row["read"],
        createdAt=row["created_at"],
    )


def _profile_out(row: dict[str, Any]) -> ProfileResponse:
    return ProfileResponse(
        id=row["id"],
        userId=row["user_id"],
        currency=row["currency"],
        language=row["language"],
        theme=row["theme"],
        dateFormat=row["date_format"],
        notifications=row["notifications"],
    )


def _entry_filter(
    category: Optional[str] = Query(default=None),
    start_date: Optional[date] = Query(default=None, alias="startDate"),
    end_date: Optional[date] = Query(default=None, alias="endDate"),
    limit: Optional[int] = Query(default=None, ge=1),
) -> EntryFilter:
    return EntryFilter(category=category, start_date=start_date, end_date=end_date, limit=limit)


def _set_session_cookie(request: Request, response: Response, token: str, remember: bool = False) -> None:
    name = request.app.state.settings.session_cookie_name
    if remember:
        response.set_cookie(name, token, httponly=True, samesite="lax", secure=False, max_age=REMEMBER_ME_SECONDS)
    else:
        response.set_cookie(name, token, httponly=True, samesite="lax", secure=False)


@router.get("/api/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    return HealthResponse(status="ok")


@router.post("/api/auth/register", response_model=AuthResponse, status_code=201)
async def auth_register(payload: RegisterRequest, request: Request, response: Response) -> AuthResponse:
    principal = request.app.state.identity.register(payload.email, payload.password, payload.name)
    token = request.app.state.sessions.create(principal)
    _set_session_cookie(request, response, token)
    return AuthResponse(token=token, userId=principal.user_id, email=principal.email, name=principal.name)


@router.post("/api/auth/login", response_model=AuthResponse)
async def auth_login(payload: LoginRequest, request: Request, response: Response) -> AuthResponse:
    principal = request.app.state.identity.authenticate(payload.email, payload.password)
    if principal is None:
        logger.warning("failed login attempt")
        raise Unauthorized("invalid email or password")
    token = request.app.state.sessions.create(principal)
    _set_session_cookie(request, response, token, remember=payload.rememberMe)
    return AuthResponse(token=token, userId=principal.user_id, email=principal.email, name=principal.name)


@router.get("/api/auth/me", response_model=PrincipalResponse)
async def auth_me(principal: Principal = Depends(require_principal)) -> PrincipalResponse:
    return PrincipalResponse(userId=principal.user_id, email=principal.email, name=principal.name, image=principal.image)


@router.api_route("/auth/logout", methods=["GET", "POST"])
@router.api_route("/api/auth/logout", methods=["GET", "POST"])
async def auth_logout(request: Request) -> RedirectResponse:
    request.app.state.sessions.revoke(extract_token(request))
    response = RedirectResponse(url=LOGIN_PAGE, status_code=302)
    response.delete_cookie(request.app.state.settings.session_cookie_name)
    return response


@router.get("/api/expenses", response_model=list[EntryResponse])
async def list_expenses(
    filters: EntryFilter = Depends(_entry_filter),
    principal: Principal = Depends(require_principal),
    persistence: Persistence = Depends(get_store),
) -> list[EntryResponse]:
    return [_entry_out(row) for row in persistence.list_entries(EntryKind.expense, principal.user_id, filters)]


@router.post("/api/expenses", response_model=EntryResponse)
async def create_expense(
    payload: EntryCreate,
    principal: Principal = Depends(require_principal),
    persistence: Persistence = Depends(get_store),
) -> EntryResponse:
    persistence.ensure_user(principal)
    return _entry_out(persistence.create_entry(EntryKind.expense, principal.user_id, payload))


@router.put("/api/expenses/{entry_id}", response_model=EntryResponse)
async def update_expense(
    entry_id: str,
    payload: EntryCreate,
    principal: Principal = Depends(require_principal),
    persistence: Persistence = Depends(get_store),
) -> EntryResponse:
    return _entry_out(persistence.update_entry(EntryKind.expense, principal.user_id, entry_id, payload))


@router.delete("/api/expenses/{entry_id}", response_model=SuccessResponse)
async def delete_expense(
    entry_id: str,
    principal: Principal = Depends(require_principal),
    persistence: Persistence = Depends(get_store),
) -> SuccessResponse:
    persistence.delete_entry(EntryKind.expense, principal.user_id, entry_id)
    return SuccessResponse()


@router.get("/api/income", response_model=list[EntryResponse])
async def list_income(
    filters: EntryFilter = Depends(_entry_filter),
    principal: Principal = Depends(require_principal),
    persistence: Persistence = Depends(get_store),
) -> list[EntryResponse]:
    return [_entry_out(row) for row in persistence.list_entries(EntryKind.income, principal.user_id, filters)]


@router.post("/api/income", response_model=EntryResponse)
async def create_income(
    payload: EntryCreate,
    principal: Principal = Depends(require_principal),
    persistence: Persistence = Depends(get_store),
) -> EntryResponse:
    persistence.ensure_user(principal)
    return _entry_out(persistence.create_entry(EntryKind.income, principal.user_id, payload))


@router.put("/api/income/{entry_id}", response_model=EntryResponse)
async def update_income(
    entry_id: str,
    payload: EntryCreate,
    principal: Principal = Depends(require_principal),
    persistence: Persistence = Depends(get_store),
) -> EntryResponse:
    return _entry_out(persistence.update_entry(EntryKind.income, principal.user_id, entry_id, payload))


@router.delete("/api/income/{entry_id}", response_model=SuccessResponse)
async def delete_income(
    entry_id: str,
    principal: Principal = Depends(require_principal),
    persistence: Persistence = Depends(get_store),
) -> SuccessResponse:
    persistence.delete_entry(EntryKind.income, principal.user_id, entry_id)
    return SuccessResponse()


@router.post("/api/transactions", response_model=EntryResponse)
async def create_transaction(
    payload: TransactionCreate,
    principal: Principal = Depends(require_principal),
    persistence: Persistence = Depends(get_store),
) -> EntryResponse:
    # The session may belong to a user the store has never seen.
    persistence.ensure_user(principal)
    entry = EntryCreate(
        description=payload.description,
        amount=payload.amount,
        category=payload.category,
        date=payload.date,
    )
    return _entry_out(persistence.create_entry(payload.type, principal.user_id, entry))


@router.get("/api/goals", response_model=list[GoalResponse])
async def list_goals(
    principal: Principal = Depends(require_principal),
    persistence: Persistence = Depends(get_store),
) -> list[GoalResponse]:
    return [_goal_out(row) for row in persistence.list_goals(principal.user_id)]


@router.post("/api/goals", response_model=GoalResponse)
async def create_goal(
    payload: GoalCreate,
    principal: Principal = Depends(require_principal),
    persistence: Persistence = Depends(get_store),
) -> GoalResponse:
    persistence.ensure_user(principal)
    return _goal_out(persistence.create_goal(principal.user_id, payload))


@router.patch("/api/goals/{goal_id}", response_model=GoalResponse)
async def update_goal(
    goal_id: str,
    payload: GoalUpdate,
    principal: Principal = Depends(require_principal),
    persistence: Persistence = Depends(get_store),
) -> GoalResponse:
    return _goal_out(persistence.update_goal(principal.user_id, goal_id, payload))


@router.delete("/api/goals/{goal_id}", response_model=SuccessResponse)
async def delete_goal(
    goal_id: str,
    principal: Principal = Depends(require_principal),
    persistence: Persistence = Depends(get_store),
) -> SuccessResponse:
    persistence.delete_goal(principal.user_id, goal_id)
    return SuccessResponse()


@router.get("/api/budgets", response_model=list[BudgetResponse])
async def list_budgets(
    principal: Principal = Depends(require_principal),
    persistence: Persistence = Depends(get_store),
) -> list[BudgetResponse]:
    return [
        _budget_out(budget_spent(persistence, principal.user_id, budget))
        for budget in persistence.list_budgets(principal.user_id)
    ]


@router.post("/api/budgets", response_model=BudgetResponse, status_code=201)
async def create_budget(
    payload: BudgetCreate,
    principal: Principal = Depends(require_principal),
    persistence: Persistence = Depends(get_store),
) -> BudgetResponse:
    persistence.ensure_user(principal)
    return _budget_out(persistence.create_budget(principal.user_id, payload))


@router.get("/api/budgets/templates", response_model=list[BudgetTemplate])
async def get_budget_templates(principal: Principal = Depends(require_principal)) -> list[BudgetTemplate]:
    return [BudgetTemplate(**template) for template in list_templates()]


@router.post("/api/budgets/templates", response_model=BudgetTemplate)
async def create_budget_template(
    payload: BudgetTemplateCreate,
    principal: Principal = Depends(require_principal),
) -> BudgetTemplate:
    return BudgetTemplate(**build_template(payload))


@router.get("/api/budgets/active", response_model=BudgetResponse)
async def get_active_budget(
    principal: Principal = Depends(require_principal),
    persistence: Persistence = Depends(get_store),
) -> BudgetResponse:
    budget = persistence.get_active_budget(principal.user_id)
    if budget is None:
        raise NoActiveBudget()
    return _budget_out(budget_spent(persistence, principal.user_id, budget))


@router.post("/api/budgets/categories", response_model=BudgetCategoryResponse)
async def create_active_budget_category(
    payload: BudgetCategoryCreate,
    principal: Principal = Depends(require_principal),
    persistence: Persistence = Depends(get_store),
) -> BudgetCategoryResponse:
    budget = persistence.get_active_budget(principal.user_id)
    if budget is None:
        raise NoActiveBudget()
    return _category_out(persistence.create_budget_category(principal.user_id, budget["id"], payload))


@router.get("/api/budgets/{budget_id}", response_model=BudgetResponse)
async def get_budget(
    budget_id: str,
    principal: Principal = Depends(require_principal),
    persistence: Persistence = Depends(get_store),
) -> BudgetResponse:
    budget = persistence.get_budget(principal.user_id, budget_id)
    return _budget_out(budget_spent(persistence, principal.user_id, budget))


@router.delete("/api/budgets/{budget_id}", response_model=SuccessResponse)
async def delete_budget(
    budget_id: str,
    principal: Principal = Depends(require_principal),
    persistence: Persistence = Depends(get_store),
) -> SuccessResponse:
    persistence.delete_budget(principal.user_id, budget_id)
    return SuccessResponse()


@router.post("/api/budgets/{budget_id}/categories", response_model=BudgetCategoryResponse)
async def create_budget_category(
    budget_id: str,
    payload: BudgetCategoryCreate,
    principal: Principal = Depends(require_principal),
    persistence: Persistence = Depends(get_store),
) -> BudgetCategoryResponse:
    return _category_out(persistence.create_budget_category(principal.user_id, budget_id, payload))


@router.post("/api/budgets/{budget_id}/expenses", response_model=EntryResponse)
async def create_budget_expense(
    budget_id: str,
    payload: EntryCreate,
    principal: Principal = Depends(require_principal),
    persistence: Persistence = Depends(get_store),
) -> EntryResponse:
    persistence.get_budget(principal.user_id, budget_id)
    persistence.ensure_user(principal)
    return _entry_out(persistence.create_entry(EntryKind.expense, principal.user_id, payload))


@router.get("/api/notifications", response_model=list[NotificationResponse])
async def list_notifications(
    principal: Principal = Depends(require_principal),
    persistence: Persistence = Depends(get_store),
    settings: Settings = Depends(get_settings),
) -> list[NotificationResponse]:
    rows = persistence.list_notifications(principal.user_id, limit=settings.notification_page_size)
    return [_notification_out(row) for row in rows]


@router.post("/api/notifications", response_model=NotificationResponse)
async def create_notification(
    payload: NotificationCreate,
    principal: Principal = Depends(require_principal),
    persistence: Persistence = Depends(get_store),
) -> NotificationResponse:
    persistence.ensure_user(principal)
    return _notification_out(persistence.create_notification(principal.user_id, payload))


@router.put("/api/notifications/{notification_id}", response_model=NotificationResponse)
async def mark_notification_read(
    notification_id: str,
    principal: Principal = Depends(require_principal),
    persistence: Persistence = Depends(get_store),
) -> NotificationResponse:
    return _notification_out(persistence.mark_notification_read(principal.user_id, notification_id))


@router.delete("/api/notifications/{notification_id}", response_model=SuccessResponse)
async def delete_notification(
    notification_id: str,
    principal: Principal = Depends(require_principal),
    persistence: Persistence = Depends(get_store),
) -> SuccessResponse:
    persistence.delete_notification(principal.user_id, notification_id)
    return SuccessResponse()


@router.get("/api/user/profile", response_model=ProfileResponse)
async def get_profile(
    principal: Principal = Depends(require_principal),
    persistence: Persistence = Depends(get_store),
) -> ProfileResponse:
    persistence.ensure_user(principal)
    return _profile_out(persistence.get_or_create_profile(principal.user_id))


@router.put("/api/user/profile", response_model=ProfileResponse)
async def update_profile(
    payload: ProfileUpdate,
    principal: Principal = Depends(require_principal),
    persistence: Persistence = Depends(get_store),
) -> ProfileResponse:
    persistence.ensure_user(principal)
    return _profile_out(persistence.update_profile(principal.user_id, payload))


@router.get("/api/reports/chart-data", response_model=list[ChartPoint])
async def chart_data(
    principal: Principal = Depends(require_principal),
    persistence: Persistence = Depends(get_store),
    settings: Settings = Depends(get_settings),
) -> list[ChartPoint]:
    return [ChartPoint(**point) for point in monthly_series(persistence, principal.user_id, settings.chart_months)]


@router.get("/api/reports/data", response_model=PeriodReport)
async def report_data(
    period: ReportPeriod = Query(default=ReportPeriod.month),
    start_date: Optional[date] = Query(default=None, alias="startDate"),
    end_date: Optional[date] = Query(default=None, alias="endDate"),
    principal: Principal = Depends(require_principal),
    persistence: Persistence = Depends(get_store),
    settings: Settings = Depends(get_settings),
) -> PeriodReport:
    report = period_report(persistence, principal.user_id, period, start_date, end_date, settings.chart_months)
    return PeriodReport(**report)


@router.get("/api/reports/export", response_model=None)
async def report_export(
    start_date: date = Query(alias="startDate"),
    end_date: date = Query(alias="endDate"),
    export_format: ExportFormat = Query(default=ExportFormat.json, alias="format"),
    principal: Principal = Depends(require_principal),
    persistence: Persistence = Depends(get_store),
) -> Response:
    report = export_report(persistence, principal.user_id, start_date, end_date)
    headers = {"Cache-Control": "no-cache, no-store, must-revalidate"}
    if export_format is ExportFormat.csv:
        headers["Content-Disposition"] = f"attachment; filename=financial-report-{start_date}-to-{end_date}.csv"
        return StreamingResponse(iter([export_csv(report)]), media_type="text/csv", headers=headers)
    return JSONResponse(content=ExportReport(**report).model_dump(mode="json"), headers=headers)


@router.get("/api/dashboard/summary", response_model=DashboardSummary)
async def get_dashboard_summary(
    principal: Principal = Depends(require_principal),
    persistence: Persistence = Depends(get_store),
) -> DashboardSummary:
    summary = dashboard_summary(persistence, principal.user_id)
    recent = [RecentTransaction(**_entry_out(row).model_dump(), type=row["type"]) for row in summary["recentTransactions"]]
    return DashboardSummary(**{**summary, "recentTransactions": recent})


def create_app(settings: Optional[Settings] = None, persistence: Optional[Persistence] = None) -> FastAPI:
    settings = settings or default_settings
    logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    app = FastAPI(
        title="Personal Finance API",
        version="0.1.0",
        description="Income, expenses, budgets, goals and notifications for authenticated users.",
    )
    app.state.settings = settings
    app.state.persistence = persistence or get_persistence(settings)
    app.state.identity = IdentityProvider()
    app.state.sessions = SessionStore(settings.session_timeout_minutes)

    app.add_exception_handler(FinanceError, finance_error_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
    app.middleware("http")(page_gate_middleware)
    app.include_router(router)
    return app


app = create_app()
