import logging
import time
from datetime import datetime
from typing import Optional

import uvicorn
from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from category_resolver import parse_category_ref
from config import Settings, get_settings
from database import Base, create_db_engine, make_session_factory, session_scope
from errors import (
    InvalidReferenceError,
    NotFoundError,
    UnauthorizedError,
    ValidationFailedError,
)
from fx_rates import round_money
from models import Goal, TransactionType, User, utcnow
from periods import Period, PeriodError, resolve_period
from projections import project_goal
from schemas import (
    AccountDeleteIn,
    CardIn,
    CardOut,
    CardUpdate,
    CategoryBrief,
    CategoryIn,
    CategoryOut,
    CategoryUpdate,
    ContributionIn,
    ContributionOut,
    ContributionResult,
    CurrencyIn,
    CurrencyOut,
    CurrencySummaryOut,
    CurrencyUpdate,
    GoalIn,
    GoalOut,
    GoalUpdate,
    LoginIn,
    PasswordChangeIn,
    PreferencesIn,
    TokenOut,
    TransactionIn,
    TransactionOut,
    TransactionUpdate,
    UserIn,
    UserOut,
)
from services import (
    AuthService,
    CardService,
    CategoryService,
    CurrencyService,
    GoalService,
    TransactionFilters,
    TransactionService,
    UserService,
)
from stats import StatsService, achievement_rate
from tokens import bearer_token, issue_access_token, read_access_token

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


def get_db(request: Request):
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()


def current_user_id(request: Request, db: Session = Depends(get_db)) -> str:
    token = bearer_token(request.headers.get("Authorization"))
    user_id = read_access_token(token, request.app.state.settings)
    if db.get(User, user_id) is None:
        raise UnauthorizedError("Token is not valid")
    return user_id


def period_from_query(start: Optional[str], end: Optional[str]) -> Period:
    try:
        return resolve_period(start, end)
    except PeriodError as exc:
        raise ValidationFailedError(
            str(exc), [{"field": exc.field, "message": str(exc)}]
        ) from exc


def serialize_goal(goal: Goal, now: datetime) -> GoalOut:
    projection = project_goal(goal, now)
    currency = projection.currency
    return GoalOut(
        id=goal.id,
        name=goal.name,
        target_amount=goal.target_amount,
        current_amount=goal.current_amount,
        deadline=goal.deadline,
        priority=goal.priority,
        color=goal.color,
        description=goal.description,
        category=CategoryBrief.model_validate(goal.category) if goal.category else None,
        currency_summary=CurrencySummaryOut(**currency.as_dict()) if currency else None,
        currency_code=currency.code if currency else None,
        currency_symbol=currency.symbol if currency else None,
        contributions=[ContributionOut.model_validate(c) for c in goal.contributions],
        days_remaining=projection.days_remaining,
        amount_needed=round_money(projection.amount_needed),
        daily_amount_to_save=round_money(projection.daily_amount_to_save),
        monthly_amount_to_save=round_money(projection.monthly_amount_to_save),
        is_completed=projection.is_completed,
        is_overdue=projection.is_overdue,
    )


def _token_response(user: User, settings: Settings) -> TokenOut:
    return TokenOut(
        access_token=issue_access_token(user.id, settings),
        user=UserOut.model_validate(user),
    )


@router.get("/health")
def health(request: Request):
    try:
        with session_scope(request.app.state.session_factory) as session:
            session.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.exception("health_check_failed")
        return JSONResponse(
            status_code=503, content={"status": "error", "database": "unavailable"}
        )
    return {"status": "ok", "database": "ok"}


@router.post("/auth/register", response_model=TokenOut, status_code=201)
def register(payload: UserIn, request: Request, db: Session = Depends(get_db)):
    user = AuthService(db).register(payload)
    return _token_response(user, request.app.state.settings)


@router.post("/auth/login", response_model=TokenOut)
def login(payload: LoginIn, request: Request, db: Session = Depends(get_db)):
    user = AuthService(db).authenticate(payload.email, payload.password)
    logger.info(f"user_login: user_id={user.id}")
    return _token_response(user, request.app.state.settings)


@router.get("/transactions", response_model=list[TransactionOut])
def list_transactions(
    start: Optional[str] = None,
    end: Optional[str] = None,
    category: Optional[str] = None,
    type: Optional[TransactionType] = None,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    period = period_from_query(start, end)
    filters = TransactionFilters(type=type, category=parse_category_ref(category))
    return TransactionService(db, user_id).list(period, filters)


@router.post("/transactions", response_model=TransactionOut, status_code=201)
def create_transaction(
    payload: TransactionIn,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    return TransactionService(db, user_id).create(payload)


@router.get("/transactions/stats/summary")
def transaction_stats(
    start: Optional[str] = None,
    end: Optional[str] = None,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    period = period_from_query(start, end)
    service = StatsService(db, user_id)
    summary = service.transaction_summary(period)
    summary["monthly_average"] = service.monthly_average(utcnow())
    return summary


@router.get("/transactions/{transaction_id}", response_model=TransactionOut)
def get_transaction(
    transaction_id: str,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    return TransactionService(db, user_id).get(transaction_id)


@router.put("/transactions/{transaction_id}", response_model=TransactionOut)
def update_transaction(
    transaction_id: str,
    payload: TransactionUpdate,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    return TransactionService(db, user_id).update(transaction_id, payload)


@router.delete("/transactions/{transaction_id}")
def delete_transaction(
    transaction_id: str,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    TransactionService(db, user_id).delete(transaction_id)
    return {"message": "Transaction removed"}


@router.get("/categories", response_model=list[CategoryOut])
def list_categories(
    type: Optional[TransactionType] = None,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    return CategoryService(db, user_id).list_all(type)


@router.post("/categories", response_model=CategoryOut, status_code=201)
def create_category(
    payload: CategoryIn,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    return CategoryService(db, user_id).create(payload)


@router.get("/categories/{category_id}", response_model=CategoryOut)
def get_category(
    category_id: str,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    return CategoryService(db, user_id).get(category_id)


@router.put("/categories/{category_id}", response_model=CategoryOut)
def update_category(
    category_id: str,
    payload: CategoryUpdate,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    return CategoryService(db, user_id).update(category_id, payload)


@router.delete("/categories/{category_id}")
def delete_category(
    category_id: str,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    CategoryService(db, user_id).delete(category_id)
    return {"message": "Category removed"}


@router.get("/goals", response_model=list[GoalOut])
def list_goals(
    status: Optional[str] = None,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    now = utcnow()
    return [serialize_goal(goal, now) for goal in GoalService(db, user_id).list(status)]


@router.post("/goals", response_model=GoalOut, status_code=201)
def create_goal(
    payload: GoalIn,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    return serialize_goal(GoalService(db, user_id).create(payload), utcnow())


@router.get("/goals/stats/summary")
def goal_stats(
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    summary = StatsService(db, user_id).goal_summary()
    summary["achievement_rate"] = achievement_rate(
        int(summary["completed_count"]), int(summary["goal_count"])
    )
    return summary


@router.get("/goals/{goal_id}", response_model=GoalOut)
def get_goal(
    goal_id: str,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    return serialize_goal(GoalService(db, user_id).get(goal_id), utcnow())


@router.put("/goals/{goal_id}", response_model=GoalOut)
def update_goal(
    goal_id: str,
    payload: GoalUpdate,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    return serialize_goal(GoalService(db, user_id).update(goal_id, payload), utcnow())


@router.delete("/goals/{goal_id}")
def delete_goal(
    goal_id: str,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    GoalService(db, user_id).delete(goal_id)
    return {"message": "Goal removed"}


@router.post(
    "/goals/{goal_id}/contributions",
    response_model=ContributionResult,
    status_code=201,
)
def add_contribution(
    goal_id: str,
    payload: ContributionIn,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    goal, contribution = GoalService(db, user_id).add_contribution(goal_id, payload)
    return ContributionResult(
        goal=serialize_goal(goal, utcnow()),
        contribution=ContributionOut.model_validate(contribution),
    )


@router.get("/stats/summary")
def stats_summary(
    start: Optional[str] = None,
    end: Optional[str] = None,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    period = period_from_query(start, end)
    return StatsService(db, user_id).summarize(period, utcnow())


@router.get("/currencies", response_model=list[CurrencyOut])
def list_currencies(
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    return CurrencyService(db, user_id).list_all()


@router.post("/currencies", response_model=CurrencyOut, status_code=201)
def create_currency(
    payload: CurrencyIn,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    return CurrencyService(db, user_id).create(payload)


@router.get("/currencies/{currency_id}", response_model=CurrencyOut)
def get_currency(
    currency_id: str,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    return CurrencyService(db, user_id).get(currency_id)


@router.put("/currencies/{currency_id}", response_model=CurrencyOut)
def update_currency(
    currency_id: str,
    payload: CurrencyUpdate,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    return CurrencyService(db, user_id).update(currency_id, payload)


@router.delete("/currencies/{currency_id}")
def delete_currency(
    currency_id: str,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    CurrencyService(db, user_id).delete(currency_id)
    return {"message": "Currency removed"}


@router.get("/cards", response_model=list[CardOut])
def list_cards(
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    return CardService(db, user_id).list_all()


@router.post("/cards", response_model=CardOut, status_code=201)
def create_card(
    payload: CardIn,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    return CardService(db, user_id).create(payload)


@router.get("/cards/{card_id}", response_model=CardOut)
def get_card(
    card_id: str,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    return CardService(db, user_id).get(card_id)


@router.put("/cards/{card_id}", response_model=CardOut)
def update_card(
    card_id: str,
    payload: CardUpdate,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    return CardService(db, user_id).update(card_id, payload)


@router.delete("/cards/{card_id}")
def delete_card(
    card_id: str,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    CardService(db, user_id).delete(card_id)
    return {"message": "Card removed"}


@router.get("/user/me", response_model=UserOut)
def get_me(
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    return UserService(db, user_id).get()


@router.get("/user/preferences")
def get_preferences(
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    return {"preferences": UserService(db, user_id).preferences()}


@router.put("/user/preferences")
def update_preferences(
    payload: PreferencesIn,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    preferences = UserService(db, user_id).update_preferences(payload.preferences)
    return {"preferences": preferences}


@router.get("/user/stats")
def user_stats(
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    return StatsService(db, user_id).user_summary(utcnow())


@router.put("/user/password")
def change_password(
    payload: PasswordChangeIn,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    UserService(db, user_id).change_password(
        payload.current_password, payload.new_password
    )
    return {"message": "Password updated"}


@router.delete("/user/account")
def delete_account(
    payload: AccountDeleteIn,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
):
    UserService(db, user_id).delete_account(payload.password)
    return {"message": "Account deleted"}


def _validation_details(exc: RequestValidationError) -> list[dict[str, object]]:
    details = []
    for error in exc.errors():
        loc = [str(part) for part in error.get("loc", ()) if part != "body"]
        details.append({"field": ".".join(loc), "message": error.get("msg", "")})
    return details


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(UnauthorizedError)
    async def unauthorized(_request: Request, exc: UnauthorizedError):
        return JSONResponse(status_code=401, content={"message": str(exc)})

    @app.exception_handler(NotFoundError)
    async def not_found(_request: Request, exc: NotFoundError):
        return JSONResponse(status_code=404, content={"message": str(exc)})

    @app.exception_handler(InvalidReferenceError)
    async def invalid_reference(_request: Request, exc: InvalidReferenceError):
        return JSONResponse(
            status_code=400, content={"message": str(exc), "value": exc.value}
        )

    @app.exception_handler(ValidationFailedError)
    async def validation_failed(_request: Request, exc: ValidationFailedError):
        return JSONResponse(
            status_code=400, content={"message": str(exc), "errors": exc.errors}
        )

    @app.exception_handler(RequestValidationError)
    async def request_invalid(_request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={
                "message": "Validation failed",
                "errors": _validation_details(exc),
            },
        )

    @app.exception_handler(SQLAlchemyError)
    async def storage_failure(request: Request, exc: SQLAlchemyError):
        logger.exception(
            f"storage_failure: method={request.method} path={request.url.path}",
            exc_info=exc,
        )
        return JSONResponse(status_code=500, content={"message": "Server error"})

    @app.exception_handler(Exception)
    async def server_error(request: Request, exc: Exception):
        logger.exception(
            f"unhandled_error: method={request.method} path={request.url.path}",
            exc_info=exc,
        )
        return JSONResponse(status_code=500, content={"message": "Server error"})


async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    duration_ms = (time.perf_counter() - started) * 1000
    logger.info(
        f"request: method={request.method} path={request.url.path} "
        f"status={response.status_code} duration_ms={duration_ms:.1f}"
    )
    return response


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    engine = create_db_engine(
        settings.database_url, timeout_secs=settings.db_timeout_secs
    )
    if settings.create_schema:
        Base.metadata.create_all(engine)

    app = FastAPI(title="Finance Tracker")
    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = make_session_factory(engine)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.middleware("http")(log_requests)
    register_error_handlers(app)
    app.include_router(router)

    @app.on_event("shutdown")
    def dispose_engine() -> None:
        engine.dispose()

    database = engine.url.render_as_string(hide_password=True)
    logger.info(f"app_started: database={database}")
    return app


def run() -> None:
    settings = get_settings()
    uvicorn.run(
        "main:create_app",
        factory=True,
        host="0.0.0.0",
        port=8000,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
