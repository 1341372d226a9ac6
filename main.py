import logging
from datetime import date, datetime
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from auth import RequestContext, get_request_context
from cache import get_cache
from database import get_db, ping
from insights import InsightService
from models import Alert, Budget, Investment
from scheduler import SchedulerManager
from schemas import (
    AccountIn,
    AlertIn,
    BudgetIn,
    InvestmentIn,
    PriceUpdateIn,
    TransactionIn,
    TransactionQuery,
    TransactionUpdate,
)
from services import (
    AccountService,
    AlertService,
    BudgetService,
    InvalidInput,
    InvestmentService,
    LedgerConflict,
    MetricsService,
    NotFound,
    TransactionService,
    account_to_dict,
    transaction_to_dict,
)


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(title="Finance Insights")

scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


def _error_body(exc: Exception, kind: str, retryable: bool = False) -> dict:
    body = {"detail": str(exc), "kind": kind, "retryable": retryable}
    field = getattr(exc, "field", None)
    if field:
        body["field"] = field
    return body


@app.exception_handler(NotFound)
async def not_found_handler(request: Request, exc: NotFound):
    return JSONResponse(status_code=404, content=_error_body(exc, exc.kind))


@app.exception_handler(InvalidInput)
async def invalid_input_handler(request: Request, exc: InvalidInput):
    return JSONResponse(status_code=400, content=_error_body(exc, exc.kind))


@app.exception_handler(LedgerConflict)
async def conflict_handler(request: Request, exc: LedgerConflict):
    logger.warning(f"ledger_conflict: path={request.url.path} error={exc.__cause__!r}")
    return JSONResponse(
        status_code=409, content=_error_body(exc, exc.kind, retryable=exc.retryable)
    )


def _budget_to_dict(budget: Budget) -> dict:
    return {
        "id": budget.id,
        "name": budget.name,
        "category": budget.category.value,
        "limit_cents": budget.limit_cents,
        "period": budget.period.value,
        "start_date": budget.start_date.isoformat(),
        "end_date": budget.end_date.isoformat(),
        "is_active": budget.is_active,
    }


def _investment_to_dict(investment: Investment) -> dict:
    return {
        "id": investment.id,
        "symbol": investment.symbol,
        "name": investment.name,
        "quantity": str(investment.quantity),
        "purchase_price_cents": investment.purchase_price_cents,
        "current_price_cents": investment.current_price_cents,
        "type": investment.type.value,
        "purchase_date": investment.purchase_date.isoformat(),
    }


def _alert_to_dict(alert: Alert) -> dict:
    return {
        "id": alert.id,
        "title": alert.title,
        "message": alert.message,
        "type": alert.type.value,
        "is_read": alert.is_read,
        "trigger_at": alert.trigger_at.isoformat() if alert.trigger_at else None,
        "created_at": alert.created_at.isoformat() if alert.created_at else None,
    }


@app.get("/health")
def health(db: Session = Depends(get_db)):
    try:
        database_ok = ping(db)
    except SQLAlchemyError as exc:
        logger.warning(f"health_database_failed: error={exc!r}")
        database_ok = False
    return {
        "status": "ok" if database_ok else "degraded",
        "database": "healthy" if database_ok else "unreachable",
        "cache": get_cache().health(),
        "timestamp": datetime.utcnow().isoformat(),
    }


@app.get("/api/auth/me")
def api_me(ctx: RequestContext = Depends(get_request_context)):
    return ctx.identity.as_dict()


@app.get("/api/accounts")
def api_accounts(ctx: RequestContext = Depends(get_request_context)):
    accounts = AccountService(ctx.session, ctx.user_id).list_active()
    return {"accounts": [account_to_dict(a) for a in accounts]}


@app.post("/api/accounts", status_code=201)
def api_create_account(
    payload: AccountIn, ctx: RequestContext = Depends(get_request_context)
):
    account = AccountService(ctx.session, ctx.user_id).create(payload)
    return account_to_dict(account)


@app.get("/api/accounts/{account_id}")
def api_account(account_id: int, ctx: RequestContext = Depends(get_request_context)):
    account = AccountService(ctx.session, ctx.user_id).get(account_id)
    return account_to_dict(account)


@app.post("/api/accounts/{account_id}/deactivate")
def api_deactivate_account(
    account_id: int, ctx: RequestContext = Depends(get_request_context)
):
    AccountService(ctx.session, ctx.user_id).deactivate(account_id)
    return {"id": account_id, "is_active": False}


@app.get("/api/accounts/{account_id}/reconcile")
def api_reconcile_account(
    account_id: int, ctx: RequestContext = Depends(get_request_context)
):
    return AccountService(ctx.session, ctx.user_id).reconcile(account_id)


@app.get("/api/transactions")
def api_transactions(
    page: int = 1,
    limit: int = 20,
    category: Optional[str] = None,
    type: Optional[str] = None,
    account_id: Optional[int] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    search: Optional[str] = None,
    sort: str = "date",
    direction: str = "desc",
    ctx: RequestContext = Depends(get_request_context),
):
    try:
        query = TransactionQuery(
            page=page,
            limit=limit,
            category=category or None,
            type=type or None,
            account_id=account_id,
            start_date=start_date,
            end_date=end_date,
            search=search,
            sort=sort,
            direction=direction,
        )
    except ValidationError as exc:
        errors = [
            {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
            for err in exc.errors()
        ]
        raise HTTPException(status_code=400, detail=errors) from exc

    result = TransactionService(ctx.session, ctx.user_id).list_page(query)
    return {
        "transactions": [transaction_to_dict(t) for t in result.items],
        "pagination": result.meta(),
    }


@app.post("/api/transactions", status_code=201)
def api_create_transaction(
    payload: TransactionIn, ctx: RequestContext = Depends(get_request_context)
):
    txn = TransactionService(ctx.session, ctx.user_id).create(payload)
    return transaction_to_dict(txn)


@app.patch("/api/transactions/{transaction_id}")
def api_update_transaction(
    transaction_id: int,
    payload: TransactionUpdate,
    ctx: RequestContext = Depends(get_request_context),
):
    txn = TransactionService(ctx.session, ctx.user_id).update(transaction_id, payload)
    return transaction_to_dict(txn)


@app.delete("/api/transactions/{transaction_id}")
def api_delete_transaction(
    transaction_id: int, ctx: RequestContext = Depends(get_request_context)
):
    TransactionService(ctx.session, ctx.user_id).delete(transaction_id)
    return {"id": transaction_id, "deleted": True}


@app.get("/api/dashboard/stats")
def api_dashboard_stats(ctx: RequestContext = Depends(get_request_context)):
    return MetricsService(ctx.session, ctx.user_id).cached_dashboard_stats()


@app.get("/api/dashboard/transactions/recent")
def api_recent_transactions(
    limit: int = Query(default=10, ge=1, le=50),
    ctx: RequestContext = Depends(get_request_context),
):
    service = MetricsService(ctx.session, ctx.user_id)
    return {"transactions": service.cached_recent_transactions(limit)}


@app.get("/api/dashboard/analytics/categories")
def api_category_breakdown(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    ctx: RequestContext = Depends(get_request_context),
):
    service = MetricsService(ctx.session, ctx.user_id)
    return service.cached_category_breakdown(start_date, end_date)


@app.get("/api/ai/insights")
def api_insights(ctx: RequestContext = Depends(get_request_context)):
    insights = InsightService(ctx.session, ctx.user_id).get_insights()
    return {"insights": [i.model_dump(mode="json") for i in insights]}


@app.post("/api/ai/analyze")
def api_analyze(ctx: RequestContext = Depends(get_request_context)):
    run = InsightService(ctx.session, ctx.user_id).regenerate()
    return {
        "state": run.state.value,
        "insights": [i.model_dump(mode="json") for i in run.insights],
    }


@app.get("/api/ai/summary")
def api_insight_summary(ctx: RequestContext = Depends(get_request_context)):
    return InsightService(ctx.session, ctx.user_id).summary()


@app.get("/api/budgets")
def api_budgets(ctx: RequestContext = Depends(get_request_context)):
    budgets = BudgetService(ctx.session, ctx.user_id).list_all()
    return {"budgets": [_budget_to_dict(b) for b in budgets]}


@app.post("/api/budgets", status_code=201)
def api_create_budget(
    payload: BudgetIn, ctx: RequestContext = Depends(get_request_context)
):
    budget = BudgetService(ctx.session, ctx.user_id).create(payload)
    return _budget_to_dict(budget)


@app.get("/api/budgets/progress")
def api_budget_progress(ctx: RequestContext = Depends(get_request_context)):
    return {"budgets": BudgetService(ctx.session, ctx.user_id).progress()}


@app.get("/api/investments")
def api_investments(ctx: RequestContext = Depends(get_request_context)):
    service = InvestmentService(ctx.session, ctx.user_id)
    return {
        "investments": [_investment_to_dict(i) for i in service.list_all()],
        "valuation": service.valuation(),
    }


@app.post("/api/investments", status_code=201)
def api_create_investment(
    payload: InvestmentIn, ctx: RequestContext = Depends(get_request_context)
):
    investment = InvestmentService(ctx.session, ctx.user_id).create(payload)
    return _investment_to_dict(investment)


@app.patch("/api/investments/{investment_id}/price")
def api_update_investment_price(
    investment_id: int,
    payload: PriceUpdateIn,
    ctx: RequestContext = Depends(get_request_context),
):
    investment = InvestmentService(ctx.session, ctx.user_id).update_price(
        investment_id, payload.current_price_cents
    )
    return _investment_to_dict(investment)


@app.get("/api/alerts")
def api_alerts(ctx: RequestContext = Depends(get_request_context)):
    alerts = AlertService(ctx.session, ctx.user_id).list_active()
    return {"alerts": [_alert_to_dict(a) for a in alerts]}


@app.post("/api/alerts", status_code=201)
def api_create_alert(payload: AlertIn, ctx: RequestContext = Depends(get_request_context)):
    alert = AlertService(ctx.session, ctx.user_id).create(payload)
    return _alert_to_dict(alert)


@app.post("/api/alerts/{alert_id}/read")
def api_mark_alert_read(
    alert_id: int, ctx: RequestContext = Depends(get_request_context)
):
    AlertService(ctx.session, ctx.user_id).mark_read(alert_id)
    return {"id": alert_id, "is_read": True}
