"""FastAPI application — back-office API and system health endpoints."""

from __future__ import annotations

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from practice_os.config import settings
from practice_os.services.health_monitor import HealthMonitor
from practice_os.services.portfolio_service import PortfolioService
from practice_os.utils.logger import logger

app = FastAPI(
    title="PracticeOS",
    description="Wealth-management back office: accounts, rebalancing and system health",
    version="0.1.0",
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── Models ──────────────────────────────────────────────────────────
class HouseholdCreateRequest(BaseModel):
    name: str


class AccountCreateRequest(BaseModel):
    household_id: str
    account_type: str = "individual"  # individual | corporate | joint
    nickname: str = ""


class HoldingUpsertRequest(BaseModel):
    ticker: str
    name: str | None = None
    price: float | None = Field(default=None, ge=0)


class PositionCreateRequest(BaseModel):
    symbol: str
    quantity: float = Field(ge=0)
    entry_price: float = Field(ge=0)
    current_price: float | None = Field(default=None, ge=0)


class PriceUpdateRequest(BaseModel):
    current_price: float = Field(ge=0)


class AllocationRequest(BaseModel):
    ticker: str
    target_percentage: float
    name: str | None = None


class ModelPortfolioCreateRequest(BaseModel):
    name: str
    portfolio_type: str = "standard"  # standard | watchlist


# ── Singleton services ──────────────────────────────────────────────
_portfolio = PortfolioService()
_health_monitor = HealthMonitor()


def _not_found(what: str, ident: str) -> HTTPException:
    return HTTPException(status_code=404, detail=f"{what} not found: {ident}")


# ══════════════════════════════════════════════════════════════════════
# LIFECYCLE
# ══════════════════════════════════════════════════════════════════════


@app.on_event("startup")
async def _auto_start_health_monitor() -> None:
    """Start the health monitor when the server boots."""
    if not settings.HEALTH_AUTOSTART:
        logger.info("[API] Health monitor autostart disabled")
        return
    result = _health_monitor.start()
    logger.info("[API] Health monitor auto-start: %s", result)


@app.on_event("shutdown")
async def _stop_health_monitor() -> None:
    _health_monitor.stop()


# ══════════════════════════════════════════════════════════════════════
# SYSTEM HEALTH
# ══════════════════════════════════════════════════════════════════════


@app.get("/api/health")
async def health() -> dict:
    """Aggregated health snapshot. Reports failures, never fails itself."""
    return _health_monitor.get_health_state().model_dump(mode="json")


@app.get("/api/health/alerts")
async def health_alerts(
    include_acknowledged: bool = Query(default=True),
) -> list[dict]:
    """All open alerts, acknowledged ones included unless filtered out."""
    return [
        a.model_dump(mode="json")
        for a in _health_monitor.get_alerts(include_acknowledged=include_acknowledged)
    ]


@app.post("/api/health/alerts/{alert_id}/acknowledge")
async def acknowledge_alert(alert_id: str) -> dict:
    if not _health_monitor.acknowledge_alert(alert_id):
        raise _not_found("Alert", alert_id)
    return {"success": True, "alert_id": alert_id}


@app.post("/api/health/check")
async def force_health_check() -> dict:
    """Run a check cycle now and return the fresh snapshot."""
    snapshot = await _health_monitor.force_check()
    return snapshot.model_dump(mode="json")


@app.post("/api/health/monitor/start")
async def health_monitor_start() -> dict:
    return _health_monitor.start()


@app.post("/api/health/monitor/stop")
async def health_monitor_stop() -> dict:
    return _health_monitor.stop()


# ══════════════════════════════════════════════════════════════════════
# HOUSEHOLDS & ACCOUNTS
# ══════════════════════════════════════════════════════════════════════


@app.get("/api/households")
async def list_households() -> list[dict]:
    return [h.model_dump(mode="json") for h in _portfolio.list_households()]


@app.post("/api/households")
async def create_household(req: HouseholdCreateRequest) -> dict:
    if not req.name.strip():
        raise HTTPException(status_code=400, detail="Household name is required")
    return _portfolio.create_household(req.name).model_dump(mode="json")


@app.get("/api/households/{household_id}/accounts")
async def list_household_accounts(household_id: str) -> list[dict]:
    if _portfolio.get_household(household_id) is None:
        raise _not_found("Household", household_id)
    return [a.model_dump(mode="json") for a in _portfolio.list_accounts(household_id)]


@app.post("/api/accounts")
async def create_account(req: AccountCreateRequest) -> dict:
    try:
        account = _portfolio.create_account(
            req.household_id, req.account_type, req.nickname,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    if account is None:
        raise _not_found("Household", req.household_id)
    return account.model_dump(mode="json")


@app.get("/api/accounts/{account_id}")
async def get_account(account_id: str) -> dict:
    account = _portfolio.get_account(account_id)
    if account is None:
        raise _not_found("Account", account_id)
    return account.model_dump(mode="json")


# ══════════════════════════════════════════════════════════════════════
# HOLDINGS & POSITIONS
# ══════════════════════════════════════════════════════════════════════


@app.get("/api/holdings")
async def list_holdings() -> list[dict]:
    return [h.model_dump(mode="json") for h in _portfolio.list_holdings()]


@app.post("/api/holdings")
async def upsert_holding(req: HoldingUpsertRequest) -> dict:
    if not req.ticker.strip():
        raise HTTPException(status_code=400, detail="Ticker is required")
    return _portfolio.upsert_holding(req.ticker, req.name, req.price).model_dump(mode="json")


@app.get("/api/accounts/{account_id}/positions")
async def list_positions(account_id: str) -> list[dict]:
    if _portfolio.get_account(account_id) is None:
        raise _not_found("Account", account_id)
    return [p.model_dump(mode="json") for p in _portfolio.list_positions(account_id)]


@app.post("/api/accounts/{account_id}/positions")
async def add_position(account_id: str, req: PositionCreateRequest) -> dict:
    if not req.symbol.strip():
        raise HTTPException(status_code=400, detail="Symbol is required")
    position = _portfolio.add_position(
        account_id, req.symbol, req.quantity, req.entry_price, req.current_price,
    )
    if position is None:
        raise _not_found("Account", account_id)
    return position.model_dump(mode="json")


@app.patch("/api/positions/{position_id}/price")
async def update_position_price(position_id: str, req: PriceUpdateRequest) -> dict:
    if not _portfolio.update_position_price(position_id, req.current_price):
        raise _not_found("Position", position_id)
    return {"success": True}


@app.delete("/api/positions/{position_id}")
async def delete_position(position_id: str) -> dict:
    if not _portfolio.delete_position(position_id):
        raise _not_found("Position", position_id)
    return {"success": True}


@app.post("/api/accounts/{account_id}/refresh-prices")
async def refresh_prices(account_id: str) -> dict:
    """Pull live prices for the account's positions and targets."""
    result = await _portfolio.refresh_prices(account_id)
    if result is None:
        raise _not_found("Account", account_id)
    return result


# ══════════════════════════════════════════════════════════════════════
# TARGET ALLOCATIONS & MODEL PORTFOLIOS
# ══════════════════════════════════════════════════════════════════════


@app.get("/api/accounts/{account_id}/target-allocations")
async def list_target_allocations(account_id: str) -> list[dict]:
    if _portfolio.get_account(account_id) is None:
        raise _not_found("Account", account_id)
    return [
        a.model_dump(mode="json")
        for a in _portfolio.list_target_allocations(account_id)
    ]


@app.post("/api/accounts/{account_id}/target-allocations")
async def set_target_allocation(account_id: str, req: AllocationRequest) -> dict:
    try:
        alloc = _portfolio.set_target_allocation(
            account_id, req.ticker, req.target_percentage, req.name,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    if alloc is None:
        raise _not_found("Account", account_id)
    return alloc.model_dump(mode="json")


@app.delete("/api/target-allocations/{allocation_id}")
async def delete_target_allocation(allocation_id: str) -> dict:
    if not _portfolio.delete_target_allocation(allocation_id):
        raise _not_found("Target allocation", allocation_id)
    return {"success": True}


@app.post("/api/accounts/{account_id}/target-allocations/copy-from/{portfolio_id}")
async def copy_allocations(account_id: str, portfolio_id: str) -> dict:
    try:
        result = _portfolio.copy_allocations_from_portfolio(account_id, portfolio_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    if result is None:
        raise HTTPException(status_code=404, detail="Account or model portfolio not found")
    return result


@app.get("/api/model-portfolios")
async def list_model_portfolios() -> list[dict]:
    return [p.model_dump(mode="json") for p in _portfolio.list_model_portfolios()]


@app.post("/api/model-portfolios")
async def create_model_portfolio(req: ModelPortfolioCreateRequest) -> dict:
    try:
        portfolio = _portfolio.create_model_portfolio(req.name, req.portfolio_type)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    return portfolio.model_dump(mode="json")


@app.post("/api/model-portfolios/{portfolio_id}/allocations")
async def add_model_allocation(portfolio_id: str, req: AllocationRequest) -> dict:
    try:
        portfolio = _portfolio.add_model_allocation(
            portfolio_id, req.ticker, req.target_percentage, req.name,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    if portfolio is None:
        raise _not_found("Model portfolio", portfolio_id)
    return portfolio.model_dump(mode="json")


# ══════════════════════════════════════════════════════════════════════
# REBALANCING
# ══════════════════════════════════════════════════════════════════════


@app.get("/api/accounts/{account_id}/portfolio-comparison")
async def portfolio_comparison(
    account_id: str,
    tolerance: float | None = Query(default=None, ge=0),
) -> dict:
    """Actual holdings vs. target allocations with buy/sell actions."""
    report = _portfolio.compare_account(account_id, tolerance=tolerance)
    if report is None:
        raise _not_found("Account", account_id)
    return report.display()


def run() -> None:
    """Serve the app with uvicorn on ``settings.HOST:PORT``."""
    import uvicorn

    uvicorn.run("practice_os.main:app", host=settings.HOST, port=settings.PORT)
