import asyncio
from typing import List, Optional

from fastapi import APIRouter, FastAPI, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from budget_tracker.api.schemas import (
    ApiKeyIn,
    ApiKeyOut,
    BalanceOut,
    ExchangeBalanceOut,
    MonthlyIncomeIn,
    MonthlyIncomeOut,
    PositionIn,
    PositionOut,
    StatusOut,
    WithdrawalIn,
    WithdrawalOut,
)
from budget_tracker.config.logging import logger
from budget_tracker.core.exceptions import DataDestinationError, NotFoundError
from budget_tracker.services.container import Container


def create_app(container: Container, cors_origins: Optional[List[str]] = None) -> FastAPI:
    app = FastAPI(
        title="Budget Tracker API",
        description="Closed positions, balances and ledger entries across exchanges.",
        version="1.0.0",
    )
    app.state.container = container

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(DataDestinationError)
    async def storage_error_handler(request: Request, exc: DataDestinationError):
        logger.error(f"Storage failure on {request.method} {request.url.path}: {exc}")
        return JSONResponse(status_code=500, content={"detail": "Storage failure"})

    @app.get("/health")
    def health():
        return {"status": "ok"}

    app.include_router(_positions_router(container), prefix="/api/v1")
    app.include_router(_ledger_router(container), prefix="/api/v1")
    app.include_router(_accounts_router(container), prefix="/api/v1")
    app.add_api_websocket_route("/api/v1/ws", _websocket_endpoint(container))
    return app


def _positions_router(container: Container) -> APIRouter:
    router = APIRouter(prefix="/positions", tags=["Positions"])
    service = container.position_service
    notifier = container.notifier

    # registered before /{position_id} so "test-data" is not parsed as an id
    @router.post("/test-data", response_model=StatusOut, response_model_exclude_none=True)
    def generate_test_data(count: int = Query(default=100, ge=1, le=1000)):
        written = service.generate_test_positions(count)
        notifier.broadcast({"type": "positions_update", "positions": [], "count": written, "exchange": "test"})
        return StatusOut(status="success", count=written)

    @router.delete("/test-data", response_model=StatusOut, response_model_exclude_none=True)
    def delete_test_data():
        deleted = service.delete_test_positions()
        notifier.broadcast({"type": "positions_update", "positions": [], "count": deleted, "exchange": "test"})
        return StatusOut(status="deleted", count=deleted)

    @router.get("", response_model=List[PositionOut])
    def list_positions(exchange: Optional[str] = None):
        return [PositionOut.from_domain(p) for p in service.list(exchange.lower() if exchange else None)]

    @router.get("/{position_id}", response_model=PositionOut)
    def get_position(position_id: int):
        return PositionOut.from_domain(service.get(position_id))

    @router.post("", response_model=PositionOut, status_code=201)
    def create_position(body: PositionIn):
        saved = service.save(body.to_domain())
        notifier.broadcast({"type": "position_created", "data": saved.to_dict()})
        return PositionOut.from_domain(saved)

    @router.delete("/{position_id}", response_model=StatusOut, response_model_exclude_none=True)
    def delete_position(position_id: int):
        service.delete(position_id)
        notifier.broadcast({"type": "position_deleted", "id": position_id})
        return StatusOut(status="deleted")

    return router


def _ledger_router(container: Container) -> APIRouter:
    router = APIRouter(tags=["Ledger"])
    withdrawals = container.withdrawal_service
    incomes = container.income_service
    notifier = container.notifier

    @router.get("/withdrawals", response_model=List[WithdrawalOut])
    def list_withdrawals(exchange: Optional[str] = None):
        return [WithdrawalOut.from_domain(w) for w in withdrawals.list(exchange.lower() if exchange else None)]

    @router.post("/withdrawals", response_model=WithdrawalOut, status_code=201)
    def create_withdrawal(body: WithdrawalIn):
        saved = WithdrawalOut.from_domain(withdrawals.save(body.to_domain()))
        notifier.broadcast({"type": "withdrawal_created", "data": saved.model_dump(mode="json", by_alias=True)})
        return saved

    @router.delete("/withdrawals/{withdrawal_id}", response_model=StatusOut, response_model_exclude_none=True)
    def delete_withdrawal(withdrawal_id: int):
        withdrawals.delete(withdrawal_id)
        notifier.broadcast({"type": "withdrawal_deleted", "id": withdrawal_id})
        return StatusOut(status="deleted")

    @router.get("/monthly-income", response_model=List[MonthlyIncomeOut])
    def list_monthly_income(exchange: Optional[str] = None):
        return [MonthlyIncomeOut.from_domain(i) for i in incomes.list(exchange.lower() if exchange else None)]

    @router.post("/monthly-income", response_model=MonthlyIncomeOut, status_code=201)
    def create_monthly_income(body: MonthlyIncomeIn):
        saved = MonthlyIncomeOut.from_domain(incomes.save(body.to_domain()))
        notifier.broadcast({"type": "income_created", "data": saved.model_dump(mode="json", by_alias=True)})
        return saved

    @router.delete("/monthly-income/{income_id}", response_model=StatusOut, response_model_exclude_none=True)
    def delete_monthly_income(income_id: int):
        incomes.delete(income_id)
        notifier.broadcast({"type": "income_deleted", "id": income_id})
        return StatusOut(status="deleted")

    return router


def _accounts_router(container: Container) -> APIRouter:
    router = APIRouter(tags=["Accounts"])

    @router.get("/balance", response_model=BalanceOut)
    def get_balance():
        total, balances = container.balance.get_total_balance()
        return BalanceOut(
            total_balance=float(total),
            exchange_balances=[ExchangeBalanceOut.from_domain(b) for b in balances],
        )

    @router.get("/api-keys", response_model=List[ApiKeyOut])
    def list_api_keys(exchange: Optional[str] = None):
        if exchange:
            return [ApiKeyOut.from_domain(container.credentials.get_by_exchange(exchange.lower()))]
        return [ApiKeyOut.from_domain(c) for c in container.credentials.get_all()]

    @router.post("/api-keys", response_model=StatusOut, response_model_exclude_none=True)
    def save_api_keys(body: List[ApiKeyIn]):
        for item in body:
            container.credentials.upsert(item.to_domain())
            logger.info(f"[{item.exchange.lower()}] API key saved")
        return StatusOut(status="saved")

    return router


def _websocket_endpoint(container: Container):

    async def websocket_endpoint(websocket: WebSocket):
        """Pushes every notifier broadcast to the client as JSON."""
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue = asyncio.Queue()

        # broadcasts arrive on scheduler threads
        unsubscribe = container.notifier.subscribe(
            lambda message: loop.call_soon_threadsafe(queue.put_nowait, message)
        )

        async def pump():
            while True:
                await websocket.send_json(await queue.get())

        async def drain():
            # only here to notice the client going away
            while True:
                await websocket.receive_text()

        try:
            await websocket.accept()
            sender = asyncio.ensure_future(pump())
            receiver = asyncio.ensure_future(drain())
            done, pending = await asyncio.wait({sender, receiver}, return_when=asyncio.FIRST_COMPLETED)
            for task in pending:
                task.cancel()
            for task in done:
                exc = task.exception()
                if exc is not None and not isinstance(exc, WebSocketDisconnect):
                    logger.warning(f"WebSocket client dropped: {exc}")
        finally:
            unsubscribe()

    return websocket_endpoint
