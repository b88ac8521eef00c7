import asyncio
import json
import logging
from typing import List, Optional
from uuid import UUID

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request, WebSocket, status
from fastapi.middleware.cors import CORSMiddleware

from notifications import ConnectionRegistry

from .accounts import AccountService, require_manager_of
from .approvals import ApprovalService
from .errors import (
    AlreadyDeclaredError,
    FatalLedgerInconsistencyError,
    InsufficientBalanceError,
    InvalidStateTransitionError,
    LedgerServiceError,
    NotFoundError,
    NotOpenError,
    UnauthorizedActionError,
    ValidationError,
)
from .intake import WagerIntake
from .markets import MarketService
from .models import (
    AdjustBalanceRequest,
    AmountRequest,
    CreateMarketRequest,
    CreateOptionGameRequest,
    CreateUserRequest,
    DeclareMarketResultRequest,
    DeclareOptionResultRequest,
    GameTypeConfig,
    GameTypeRequest,
    LedgerEntry,
    LedgerHistoryResponse,
    Market,
    OptionGame,
    PlaceMarketWagerRequest,
    PlaceOptionWagerRequest,
    ResolveTransactionRequest,
    Role,
    SetUserStatusRequest,
    SettlementReport,
    TargetKind,
    TransactionResponse,
    TransactionStatus,
    UpdateGameTypeRequest,
    UpdateOddsRequest,
    User,
    UserBalance,
    Wager,
)
from .service import LedgerService
from .settings import get_settings
from .settlement import SettlementEngine
from .storage import InMemoryStorage, StoragePort


logger = logging.getLogger(__name__)


class Services:
    def __init__(self, storage: Optional[StoragePort] = None):
        self.storage = storage or InMemoryStorage()
        self.connections = ConnectionRegistry()
        self.accounts = AccountService(self.storage)
        self.ledger = LedgerService(self.storage)
        self.markets = MarketService(self.storage)
        self.approvals = ApprovalService(self.ledger, self.connections)
        self.intake = WagerIntake(self.ledger, self.markets)
        self.settlement = SettlementEngine(self.ledger, self.connections)


class WebSocketConnection:
    """Bridges registry deliveries from worker threads onto the socket's event loop."""

    def __init__(self, websocket: WebSocket, loop: asyncio.AbstractEventLoop):
        self.websocket = websocket
        self.loop = loop
        self.queue: asyncio.Queue = asyncio.Queue()
        self.closed = False

    def send(self, payload: dict) -> None:
        # raising makes the registry drop this connection
        if self.closed:
            raise ConnectionError("WebSocket writer has stopped")
        self.loop.call_soon_threadsafe(self.queue.put_nowait, payload)

    async def pump(self) -> None:
        try:
            while True:
                payload = await self.queue.get()
                await self.websocket.send_json(payload)
        finally:
            self.closed = True


def _decode_message(message: dict) -> Optional[dict]:
    text = message.get("text")
    if text is None:
        return None
    try:
        payload = json.loads(text)
    except ValueError:
        return None
    return payload if isinstance(payload, dict) else None


_STATUS_CODES = [
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (UnauthorizedActionError, status.HTTP_403_FORBIDDEN),
    (NotOpenError, status.HTTP_409_CONFLICT),
    (InvalidStateTransitionError, status.HTTP_409_CONFLICT),
    (InsufficientBalanceError, status.HTTP_400_BAD_REQUEST),
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (FatalLedgerInconsistencyError, status.HTTP_423_LOCKED),
]


def _http_error(e: LedgerServiceError) -> HTTPException:
    if isinstance(e, AlreadyDeclaredError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=f"Already settled. {e}")
    for exc_type, code in _STATUS_CODES:
        if isinstance(e, exc_type):
            return HTTPException(status_code=code, detail=str(e))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_actor(
    x_user_id: UUID = Header(..., description="Acting user, resolved by the host's session layer"),
    services: Services = Depends(get_services),
) -> User:
    try:
        return services.accounts.get_user(x_user_id)
    except NotFoundError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unknown user")


def _require_view(actor: User, user: User) -> None:
    if actor.id != user.id:
        require_manager_of(actor, user)


def create_app(services: Optional[Services] = None) -> FastAPI:
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = FastAPI(
        title="Wager Ledger API",
        description="Wager intake, result settlement and wallet ledger with live notifications",
        version="1.0.0",
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.services = services or Services()
    if settings.bootstrap_admin:
        app.state.services.accounts.bootstrap_admin(settings.bootstrap_admin)

    register_routes(app)
    return app


def register_routes(app: FastAPI) -> None:

    @app.get("/health", tags=["System"])
    def health_check():
        return {"status": "healthy", "service": "wager-ledger"}

    # Users

    @app.post("/users", response_model=User, status_code=status.HTTP_201_CREATED, tags=["Users"])
    def create_user(request: CreateUserRequest, actor: User = Depends(get_actor), services: Services = Depends(get_services)):
        try:
            return services.accounts.create_user(request, actor)
        except LedgerServiceError as e:
            raise _http_error(e)

    @app.get("/users", response_model=List[User], tags=["Users"])
    def list_users(actor: User = Depends(get_actor), services: Services = Depends(get_services)):
        return services.accounts.list_users(actor)

    @app.patch("/users/{user_id}/status", response_model=User, tags=["Users"])
    def set_user_status(user_id: UUID, request: SetUserStatusRequest, actor: User = Depends(get_actor), services: Services = Depends(get_services)):
        try:
            return services.accounts.set_status(user_id, request, actor)
        except LedgerServiceError as e:
            raise _http_error(e)

    @app.get("/users/{user_id}/balance", response_model=UserBalance, tags=["Users"])
    def get_user_balance(user_id: UUID, actor: User = Depends(get_actor), services: Services = Depends(get_services)):
        try:
            _require_view(actor, services.accounts.get_user(user_id))
            return services.ledger.get_balance(user_id)
        except LedgerServiceError as e:
            raise _http_error(e)

    @app.get("/users/{user_id}/ledger", response_model=LedgerHistoryResponse, tags=["Users"])
    def get_user_ledger(user_id: UUID, limit: int = 50, offset: int = 0, actor: User = Depends(get_actor), services: Services = Depends(get_services)):
        try:
            _require_view(actor, services.accounts.get_user(user_id))
            return services.ledger.get_ledger_history(user_id, limit, offset)
        except LedgerServiceError as e:
            raise _http_error(e)

    @app.get("/users/{user_id}/wagers", response_model=List[Wager], tags=["Users"])
    def get_user_wagers(user_id: UUID, actor: User = Depends(get_actor), services: Services = Depends(get_services)):
        try:
            _require_view(actor, services.accounts.get_user(user_id))
            return services.intake.list_user_wagers(user_id)
        except LedgerServiceError as e:
            raise _http_error(e)

    @app.post("/users/{user_id}/wallet", response_model=TransactionResponse, tags=["Users"])
    def adjust_wallet(user_id: UUID, request: AdjustBalanceRequest, actor: User = Depends(get_actor), services: Services = Depends(get_services)):
        try:
            return services.approvals.adjust_balance(user_id, request.amount, actor, request.remarks)
        except LedgerServiceError as e:
            raise _http_error(e)

    @app.post("/users/{user_id}/reconcile", response_model=UserBalance, tags=["Users"])
    def reconcile_user(user_id: UUID, actor: User = Depends(get_actor), services: Services = Depends(get_services)):
        try:
            return services.ledger.reconcile(user_id, actor)
        except LedgerServiceError as e:
            raise _http_error(e)

    # Markets

    @app.post("/markets", response_model=Market, status_code=status.HTTP_201_CREATED, tags=["Markets"])
    def create_market(request: CreateMarketRequest, actor: User = Depends(get_actor), services: Services = Depends(get_services)):
        try:
            return services.markets.create_market(request, actor)
        except LedgerServiceError as e:
            raise _http_error(e)

    @app.get("/markets", response_model=List[Market], tags=["Markets"])
    def list_markets(actor: User = Depends(get_actor), services: Services = Depends(get_services)):
        return services.markets.list_markets()

    @app.get("/markets/{market_id}", response_model=Market, tags=["Markets"])
    def get_market(market_id: UUID, actor: User = Depends(get_actor), services: Services = Depends(get_services)):
        try:
            return services.markets.get_market(market_id)
        except LedgerServiceError as e:
            raise _http_error(e)

    @app.post("/markets/{market_id}/game-types", response_model=GameTypeConfig, status_code=status.HTTP_201_CREATED, tags=["Markets"])
    def add_game_type(market_id: UUID, request: GameTypeRequest, actor: User = Depends(get_actor), services: Services = Depends(get_services)):
        try:
            return services.markets.add_game_type(market_id, request, actor)
        except LedgerServiceError as e:
            raise _http_error(e)

    @app.get("/markets/{market_id}/game-types", response_model=List[GameTypeConfig], tags=["Markets"])
    def list_game_types(market_id: UUID, actor: User = Depends(get_actor), services: Services = Depends(get_services)):
        try:
            return services.markets.list_game_types(market_id)
        except LedgerServiceError as e:
            raise _http_error(e)

    @app.patch("/game-types/{config_id}", response_model=GameTypeConfig, tags=["Markets"])
    def update_game_type(config_id: UUID, request: UpdateGameTypeRequest, actor: User = Depends(get_actor), services: Services = Depends(get_services)):
        try:
            return services.markets.update_game_type(config_id, request, actor)
        except LedgerServiceError as e:
            raise _http_error(e)

    @app.post("/markets/{market_id}/open", response_model=Market, tags=["Markets"])
    def open_market(market_id: UUID, actor: User = Depends(get_actor), services: Services = Depends(get_services)):
        try:
            return services.markets.open_market(market_id, actor)
        except LedgerServiceError as e:
            raise _http_error(e)

    @app.post("/markets/{market_id}/close", response_model=Market, tags=["Markets"])
    def close_market(market_id: UUID, actor: User = Depends(get_actor), services: Services = Depends(get_services)):
        try:
            return services.markets.close_market(market_id, actor)
        except LedgerServiceError as e:
            raise _http_error(e)

    @app.post("/markets/{market_id}/declare-result", response_model=SettlementReport, tags=["Markets"])
    def declare_market_result(market_id: UUID, request: DeclareMarketResultRequest, actor: User = Depends(get_actor), services: Services = Depends(get_services)):
        try:
            return services.settlement.declare_market_result(market_id, request.result_value, actor)
        except LedgerServiceError as e:
            raise _http_error(e)

    @app.post("/markets/{market_id}/resume-settlement", response_model=SettlementReport, tags=["Markets"])
    def resume_market_settlement(market_id: UUID, actor: User = Depends(get_actor), services: Services = Depends(get_services)):
        try:
            return services.settlement.resume_settlement(TargetKind.MARKET, market_id, actor)
        except LedgerServiceError as e:
            raise _http_error(e)

    @app.get("/markets/{market_id}/wagers", response_model=List[Wager], tags=["Markets"])
    def list_market_wagers(market_id: UUID, actor: User = Depends(get_actor), services: Services = Depends(get_services)):
        if actor.role == Role.PLAYER:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")
        return services.intake.list_target_wagers(market_id)

    # Option games

    @app.post("/option-games", response_model=OptionGame, status_code=status.HTTP_201_CREATED, tags=["Option Games"])
    def create_option_game(request: CreateOptionGameRequest, actor: User = Depends(get_actor), services: Services = Depends(get_services)):
        try:
            return services.markets.create_option_game(request, actor)
        except LedgerServiceError as e:
            raise _http_error(e)

    @app.get("/option-games", response_model=List[OptionGame], tags=["Option Games"])
    def list_option_games(actor: User = Depends(get_actor), services: Services = Depends(get_services)):
        return services.markets.list_option_games()

    @app.get("/option-games/{game_id}", response_model=OptionGame, tags=["Option Games"])
    def get_option_game(game_id: UUID, actor: User = Depends(get_actor), services: Services = Depends(get_services)):
        try:
            return services.markets.get_option_game(game_id)
        except LedgerServiceError as e:
            raise _http_error(e)

    @app.patch("/option-games/{game_id}/odds", response_model=OptionGame, tags=["Option Games"])
    def update_option_odds(game_id: UUID, request: UpdateOddsRequest, actor: User = Depends(get_actor), services: Services = Depends(get_services)):
        try:
            return services.markets.update_option_odds(game_id, request.odds, actor)
        except LedgerServiceError as e:
            raise _http_error(e)

    @app.post("/option-games/{game_id}/open", response_model=OptionGame, tags=["Option Games"])
    def open_option_game(game_id: UUID, actor: User = Depends(get_actor), services: Services = Depends(get_services)):
        try:
            return services.markets.open_option_game(game_id, actor)
        except LedgerServiceError as e:
            raise _http_error(e)

    @app.post("/option-games/{game_id}/close", response_model=OptionGame, tags=["Option Games"])
    def close_option_game(game_id: UUID, actor: User = Depends(get_actor), services: Services = Depends(get_services)):
        try:
            return services.markets.close_option_game(game_id, actor)
        except LedgerServiceError as e:
            raise _http_error(e)

    @app.post("/option-games/{game_id}/declare-result", response_model=SettlementReport, tags=["Option Games"])
    def declare_option_result(game_id: UUID, request: DeclareOptionResultRequest, actor: User = Depends(get_actor), services: Services = Depends(get_services)):
        try:
            return services.settlement.declare_option_result(game_id, request.winning_team, actor)
        except LedgerServiceError as e:
            raise _http_error(e)

    @app.post("/option-games/{game_id}/resume-settlement", response_model=SettlementReport, tags=["Option Games"])
    def resume_option_settlement(game_id: UUID, actor: User = Depends(get_actor), services: Services = Depends(get_services)):
        try:
            return services.settlement.resume_settlement(TargetKind.OPTION_GAME, game_id, actor)
        except LedgerServiceError as e:
            raise _http_error(e)

    # Wagers

    @app.post("/market-wagers", response_model=Wager, status_code=status.HTTP_201_CREATED, tags=["Wagers"])
    def place_market_wager(request: PlaceMarketWagerRequest, actor: User = Depends(get_actor), services: Services = Depends(get_services)):
        try:
            return services.intake.place_market_wager(actor.id, request)
        except LedgerServiceError as e:
            raise _http_error(e)

    @app.post("/option-wagers", response_model=Wager, status_code=status.HTTP_201_CREATED, tags=["Wagers"])
    def place_option_wager(request: PlaceOptionWagerRequest, actor: User = Depends(get_actor), services: Services = Depends(get_services)):
        try:
            return services.intake.place_option_wager(actor.id, request)
        except LedgerServiceError as e:
            raise _http_error(e)

    # Transactions

    @app.post("/transactions/deposit", response_model=TransactionResponse, status_code=status.HTTP_201_CREATED, tags=["Transactions"])
    def request_deposit(request: AmountRequest, actor: User = Depends(get_actor), services: Services = Depends(get_services)):
        try:
            return services.approvals.request_deposit(actor.id, request.amount)
        except LedgerServiceError as e:
            raise _http_error(e)

    @app.post("/transactions/withdrawal", response_model=TransactionResponse, status_code=status.HTTP_201_CREATED, tags=["Transactions"])
    def request_withdrawal(request: AmountRequest, actor: User = Depends(get_actor), services: Services = Depends(get_services)):
        try:
            return services.approvals.request_withdrawal(actor.id, request.amount)
        except LedgerServiceError as e:
            raise _http_error(e)

    @app.get("/transactions", response_model=List[LedgerEntry], tags=["Transactions"])
    def list_transactions(status_filter: Optional[TransactionStatus] = Query(default=None, alias="status"), actor: User = Depends(get_actor), services: Services = Depends(get_services)):
        return services.ledger.list_transactions(actor, status_filter)

    @app.post("/transactions/{transaction_id}/resolve", response_model=TransactionResponse, tags=["Transactions"])
    def resolve_transaction(transaction_id: UUID, request: ResolveTransactionRequest, actor: User = Depends(get_actor), services: Services = Depends(get_services)):
        try:
            return services.approvals.resolve_transaction(transaction_id, request.decision, actor, request.remarks)
        except LedgerServiceError as e:
            raise _http_error(e)

    # Live notifications

    @app.websocket("/ws")
    async def notifications_ws(websocket: WebSocket):
        services: Services = websocket.app.state.services
        await websocket.accept()
        connection = WebSocketConnection(websocket, asyncio.get_running_loop())
        services.connections.register(connection)
        writer = asyncio.create_task(connection.pump())
        try:
            while not connection.closed:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
                payload = _decode_message(message)
                if payload is None or payload.get("type") != "auth":
                    continue
                try:
                    user_id = UUID(str(payload.get("userId")))
                except ValueError:
                    connection.send({"type": "error", "message": "Invalid user id"})
                    continue
                services.connections.bind(connection, user_id)
                connection.send({"type": "auth_ok", "userId": str(user_id)})
        finally:
            services.connections.unregister(connection)
            writer.cancel()
            outcome = (await asyncio.gather(writer, return_exceptions=True))[0]
            if isinstance(outcome, Exception):
                logger.warning("Notification writer stopped: %r", outcome)


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
