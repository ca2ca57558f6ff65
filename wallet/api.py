import logging
import time
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import Settings
from .db import Database
from .errors import WalletServiceError
from .ledger_store import LedgerStore
from .models import (
    Account,
    AddFundsRequest,
    ApplyCouponRequest,
    CouponQuote,
    CouponTarget,
    CreateOrderRequest,
    InitiatePaymentRequest,
    Offer,
    Order,
    PayRequest,
    Payment,
    RedeemCreditsRequest,
    RedemptionResult,
    Requester,
    Role,
    TransactionHistoryResponse,
    TransactionType,
    UpdateOrderStatusRequest,
    UpiPaymentIntent,
    VerifyPaymentRequest,
    WalletPayment,
)
from .service import WalletService
from .settlement import SettlementOrchestrator

log = logging.getLogger(__name__)


def get_requester(
    x_user_id: Optional[str] = Header(default=None),
    x_user_role: Optional[str] = Header(default=None),
) -> Requester:
    """Identity is asserted by the upstream auth gateway via headers."""
    if not x_user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
    try:
        role = Role(x_user_role or Role.CUSTOMER.value)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=f"Unknown role {x_user_role!r}")
    return Requester(id=x_user_id, role=role)


def get_wallet_service(request: Request) -> WalletService:
    return request.app.state.wallet_service


def get_settlement(request: Request) -> SettlementOrchestrator:
    return request.app.state.settlement


def create_app(settings: Optional[Settings] = None, database: Optional[Database] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    database = database or Database(settings.database_url)
    database.create_all()

    ledger = LedgerStore(database, settings)
    settlement = SettlementOrchestrator(database, ledger, settings)

    app = FastAPI(
        title="Home Services Wallet API",
        description="Wallet ledger, coupon discounts and order payment settlement",
        version="1.0.0",
    )
    app.state.settings = settings
    app.state.database = database
    app.state.settlement = settlement
    app.state.wallet_service = WalletService(ledger, settlement, settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start_time = time.time()
        response = await call_next(request)
        log.info({
            "method": request.method,
            "path": request.url.path,
            "status_code": response.status_code,
            "duration_ms": int((time.time() - start_time) * 1000),
            "user_id": request.headers.get("x-user-id"),
        })
        return response

    @app.exception_handler(WalletServiceError)
    async def wallet_error_handler(request: Request, exc: WalletServiceError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        """Malformed bodies and query strings get the same 400 shape as service validation errors."""
        error = exc.errors()[0]
        field = ".".join(str(part) for part in error["loc"] if part not in ("body", "query", "path", "header"))
        message = f"{field}: {error['msg']}" if field else error["msg"]
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": message})

    @app.exception_handler(Exception)
    async def internal_error_handler(request: Request, exc: Exception) -> JSONResponse:
        log.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})

    @app.get("/health", tags=["System"])
    def health_check():
        return {"status": "healthy", "service": "home-services-wallet"}

    @app.get("/wallet", response_model=Account, tags=["Wallet"])
    def get_wallet(
        requester: Requester = Depends(get_requester),
        service: WalletService = Depends(get_wallet_service),
    ) -> Account:
        return service.get_balance(requester.id)

    @app.get("/wallet/transactions", response_model=TransactionHistoryResponse, tags=["Wallet"])
    def get_wallet_transactions(
        type: Optional[TransactionType] = None,
        page: int = 1,
        limit: int = 20,
        requester: Requester = Depends(get_requester),
        service: WalletService = Depends(get_wallet_service),
    ) -> TransactionHistoryResponse:
        return service.get_history(requester.id, type=type, page=page, limit=limit)

    @app.post("/wallet/add-funds", response_model=Account, tags=["Wallet"])
    def add_funds(
        body: AddFundsRequest,
        requester: Requester = Depends(get_requester),
        service: WalletService = Depends(get_wallet_service),
    ) -> Account:
        return service.add_funds(requester.id, body.amount)

    @app.post("/wallet/redeem-credits", response_model=RedemptionResult, tags=["Wallet"])
    def redeem_credits(
        body: RedeemCreditsRequest,
        requester: Requester = Depends(get_requester),
        service: WalletService = Depends(get_wallet_service),
    ) -> RedemptionResult:
        return service.redeem_credits(requester.id, body.points)

    @app.post("/wallet/pay", response_model=WalletPayment, tags=["Wallet"])
    def pay_with_wallet(
        body: PayRequest,
        requester: Requester = Depends(get_requester),
        service: WalletService = Depends(get_wallet_service),
    ) -> WalletPayment:
        return service.pay(requester, body.order_id, use_credits=body.use_credits)

    @app.post("/orders", response_model=Order, status_code=status.HTTP_201_CREATED, tags=["Orders"])
    def create_order(
        body: CreateOrderRequest,
        requester: Requester = Depends(get_requester),
        settlement: SettlementOrchestrator = Depends(get_settlement),
    ) -> Order:
        return settlement.create_order(requester, body)

    @app.get("/orders/{order_id}", response_model=Order, tags=["Orders"])
    def get_order(
        order_id: str,
        requester: Requester = Depends(get_requester),
        settlement: SettlementOrchestrator = Depends(get_settlement),
    ) -> Order:
        return settlement.get_order(requester, order_id)

    @app.patch("/orders/{order_id}/status", response_model=Order, tags=["Orders"])
    def update_order_status(
        order_id: str,
        body: UpdateOrderStatusRequest,
        requester: Requester = Depends(get_requester),
        settlement: SettlementOrchestrator = Depends(get_settlement),
    ) -> Order:
        return settlement.update_order_status(requester, order_id, body.status)

    @app.get("/offers", response_model=list[Offer], tags=["Offers"])
    def list_offers(
        target: Optional[CouponTarget] = None,
        settlement: SettlementOrchestrator = Depends(get_settlement),
    ) -> list[Offer]:
        return settlement.list_offers(target)

    @app.post("/offers/apply", response_model=CouponQuote, tags=["Offers"])
    def apply_coupon(
        body: ApplyCouponRequest,
        requester: Requester = Depends(get_requester),
        settlement: SettlementOrchestrator = Depends(get_settlement),
    ) -> CouponQuote:
        return settlement.apply_coupon(requester, body.code, body.subtotal)

    @app.post("/payments/initiate", response_model=UpiPaymentIntent, tags=["Payments"])
    def initiate_payment(
        body: InitiatePaymentRequest,
        requester: Requester = Depends(get_requester),
        settlement: SettlementOrchestrator = Depends(get_settlement),
    ) -> UpiPaymentIntent:
        return settlement.initiate_upi_payment(requester, body.order_id)

    @app.post("/payments/verify", response_model=Payment, tags=["Payments"])
    def verify_payment(
        body: VerifyPaymentRequest,
        requester: Requester = Depends(get_requester),
        settlement: SettlementOrchestrator = Depends(get_settlement),
    ) -> Payment:
        return settlement.verify_upi_payment(requester, body.payment_id, body.transaction_ref)

    @app.get("/payments/{order_id}", response_model=Payment, tags=["Payments"])
    def get_payment(
        order_id: str,
        requester: Requester = Depends(get_requester),
        settlement: SettlementOrchestrator = Depends(get_settlement),
    ) -> Payment:
        return settlement.get_payment_for_order(requester, order_id)

    return app


if __name__ == "__main__":
    import uvicorn
    logging.basicConfig(level=logging.INFO)
    uvicorn.run(create_app(), host="0.0.0.0", port=8000)
