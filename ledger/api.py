import logging
from contextlib import asynccontextmanager
from typing import Optional
from uuid import UUID

from fastapi import Depends, FastAPI, Header, HTTPException, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from core.config import Settings, get_settings
from core.logging_config import setup_logging
from promotion.engine import PromotionEngine, PromotionError
from promotion.models import PromotionCheckRequest, PromotionCheckResponse
from promotion.notifier import HttpNotifier, LoggingNotifier, Notifier
from promotion.referrals import ReferralCounter
from webhooks.events import MalformedEvent
from webhooks.processor import WebhookProcessor
from webhooks.signature import HmacSignatureVerifier, SignatureInvalid, SignatureMissing

from .merge import InvalidDocument, merge
from .models import (
    DetailsPatchRequest,
    MergeRequest,
    SettleWithdrawalRequest,
    TransactionRecord,
    WebhookAck,
    WithdrawalRequest,
)
from .service import (
    InvalidStateTransitionError,
    LedgerService,
    LedgerServiceError,
    PersistenceError,
    TransactionNotFoundError,
)
from .storage import InMemoryStorage, Storage

logger = logging.getLogger(__name__)


def build_notifier(settings: Settings) -> Notifier:
    if settings.NOTIFIER_URL:
        return HttpNotifier(settings.NOTIFIER_URL, timeout=settings.NOTIFIER_TIMEOUT_SECONDS)
    return LoggingNotifier()


def create_app(
    settings: Optional[Settings] = None,
    storage: Optional[Storage] = None,
    notifier: Optional[Notifier] = None,
) -> FastAPI:
    settings = settings or get_settings()
    storage = storage or InMemoryStorage()
    notifier = notifier or build_notifier(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        notifier.close()

    app = FastAPI(
        title="Syndicate Ledger API",
        description="Payment webhook ingestion and influencer promotion for lottery syndicates",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    ledger_service = LedgerService(storage)
    referral_counter = ReferralCounter(storage)
    promotion_engine = PromotionEngine(
        storage, notifier, threshold=settings.INFLUENCER_REFERRAL_THRESHOLD, counter=referral_counter,
    )

    app.state.settings = settings
    app.state.storage = storage
    app.state.ledger_service = ledger_service
    app.state.promotion_engine = promotion_engine
    app.state.webhook_processor = WebhookProcessor(
        verifier=HmacSignatureVerifier(settings.STRIPE_WEBHOOK_SECRET, settings.WEBHOOK_TOLERANCE_SECONDS),
        ledger=ledger_service,
        referrals=referral_counter,
        promotion=promotion_engine,
    )

    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    register_routes(app)
    return app


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": "Invalid request", "details": jsonable_encoder(exc.errors())},
    )


def get_webhook_processor(request: Request) -> WebhookProcessor:
    return request.app.state.webhook_processor


def get_promotion_engine(request: Request) -> PromotionEngine:
    return request.app.state.promotion_engine


def get_ledger_service(request: Request) -> LedgerService:
    return request.app.state.ledger_service


def register_routes(app: FastAPI) -> None:

    @app.get("/health", tags=["System"])
    def health_check():
        return {"status": "healthy", "service": "syndicate-ledger"}

    @app.post("/webhooks/stripe", response_model=WebhookAck, tags=["Webhooks"])
    async def stripe_webhook(
        request: Request,
        stripe_signature: Optional[str] = Header(None),
        processor: WebhookProcessor = Depends(get_webhook_processor),
    ) -> WebhookAck:
        payload = await request.body()
        try:
            await run_in_threadpool(processor.handle, payload, stripe_signature)
        except SignatureMissing:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Webhook signature missing")
        except SignatureInvalid as e:
            logger.warning("Rejected webhook delivery: %s", e)
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Webhook signature verification failed")
        except MalformedEvent as e:
            logger.warning("Malformed webhook event: %s", e)
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
        except PersistenceError:
            logger.exception("Storage failure while processing webhook")
            raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Storage failure, please retry")
        except Exception:
            logger.exception("Error processing webhook")
            raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Internal server error")

        return WebhookAck(received=True)

    @app.post("/influencer/check", response_model=PromotionCheckResponse, tags=["Influencers"])
    def check_influencer(
        request: PromotionCheckRequest,
        engine: PromotionEngine = Depends(get_promotion_engine),
    ) -> PromotionCheckResponse:
        try:
            result = engine.check(request.user_id)
        except PromotionError as e:
            logger.exception("Influencer check failed for user %s", request.user_id)
            raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))
        except Exception as e:
            logger.exception("Error in influencer check for user %s", request.user_id)
            raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))
        return PromotionCheckResponse(success=True, became_influencer=result.became_influencer)

    @app.post("/jsonb/merge", tags=["Utilities"])
    def merge_documents(request: MergeRequest):
        try:
            return merge(request.current, request.new)
        except InvalidDocument as e:
            return JSONResponse(
                status_code=status.HTTP_400_BAD_REQUEST,
                content={"error": "Invalid JSON format", "details": str(e)},
            )

    @app.patch("/transactions/{transaction_id}/details", response_model=TransactionRecord, tags=["Transactions"])
    def patch_transaction_details(
        transaction_id: UUID,
        request: DetailsPatchRequest,
        ledger: LedgerService = Depends(get_ledger_service),
    ) -> TransactionRecord:
        try:
            return ledger.update_details(transaction_id, request.patch)
        except TransactionNotFoundError:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Transaction {transaction_id} not found")
        except InvalidDocument as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid JSON format: {e}")
        except PersistenceError:
            logger.exception("Storage failure while updating transaction %s", transaction_id)
            raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Storage failure, please retry")

    @app.post("/withdrawals", response_model=TransactionRecord, status_code=status.HTTP_201_CREATED,
              tags=["Transactions"])
    def request_withdrawal(
        request: WithdrawalRequest,
        ledger: LedgerService = Depends(get_ledger_service),
    ) -> TransactionRecord:
        try:
            return ledger.request_withdrawal(request.user_id, request.amount_cents, request.details)
        except PersistenceError:
            logger.exception("Storage failure while requesting withdrawal for user %s", request.user_id)
            raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Storage failure, please retry")
        except LedgerServiceError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    @app.post("/withdrawals/{transaction_id}/settle", response_model=TransactionRecord, tags=["Transactions"])
    def settle_withdrawal(
        transaction_id: UUID,
        request: SettleWithdrawalRequest,
        ledger: LedgerService = Depends(get_ledger_service),
    ) -> TransactionRecord:
        try:
            return ledger.settle_withdrawal(transaction_id, request.succeeded, request.failure_reason)
        except TransactionNotFoundError:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Transaction {transaction_id} not found")
        except InvalidStateTransitionError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
        except PersistenceError:
            logger.exception("Storage failure while settling withdrawal %s", transaction_id)
            raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Storage failure, please retry")


def build_default_app() -> FastAPI:
    settings = get_settings()
    setup_logging(settings.LOG_LEVEL)
    return create_app(settings)


app = build_default_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
