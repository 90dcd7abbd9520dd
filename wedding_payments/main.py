import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Header
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from wedding_payments import reconciler, subaccounts
from wedding_payments.config import load_settings
from wedding_payments.routes import router, vendor_router, admin_router, planner_router
from wedding_payments.database import Base, engine, session_scope
from wedding_payments.exceptions import (
    AuthenticationError,
    InvalidTransitionError,
    NotFoundError,
    PaymentError,
    ValidationError,
)

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = load_settings()
    configure_logging(settings.log_level)
    settings.validate()

    # No payment can be initiated without the admin subaccount; fail startup
    with session_scope() as db:
        await run_in_threadpool(subaccounts.ensure_admin_subaccount, db)

    logger.info("Payment service started")
    yield
    engine.dispose()


app = FastAPI(title="Wedding Marketplace Payment Service", lifespan=lifespan)

app.include_router(router)
app.include_router(vendor_router)
app.include_router(admin_router)
app.include_router(planner_router)

Base.metadata.create_all(bind=engine)


@app.exception_handler(PaymentError)
async def payment_error_handler(request: Request, exc: PaymentError):
    log = logger.warning if exc.status_code < 500 else logger.error
    log("%s on %s %s: %s %s", exc.error, request.method, request.url.path, exc.message, exc.context)
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.error, "message": exc.message},
    )


def _process_webhook(signature, payload):
    with session_scope() as db:
        return reconciler.handle_webhook(db, signature, payload)


@app.post("/payment/webhook")
async def chapa_webhook(request: Request, x_chapa_signature: str = Header(None)):
    payload = await request.body()

    try:
        outcome = await run_in_threadpool(_process_webhook, x_chapa_signature, payload)
    except (AuthenticationError, ValidationError) as exc:
        logger.warning("Rejected Chapa webhook: %s", exc.message)
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.error, "message": exc.message},
        )
    except NotFoundError as exc:
        # Acknowledge so the processor stops retrying an unknown transaction
        logger.warning("Webhook for unknown payment acknowledged: %s", exc.context)
        return {"ok": True, "processed": False}
    except InvalidTransitionError as exc:
        logger.error("Webhook conflicts with settled payment: %s %s", exc.message, exc.context)
        return {"ok": True, "processed": False}
    except Exception:
        logger.exception("Webhook processing failed")
        return JSONResponse(status_code=500, content={"error": "webhook_failed"})

    return {"ok": True, "processed": True, "status": outcome.status.value}
