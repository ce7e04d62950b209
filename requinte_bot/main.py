import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Annotated

from fastapi import BackgroundTasks, Depends, FastAPI, Header, HTTPException, Request, Response, status
from fastapi.responses import HTMLResponse
from sqlalchemy.orm import Session

from requinte_bot import __version__
from requinte_bot.bot import handle_event
from requinte_bot.config import get_settings
from requinte_bot.logging_utils import RequestLoggingMiddleware, log_inbound_data, setup_logging
from requinte_bot.metrics import get_metrics, get_metrics_content_type, record_inbound_outcome
from requinte_bot.schemas import HealthResponse, ReportEntry, WebhookEvent, WebhookResponse
from requinte_bot.storage import check_db_health, count_distinct_contacts, get_db, init_db, latest_per_contact
from requinte_bot.utils import verify_webhook_secret
from requinte_bot.whatsapp import WhatsAppSession


settings = get_settings()

# Setup structured JSON logging
setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.
    - Startup: create tables, open the WhatsApp session, start pairing
    - Shutdown: stop pairing, close the session's HTTP client
    """
    init_db()

    whatsapp = WhatsAppSession.from_settings(settings)
    app.state.whatsapp = whatsapp

    startup_task = None
    if settings.WHATSAPP_CONNECT_ON_STARTUP:
        startup_task = asyncio.create_task(whatsapp.start())

    yield

    if startup_task is not None:
        startup_task.cancel()
        try:
            await startup_task
        except asyncio.CancelledError:
            pass
        except Exception:
            logger.exception("WhatsApp startup task failed")
    await whatsapp.aclose()


app = FastAPI(
    title="Colchões Requinte Bot",
    description="WhatsApp intake bot for mattress customers",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(RequestLoggingMiddleware)


def get_whatsapp(request: Request) -> WhatsAppSession:
    """Dependency returning the session owned by the app lifespan."""
    return request.app.state.whatsapp


# =============================================================================
# Report Routes
# =============================================================================

@app.get("/", response_class=HTMLResponse)
async def index(db: Session = Depends(get_db)) -> HTMLResponse:
    """Status page with the number of contacts ever served."""
    total = count_distinct_contacts(db)
    logger.info(f"GET /: {total} contacts served")
    return HTMLResponse(content=f"🤖 Bot WhatsApp ativo<br>Clientes atendidos: {total}")


@app.get("/relatorio", response_model=list[ReportEntry])
async def relatorio(db: Session = Depends(get_db)) -> list[ReportEntry]:
    """
    Latest answers per contact.

    Each of tipo, peso and local is the most recent value the contact gave
    for that question; questions never answered are null.
    """
    rows = latest_per_contact(db)
    logger.info(f"GET /relatorio: returned {len(rows)} contacts")
    return [
        ReportEntry(contact=row["from"], tipo=row["tipo"], peso=row["peso"], local=row["local"])
        for row in rows
    ]


# =============================================================================
# Transport Webhook Route
# =============================================================================

@app.post(
    "/webhook/whatsapp",
    response_model=WebhookResponse,
    responses={
        401: {"description": "Invalid webhook secret"},
        422: {"description": "Validation error"},
    }
)
async def whatsapp_webhook(
    event: WebhookEvent,
    request: Request,
    background_tasks: BackgroundTasks,
    x_webhook_secret: Annotated[str | None, Header(alias="X-Webhook-Secret")] = None,
    whatsapp: WhatsAppSession = Depends(get_whatsapp),
) -> WebhookResponse:
    """
    Receive transport events (Evolution API webhook format).

    When WEBHOOK_SECRET is set, the X-Webhook-Secret header must match it
    or the request is rejected with 401 before anything is processed.

    The event is acknowledged immediately and handled in a background task:
    - messages.upsert: first message of the batch runs a conversation turn
    - connection.update: connection state is tracked and logged
    - qrcode.updated: pairing QR is rendered on the console
    """
    if not verify_webhook_secret(x_webhook_secret, settings.WEBHOOK_SECRET):
        logger.error("Rejected webhook request: invalid X-Webhook-Secret")
        record_inbound_outcome("invalid_secret")
        log_inbound_data(request=request, event=event.event_name, result="invalid_secret")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="invalid webhook secret"
        )

    contact = None
    result = "accepted"
    if event.event_name == "messages.upsert":
        first, _ = event.upsert_batch()
        if first is None:
            result = "ignored"
        else:
            contact = first.key.remote_jid

    log_inbound_data(request=request, event=event.event_name, contact=contact, result=result)
    background_tasks.add_task(handle_event, whatsapp, event)

    return WebhookResponse(status="ok")


# =============================================================================
# Health Check Routes
# =============================================================================

@app.get("/health/live", response_model=HealthResponse)
async def health_live() -> HealthResponse:
    """Liveness probe - always returns 200 once the app is running."""
    return HealthResponse(status="ok")


@app.get("/health/ready", response_model=HealthResponse)
async def health_ready(response: Response) -> HealthResponse:
    """
    Readiness probe - returns 200 only if the DB is reachable and the
    schema is applied, 503 otherwise.
    """
    if not check_db_health():
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(
            status="not_ready",
            reason="Database not reachable or schema not applied"
        )

    return HealthResponse(status="ready")


# =============================================================================
# Metrics Route
# =============================================================================

@app.get("/metrics")
async def metrics() -> Response:
    """Expose Prometheus-style metrics."""
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type()
    )
