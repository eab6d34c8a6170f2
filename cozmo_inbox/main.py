import asyncio

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from cozmo_inbox.api.attachments import router as attachments_router
from cozmo_inbox.api.customers import router as customers_router
from cozmo_inbox.api.functions import router as functions_router
from cozmo_inbox.api.messages import router as messages_router
from cozmo_inbox.api.stats import router as stats_router
from cozmo_inbox.api.templates import router as templates_router
from cozmo_inbox.api.ws import router as ws_router
from cozmo_inbox.container import container
from cozmo_inbox.db import SessionLocal
from cozmo_inbox.logging import configure_logging, get_logger
from cozmo_inbox.services.errors import InboxError

configure_logging()
logger = get_logger(__name__)

app = FastAPI(title="Cozmo Inbox API")


@app.exception_handler(InboxError)
async def inbox_error_handler(request: Request, exc: InboxError):
    if exc.status_code >= 500:
        logger.warning("inbox_error path=%s code=%s detail=%s", request.url.path, exc.code, exc.detail)
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_payload(),
    )


for router in (
    customers_router,
    messages_router,
    attachments_router,
    templates_router,
    stats_router,
    functions_router,
):
    app.include_router(router)
    app.include_router(router, prefix="/api")
app.include_router(ws_router)


@app.get("/health")
def health_check():
    return {"status": "ok"}


@app.get("/metrics")
def metrics():
    data = generate_latest()
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)


@app.on_event("startup")
async def _start_change_feed():
    feed = container.change_feed()
    feed.attach(SessionLocal)
    feed.bind_loop(asyncio.get_running_loop())
    container.message_notifier().start()


@app.on_event("shutdown")
async def _stop_change_feed():
    container.message_notifier().stop()
    feed = container.change_feed()
    feed.bind_loop(None)
    feed.detach_all()
    await container.connection_manager().close_all()
