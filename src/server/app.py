"""FastAPI application exposing the Lark webhook."""

from __future__ import annotations

import json
import logging

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from src.audit.logger import AuditLogger
from src.config import RelayConfig
from src.lark.client import LarkClient
from src.relay.flowise import FlowiseClient
from src.relay.images import ImageUploader, build_image_uploader
from src.webhook.dedup import EventStore, InMemoryEventStore
from src.webhook.handler import LarkWebhookHandler

logger = logging.getLogger(__name__)


def create_app_from_env() -> FastAPI:
    """Factory for uvicorn --factory: reads config from environment variables."""
    load_dotenv(".env", override=False)
    return create_app(RelayConfig.from_env())


def create_app(
    config: RelayConfig,
    lark_client: LarkClient | None = None,
    flowise: FlowiseClient | None = None,
    event_store: EventStore | None = None,
    image_uploader: ImageUploader | None = None,
    audit_logger: AuditLogger | None = None,
) -> FastAPI:
    """Create the relay app; collaborators default to ones built from ``config``."""
    if audit_logger is None and config.audit_log_path:
        audit_logger = AuditLogger(config.audit_log_path)
    if event_store is None:
        event_store = InMemoryEventStore(config.dedup_window_seconds)
    if image_uploader is None:
        image_uploader = build_image_uploader(config)
    handler = LarkWebhookHandler(
        config=config,
        lark_client=lark_client or LarkClient(
            config.app_id, config.app_secret, config.lark_api_base,
        ),
        flowise=flowise or FlowiseClient(config.flowise_api_url),
        event_store=event_store,
        image_uploader=image_uploader,
        audit_logger=audit_logger,
    )

    app = FastAPI(docs_url=None, redoc_url=None)
    app.state.handler = handler

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/hello")
    async def hello() -> dict[str, str]:
        return {"message": "Hello, World!"}

    @app.post("/webhook")
    async def webhook(request: Request) -> JSONResponse:
        body = await request.body()
        try:
            payload = json.loads(body)
        except json.JSONDecodeError:
            logger.warning("Webhook body is not JSON (%d bytes)", len(body))
            return JSONResponse({"code": 1, "message": "Invalid JSON body"})
        if not isinstance(payload, dict):
            return JSONResponse({"code": 1, "message": "Invalid JSON body"})
        return JSONResponse(await handler.handle(payload))

    return app


def main() -> None:
    load_dotenv(".env", override=False)
    config = RelayConfig.from_env()
    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    logger.info("Server running at http://localhost:%d", config.port)
    uvicorn.run(create_app(config), host=config.host, port=config.port)


if __name__ == "__main__":
    main()
