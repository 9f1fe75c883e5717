"""
Document Integrity Ledger - FastAPI application.

    uvicorn docledger.main:app
"""

import logging
from typing import Optional

from fastapi import FastAPI

from docledger.core.config import Settings, get_settings
from docledger.core.errors import setup_exception_handlers
from docledger.core.logging_config import setup_logging
from docledger.routers import health, ledger
from docledger.services.ledger_service import LedgerService

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    service: Optional[LedgerService] = None,
    configure_logging: bool = True,
) -> FastAPI:
    """
    Build the application.

    The ledger service (and with it the genesis block) is created here, once,
    before any route can run.
    """
    settings = settings or get_settings()

    if configure_logging:
        setup_logging(level=settings.log_level, json_format=settings.log_json, log_file=settings.log_file)

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        debug=settings.debug,
    )
    app.state.settings = settings
    app.state.ledger_service = service or LedgerService(settings=settings)

    setup_exception_handlers(app)
    app.include_router(health.router)
    app.include_router(ledger.router)

    logger.info("%s %s ready", settings.app_name, settings.app_version)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("docledger.main:app", host="0.0.0.0", port=8000)
