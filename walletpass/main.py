import logging
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from walletpass.config import Settings, get_settings
from walletpass.core.logging import configure_logging
from walletpass.middleware.logging import RequestLoggingMiddleware
from walletpass.routers import wallet_pass
from walletpass.services.cert_bootstrap import write_certificates_from_env
from walletpass.services.dispatcher import PassDispatcher

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    dispatcher: Optional[PassDispatcher] = None,
) -> FastAPI:
    """
    Build the application.

    Certificates are bootstrapped and credentials loaded here, so a
    misconfigured environment fails before any request is served.
    """
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    if dispatcher is None:
        if settings.apple_cert_bootstrap and settings.apple_wallet_enabled:
            write_certificates_from_env(settings.apple_cert_directory)
        dispatcher = PassDispatcher(settings)
        dispatcher.preload()

    app = FastAPI(title="Wallet Pass Service", version="1.0.0")
    app.state.settings = settings
    app.state.dispatcher = dispatcher

    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[o.strip() for o in settings.cors_allow_origins.split(",") if o.strip()],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(wallet_pass.router)

    logger.info("Wallet pass service started")
    return app
