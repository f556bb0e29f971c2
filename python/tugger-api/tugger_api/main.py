"""Tugger webhook application entry point."""

from __future__ import annotations

import argparse
import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

import uvicorn
from fastapi import FastAPI

from tugger_api.config import Settings, settings
from tugger_api.routes import admission, health
from tugger_api.services.pipeline import DecisionPipeline

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Sequence

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the decision pipeline on startup; a bad policy aborts startup."""
    pipeline = DecisionPipeline.from_settings(app.state.settings)
    app.state.pipeline = pipeline
    yield
    await pipeline.close()


def create_app(app_settings: Settings | None = None) -> FastAPI:
    app = FastAPI(
        title="Tugger",
        description="Admission webhook enforcing a container registry policy",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = app_settings or settings
    app.include_router(health.router)
    app.include_router(admission.router)
    return app


app = create_app()


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Tugger admission webhook")
    parser.add_argument(
        "--if-exists",
        action="store_true",
        default=None,
        help="make the mutation conditional on whether the mutated image exists in the registry",
    )
    parser.add_argument("--log-level", help="log verbosity")
    parser.add_argument(
        "--policy-file",
        help="YAML file defining allowed image name patterns",
    )
    parser.add_argument("--tls-cert", help="TLS certificate file")
    parser.add_argument("--tls-key", help="TLS key file")
    return parser.parse_args(argv)


def run(argv: Sequence[str] | None = None) -> None:
    """Command-line entry point: serve the webhook over TLS."""
    args = parse_args(argv)
    overrides = {k: v for k, v in vars(args).items() if v is not None}
    app_settings = Settings(**overrides)

    logging.basicConfig(
        level=app_settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger.info("Starting Tugger on %s:%d", app_settings.api_host, app_settings.api_port)

    uvicorn.run(
        create_app(app_settings),
        host=app_settings.api_host,
        port=app_settings.api_port,
        ssl_certfile=app_settings.tls_cert,
        ssl_keyfile=app_settings.tls_key,
        log_level=app_settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
