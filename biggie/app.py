#!/usr/bin/env python3
"""
Biggie - fault injection & load generation service
CPU/memory/disk pressure, datastore and broker floods, network chaos
"""
import time
from typing import Dict, Optional

import structlog
import uvicorn
from fastapi import FastAPI
from starlette.middleware.base import BaseHTTPMiddleware

from biggie import __version__
from biggie.backends import BackendFactory, default_factories
from biggie.config import Settings
from biggie.log import configure_logging
from biggie.logformat import LogFormat, select_format
from biggie.middleware import RequestBodyMiddleware, access_log, chaos_interceptors
from biggie.responses import install_error_handlers
from biggie.routes import ROUTERS
from biggie.routes.simple import random_color
from biggie.routes.stress import LeakStore
from biggie.simulation import SimulationState

logger = structlog.get_logger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    backend_factories: Optional[Dict[str, BackendFactory]] = None,
    log_format: Optional[LogFormat] = None,
) -> FastAPI:
    settings = settings or Settings()
    app = FastAPI(title="Biggie", version=__version__)

    app.state.settings = settings
    app.state.simulation = SimulationState()
    app.state.leaks = LeakStore()
    app.state.backend_factories = backend_factories or default_factories()
    app.state.log_format = log_format or select_format(settings.log_format)
    app.state.default_color = random_color()

    install_error_handlers(app)
    for router in ROUTERS:
        app.include_router(router)

    # last added runs first: access log -> body capture -> interceptors -> route
    app.add_middleware(BaseHTTPMiddleware, dispatch=chaos_interceptors)
    app.add_middleware(RequestBodyMiddleware)
    app.add_middleware(BaseHTTPMiddleware, dispatch=access_log(app.state.log_format))
    return app


def main():
    settings = Settings.from_env()
    configure_logging(settings.log_level)

    app = create_app(settings)
    print("Global Log Format:", app.state.log_format)

    delay = settings.startup_delay()
    if delay > 0:
        logger.info("startup delay", delay=delay)
        time.sleep(delay)

    port = settings.port()
    logger.info("starting server", port=port, version=__version__)
    uvicorn.run(app, host="0.0.0.0", port=port, access_log=False)


if __name__ == "__main__":
    main()
