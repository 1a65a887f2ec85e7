# Copyright 2024 Heinrich Krupp
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
FastAPI application for the alpha calibration endpoint.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .. import __version__
from ..config import ConfigurationError, Settings
from ..config import settings as global_settings
from ..services.calibration_service import CalibrationService
from .api.calibration import CalibrationAPIError, create_calibration_router
from .dependencies import close_calibration_service, create_calibration_service, set_calibration_service

logger = logging.getLogger(__name__)


def register_exception_handlers(app: FastAPI) -> None:
    """Render every error as a flat JSON body with an ``error`` key."""

    @app.exception_handler(CalibrationAPIError)
    async def calibration_error_handler(request: Request, exc: CalibrationAPIError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(ConfigurationError)
    async def configuration_error_handler(request: Request, exc: ConfigurationError) -> JSONResponse:
        logger.error(f"Configuration error: {exc}")
        return JSONResponse(status_code=500, content={"error": str(exc)})

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        if exc.status_code == 405:
            content = {"error": "Method not allowed. Use POST."}
        else:
            content = {"error": str(exc.detail)}
        return JSONResponse(status_code=exc.status_code, content=content, headers=getattr(exc, "headers", None))


def create_app(settings: Optional[Settings] = None, service: Optional[CalibrationService] = None) -> FastAPI:
    """
    Create the calibration application.

    Args:
        settings: Settings to use (default: the global lazily-loaded settings)
        service: Prebuilt service; when given, providers are not created at startup

    A missing credential does not prevent startup. It is recorded and every
    request then fails with a 500 naming the missing variable.
    """
    settings = settings or global_settings.get()

    if service is not None:
        set_calibration_service(service)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if service is None:
            logger.info("Initializing calibration service components...")
            try:
                set_calibration_service(create_calibration_service(settings))
            except ConfigurationError as e:
                logger.error(f"Calibration service unavailable: {e}")
                set_calibration_service(None, str(e))
        try:
            yield
        finally:
            logger.info("Shutting down calibration service components...")
            await close_calibration_service()

    app = FastAPI(
        title="Hybrid Alpha Calibration",
        description="Calibrates the dense/sparse blend weight of a hybrid search index",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.secret_values = settings.secret_values()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.http.cors_origins,
        allow_methods=["POST", "OPTIONS"],
        allow_headers=["authorization", "x-client-info", "apikey", "content-type"],
    )

    register_exception_handlers(app)
    app.include_router(create_calibration_router(settings.http.path))

    return app
