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
FastAPI dependencies for the HTTP interface.
"""

import logging
from typing import Optional

from ..config import ConfigurationError, Settings
from ..models.calibration import AlphaConfig
from ..providers.factory import create_providers
from ..services.calibration_service import CalibrationService
from ..services.hybrid_search import HybridSearchExecutor
from ..utils.alpha_policy import AlphaPolicy

logger = logging.getLogger(__name__)

# Global service instance
_service: Optional[CalibrationService] = None
_startup_error: Optional[str] = None


def set_calibration_service(service: Optional[CalibrationService], error: Optional[str] = None) -> None:
    """Set the global calibration service, or record why it could not be built."""
    global _service, _startup_error
    _service = service
    _startup_error = error


def get_calibration_service() -> CalibrationService:
    """
    Get the global calibration service.

    Raises:
        ConfigurationError: If credentials were missing at startup
    """
    if _service is None:
        raise ConfigurationError(_startup_error or "Calibration service not initialized")
    return _service


def create_alpha_policy(settings: Settings) -> AlphaPolicy:
    """Build the alpha policy from the immutable configuration table."""
    return AlphaPolicy(
        AlphaConfig.from_settings(settings.alpha),
        tuning=settings.autotune,
        boost_keywords=settings.alpha.boost_keywords,
    )


def create_calibration_service(settings: Settings) -> CalibrationService:
    """
    Create the calibration service with real providers.

    Raises:
        ConfigurationError: If a provider credential is missing
    """
    logger.info("Creating calibration service...")
    dense, sparse, index = create_providers(settings)
    executor = HybridSearchExecutor(dense, sparse, index)
    service = CalibrationService(
        executor,
        create_alpha_policy(settings),
        default_top_k=settings.search.default_top_k,
        max_concurrency=settings.search.sweep_concurrency,
    )
    logger.info("Calibration service initialized successfully")
    return service


async def close_service_providers(service: CalibrationService) -> None:
    """Close the provider clients behind a service."""
    executor = service.executor
    for provider in (executor.dense_provider, executor.sparse_provider, executor.index):
        try:
            await provider.close()
        except Exception as e:
            logger.warning(f"Error closing {type(provider).__name__}: {e}")


async def close_calibration_service() -> None:
    """Close provider clients of the global service, if any."""
    global _service
    if _service is None:
        return
    await close_service_providers(_service)
    _service = None
