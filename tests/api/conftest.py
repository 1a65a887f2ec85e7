"""
API test fixtures.

Builds the FastAPI app around a CalibrationService backed by stub providers.
"""

import pytest
from fastapi.testclient import TestClient

from calibration_stubs import ScriptedIndex, StubDenseEmbedder, StubSparseEmbedder, jwt_ranking
from hybrid_calibration.services.calibration_service import CalibrationService
from hybrid_calibration.services.hybrid_search import HybridSearchExecutor
from hybrid_calibration.web.app import create_app



@pytest.fixture
def stub_index() -> ScriptedIndex:
    return ScriptedIndex(jwt_ranking)


@pytest.fixture
def calibration_service(policy, stub_index) -> CalibrationService:
    executor = HybridSearchExecutor(StubDenseEmbedder(), StubSparseEmbedder(), stub_index)
    return CalibrationService(executor, policy)


@pytest.fixture
def client(test_settings, calibration_service):
    """TestClient for an app whose providers are stubs."""
    app = create_app(settings=test_settings, service=calibration_service)
    with TestClient(app) as test_client:
        yield test_client
