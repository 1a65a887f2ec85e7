import os
import sys

import pytest

# Add src directory to Python path
sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(__file__)), "src"))

from hybrid_calibration.config import (
    AlphaSettings,
    AutoTuneSettings,
    EmbeddingSettings,
    HTTPSettings,
    PineconeSettings,
    SearchSettings,
    Settings,
)
from hybrid_calibration.models.calibration import AlphaConfig
from hybrid_calibration.services.calibration_service import CalibrationService
from hybrid_calibration.services.hybrid_search import HybridSearchExecutor
from hybrid_calibration.utils.alpha_policy import AlphaPolicy

from calibration_stubs import ScriptedIndex, StubDenseEmbedder, StubSparseEmbedder, jwt_ranking

# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def alpha_config() -> AlphaConfig:
    return AlphaConfig.from_settings(AlphaSettings())


@pytest.fixture
def policy(alpha_config) -> AlphaPolicy:
    return AlphaPolicy(alpha_config, tuning=AutoTuneSettings())


@pytest.fixture
def dense_embedder() -> StubDenseEmbedder:
    return StubDenseEmbedder()


@pytest.fixture
def sparse_embedder() -> StubSparseEmbedder:
    return StubSparseEmbedder()


@pytest.fixture
def make_service(policy, dense_embedder, sparse_embedder):
    """Build a CalibrationService over a ScriptedIndex with the given ranking."""

    def _factory(ranking=jwt_ranking, fail_at=(), max_concurrency=4, error=None):
        index = ScriptedIndex(ranking, fail_at=fail_at, error=error)
        executor = HybridSearchExecutor(dense_embedder, sparse_embedder, index)
        return CalibrationService(executor, policy, default_top_k=10, max_concurrency=max_concurrency)

    return _factory


@pytest.fixture
def test_settings() -> Settings:
    """Settings with fake credentials, independent of the process environment."""
    return Settings(
        embedding=EmbeddingSettings(api_key="sk-test-openai-secret"),
        pinecone=PineconeSettings(api_key="pc-test-pinecone-secret", index_host="test-index.svc.pinecone.io"),
        alpha=AlphaSettings(),
        autotune=AutoTuneSettings(),
        search=SearchSettings(),
        http=HTTPSettings(),
    )


@pytest.fixture
def settings_without_credentials() -> Settings:
    return Settings(
        embedding=EmbeddingSettings(api_key=None),
        pinecone=PineconeSettings(api_key=None),
        alpha=AlphaSettings(),
        autotune=AutoTuneSettings(),
        search=SearchSettings(),
        http=HTTPSettings(),
    )
