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
Hybrid Alpha Calibration Configuration using Pydantic Settings

All configuration is type-safe, validated, and loaded from environment variables.
Sensitive values use SecretStr so they never appear in logs or reprs.
"""

import logging
from typing import Dict, List, Optional

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


# Alpha values by data_type. Lower alpha = more keyword weight.
DEFAULT_ALPHA_BY_DATA_TYPE: Dict[str, float] = {
    # More semantic (natural language)
    "session": 0.7,
    "learning": 0.65,
    "research": 0.6,
    # Balanced
    "deployment": 0.5,
    "error": 0.45,
    "system_snapshot": 0.4,
    # More keyword (precise terms matter)
    "metric": 0.35,
    "code": 0.3,
    "config": 0.25,
}

# Technical terms whose presence signals exact-match intent
DEFAULT_BOOST_KEYWORDS: List[str] = [
    # Database
    "rls", "jwt", "oauth", "api", "sql", "uuid", "postgres", "postgis",
    # Services
    "supabase", "pinecone", "vercel", "claude", "openai", "mapbox",
    # Actions
    "migration", "deployment", "error", "bug", "fix", "create", "delete",
    # Technical
    "typescript", "react", "vite", "tailwind", "edge", "function",
    "realtime", "websocket",
]


class ConfigurationError(Exception):
    """Required configuration is missing or invalid."""

    pass


# =============================================================================
# Settings Models
# =============================================================================

class EmbeddingSettings(BaseSettings):
    """Dense embedding provider (OpenAI) configuration."""

    model_config = SettingsConfigDict(
        env_prefix='OPENAI_',
        env_file='.env',
        env_file_encoding='utf-8',
        case_sensitive=False,
        extra='ignore'
    )

    api_key: Optional[SecretStr] = Field(
        default=None,
        description="OpenAI API key (env: OPENAI_API_KEY)"
    )

    embedding_model: str = Field(
        default='text-embedding-3-large',
        description="Dense embedding model name"
    )

    embedding_dimensions: int = Field(
        default=3072,
        ge=1,
        description="Requested dense embedding dimensionality"
    )

    base_url: Optional[str] = Field(
        default=None,
        description="Override for the OpenAI API base URL"
    )

    max_input_chars: int = Field(
        default=8000,
        ge=1,
        description="Query text is truncated to this many characters before embedding"
    )

    timeout: float = Field(default=30.0, gt=0)


class PineconeSettings(BaseSettings):
    """Sparse embedding and vector index (Pinecone) configuration."""

    model_config = SettingsConfigDict(
        env_prefix='PINECONE_',
        env_file='.env',
        env_file_encoding='utf-8',
        case_sensitive=False,
        extra='ignore'
    )

    api_key: Optional[SecretStr] = Field(
        default=None,
        description="Pinecone API key (env: PINECONE_API_KEY)"
    )

    index: str = Field(
        default='knowledge-memory',
        description="Target index name (env: PINECONE_INDEX)"
    )

    index_host: Optional[str] = Field(
        default=None,
        description="Data plane host; resolved through the control plane when unset"
    )

    sparse_model: str = Field(
        default='pinecone-sparse-english-v0',
        description="Hosted sparse embedding model"
    )

    namespace: str = Field(default='', description="Index namespace; empty for the default namespace")
    control_plane_url: str = Field(default='https://api.pinecone.io')
    api_version: str = Field(default='2025-04')
    max_input_chars: int = Field(default=8000, ge=1)
    timeout: float = Field(default=30.0, gt=0)


class AlphaSettings(BaseSettings):
    """Blend weight table: default alpha plus per data_type overrides."""

    model_config = SettingsConfigDict(
        env_prefix='CALIBRATION_',
        env_file='.env',
        env_file_encoding='utf-8',
        case_sensitive=False,
        extra='ignore'
    )

    default_alpha: float = Field(
        default=0.5,
        ge=0.0,
        le=1.0,
        description="Alpha used when no data_type override applies"
    )

    alpha_by_data_type: Dict[str, float] = Field(
        default_factory=lambda: dict(DEFAULT_ALPHA_BY_DATA_TYPE),
        description="JSON mapping of data_type to alpha (env: CALIBRATION_ALPHA_BY_DATA_TYPE)"
    )

    boost_keywords: List[str] = Field(
        default_factory=lambda: list(DEFAULT_BOOST_KEYWORDS),
        description="Technical terms that push the blend toward sparse matching"
    )

    @field_validator('alpha_by_data_type')
    @classmethod
    def validate_alpha_range(cls, v: Dict[str, float]) -> Dict[str, float]:
        """Every override must lie in [0, 1]."""
        for data_type, alpha in v.items():
            if not 0.0 <= alpha <= 1.0:
                raise ValueError(f"alpha for data_type '{data_type}' must be between 0 and 1, got {alpha}")
        return v

    @field_validator('boost_keywords')
    @classmethod
    def normalize_keywords(cls, v: List[str]) -> List[str]:
        """Keywords are matched case-insensitively."""
        return [kw.strip().lower() for kw in v if kw.strip()]


class AutoTuneSettings(BaseSettings):
    """Magnitudes of the lexical auto-tune shift."""

    model_config = SettingsConfigDict(
        env_prefix='CALIBRATION_AUTOTUNE_',
        env_file='.env',
        env_file_encoding='utf-8',
        case_sensitive=False,
        extra='ignore'
    )

    keyword_shift: float = Field(default=0.15, ge=0.0, le=1.0)
    acronym_shift: float = Field(
        default=0.1,
        ge=0.0,
        le=1.0,
        description="Shift applied per acronym"
    )
    max_acronym_shift: float = Field(default=0.3, ge=0.0, le=1.0)
    code_pattern_shift: float = Field(default=0.1, ge=0.0, le=1.0)
    floor: float = Field(
        default=0.1,
        ge=0.0,
        le=1.0,
        description="Auto-tune never lowers alpha below this value"
    )


class SearchSettings(BaseSettings):
    """Retrieval and sweep execution parameters."""

    model_config = SettingsConfigDict(
        env_prefix='CALIBRATION_',
        env_file='.env',
        env_file_encoding='utf-8',
        case_sensitive=False,
        extra='ignore'
    )

    default_top_k: int = Field(default=10, ge=1, le=1000)
    sweep_concurrency: int = Field(
        default=4,
        ge=1,
        le=32,
        description="Maximum grid points searched at the same time during a sweep"
    )


class HTTPSettings(BaseSettings):
    """HTTP server configuration."""

    model_config = SettingsConfigDict(
        env_prefix='CALIBRATION_HTTP_',
        env_file='.env',
        env_file_encoding='utf-8',
        case_sensitive=False,
        extra='ignore'
    )

    host: str = Field(default='0.0.0.0')
    port: int = Field(default=8000, ge=1, le=65535)
    path: str = Field(default='/alpha-calibration')
    cors_origins: List[str] = Field(default=['*'])
    log_level: str = Field(default='INFO')

    @field_validator('path')
    @classmethod
    def normalize_path(cls, v: str) -> str:
        """Endpoint paths always start with a slash."""
        return v if v.startswith('/') else f'/{v}'


# =============================================================================
# Main Settings Class
# =============================================================================

class Settings(BaseSettings):
    """
    Main calibration service settings.

    Combines all configuration sections into a single, validated settings object.
    Automatically loads from .env file and environment variables.
    """

    model_config = SettingsConfigDict(
        env_file='.env',
        env_file_encoding='utf-8',
        case_sensitive=False,
        extra='ignore',
        validate_default=True
    )

    embedding: EmbeddingSettings = Field(default_factory=EmbeddingSettings)
    pinecone: PineconeSettings = Field(default_factory=PineconeSettings)
    alpha: AlphaSettings = Field(default_factory=AlphaSettings)
    autotune: AutoTuneSettings = Field(default_factory=AutoTuneSettings)
    search: SearchSettings = Field(default_factory=SearchSettings)
    http: HTTPSettings = Field(default_factory=HTTPSettings)

    def missing_credentials(self) -> List[str]:
        """Names of the credential variables that are not set."""
        missing = []
        if not self.embedding.api_key:
            missing.append('OPENAI_API_KEY')
        if not self.pinecone.api_key:
            missing.append('PINECONE_API_KEY')
        return missing

    def require_credentials(self) -> None:
        """
        Fail when a provider credential is absent.

        Raises:
            ConfigurationError: Naming every missing variable.
        """
        missing = self.missing_credentials()
        if missing:
            error_msg = f"Missing required configuration: {', '.join(missing)}"
            logger.error(error_msg)
            raise ConfigurationError(error_msg)

    def secret_values(self) -> List[str]:
        """Raw secret values, used to scrub error details before they leave the process."""
        secrets = []
        for secret in (self.embedding.api_key, self.pinecone.api_key):
            if secret is not None and secret.get_secret_value():
                secrets.append(secret.get_secret_value())
        return secrets

    def log_configuration(self):
        """Log current configuration (excluding secrets)."""
        logger.info("=" * 80)
        logger.info("Hybrid Alpha Calibration Configuration")
        logger.info("=" * 80)
        logger.info(f"Dense model: {self.embedding.embedding_model} ({self.embedding.embedding_dimensions} dims)")
        logger.info(f"Sparse model: {self.pinecone.sparse_model}")
        logger.info(f"Index: {self.pinecone.index}")
        if self.pinecone.index_host:
            logger.info(f"  Index host: {self.pinecone.index_host}")
        logger.info(f"Default alpha: {self.alpha.default_alpha}")
        logger.info(f"Alpha overrides: {len(self.alpha.alpha_by_data_type)} data types")
        logger.info(f"Sweep concurrency: {self.search.sweep_concurrency}, default top_k: {self.search.default_top_k}")
        logger.info(f"HTTP: {self.http.host}:{self.http.port}{self.http.path}")

        missing = self.missing_credentials()
        if missing:
            logger.warning(f"Credentials not configured: {', '.join(missing)}")

        logger.info("=" * 80)


# =============================================================================
# Global Settings Instance
# =============================================================================

class _SettingsProxy:
    """
    Lazy settings proxy that defers Settings instantiation until first access.

    Environment variables are read at runtime, not import time, so tests and
    container entrypoints can adjust them before the first request.
    """
    _instance: Optional[Settings] = None

    def __getattr__(self, name: str):
        if self._instance is None:
            self._instance = Settings()
            self._instance.log_configuration()
        return getattr(self._instance, name)

    def get(self) -> Settings:
        """Return the underlying Settings object, loading it on first use."""
        if self._instance is None:
            self._instance = Settings()
            self._instance.log_configuration()
        return self._instance

    def reset(self) -> None:
        """Drop the cached instance so the next access re-reads the environment."""
        self._instance = None


settings = _SettingsProxy()
