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
Provider factory.

Builds the dense embedder, sparse embedder and vector index from settings.
"""

import logging

from ..config import Settings
from .base import DenseEmbeddingProvider, SparseEmbeddingProvider, VectorIndex
from .openai_embeddings import OpenAIDenseEmbedder
from .pinecone import PineconeIndex, PineconeRestClient, PineconeSparseEmbedder

logger = logging.getLogger(__name__)


def create_providers(settings: Settings) -> tuple[DenseEmbeddingProvider, SparseEmbeddingProvider, VectorIndex]:
    """
    Create the provider trio used by the hybrid search executor.

    Raises:
        ConfigurationError: If a provider credential is missing
    """
    settings.require_credentials()

    dense = OpenAIDenseEmbedder(
        api_key=settings.embedding.api_key.get_secret_value(),
        model=settings.embedding.embedding_model,
        dimensions=settings.embedding.embedding_dimensions,
        max_input_chars=settings.embedding.max_input_chars,
        base_url=settings.embedding.base_url,
        timeout=settings.embedding.timeout,
    )

    rest = PineconeRestClient(
        api_key=settings.pinecone.api_key.get_secret_value(),
        control_plane_url=settings.pinecone.control_plane_url,
        api_version=settings.pinecone.api_version,
        timeout=settings.pinecone.timeout,
    )
    sparse = PineconeSparseEmbedder(
        rest,
        model=settings.pinecone.sparse_model,
        max_input_chars=settings.pinecone.max_input_chars,
    )
    index = PineconeIndex(
        rest,
        index_name=settings.pinecone.index,
        host=settings.pinecone.index_host,
        namespace=settings.pinecone.namespace,
    )

    logger.info(f"Created providers: dense={settings.embedding.embedding_model}, index={settings.pinecone.index}")
    return dense, sparse, index
