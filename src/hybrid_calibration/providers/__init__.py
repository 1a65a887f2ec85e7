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
Embedding providers and vector index clients.

Provides:
- DenseEmbeddingProvider / SparseEmbeddingProvider / VectorIndex: provider interfaces
- OpenAIDenseEmbedder: dense embeddings via OpenAI
- PineconeSparseEmbedder / PineconeIndex: sparse embeddings and hybrid queries via Pinecone
"""

from .base import DenseEmbeddingProvider, ProviderError, SparseEmbeddingProvider, VectorIndex
from .factory import create_providers

__all__ = [
    "DenseEmbeddingProvider",
    "ProviderError",
    "SparseEmbeddingProvider",
    "VectorIndex",
    "create_providers",
]
