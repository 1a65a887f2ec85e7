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
Provider interfaces for hybrid retrieval.

The embedding services and the vector index live outside this package; these
abstract classes pin down the boundary the search executor relies on.
"""

from abc import ABC, abstractmethod

from ..models.calibration import Candidate, IndexQuery, SparseVector


class ProviderError(Exception):
    """An embedding service or the vector index failed or rejected a request."""

    def __init__(self, provider: str, message: str, status_code: int | None = None):
        self.provider = provider
        self.message = message
        self.status_code = status_code
        super().__init__(f"{provider}: {message}" if status_code is None else f"{provider} ({status_code}): {message}")


def prepare_text(text: str, max_chars: int) -> str:
    """Collapse whitespace and truncate text before it is sent for embedding."""
    return " ".join(text.split())[:max_chars]


class DenseEmbeddingProvider(ABC):
    """Turns text into a fixed-length semantic vector."""

    @abstractmethod
    async def embed(self, text: str) -> list[float]:
        """Return the dense embedding for text."""
        pass

    async def close(self) -> None:
        """Release network resources."""
        return None


class SparseEmbeddingProvider(ABC):
    """Turns text into index/value pairs weighting lexical terms."""

    @abstractmethod
    async def embed(self, text: str, input_type: str = "query") -> SparseVector:
        """
        Return the sparse embedding for text.

        Args:
            text: Text to embed
            input_type: "query" for search input, "passage" for documents;
                providers may weight the two differently
        """
        pass

    async def close(self) -> None:
        """Release network resources."""
        return None


class VectorIndex(ABC):
    """A vector index accepting dense and sparse vectors, returning top-K matches."""

    @property
    @abstractmethod
    def supports_alpha(self) -> bool:
        """
        Whether the index blends dense and sparse scores itself.

        When False the executor queries dense and sparse separately and fuses
        the scores on the client.
        """
        pass

    @abstractmethod
    async def query(self, request: IndexQuery) -> list[Candidate]:
        """Run one retrieval request and return matches ranked by score."""
        pass

    async def close(self) -> None:
        """Release network resources."""
        return None
