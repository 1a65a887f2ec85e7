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
Pinecone REST clients for sparse embeddings and hybrid index queries.

Talks to the Pinecone control plane (inference and index description) and the
index data plane over httpx. A single AsyncClient carries the API key header
for both.

Hybrid queries are blended with a convex combination: the dense vector is
scaled by alpha and the sparse values by (1 - alpha), so the index's
dot-product score equals alpha * dense + (1 - alpha) * sparse.
"""

import asyncio
import logging
from typing import Any

import httpx

from ..models.calibration import Candidate, IndexQuery, SparseVector
from .base import ProviderError, SparseEmbeddingProvider, VectorIndex, prepare_text

logger = logging.getLogger(__name__)


def _error_message(response: httpx.Response) -> str:
    """Extract a readable message from a Pinecone error response."""
    try:
        body = response.json()
    except ValueError:
        return response.text[:500] or response.reason_phrase
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict):
        return str(error.get("message") or error)
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return str(body)[:500]


class PineconeRestClient:
    """Thin async HTTP wrapper adding auth headers and error translation."""

    def __init__(
        self,
        api_key: str,
        control_plane_url: str = "https://api.pinecone.io",
        api_version: str = "2025-04",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.control_plane_url = control_plane_url.rstrip("/")
        self.client = httpx.AsyncClient(
            headers={
                "Api-Key": api_key,
                "X-Pinecone-API-Version": api_version,
                "Content-Type": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    async def request(self, method: str, url: str, **kwargs) -> dict[str, Any]:
        """
        Make one HTTP request. No retries: the first failure is raised.

        Raises:
            ProviderError: On transport errors and non-2xx responses
        """
        try:
            response = await self.client.request(method, url, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            message = _error_message(e.response)
            logger.error(f"Pinecone {method} {e.request.url.path} failed with {e.response.status_code}: {message}")
            raise ProviderError("pinecone", message, e.response.status_code) from e
        except httpx.HTTPError as e:
            logger.error(f"Pinecone {method} request failed: {type(e).__name__}: {e}")
            raise ProviderError("pinecone", f"{type(e).__name__}: {e}") from e

        try:
            return response.json()
        except ValueError as e:
            raise ProviderError("pinecone", "Response was not valid JSON", response.status_code) from e

    async def aclose(self) -> None:
        await self.client.aclose()


class PineconeSparseEmbedder(SparseEmbeddingProvider):
    """Sparse embeddings from Pinecone's hosted inference model."""

    def __init__(self, rest: PineconeRestClient, model: str = "pinecone-sparse-english-v0", max_input_chars: int = 8000):
        self.rest = rest
        self.model = model
        self.max_input_chars = max_input_chars

    async def embed(self, text: str, input_type: str = "query") -> SparseVector:
        prepared = prepare_text(text, self.max_input_chars)
        if not prepared:
            return SparseVector()

        payload = {
            "model": self.model,
            "parameters": {"input_type": input_type, "truncate": "END"},
            "inputs": [{"text": prepared}],
        }
        body = await self.rest.request("POST", f"{self.rest.control_plane_url}/embed", json=payload)

        data = body.get("data") or []
        if not data:
            logger.warning("No sparse values in Pinecone response, returning empty vector")
            return SparseVector()

        embedding = data[0]
        indices = embedding.get("sparse_indices") or []
        values = embedding.get("sparse_values") or []
        try:
            return SparseVector(tuple(indices), tuple(values))
        except ValueError as e:
            raise ProviderError("pinecone", f"Malformed sparse embedding: {e}") from e


class PineconeIndex(VectorIndex):
    """Hybrid-capable Pinecone index reached through its data plane host."""

    def __init__(self, rest: PineconeRestClient, index_name: str, host: str | None = None, namespace: str = ""):
        self.rest = rest
        self.index_name = index_name
        self.namespace = namespace
        self._host = self._normalize_host(host) if host else None
        self._host_lock = asyncio.Lock()

    @property
    def supports_alpha(self) -> bool:
        return True

    @staticmethod
    def _normalize_host(host: str) -> str:
        host = host.rstrip("/")
        return host if host.startswith(("http://", "https://")) else f"https://{host}"

    async def resolve_host(self) -> str:
        """Look up the data plane host once through the control plane."""
        if self._host:
            return self._host
        async with self._host_lock:
            if not self._host:
                body = await self.rest.request("GET", f"{self.rest.control_plane_url}/indexes/{self.index_name}")
                host = body.get("host")
                if not host:
                    raise ProviderError("pinecone", f"Index '{self.index_name}' has no host")
                self._host = self._normalize_host(host)
                logger.info(f"Resolved Pinecone index '{self.index_name}' to {self._host}")
        return self._host

    @staticmethod
    def build_payload(request: IndexQuery, namespace: str = "") -> dict[str, Any]:
        """Translate an IndexQuery into the Pinecone query body, applying alpha scaling."""
        dense = request.dense
        sparse = request.sparse

        if request.alpha is not None:
            if dense is not None:
                dense = [value * request.alpha for value in dense]
            if sparse is not None:
                sparse = sparse.scaled(1.0 - request.alpha)

        payload: dict[str, Any] = {
            "topK": request.top_k,
            "includeMetadata": True,
            "includeValues": False,
        }
        if dense is not None:
            payload["vector"] = dense
        if sparse is not None and not sparse.is_empty:
            payload["sparseVector"] = sparse.to_dict()
        if request.filter:
            payload["filter"] = request.filter
        if namespace:
            payload["namespace"] = namespace
        return payload

    async def query(self, request: IndexQuery) -> list[Candidate]:
        host = await self.resolve_host()
        payload = self.build_payload(request, self.namespace)
        body = await self.rest.request("POST", f"{host}/query", json=payload)

        return [
            Candidate(id=match["id"], score=float(match.get("score") or 0.0), metadata=match.get("metadata"))
            for match in body.get("matches") or []
        ]

    async def close(self) -> None:
        await self.rest.aclose()
