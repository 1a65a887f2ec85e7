"""
Unit tests for the Pinecone REST providers.

Requests are served by httpx.MockTransport; nothing leaves the process.
"""

import json

import httpx
import pytest

from hybrid_calibration.models.calibration import IndexQuery, SparseVector
from hybrid_calibration.providers.base import ProviderError
from hybrid_calibration.providers.pinecone import PineconeIndex, PineconeRestClient, PineconeSparseEmbedder


def make_rest(handler, requests=None) -> PineconeRestClient:
    def _record(request: httpx.Request) -> httpx.Response:
        if requests is not None:
            requests.append(request)
        return handler(request)

    return PineconeRestClient(api_key="pc-secret", transport=httpx.MockTransport(_record))


# =============================================================================
# Sparse Embedding Tests
# =============================================================================


class TestPineconeSparseEmbedder:
    """Tests for PineconeSparseEmbedder."""

    @pytest.mark.asyncio
    async def test_embed_query(self):
        """Should POST to /embed and parse sparse indices and values."""
        requests = []
        rest = make_rest(
            lambda r: httpx.Response(200, json={"data": [{"sparse_indices": [3, 9], "sparse_values": [0.4, 0.7]}]}),
            requests,
        )
        embedder = PineconeSparseEmbedder(rest, model="pinecone-sparse-english-v0")

        vector = await embedder.embed("  JWT   token  ")

        assert vector == SparseVector((3, 9), (0.4, 0.7))
        request = requests[0]
        assert request.url == "https://api.pinecone.io/embed"
        assert request.headers["Api-Key"] == "pc-secret"
        assert request.headers["X-Pinecone-API-Version"] == "2025-04"
        body = json.loads(request.content)
        assert body["model"] == "pinecone-sparse-english-v0"
        assert body["parameters"]["input_type"] == "query"
        assert body["inputs"] == [{"text": "JWT token"}]
        await rest.aclose()

    @pytest.mark.asyncio
    async def test_empty_text_skips_network(self):
        """Empty text yields an empty vector without a request."""
        requests = []
        rest = make_rest(lambda r: httpx.Response(500), requests)
        vector = await PineconeSparseEmbedder(rest).embed("   ")
        assert vector.is_empty
        assert requests == []
        await rest.aclose()

    @pytest.mark.asyncio
    async def test_truncates_input(self):
        """Text is truncated to max_input_chars."""
        requests = []
        rest = make_rest(lambda r: httpx.Response(200, json={"data": []}), requests)
        vector = await PineconeSparseEmbedder(rest, max_input_chars=5).embed("abcdefghij")
        assert json.loads(requests[0].content)["inputs"] == [{"text": "abcde"}]
        assert vector.is_empty
        await rest.aclose()

    @pytest.mark.asyncio
    async def test_http_error(self):
        """Non-2xx responses raise ProviderError with the status and message."""
        rest = make_rest(lambda r: httpx.Response(401, json={"error": {"code": "UNAUTHENTICATED", "message": "Invalid API key"}}))
        with pytest.raises(ProviderError) as exc_info:
            await PineconeSparseEmbedder(rest).embed("query")
        assert exc_info.value.status_code == 401
        assert exc_info.value.message == "Invalid API key"
        await rest.aclose()

    @pytest.mark.asyncio
    async def test_transport_error(self):
        """Connection failures raise ProviderError."""

        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        rest = make_rest(handler)
        with pytest.raises(ProviderError, match="ConnectError"):
            await PineconeSparseEmbedder(rest).embed("query")
        await rest.aclose()


# =============================================================================
# Index Tests
# =============================================================================


class TestPineconeIndex:
    """Tests for PineconeIndex."""

    def test_build_payload_scales_by_alpha(self):
        """Dense values are scaled by alpha and sparse values by 1 - alpha."""
        request = IndexQuery(
            top_k=5,
            dense=[1.0, 0.5],
            sparse=SparseVector((1, 2), (1.0, 0.4)),
            filter={"data_type": "code"},
            alpha=0.25,
        )
        payload = PineconeIndex.build_payload(request, namespace="kb")
        assert payload["vector"] == [0.25, 0.125]
        assert payload["sparseVector"]["indices"] == [1, 2]
        assert payload["sparseVector"]["values"] == pytest.approx([0.75, 0.3])
        assert payload["topK"] == 5
        assert payload["includeMetadata"] is True
        assert payload["filter"] == {"data_type": "code"}
        assert payload["namespace"] == "kb"

    def test_build_payload_omits_empty_sparse(self):
        """Empty sparse vectors and filters are left out."""
        payload = PineconeIndex.build_payload(IndexQuery(top_k=3, dense=[0.1], sparse=SparseVector(), alpha=1.0))
        assert "sparseVector" not in payload
        assert "filter" not in payload
        assert "namespace" not in payload

    def test_build_payload_without_alpha(self):
        """Without alpha the vectors are sent unscaled."""
        payload = PineconeIndex.build_payload(IndexQuery(top_k=3, dense=[0.4]))
        assert payload["vector"] == [0.4]

    @pytest.mark.asyncio
    async def test_query_with_known_host(self):
        """Should POST to the configured host and parse matches."""
        requests = []
        rest = make_rest(
            lambda r: httpx.Response(
                200,
                json={"matches": [{"id": "doc-1", "score": 0.9, "metadata": {"data_type": "code"}}, {"id": "doc-2", "score": 0.4}]},
            ),
            requests,
        )
        index = PineconeIndex(rest, "knowledge-memory", host="kb-abc.svc.pinecone.io")

        candidates = await index.query(IndexQuery(top_k=2, dense=[0.1], alpha=0.5))

        assert [c.id for c in candidates] == ["doc-1", "doc-2"]
        assert candidates[0].metadata == {"data_type": "code"}
        assert candidates[1].metadata is None
        assert requests[0].url == "https://kb-abc.svc.pinecone.io/query"
        await index.close()

    @pytest.mark.asyncio
    async def test_resolves_host_once(self):
        """Host is looked up through the control plane once and cached."""
        requests = []

        def handler(request):
            if request.url.path == "/indexes/knowledge-memory":
                return httpx.Response(200, json={"name": "knowledge-memory", "host": "kb-xyz.svc.pinecone.io"})
            return httpx.Response(200, json={"matches": []})

        rest = make_rest(handler, requests)
        index = PineconeIndex(rest, "knowledge-memory")

        await index.query(IndexQuery(top_k=1, dense=[0.1]))
        await index.query(IndexQuery(top_k=1, dense=[0.1]))

        paths = [r.url.path for r in requests]
        assert paths.count("/indexes/knowledge-memory") == 1
        assert str(requests[1].url) == "https://kb-xyz.svc.pinecone.io/query"
        await index.close()

    @pytest.mark.asyncio
    async def test_missing_host(self):
        """An index description without host raises ProviderError."""
        rest = make_rest(lambda r: httpx.Response(200, json={"name": "knowledge-memory"}))
        with pytest.raises(ProviderError, match="no host"):
            await PineconeIndex(rest, "knowledge-memory").query(IndexQuery(top_k=1, dense=[0.1]))
        await rest.aclose()

    @pytest.mark.asyncio
    async def test_query_error(self):
        """Index errors raise ProviderError."""
        rest = make_rest(lambda r: httpx.Response(503, text="upstream unavailable"))
        index = PineconeIndex(rest, "knowledge-memory", host="https://kb.svc.pinecone.io")
        with pytest.raises(ProviderError) as exc_info:
            await index.query(IndexQuery(top_k=1, dense=[0.1]))
        assert exc_info.value.status_code == 503
        await index.close()

    def test_supports_alpha(self):
        """Pinecone blends natively."""
        rest = make_rest(lambda r: httpx.Response(200))
        assert PineconeIndex(rest, "kb", host="kb.io").supports_alpha is True
