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
Dense embeddings through the OpenAI embeddings API.
"""

import logging

import openai

from .base import DenseEmbeddingProvider, ProviderError, prepare_text

logger = logging.getLogger(__name__)


class OpenAIDenseEmbedder(DenseEmbeddingProvider):
    """Dense embedding provider backed by ``openai.AsyncOpenAI``."""

    def __init__(
        self,
        api_key: str,
        model: str = "text-embedding-3-large",
        dimensions: int | None = 3072,
        max_input_chars: int = 8000,
        base_url: str | None = None,
        timeout: float = 30.0,
        client: openai.AsyncOpenAI | None = None,
    ):
        self.model = model
        self.dimensions = dimensions
        self.max_input_chars = max_input_chars
        # Retries belong to the caller; the client must surface the first failure
        self.client = client or openai.AsyncOpenAI(api_key=api_key, base_url=base_url, timeout=timeout, max_retries=0)

    async def embed(self, text: str) -> list[float]:
        prepared = prepare_text(text, self.max_input_chars)
        if not prepared:
            raise ProviderError("openai", "Cannot embed empty text")

        kwargs = {"model": self.model, "input": prepared}
        if self.dimensions:
            kwargs["dimensions"] = self.dimensions

        try:
            response = await self.client.embeddings.create(**kwargs)
        except openai.OpenAIError as e:
            status_code = getattr(e, "status_code", None)
            logger.error(f"OpenAI embedding request failed: {type(e).__name__}")
            raise ProviderError("openai", str(e), status_code) from e

        if not response.data:
            raise ProviderError("openai", "Embedding response contained no data")
        return list(response.data[0].embedding)

    async def close(self) -> None:
        await self.client.close()
