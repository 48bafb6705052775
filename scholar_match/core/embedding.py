import asyncio
import logging
from typing import List, Optional

from openai import AsyncAzureOpenAI, AsyncOpenAI

from scholar_match.core.exceptions import EmbeddingError

logger = logging.getLogger(__name__)


class ScholarshipEmbedding:
    """Turns student summaries into query vectors for the pgvector search."""

    def __init__(
        self,
        api_key: Optional[str],
        model: str = "text-embedding-3-small",
        dimensions: Optional[int] = None,
        base_url: Optional[str] = None,
        azure_endpoint: Optional[str] = None,
        timeout: float = 20.0,
        client=None,
    ):
        self.model = model
        self.dimensions = dimensions
        self.timeout = timeout

        # Configure OpenAI client
        if client is not None:
            self.openai_client = client
        elif azure_endpoint:
            self.openai_client = AsyncAzureOpenAI(
                api_key=api_key,
                api_version="2024-02-01",
                azure_endpoint=azure_endpoint,
                timeout=timeout,
                max_retries=0,
            )
        else:
            self.openai_client = AsyncOpenAI(
                api_key=api_key,
                base_url=base_url,
                timeout=timeout,
                max_retries=0,
            )

    async def embed(self, texts: List[str]) -> List[List[float]]:
        """Embed a batch of texts; one vector per input, same order."""
        if not texts:
            return []

        kwargs = {"input": texts, "model": self.model}
        if self.dimensions and self.model.startswith("text-embedding-3"):
            kwargs["dimensions"] = self.dimensions

        try:
            response = await asyncio.wait_for(
                self.openai_client.embeddings.create(**kwargs),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            raise EmbeddingError(f"Embedding timeout after {self.timeout}s") from e
        except Exception as e:
            raise EmbeddingError(f"Failed to generate embedding: {str(e)}") from e

        data = sorted(response.data, key=lambda d: d.index)
        vectors = [list(d.embedding) for d in data]

        if len(vectors) != len(texts):
            raise EmbeddingError(
                f"Embedding provider returned {len(vectors)} vectors for {len(texts)} inputs"
            )
        if self.dimensions and any(len(v) != self.dimensions for v in vectors):
            raise EmbeddingError(
                f"Embedding dimension mismatch: expected {self.dimensions}"
            )

        logger.debug(f"Embedded {len(texts)} text(s) with {self.model}")
        return vectors

    async def embed_one(self, text: str) -> List[float]:
        [vector] = await self.embed([text])
        return vector

    async def close(self):
        await self.openai_client.close()
