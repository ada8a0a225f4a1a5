"""OpenAI embeddings for manual chunks and user questions."""

from __future__ import annotations

import math

import numpy as np
from openai import OpenAI

from .config import config
from .models import ManualChunk

logger = config.get_logger(__name__)

EMBEDDING_DTYPE = np.float32


class EmbeddingService:
    """Embeds manual chunks at indexing time and questions at retrieval time."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        batch_size: int | None = None,
    ) -> None:
        """Initialize the service.

        Args:
            api_key: OpenAI API key. If None, reads OPENAI_API_KEY.
            model: Embedding model name. If None, uses config.EMBEDDING_MODEL.
            batch_size: Chunks sent per request. If None, uses
                config.EMBEDDING_BATCH_SIZE.
        """
        default_headers = config.get_api_headers()
        self.client = OpenAI(
            api_key=api_key or config.get_openai_api_key(),
            base_url=config.OPENAI_BASE_URL,
            default_headers=default_headers or None,
        )
        self.model = model or config.EMBEDDING_MODEL
        self.batch_size = batch_size or config.EMBEDDING_BATCH_SIZE

    def embed_question(self, question: str) -> np.ndarray:
        """Embed a question asked about a manual.

        Returns:
            np.ndarray: The float32 query vector.

        Raises:
            ValueError: If the question is blank.
        """
        if not question.strip():
            msg = "Cannot search a manual with a blank question"
            raise ValueError(msg)
        [embedding] = self._request(question)
        return embedding

    def embed_chunks(self, chunks: list[ManualChunk]) -> list[ManualChunk]:
        """Attach an embedding to every chunk, ``batch_size`` chunks per request.

        Returns:
            The same chunks, each with ``embedding`` set.

        Raises:
            ValueError: If a chunk has no text to embed.
        """
        for chunk in chunks:
            if not chunk.content.strip():
                msg = (
                    f"Chunk {chunk.metadata.get('chunk_id')} on page "
                    f"{chunk.metadata.get('page')} has no text"
                )
                raise ValueError(msg)

        total_batches = math.ceil(len(chunks) / self.batch_size)
        for number, start in enumerate(range(0, len(chunks), self.batch_size), 1):
            batch = chunks[start : start + self.batch_size]
            embeddings = self._request([chunk.content for chunk in batch])
            for chunk, embedding in zip(batch, embeddings, strict=True):
                chunk.embedding = embedding
            logger.info("Embedded chunk batch %d/%d", number, total_batches)

        return chunks

    def _request(self, inputs: str | list[str]) -> list[np.ndarray]:
        try:
            response = self.client.embeddings.create(model=self.model, input=inputs)
        except Exception:
            logger.exception("Error generating embeddings with %s", self.model)
            raise
        return [np.array(data.embedding, dtype=EMBEDDING_DTYPE) for data in response.data]
