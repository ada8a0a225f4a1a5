"""Manual chunk index in SQLite, indexing workflow and retrieval."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

import numpy as np

from .config import config
from .documents import transition
from .embeddings import EMBEDDING_DTYPE
from .manual_processing import ManualLoader, TextChunker
from .models import DocumentStatus, ManualChunk, ManualDocument
from .stores import BaseSQLiteStore

if TYPE_CHECKING:
    from .embeddings import EmbeddingService
    from .stores import DocumentStore

logger = config.get_logger(__name__)


class ManualIndex(BaseSQLiteStore):
    """Chunks and embeddings of indexed manuals, keyed by document id."""

    def replace_chunks(self, document_id: str, chunks: list[ManualChunk]) -> int:
        """Store the chunks of a manual, dropping any previously indexed ones.

        Returns:
            Number of chunks stored. Chunks without an embedding are skipped.
        """
        inserted = 0
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "DELETE FROM manual_chunks WHERE document_id = ?", (document_id,)
            )
            for chunk in chunks:
                if chunk.embedding is None:
                    logger.warning(
                        "Skipping chunk %s without embedding",
                        chunk.metadata.get("chunk_id"),
                    )
                    continue
                cursor.execute(
                    """
                    INSERT INTO manual_chunks
                        (document_id, chunk_id, content, page, start_char,
                         end_char, embedding)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        document_id,
                        chunk.metadata.get("chunk_id", inserted),
                        chunk.content,
                        chunk.metadata.get("page"),
                        chunk.metadata.get("start_char"),
                        chunk.metadata.get("end_char"),
                        np.asarray(chunk.embedding, dtype=EMBEDDING_DTYPE).tobytes(),
                    ),
                )
                inserted += 1
            conn.commit()

        logger.info("Indexed %d chunks for manual %s", inserted, document_id)
        return inserted

    def chunk_count(self, document_id: str) -> int:
        with self._connect() as conn:
            (count,) = conn.execute(
                "SELECT COUNT(*) FROM manual_chunks WHERE document_id = ?",
                (document_id,),
            ).fetchone()
        return int(count)

    @staticmethod
    def cosine_similarity(
        query_embedding: np.ndarray,
        embeddings: np.ndarray,
    ) -> np.ndarray:
        """Calculate cosine similarity between query and chunk embeddings.

        Returns:
            np.ndarray: One similarity score per row of ``embeddings``.
        """
        query_norm = query_embedding / np.linalg.norm(query_embedding)
        doc_norms = embeddings / np.linalg.norm(embeddings, axis=1, keepdims=True)
        return np.dot(doc_norms, query_norm)

    def search(
        self,
        document_id: str,
        query_embedding: np.ndarray,
        top_k: int = 4,
    ) -> list[tuple[ManualChunk, float]]:
        """Find the chunks of one manual most similar to the query.

        Returns:
            A list of (chunk, similarity) tuples, best match first.
        """
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT chunk_id, content, page, start_char, end_char, embedding
                FROM manual_chunks
                WHERE document_id = ?
                ORDER BY chunk_id
                """,
                (document_id,),
            ).fetchall()

        if not rows:
            return []

        embeddings = np.vstack([
            np.frombuffer(row[5], dtype=EMBEDDING_DTYPE) for row in rows
        ])
        similarities = self.cosine_similarity(
            np.asarray(query_embedding, dtype=EMBEDDING_DTYPE), embeddings
        )
        top_indices = np.argsort(similarities)[::-1][:top_k]

        results = []
        for idx in top_indices:
            chunk_id, content, page, start_char, end_char, _ = rows[idx]
            chunk = ManualChunk(
                content=content,
                metadata={
                    "document_id": document_id,
                    "chunk_id": chunk_id,
                    "page": page,
                    "start_char": start_char,
                    "end_char": end_char,
                },
            )
            results.append((chunk, float(similarities[idx])))
        return results


class ManualIndexer:
    """Turns a stored manual into searchable chunks: Load -> Split -> Embed -> Store."""

    def __init__(
        self,
        documents: DocumentStore,
        index: ManualIndex,
        embedding_service: EmbeddingService,
        chunker: TextChunker | None = None,
    ) -> None:
        self.documents = documents
        self._index = index
        self.embedding_service = embedding_service
        self.chunker = chunker or TextChunker(
            chunk_size=config.CHUNK_SIZE, overlap=config.CHUNK_OVERLAP
        )

    def index(self, document: ManualDocument, file_path: Path) -> ManualDocument:
        """Extract, embed and store a manual in ``processing``.

        The record ends in ``ready`` on success and in ``error`` on any
        extraction, embedding or storage failure.

        Returns:
            The manual record in its terminal state.
        """
        logger.info("Indexing manual %s from %s", document.id, file_path)
        try:
            pages = ManualLoader.load_pages(file_path)
            chunks = self.chunker.chunk_pages(pages, source=document.file_name)
            if not chunks:
                msg = f"No extractable text in {document.file_name}"
                raise ValueError(msg)

            self._index.replace_chunks(
                document.id, self.embedding_service.embed_chunks(chunks)
            )
        except Exception:  # noqa: BLE001
            logger.exception("Indexing failed for manual %s", document.id)
            return transition(self.documents, document, DocumentStatus.ERROR)
        else:
            return transition(self.documents, document, DocumentStatus.READY)


class ManualRetriever:
    """Finds the manual excerpts relevant to a question."""

    def __init__(
        self,
        index: ManualIndex,
        embedding_service: EmbeddingService,
        top_k: int | None = None,
    ) -> None:
        self.index = index
        self.embedding_service = embedding_service
        self.top_k = top_k if top_k is not None else config.MANUAL_TOP_K

    def retrieve(
        self, document_id: str, question: str
    ) -> list[tuple[ManualChunk, float]]:
        """Return the best-matching chunks of a manual for ``question``."""  # noqa: DOC201
        if self.index.chunk_count(document_id) == 0:
            logger.warning("Manual %s has no indexed chunks", document_id)
            return []
        query_embedding = self.embedding_service.embed_question(question)
        results = self.index.search(document_id, query_embedding, top_k=self.top_k)
        for chunk, score in results:
            logger.debug(
                "Retrieved page %s chunk %s (score: %.4f)",
                chunk.metadata["page"],
                chunk.metadata["chunk_id"],
                score,
            )
        return results
