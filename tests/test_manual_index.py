"""Tests for the manual chunk index, the indexer and the retriever."""

from unittest.mock import Mock, patch

import numpy as np
import pytest

from vehicle_companion import (
    DocumentStatus,
    ManualChunk,
    ManualIndex,
    ManualIndexer,
    ManualRetriever,
    TextChunker,
)
from vehicle_companion.config import config

OIL_CHANGE = "Troque o óleo do motor a cada 10.000 km ou 12 meses."
TIRES = "Calibre os pneus dianteiros com 32 psi e os traseiros com 30 psi."
BRAKES = "Substitua as pastilhas de freio quando o indicador acender."


@pytest.fixture
def processing_manual(sqlite_document_store):
    document = sqlite_document_store.create("v1", "manual.pdf", 1000)
    return sqlite_document_store.update_status(document.id, DocumentStatus.PROCESSING)


@pytest.fixture
def indexer(sqlite_document_store, manual_index, mock_embedding_service):
    return ManualIndexer(
        sqlite_document_store,
        manual_index,
        mock_embedding_service,
        chunker=TextChunker(chunk_size=200, overlap=20),
    )


def make_chunks(embedding_service, texts):
    return [
        ManualChunk(
            content=text,
            metadata={"chunk_id": i, "page": i + 1, "start_char": 0, "end_char": len(text)},
            embedding=embedding_service.embed_question(text),
        )
        for i, text in enumerate(texts)
    ]


class TestManualIndex:
    def test_replace_chunks(self, manual_index, processing_manual, mock_embedding_service):
        chunks = make_chunks(mock_embedding_service, [OIL_CHANGE, TIRES])

        assert manual_index.replace_chunks(processing_manual.id, chunks) == 2
        assert manual_index.chunk_count(processing_manual.id) == 2

        replacement = make_chunks(mock_embedding_service, [BRAKES])
        manual_index.replace_chunks(processing_manual.id, replacement)

        assert manual_index.chunk_count(processing_manual.id) == 1

    def test_chunks_without_embedding_are_skipped(
        self, manual_index, processing_manual, mock_embedding_service
    ):
        chunks = make_chunks(mock_embedding_service, [OIL_CHANGE, TIRES])
        chunks[1].embedding = None

        assert manual_index.replace_chunks(processing_manual.id, chunks) == 1

    def test_search_ranks_by_similarity(
        self, manual_index, processing_manual, mock_embedding_service
    ):
        manual_index.replace_chunks(
            processing_manual.id,
            make_chunks(mock_embedding_service, [OIL_CHANGE, TIRES, BRAKES]),
        )

        results = manual_index.search(
            processing_manual.id, mock_embedding_service.embed_question(TIRES), top_k=2
        )

        assert len(results) == 2
        best, score = results[0]
        assert best.content == TIRES
        assert score == pytest.approx(1.0, abs=1e-5)
        assert best.metadata == {
            "document_id": processing_manual.id,
            "chunk_id": 1,
            "page": 2,
            "start_char": 0,
            "end_char": len(TIRES),
        }
        assert results[0][1] >= results[1][1]

    def test_search_unknown_document(self, manual_index, mock_embedding_service):
        assert manual_index.search("missing", mock_embedding_service.embed_question("x")) == []

    def test_chunks_removed_with_manual(
        self, manual_index, sqlite_document_store, processing_manual, mock_embedding_service
    ):
        manual_index.replace_chunks(
            processing_manual.id, make_chunks(mock_embedding_service, [OIL_CHANGE])
        )

        sqlite_document_store.delete_for_vehicle("v1")

        assert manual_index.chunk_count(processing_manual.id) == 0

    def test_cosine_similarity(self):
        query = np.array([1.0, 0.0])
        embeddings = np.array([[2.0, 0.0], [0.0, 3.0], [-1.0, 0.0]])

        np.testing.assert_allclose(
            ManualIndex.cosine_similarity(query, embeddings), [1.0, 0.0, -1.0]
        )


class TestManualIndexer:
    def test_index_marks_ready(
        self, indexer, manual_index, sqlite_document_store, processing_manual, tmp_path
    ):
        with patch(
            "vehicle_companion.manual_index.ManualLoader.load_pages",
            return_value=[OIL_CHANGE, "", TIRES],
        ):
            document = indexer.index(processing_manual, tmp_path / "manual.pdf")

        assert document.status is DocumentStatus.READY
        assert sqlite_document_store.get_for_vehicle("v1").status is DocumentStatus.READY
        assert manual_index.chunk_count(processing_manual.id) == 2

    def test_blank_manual_marks_error(
        self, indexer, sqlite_document_store, processing_manual, pdf_factory
    ):
        document = indexer.index(processing_manual, pdf_factory(pages=2))

        assert document.status is DocumentStatus.ERROR
        assert sqlite_document_store.get_for_vehicle("v1").status is DocumentStatus.ERROR

    def test_embedding_failure_marks_error(
        self, sqlite_document_store, manual_index, processing_manual, tmp_path
    ):
        embedding_service = Mock()
        embedding_service.embed_chunks.side_effect = RuntimeError("rate limited")
        indexer = ManualIndexer(sqlite_document_store, manual_index, embedding_service)

        with patch(
            "vehicle_companion.manual_index.ManualLoader.load_pages",
            return_value=[OIL_CHANGE],
        ):
            document = indexer.index(processing_manual, tmp_path / "manual.pdf")

        assert document.status is DocumentStatus.ERROR
        assert manual_index.chunk_count(processing_manual.id) == 0

    def test_unreadable_file_marks_error(self, indexer, processing_manual, tmp_path):
        document = indexer.index(processing_manual, tmp_path / "missing.pdf")

        assert document.status is DocumentStatus.ERROR


class TestManualRetriever:
    def test_retrieve_best_excerpts(
        self, manual_index, processing_manual, mock_embedding_service
    ):
        manual_index.replace_chunks(
            processing_manual.id,
            make_chunks(mock_embedding_service, [OIL_CHANGE, TIRES, BRAKES]),
        )
        retriever = ManualRetriever(manual_index, mock_embedding_service, top_k=1)

        results = retriever.retrieve(processing_manual.id, OIL_CHANGE)

        assert [chunk.content for chunk, _ in results] == [OIL_CHANGE]

    def test_retrieve_without_chunks_skips_embedding(self, manual_index):
        embedding_service = Mock()
        retriever = ManualRetriever(manual_index, embedding_service)

        assert retriever.retrieve("doc1", "Como trocar o óleo?") == []
        embedding_service.embed_question.assert_not_called()

    def test_default_top_k(self, manual_index, mock_embedding_service):
        retriever = ManualRetriever(manual_index, mock_embedding_service)

        assert retriever.top_k == config.MANUAL_TOP_K
