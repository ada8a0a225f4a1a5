"""Test configuration and fixtures for Vehicle Companion tests.

This module provides reusable test fixtures organized by functionality:
- Constants and sample payloads
- In-memory collaborators (document store, assistant backend)
- OpenAI API mocks
- SQLite store fixtures
- Dispatcher factories
"""

import asyncio
import datetime
import hashlib
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, Mock, patch

import numpy as np
import pypdf
import pytest

from vehicle_companion import (
    BackendResult,
    ChatSession,
    DocumentLifecycle,
    DocumentStatus,
    EmbeddingService,
    LocalBlobStore,
    ManualChunk,
    ManualDocument,
    ManualIndex,
    QueryDispatcher,
    QueryRequestBuilder,
    SQLiteDocumentStore,
    SQLiteQueryHistory,
    SQLiteVehicleStore,
    VehicleRef,
)


class TestConstants:
    """Centralized test constants shared across the test suite."""

    TEST_API_KEY = "test-key"
    TEST_EMBEDDING_MODEL = "text-embedding-3-small"
    DEFAULT_EMBEDDING_DIMENSION = 64

    VEHICLE_ID = "v1"
    OTHER_VEHICLE_ID = "v2"
    DOCUMENT_ID = "doc1"
    MANUAL_FILE_NAME = "manual.pdf"

    OBD_CODE = "P0420"
    DIAGNOSIS_INPUT = "O carro apresenta falha ao acelerar e consumo alto."
    CHAT_QUESTION = "Como trocar o óleo?"


OBD_RESPONSE = {
    "sections": [
        {
            "type": "text",
            "title": "Explicação",
            "content": "O código P0420 significa que o catalisador está ineficiente.",
        }
    ],
    "base_used": None,
    "disclaimer": None,
}

DIAGNOSIS_RESPONSE = {
    "sections": [
        {
            "type": "list",
            "title": "Hipóteses",
            "content": ["Vela de ignição", "Bobina de ignição"],
        },
        {
            "type": "checklist",
            "title": "Checklist",
            "content": ["Verifique velas", "Verifique bobinas"],
        },
    ],
    "base_used": None,
    "disclaimer": None,
}

RECOMMENDATIONS_RESPONSE = {
    "sections": [
        {
            "type": "checklist",
            "title": "Recomendações de Manutenção",
            "content": ["Troca de óleo e filtro", "Rodízio dos pneus"],
        },
        {
            "type": "list",
            "title": "Próximas revisões",
            "content": ["Velas de ignição aos 40.000 km"],
        },
    ],
    "base_used": "manual.pdf",
    "disclaimer": None,
}

CHAT_RESPONSE = {"content": "A troca de óleo deve ser feita a cada 5.000 km"}


class InMemoryDocumentStore:
    """Dictionary-backed DocumentStore for tests that do not need SQLite."""

    def __init__(self) -> None:
        self.documents: dict[str, ManualDocument] = {}

    def put(self, document: ManualDocument) -> ManualDocument:
        self.documents[document.vehicle_id] = document
        return document

    def get_for_vehicle(self, vehicle_id: str) -> ManualDocument | None:
        return self.documents.get(vehicle_id)

    def create(
        self, vehicle_id: str, file_name: str, file_size_bytes: int
    ) -> ManualDocument:
        return self.put(
            ManualDocument(
                id=uuid.uuid4().hex,
                vehicle_id=vehicle_id,
                status=DocumentStatus.UPLOADING,
                file_name=file_name,
                file_size_bytes=file_size_bytes,
                uploaded_at=datetime.datetime.now(tz=datetime.UTC),
            )
        )

    def update_status(
        self, document_id: str, status: DocumentStatus
    ) -> ManualDocument:
        for document in self.documents.values():
            if document.id == document_id:
                return self.put(
                    ManualDocument(
                        id=document.id,
                        vehicle_id=document.vehicle_id,
                        status=status,
                        file_name=document.file_name,
                        file_size_bytes=document.file_size_bytes,
                        uploaded_at=document.uploaded_at,
                    )
                )
        raise KeyError(document_id)

    def delete_for_vehicle(self, vehicle_id: str) -> None:
        self.documents.pop(vehicle_id, None)


class FakeBackend:
    """Assistant backend double recording every invocation.

    ``hold()`` makes invocations wait until the returned event is set, which
    lets tests observe dispatches while they are in flight.
    """

    def __init__(self, result: BackendResult | BaseException | None = None) -> None:
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.result = result if result is not None else BackendResult(data=OBD_RESPONSE)
        self.release: asyncio.Event | None = None

    def hold(self) -> asyncio.Event:
        self.release = asyncio.Event()
        return self.release

    async def invoke(self, request_name: str, payload: dict[str, Any]) -> BackendResult:
        self.calls.append((request_name, payload))
        if self.release is not None:
            await self.release.wait()
        if isinstance(self.result, BaseException):
            raise self.result
        return self.result


class MockEmbeddingService:
    """Deterministic embeddings derived from a hash of the text."""

    def __init__(
        self, dimension: int = TestConstants.DEFAULT_EMBEDDING_DIMENSION
    ) -> None:
        self.dimension = dimension

    def embed_question(self, text: str) -> np.ndarray:
        seed = int.from_bytes(
            hashlib.sha256(text.lower().encode("utf-8")).digest()[:8],
            byteorder="big",
            signed=False,
        )
        rng = np.random.default_rng(seed)
        embedding = rng.normal(0, 1, self.dimension)
        return (embedding / np.linalg.norm(embedding)).astype(np.float32)

    def embed_chunks(self, chunks: list[ManualChunk]) -> list[ManualChunk]:
        for chunk in chunks:
            chunk.embedding = self.embed_question(chunk.content)
        return chunks


def create_mock_openai_response(embeddings: list[list[float]]) -> Mock:
    """Create a mock OpenAI embeddings API response."""
    mock_response = Mock()
    mock_response.data = [Mock(embedding=emb) for emb in embeddings]
    return mock_response


def create_mock_chat_response(content: str | None) -> Mock:
    """Create a mock OpenAI chat completion response."""
    mock_response = Mock()
    mock_response.choices = [Mock(message=Mock(content=content))]
    return mock_response


@pytest.fixture
def manual_document_factory():
    """Factory for manual records in a given lifecycle state."""

    def _create_document(
        status: DocumentStatus = DocumentStatus.READY,
        vehicle_id: str = TestConstants.VEHICLE_ID,
        document_id: str = TestConstants.DOCUMENT_ID,
        file_name: str = TestConstants.MANUAL_FILE_NAME,
    ) -> ManualDocument:
        return ManualDocument(
            id=document_id,
            vehicle_id=vehicle_id,
            status=status,
            file_name=file_name,
            file_size_bytes=1000,
            uploaded_at=datetime.datetime(2024, 1, 1, tzinfo=datetime.UTC),
        )

    return _create_document


@pytest.fixture
def document_store():
    return InMemoryDocumentStore()


@pytest.fixture
def ready_manual(document_store, manual_document_factory):
    """Vehicle v1 with a ready manual."""
    return document_store.put(manual_document_factory(DocumentStatus.READY))


@pytest.fixture
def lifecycle(document_store):
    return DocumentLifecycle(document_store)


@pytest.fixture
def chat_session():
    return ChatSession()


@pytest.fixture
def fake_backend():
    return FakeBackend()


@pytest.fixture
def sample_vehicle():
    return VehicleRef(
        id=TestConstants.VEHICLE_ID,
        name="Carro Teste",
        brand="Honda",
        model="Civic",
        year=2020,
        mileage=100,
    )


@pytest.fixture
def dispatcher_factory(fake_backend, lifecycle, chat_session):
    """Factory for QueryDispatcher instances wired to in-memory collaborators."""

    def _create_dispatcher(**overrides: Any) -> QueryDispatcher:
        kwargs: dict[str, Any] = {
            "backend": fake_backend,
            "lifecycle": lifecycle,
            "chat_session": chat_session,
            "builder": QueryRequestBuilder(diagnosis_min_length=20, history_turns=10),
        }
        kwargs.update(overrides)
        return QueryDispatcher(**kwargs)

    return _create_dispatcher


@pytest.fixture
def dispatcher(dispatcher_factory):
    return dispatcher_factory()


@pytest.fixture
def db_path(tmp_path) -> Path:
    return tmp_path / "companion.db"


@pytest.fixture
def vehicle_store(db_path):
    return SQLiteVehicleStore(db_path)


@pytest.fixture
def sqlite_document_store(db_path):
    return SQLiteDocumentStore(db_path)


@pytest.fixture
def manual_index(db_path):
    return ManualIndex(db_path)


@pytest.fixture
def query_history(db_path):
    return SQLiteQueryHistory(db_path)


@pytest.fixture
def blob_store(tmp_path):
    return LocalBlobStore(tmp_path / "blobs")


@pytest.fixture
def embedding_service_factory():
    """Factory for EmbeddingService instances with a test API key."""

    def _create_service(
        api_key: str = TestConstants.TEST_API_KEY,
        model: str = TestConstants.TEST_EMBEDDING_MODEL,
    ) -> EmbeddingService:
        return EmbeddingService(api_key=api_key, model=model)

    return _create_service


@pytest.fixture
def embedding_service(embedding_service_factory):
    return embedding_service_factory()


@pytest.fixture(scope="session")
def mock_embedding_service():
    return MockEmbeddingService()


@pytest.fixture
def pdf_factory(tmp_path):
    """Factory writing blank PDF files with the requested number of pages."""

    def _create_pdf(name: str = "manual.pdf", pages: int = 1) -> Path:
        writer = pypdf.PdfWriter()
        for _ in range(pages):
            writer.add_blank_page(width=200, height=200)
        path = tmp_path / name
        with path.open("wb") as file:
            writer.write(file)
        return path

    return _create_pdf


@pytest.fixture
def openai_embeddings_api_mock():
    """Patch the OpenAI embeddings endpoint."""
    with patch("openai.resources.embeddings.Embeddings.create") as mock_create:
        yield mock_create


@pytest.fixture
def openai_embeddings_factory(openai_embeddings_api_mock):
    """Configure the embeddings endpoint mock for a scenario."""

    def _create_mock(scenario="single_success", embeddings=None, error_message="API Error"):  # noqa: ANN202
        openai_embeddings_api_mock.reset_mock()
        openai_embeddings_api_mock.side_effect = None

        if scenario == "single_success":
            mock_embedding = embeddings or [0.1, 0.2, 0.3, 0.4, 0.5]
            openai_embeddings_api_mock.return_value = create_mock_openai_response([
                mock_embedding
            ])
        elif scenario == "batch_success":
            mock_embeddings = embeddings or [
                [0.1, 0.2, 0.3],
                [0.4, 0.5, 0.6],
                [0.7, 0.8, 0.9],
            ]
            openai_embeddings_api_mock.return_value = create_mock_openai_response(
                mock_embeddings
            )
        elif scenario == "multiple_batches":
            openai_embeddings_api_mock.side_effect = [
                create_mock_openai_response([[0.1, 0.2], [0.3, 0.4]]),
                create_mock_openai_response([[0.5, 0.6], [0.7, 0.8]]),
            ]
        elif scenario == "partial_failure":
            openai_embeddings_api_mock.side_effect = [
                create_mock_openai_response([[0.1, 0.2]]),
                Exception("Second batch failed"),
            ]
        elif scenario == "error":
            openai_embeddings_api_mock.side_effect = Exception(error_message)

        return openai_embeddings_api_mock

    return _create_mock


@pytest.fixture
def backend_chat_mock_factory():
    """Patch an OpenAIBackend's async chat completion endpoint."""

    @contextmanager
    def _mock_backend_chat(backend, content: str | None = "{}", side_effect=None):  # noqa: ANN202
        with patch.object(
            backend.client.chat.completions, "create", new_callable=AsyncMock
        ) as mock_create:
            if side_effect is not None:
                mock_create.side_effect = side_effect
            else:
                mock_create.return_value = create_mock_chat_response(content)
            yield mock_create

    return _mock_backend_chat
