"""Vehicle Companion - manual-grounded vehicle assistant."""

from .backend import AIBackend, BackendResult, OpenAIBackend
from .chat import ChatSession
from .dispatcher import DispatchResult, DispatchState, DispatchStatus, QueryDispatcher
from .documents import DocumentLifecycle, ManualUploader
from .embeddings import EmbeddingService
from .errors import (
    AlreadyPending,
    CompanionError,
    GatingError,
    GatingReason,
    ParseError,
    TransportError,
    UploadError,
)
from .history import SQLiteQueryHistory
from .manual_index import ManualIndex, ManualIndexer, ManualRetriever
from .manual_processing import ManualLoader, TextChunker
from .models import (
    AIResponse,
    ChatReply,
    ChatRole,
    ChatTurn,
    ChecklistSection,
    DocumentStatus,
    HistoryEntry,
    ListSection,
    ManualChunk,
    ManualDocument,
    QueryKind,
    QueryRequest,
    TextSection,
    VehicleRef,
)
from .query_builder import QueryRequestBuilder
from .responses import ResponseParser, render_response, render_section
from .stores import LocalBlobStore, SQLiteDocumentStore, SQLiteVehicleStore

__all__ = [
    "AIBackend",
    "AIResponse",
    "AlreadyPending",
    "BackendResult",
    "ChatReply",
    "ChatRole",
    "ChatSession",
    "ChatTurn",
    "ChecklistSection",
    "CompanionError",
    "DispatchResult",
    "DispatchState",
    "DispatchStatus",
    "DocumentLifecycle",
    "DocumentStatus",
    "EmbeddingService",
    "GatingError",
    "GatingReason",
    "HistoryEntry",
    "ListSection",
    "LocalBlobStore",
    "ManualChunk",
    "ManualDocument",
    "ManualIndex",
    "ManualIndexer",
    "ManualLoader",
    "ManualRetriever",
    "ManualUploader",
    "OpenAIBackend",
    "ParseError",
    "QueryDispatcher",
    "QueryKind",
    "QueryRequest",
    "QueryRequestBuilder",
    "ResponseParser",
    "SQLiteDocumentStore",
    "SQLiteQueryHistory",
    "SQLiteVehicleStore",
    "TextChunker",
    "TextSection",
    "TransportError",
    "UploadError",
    "VehicleRef",
    "render_response",
    "render_section",
]
