"""Data models for the Vehicle Companion application."""

from __future__ import annotations

import datetime
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

import numpy as np


class DocumentStatus(StrEnum):
    """Lifecycle state of a vehicle's owner's manual."""

    ABSENT = "absent"
    UPLOADING = "uploading"
    PROCESSING = "processing"
    READY = "ready"
    ERROR = "error"


STORED_DOCUMENT_STATUSES = frozenset({
    DocumentStatus.UPLOADING,
    DocumentStatus.PROCESSING,
    DocumentStatus.READY,
    DocumentStatus.ERROR,
})


class QueryKind(StrEnum):
    """Kinds of query the assistant answers, named after the backend handlers."""

    OBD_LOOKUP = "obd_lookup"
    DIAGNOSIS = "diagnosis"
    MAINTENANCE_CHAT = "maintenance_chat"
    MAINTENANCE_RECOMMENDATIONS = "maintenance_recommendations"


class ChatRole(StrEnum):
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class VehicleRef:
    """A registered vehicle with its display attributes."""

    id: str
    name: str
    brand: str | None = None
    model: str | None = None
    year: int | None = None
    mileage: int | None = None

    def display_name(self) -> str:
        """Human readable label such as ``Meu Civic (Honda Civic 2020)``."""  # noqa: DOC201
        details = " ".join(
            str(part) for part in (self.brand, self.model, self.year) if part
        )
        return f"{self.name} ({details})" if details else self.name

    def to_context(self) -> dict[str, Any]:
        """Attributes forwarded to the assistant as vehicle context."""  # noqa: DOC201
        return {
            "name": self.name,
            "brand": self.brand,
            "model": self.model,
            "year": self.year,
            "mileage": self.mileage,
        }


@dataclass(frozen=True)
class ManualDocument:
    """Stored record of a vehicle's uploaded owner's manual.

    A stored record never carries ``DocumentStatus.ABSENT``; a vehicle without
    a manual simply has no record.
    """

    id: str
    vehicle_id: str
    status: DocumentStatus
    file_name: str
    file_size_bytes: int
    uploaded_at: datetime.datetime

    def __post_init__(self) -> None:
        if self.status not in STORED_DOCUMENT_STATUSES:
            msg = f"Manual documents cannot be stored with status {self.status!r}"
            raise ValueError(msg)


@dataclass
class ManualChunk:
    """A chunk of text extracted from an owner's manual."""

    content: str
    metadata: dict[str, Any]
    embedding: np.ndarray | None = None


@dataclass(frozen=True)
class ChatTurn:
    """A single message in a maintenance chat."""

    role: ChatRole
    text: str
    timestamp: datetime.datetime

    def to_payload(self) -> dict[str, str]:
        return {"role": self.role.value, "content": self.text}


@dataclass(frozen=True)
class QueryRequest:
    """Outgoing request for the assistant backend; never persisted."""

    kind: QueryKind
    vehicle_id: str
    payload: dict[str, Any]
    document_id: str | None = None

    def to_backend_payload(self) -> dict[str, Any]:
        """Body sent to the backend handler named after ``kind``."""  # noqa: DOC201
        return {
            **self.payload,
            "vehicle_id": self.vehicle_id,
            "document_id": self.document_id,
        }


@dataclass(frozen=True)
class TextSection:
    title: str
    content: str
    type: str = field(default="text", init=False)


@dataclass(frozen=True)
class ListSection:
    title: str
    content: tuple[str, ...]
    type: str = field(default="list", init=False)


@dataclass(frozen=True)
class ChecklistSection:
    title: str
    content: tuple[str, ...]
    type: str = field(default="checklist", init=False)


ResponseSection = TextSection | ListSection | ChecklistSection


@dataclass(frozen=True)
class AIResponse:
    """Structured answer for every kind except maintenance chat."""

    sections: tuple[ResponseSection, ...] = ()
    base_used: str | None = None
    disclaimer: str | None = None


@dataclass(frozen=True)
class ChatReply:
    """Free-form answer returned by the maintenance chat handler."""

    content: str


@dataclass(frozen=True)
class HistoryEntry:
    """A past query and its rendered answer."""

    vehicle_id: str
    kind: QueryKind
    user_input: str
    answer: str
    created_at: datetime.datetime
    id: int | None = None
