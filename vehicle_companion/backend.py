"""Assistant backend interface and its OpenAI implementation."""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

from openai import AsyncOpenAI, OpenAIError

from . import prompts
from .config import config
from .models import ManualChunk, QueryKind

if TYPE_CHECKING:
    from .manual_index import ManualRetriever
    from .stores import DocumentStore

logger = config.get_logger(__name__)


@dataclass(frozen=True)
class BackendResult:
    """Outcome of a backend call: raw response data or an error description."""

    data: Any = None
    error: str | None = None


class AIBackend(Protocol):
    async def invoke(
        self, request_name: str, payload: dict[str, Any]
    ) -> BackendResult: ...


class OpenAIBackend:
    """Answers assistant requests with an OpenAI chat model.

    Requests that carry a ``document_id`` are grounded on excerpts retrieved
    from the indexed manual; the others are answered from general knowledge.
    """

    def __init__(
        self,
        retriever: ManualRetriever | None = None,
        documents: DocumentStore | None = None,
        openai_api_key: str | None = None,
        model: str | None = None,
    ) -> None:
        """Initialize the backend.

        Args:
            retriever: Source of manual excerpts. Without one, answers are never
                grounded on the manual.
            documents: Used to name the manual an answer was grounded on.
            openai_api_key: OpenAI API key.
            model: Chat model name. If None, uses config.CHAT_MODEL.
        """
        self.retriever = retriever
        self.documents = documents
        self.model = model or config.CHAT_MODEL
        default_headers = config.get_api_headers()
        self.client = AsyncOpenAI(
            api_key=openai_api_key or config.get_openai_api_key(),
            base_url=config.OPENAI_BASE_URL,
            default_headers=default_headers or None,
            timeout=config.AI_TIMEOUT_SECONDS,
        )

    async def invoke(self, request_name: str, payload: dict[str, Any]) -> BackendResult:
        """Run the handler named ``request_name``.

        Returns:
            BackendResult with the sections envelope for OBD lookups,
            diagnoses and maintenance recommendations, ``{"content": ...}``
            for maintenance chat, or an error.
        """
        try:
            kind = QueryKind(request_name)
        except ValueError:
            return BackendResult(error=f"Unknown request: {request_name}")

        excerpts, base_used = await self._manual_context(kind, payload)
        messages = prompts.build_messages(kind, payload, excerpts)
        extra: dict[str, Any] = {}
        if kind is not QueryKind.MAINTENANCE_CHAT:
            extra["response_format"] = {"type": "json_object"}

        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                max_tokens=config.CHAT_MAX_TOKENS,
                temperature=config.CHAT_TEMPERATURE,
                **extra,
            )
        except OpenAIError as e:
            logger.exception("Assistant request %s failed", request_name)
            return BackendResult(error=str(e) or type(e).__name__)

        answer = response.choices[0].message.content
        if not answer or not answer.strip():
            return BackendResult(error="The model returned an empty answer")

        if kind is QueryKind.MAINTENANCE_CHAT:
            return BackendResult(data={"content": answer.strip()})

        try:
            data = json.loads(answer)
        except json.JSONDecodeError:
            logger.exception("Model answer for %s is not valid JSON", request_name)
            return BackendResult(error="The model returned malformed JSON")

        if isinstance(data, dict):
            data["base_used"] = base_used
            if base_used is None and not data.get("disclaimer"):
                data["disclaimer"] = prompts.GENERAL_KNOWLEDGE_DISCLAIMER
        return BackendResult(data=data)

    async def _manual_context(
        self, kind: QueryKind, payload: dict[str, Any]
    ) -> tuple[list[tuple[ManualChunk, float]], str | None]:
        document_id = payload.get("document_id")
        if not document_id or self.retriever is None:
            return [], None

        question = prompts.question_for(kind, payload)
        try:
            return await asyncio.to_thread(
                self._retrieve, payload.get("vehicle_id"), document_id, question
            )
        except Exception:  # noqa: BLE001
            logger.exception("Manual retrieval failed for %s", document_id)
            return [], None

    def _retrieve(
        self, vehicle_id: str | None, document_id: str, question: str
    ) -> tuple[list[tuple[ManualChunk, float]], str | None]:
        """Search the manual and name it; runs in a worker thread."""  # noqa: DOC201
        excerpts = self.retriever.retrieve(document_id, question)
        if not excerpts:
            return [], None
        return excerpts, self._manual_name(vehicle_id, document_id)

    def _manual_name(self, vehicle_id: str | None, document_id: str) -> str:
        if self.documents is not None and vehicle_id:
            document = self.documents.get_for_vehicle(vehicle_id)
            if document is not None and document.id == document_id:
                return document.file_name
        return "owner's manual"
