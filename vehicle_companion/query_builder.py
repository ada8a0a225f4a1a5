"""Gating and payload shaping for outgoing assistant queries."""

from __future__ import annotations

import re
from collections.abc import Sequence
from typing import Any

from .config import config
from .errors import GatingError, GatingReason
from .models import (
    ChatTurn,
    DocumentStatus,
    ManualDocument,
    QueryKind,
    QueryRequest,
    VehicleRef,
)

logger = config.get_logger(__name__)

# Letter for the system (powertrain, body, chassis, network) plus four hex digits
OBD_CODE_PATTERN = re.compile(r"^[PBCU][0-9A-F]{4}$")


class QueryRequestBuilder:
    """Builds a QueryRequest for each query kind or rejects it with GatingError."""

    def __init__(
        self,
        diagnosis_min_length: int | None = None,
        history_turns: int | None = None,
    ) -> None:
        """Initialize the builder.

        Args:
            diagnosis_min_length: Shortest accepted fault description. If None,
                uses config.DIAGNOSIS_MIN_LENGTH.
            history_turns: Number of prior chat turns sent with a chat message.
                If None, uses config.CHAT_HISTORY_TURNS.
        """
        self.diagnosis_min_length = (
            diagnosis_min_length
            if diagnosis_min_length is not None
            else config.DIAGNOSIS_MIN_LENGTH
        )
        self.history_turns = (
            history_turns if history_turns is not None else config.CHAT_HISTORY_TURNS
        )

    def build(  # noqa: PLR0913
        self,
        kind: QueryKind,
        vehicle_id: str,
        document: ManualDocument | None,
        user_input: str,
        *,
        vehicle: VehicleRef | None = None,
        history: Sequence[ChatTurn] = (),
    ) -> QueryRequest:
        """Build the request for ``kind``.

        Document gating is checked before the input itself.

        Returns:
            The request to send to the backend handler named after ``kind``.

        Raises:
            GatingError: If the manual state or the input blocks the query.
        """
        kind = QueryKind(kind)
        payload: dict[str, Any]
        if kind is QueryKind.OBD_LOOKUP:
            document_id = self._advisory_document(document)
            payload = {"code": self._obd_code(user_input)}
        elif kind is QueryKind.DIAGNOSIS:
            document_id = self._advisory_document(document)
            payload = {"symptoms": self._symptoms(user_input)}
        elif kind is QueryKind.MAINTENANCE_RECOMMENDATIONS:
            document_id = self._advisory_document(document)
            payload = {"focus": user_input.strip()}
        else:
            document_id = self._required_document(document)
            payload = {
                "message": self._chat_message(user_input),
                "history": [
                    turn.to_payload() for turn in self._bounded_history(history)
                ],
            }

        if vehicle is not None:
            payload["vehicle"] = vehicle.to_context()

        return QueryRequest(
            kind=kind,
            vehicle_id=vehicle_id,
            payload=payload,
            document_id=document_id,
        )

    @staticmethod
    def _advisory_document(document: ManualDocument | None) -> str | None:
        """Use the manual when ready; answer from general knowledge without one."""  # noqa: DOC201, DOC501
        if document is None:
            return None
        if document.status is not DocumentStatus.READY:
            raise GatingError(
                GatingReason.DOCUMENT_NOT_READY,
                f"Manual {document.id} is {document.status}",
            )
        return document.id

    @staticmethod
    def _required_document(document: ManualDocument | None) -> str:
        if document is None or document.status is not DocumentStatus.READY:
            status = document.status if document else DocumentStatus.ABSENT
            raise GatingError(
                GatingReason.DOCUMENT_REQUIRED,
                f"Maintenance chat needs a ready manual, manual is {status}",
            )
        return document.id

    @staticmethod
    def _obd_code(user_input: str) -> str:
        code = user_input.strip().upper()
        if not code:
            raise GatingError(GatingReason.INVALID_INPUT, "OBD-II code is empty")
        if not OBD_CODE_PATTERN.match(code):
            logger.warning("Unusual OBD-II code format: %s", code)
        return code

    def _symptoms(self, user_input: str) -> str:
        symptoms = user_input.strip()
        if len(symptoms) < self.diagnosis_min_length:
            raise GatingError(
                GatingReason.INVALID_INPUT,
                f"Fault description needs at least {self.diagnosis_min_length} "
                "characters",
            )
        return symptoms

    @staticmethod
    def _chat_message(user_input: str) -> str:
        message = user_input.strip()
        if not message:
            raise GatingError(GatingReason.INVALID_INPUT, "Chat message is empty")
        return message

    def _bounded_history(self, history: Sequence[ChatTurn]) -> list[ChatTurn]:
        if self.history_turns <= 0:
            return []
        return list(history)[-self.history_turns :]
