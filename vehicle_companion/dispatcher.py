"""Query dispatch: gating, backend invocation and response handling."""

from __future__ import annotations

import datetime
import sqlite3
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

from .backend import BackendResult
from .chat import ChatSession
from .config import config
from .errors import (
    AlreadyPending,
    CompanionError,
    GatingError,
    ParseError,
    TransportError,
)
from .models import AIResponse, ChatReply, HistoryEntry, QueryKind
from .query_builder import QueryRequestBuilder
from .responses import ResponseParser, render_response

if TYPE_CHECKING:
    from .backend import AIBackend
    from .documents import DocumentLifecycle
    from .history import QueryHistory
    from .stores import VehicleStore

logger = config.get_logger(__name__)


class DispatchState(StrEnum):
    """Progress of the latest dispatch for a (vehicle, kind) pair."""

    IDLE = "idle"
    GATING = "gating"
    BLOCKED = "blocked"
    SENDING = "sending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class DispatchStatus(StrEnum):
    """How a single dispatch call ended."""

    SUCCEEDED = "succeeded"
    BLOCKED = "blocked"
    FAILED = "failed"
    ALREADY_PENDING = "already_pending"
    STALE = "stale"


@dataclass(frozen=True)
class DispatchResult:
    """Discriminated outcome of a dispatch; errors are carried, never raised."""

    status: DispatchStatus
    kind: QueryKind
    vehicle_id: str
    response: AIResponse | ChatReply | None = None
    error: CompanionError | None = None

    @property
    def ok(self) -> bool:
        return self.status is DispatchStatus.SUCCEEDED

    @property
    def message(self) -> str:
        """Text to show the user: the rendered answer or the error guidance."""  # noqa: DOC201
        if self.response is not None:
            return render_response(self.response)
        if self.error is not None:
            return self.error.user_message
        return ""


class QueryDispatcher:
    """Sends gated queries to the assistant backend, one at a time per kind.

    A dispatch for a (vehicle, kind) pair that is still pending rejects any
    further dispatch for the same pair. Navigating invalidates every pending
    dispatch: their responses are discarded when they arrive.
    """

    def __init__(  # noqa: PLR0913, PLR0917
        self,
        backend: AIBackend,
        lifecycle: DocumentLifecycle,
        chat_session: ChatSession | None = None,
        builder: QueryRequestBuilder | None = None,
        parser: ResponseParser | None = None,
        vehicles: VehicleStore | None = None,
        history: QueryHistory | None = None,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            backend: Assistant backend answering the requests.
            lifecycle: Read model of the vehicles' manuals used for gating.
            chat_session: Maintenance chat ledger. A new one if None.
            builder: Request builder. Uses config defaults if None.
            parser: Response parser. A default one if None.
            vehicles: Supplies vehicle attributes sent as context.
            history: Receives every successful query when given.
        """
        self.backend = backend
        self.lifecycle = lifecycle
        self.chat_session = chat_session if chat_session is not None else ChatSession()
        self.builder = builder or QueryRequestBuilder()
        self.parser = parser or ResponseParser()
        self.vehicles = vehicles
        self.history = history

        self.active_vehicle_id: str | None = None
        self._generation = 0
        self._in_flight: set[tuple[str, QueryKind]] = set()
        self._states: dict[tuple[str, QueryKind], DispatchState] = {}

    def navigate(self, vehicle_id: str | None) -> None:
        """Record that the user moved to another vehicle or page.

        Pending dispatches become stale. Leaving a vehicle clears its chat.
        """
        previous = self.active_vehicle_id
        self._generation += 1
        self.active_vehicle_id = vehicle_id
        if previous is not None and previous != vehicle_id:
            self.chat_session.reset(previous)
        logger.debug("Navigated from %s to %s", previous, vehicle_id)

    def state(self, vehicle_id: str, kind: QueryKind) -> DispatchState:
        return self._states.get((vehicle_id, QueryKind(kind)), DispatchState.IDLE)

    def is_pending(self, vehicle_id: str, kind: QueryKind) -> bool:
        return (vehicle_id, QueryKind(kind)) in self._in_flight

    async def dispatch(
        self, kind: QueryKind, vehicle_id: str, user_input: str
    ) -> DispatchResult:
        """Gate, send and interpret one query.

        Returns:
            DispatchResult describing the outcome; never raises for gating,
            transport or parsing failures.
        """
        kind = QueryKind(kind)
        key = (vehicle_id, kind)
        if key in self._in_flight:
            logger.info("Ignoring duplicate %s dispatch for vehicle %s", kind, vehicle_id)
            return DispatchResult(
                status=DispatchStatus.ALREADY_PENDING,
                kind=kind,
                vehicle_id=vehicle_id,
                error=AlreadyPending(f"{kind} already pending for {vehicle_id}"),
            )

        self._in_flight.add(key)
        try:
            return await self._dispatch(kind, vehicle_id, user_input, self._generation)
        finally:
            self._in_flight.discard(key)

    async def _dispatch(
        self, kind: QueryKind, vehicle_id: str, user_input: str, generation: int
    ) -> DispatchResult:
        key = (vehicle_id, kind)
        self._states[key] = DispatchState.GATING

        try:
            vehicle = self.vehicles.get(vehicle_id) if self.vehicles else None
            history = (
                self.chat_session.recent(vehicle_id, self.builder.history_turns)
                if kind is QueryKind.MAINTENANCE_CHAT
                else ()
            )
            document = self.lifecycle.document(vehicle_id)
        except (sqlite3.Error, OSError) as e:
            logger.exception(
                "Could not load %s context for vehicle %s", kind, vehicle_id
            )
            return self._fail(key, TransportError(str(e) or type(e).__name__))

        try:
            request = self.builder.build(
                kind,
                vehicle_id,
                document,
                user_input,
                vehicle=vehicle,
                history=history,
            )
        except GatingError as e:
            self._states[key] = DispatchState.BLOCKED
            logger.info("Blocked %s for vehicle %s: %s", kind, vehicle_id, e.reason)
            return DispatchResult(
                status=DispatchStatus.BLOCKED, kind=kind, vehicle_id=vehicle_id, error=e
            )

        self._states[key] = DispatchState.SENDING
        asked_at = datetime.datetime.now(tz=datetime.UTC)
        logger.info("Sending %s for vehicle %s", kind, vehicle_id)
        try:
            result = await self.backend.invoke(
                kind.value, request.to_backend_payload()
            )
        except Exception as e:  # noqa: BLE001
            logger.exception("Assistant backend call failed for %s", kind)
            result = BackendResult(error=str(e) or type(e).__name__)

        if generation != self._generation:
            self._states[key] = DispatchState.IDLE
            logger.info(
                "Discarding stale %s response for vehicle %s", kind, vehicle_id
            )
            return DispatchResult(
                status=DispatchStatus.STALE, kind=kind, vehicle_id=vehicle_id
            )

        if result.error is not None:
            return self._fail(key, TransportError(result.error))

        try:
            response = self.parser.parse(result.data)
        except ParseError as e:
            logger.error(  # noqa: TRY400
                "Unrecognized %s response for vehicle %s: %s", kind, vehicle_id, e
            )
            return self._fail(key, e)

        answer = render_response(response)
        if kind is QueryKind.MAINTENANCE_CHAT:
            self.chat_session.record_exchange(
                vehicle_id, request.payload["message"], answer, asked_at
            )
        self._record_history(kind, vehicle_id, user_input, answer)

        self._states[key] = DispatchState.SUCCEEDED
        return DispatchResult(
            status=DispatchStatus.SUCCEEDED,
            kind=kind,
            vehicle_id=vehicle_id,
            response=response,
        )

    def _fail(
        self, key: tuple[str, QueryKind], error: CompanionError
    ) -> DispatchResult:
        vehicle_id, kind = key
        self._states[key] = DispatchState.FAILED
        logger.warning("%s for vehicle %s failed: %s", kind, vehicle_id, error)
        return DispatchResult(
            status=DispatchStatus.FAILED, kind=kind, vehicle_id=vehicle_id, error=error
        )

    def _record_history(
        self, kind: QueryKind, vehicle_id: str, user_input: str, answer: str
    ) -> None:
        if self.history is None:
            return
        try:
            self.history.record(
                HistoryEntry(
                    vehicle_id=vehicle_id,
                    kind=kind,
                    user_input=user_input.strip(),
                    answer=answer,
                    created_at=datetime.datetime.now(tz=datetime.UTC),
                )
            )
        except sqlite3.Error:
            logger.exception("Could not record %s query in history", kind)
