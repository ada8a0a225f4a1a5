"""In-memory maintenance chat history, keyed by vehicle."""

from __future__ import annotations

import datetime

from .config import config
from .models import ChatRole, ChatTurn

logger = config.get_logger(__name__)

_TICK = datetime.timedelta(microseconds=1)


class ChatSession:
    """Append-only ledger of chat turns per vehicle.

    Turns of a vehicle have strictly increasing timestamps. The only way to
    remove turns is a reset, which the dispatcher performs when the user
    navigates away from a vehicle.
    """

    def __init__(self) -> None:
        self._turns: dict[str, list[ChatTurn]] = {}

    def append(self, vehicle_id: str, turn: ChatTurn) -> None:
        """Append a turn to the vehicle's history.

        Raises:
            ValueError: If the turn is not later than the last recorded turn.
        """
        turns = self._turns.setdefault(vehicle_id, [])
        if turns and turn.timestamp <= turns[-1].timestamp:
            msg = (
                f"Chat turn at {turn.timestamp.isoformat()} is not after "
                f"{turns[-1].timestamp.isoformat()} for vehicle {vehicle_id}"
            )
            raise ValueError(msg)
        turns.append(turn)

    def turns_for(self, vehicle_id: str) -> list[ChatTurn]:
        return list(self._turns.get(vehicle_id, ()))

    def recent(self, vehicle_id: str, limit: int) -> list[ChatTurn]:
        """The last ``limit`` turns of a vehicle, oldest first."""  # noqa: DOC201
        if limit <= 0:
            return []
        return self.turns_for(vehicle_id)[-limit:]

    def record_exchange(
        self,
        vehicle_id: str,
        question: str,
        answer: str,
        asked_at: datetime.datetime | None = None,
    ) -> tuple[ChatTurn, ChatTurn]:
        """Append a user question immediately followed by its answer.

        Timestamps are nudged forward when the clock has not advanced past the
        previous turn, so the ordering invariant always holds.

        Returns:
            The user turn and the assistant turn that were appended.
        """
        now = datetime.datetime.now(tz=datetime.UTC)
        asked_at = asked_at or now

        turns = self._turns.get(vehicle_id)
        if turns and asked_at <= turns[-1].timestamp:
            asked_at = turns[-1].timestamp + _TICK
        answered_at = max(now, asked_at + _TICK)

        user_turn = ChatTurn(role=ChatRole.USER, text=question, timestamp=asked_at)
        assistant_turn = ChatTurn(
            role=ChatRole.ASSISTANT, text=answer, timestamp=answered_at
        )
        self.append(vehicle_id, user_turn)
        self.append(vehicle_id, assistant_turn)
        return user_turn, assistant_turn

    def reset(self, vehicle_id: str | None = None) -> None:
        """Clear one vehicle's chat, or every chat when no vehicle is given."""
        if vehicle_id is None:
            self._turns.clear()
            logger.info("Chat sessions cleared.")
        else:
            self._turns.pop(vehicle_id, None)
            logger.info("Chat session cleared for vehicle %s.", vehicle_id)
