"""Error taxonomy for query dispatch and manual uploads."""

from __future__ import annotations

from enum import StrEnum


class GatingReason(StrEnum):
    DOCUMENT_NOT_READY = "document_not_ready"
    DOCUMENT_REQUIRED = "document_required"
    INVALID_INPUT = "invalid_input"


GATING_MESSAGES: dict[GatingReason, str] = {
    GatingReason.DOCUMENT_NOT_READY: (
        "The owner's manual is still being processed. Try again once it is ready."
    ),
    GatingReason.DOCUMENT_REQUIRED: (
        "Maintenance chat needs a processed owner's manual. Upload one first."
    ),
    GatingReason.INVALID_INPUT: "Please provide a more detailed question.",
}

ASSISTANT_UNAVAILABLE_MESSAGE = (
    "The assistant is unavailable right now. Please try again."
)


class CompanionError(Exception):
    """Base class for errors surfaced to the user."""

    @property
    def user_message(self) -> str:
        return str(self)


class GatingError(CompanionError):
    """A query was rejected before reaching the assistant backend."""

    def __init__(self, reason: GatingReason, detail: str | None = None) -> None:
        self.reason = GatingReason(reason)
        self.detail = detail
        super().__init__(detail or self.reason.value)

    @property
    def user_message(self) -> str:
        return GATING_MESSAGES[self.reason]


class TransportError(CompanionError):
    """The assistant backend could not be reached or reported a failure."""

    @property
    def user_message(self) -> str:
        return ASSISTANT_UNAVAILABLE_MESSAGE


class ParseError(CompanionError):
    """The assistant backend returned a payload of unrecognized shape."""

    @property
    def user_message(self) -> str:
        return ASSISTANT_UNAVAILABLE_MESSAGE


class AlreadyPending(CompanionError):  # noqa: N818
    """A query of the same kind is already in flight for the vehicle."""

    @property
    def user_message(self) -> str:
        return "A request is already in progress."


class UploadError(CompanionError):
    """A manual upload was rejected or could not be stored."""
