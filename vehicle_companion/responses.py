"""Parsing and rendering of assistant responses.

The backend answers in one of two envelopes:

* ``{"sections": [...], "base_used": ..., "disclaimer": ...}`` for OBD
  lookups, diagnoses and maintenance recommendations, parsed into :class:`AIResponse`;
* ``{"content": "..."}`` for maintenance chat, parsed into :class:`ChatReply`.

Sections that do not match their declared type are dropped with a warning so
that the rest of the answer can still be shown.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from .config import config
from .errors import ParseError
from .models import (
    AIResponse,
    ChatReply,
    ChecklistSection,
    ListSection,
    ResponseSection,
    TextSection,
)

logger = config.get_logger(__name__)


class ResponseParser:
    """Normalizes raw backend payloads into typed responses."""

    def parse(self, raw: Any) -> AIResponse | ChatReply:
        """Detect the response envelope and parse it.

        Returns:
            AIResponse when a ``sections`` list is present, ChatReply when only
            a ``content`` string is present.

        Raises:
            ParseError: If neither envelope can be recognized.
        """
        if not isinstance(raw, Mapping):
            msg = f"Expected a JSON object, got {type(raw).__name__}"
            raise ParseError(msg)

        sections = raw.get("sections")
        if isinstance(sections, list):
            return AIResponse(
                sections=tuple(self._parse_sections(sections)),
                base_used=self._optional_text(raw, "base_used"),
                disclaimer=self._optional_text(raw, "disclaimer"),
            )

        content = raw.get("content")
        if isinstance(content, str):
            return ChatReply(content=content)

        msg = f"Unrecognized response shape with keys {sorted(map(str, raw))}"
        raise ParseError(msg)

    def _parse_sections(self, raw_sections: list[Any]) -> list[ResponseSection]:
        sections = []
        for position, raw_section in enumerate(raw_sections):
            section = self.parse_section(raw_section)
            if section is None:
                logger.warning(
                    "Dropping invalid response section %d: %r", position, raw_section
                )
                continue
            sections.append(section)
        return sections

    @staticmethod
    def parse_section(raw: Any) -> ResponseSection | None:
        """Parse one section, or return None when it is not valid."""  # noqa: DOC201
        if not isinstance(raw, Mapping):
            return None

        title = raw.get("title", "")
        if title is None:
            title = ""
        if not isinstance(title, str):
            return None

        section_type = raw.get("type")
        content = raw.get("content")

        if section_type == "text":
            if not isinstance(content, str):
                return None
            return TextSection(title=title, content=content)

        if section_type in {"list", "checklist"}:
            if not isinstance(content, list) or not all(
                isinstance(item, str) for item in content
            ):
                return None
            if section_type == "list":
                return ListSection(title=title, content=tuple(content))
            return ChecklistSection(title=title, content=tuple(content))

        return None

    @staticmethod
    def _optional_text(raw: Mapping[str, Any], key: str) -> str | None:
        value = raw.get(key)
        if value is None:
            return None
        if not isinstance(value, str):
            logger.warning("Ignoring non-text %s: %r", key, value)
            return None
        return value or None


def render_section(section: ResponseSection) -> str:
    """Render one section as plain text.

    Returns:
        The rendered section, or an empty string for an unsupported variant.
    """
    heading = f"## {section.title}\n" if section.title else ""

    if isinstance(section, TextSection):
        return f"{heading}{section.content}"
    if isinstance(section, ListSection):
        return heading + "\n".join(f"- {item}" for item in section.content)
    if isinstance(section, ChecklistSection):
        return heading + "\n".join(f"[ ] {item}" for item in section.content)

    logger.warning("Dropping unsupported section type: %s", type(section).__name__)
    return ""


def render_response(response: AIResponse | ChatReply) -> str:
    """Render a parsed response for display.

    Returns:
        Plain text with one block per section, followed by the grounding source
        and the disclaimer when present.
    """
    if isinstance(response, ChatReply):
        return response.content

    blocks = [block for block in map(render_section, response.sections) if block]
    if response.base_used:
        blocks.append(f"Source: {response.base_used}")
    if response.disclaimer:
        blocks.append(f"Note: {response.disclaimer}")
    return "\n\n".join(blocks)
