"""Prompt construction for the assistant handlers."""

from __future__ import annotations

from typing import Any

from .models import ManualChunk, QueryKind

GENERAL_KNOWLEDGE_DISCLAIMER = (
    "No owner's manual was used; this answer relies on general automotive "
    "knowledge. Confirm with a qualified mechanic before any repair."
)

SECTIONS_FORMAT = (
    "Reply with a single JSON object of the form "
    '{"sections": [{"type": "text" | "list" | "checklist", "title": string, '
    '"content": string for text, array of strings for list and checklist}], '
    '"disclaimer": string or null}. '
    "Do not add any text outside the JSON object."
)

SYSTEM_PROMPTS: dict[QueryKind, str] = {
    QueryKind.OBD_LOOKUP: (
        "You are an automotive assistant who explains OBD-II diagnostic trouble "
        "codes in simple language for vehicle owners.\n"
        "Use the following guidelines:\n"
        "1. Start with a text section explaining what the code means\n"
        "2. Add a list section with the most likely causes\n"
        "3. Add a checklist section with what the owner can verify or ask a "
        "mechanic to check\n"
        "4. If the code does not look like a valid OBD-II code, say so\n"
        "5. Answer in the same language the user writes in\n\n" + SECTIONS_FORMAT
    ),
    QueryKind.DIAGNOSIS: (
        "You are an automotive assistant who helps vehicle owners diagnose "
        "faults from a description of the symptoms.\n"
        "Use the following guidelines:\n"
        "1. Add a list section with the most likely hypotheses, most likely "
        "first\n"
        "2. Add a checklist section with concrete checks, simplest first\n"
        "3. Add a text section when the problem may affect safety\n"
        "4. Answer in the same language the user writes in\n\n" + SECTIONS_FORMAT
    ),
    QueryKind.MAINTENANCE_CHAT: (
        "You are a maintenance assistant answering questions about a specific "
        "vehicle using excerpts of its owner's manual.\n"
        "Use the following guidelines:\n"
        "1. Base your answer primarily on the provided manual excerpts\n"
        "2. Cite the manual page when you use an excerpt\n"
        "3. If the answer is not in the excerpts, acknowledge this limitation\n"
        "4. Keep the conversation context in mind\n"
        "5. Answer in the same language the user writes in, in plain text"
    ),
    QueryKind.MAINTENANCE_RECOMMENDATIONS: (
        "You are a maintenance assistant who recommends preventive maintenance "
        "for a specific vehicle.\n"
        "Use the following guidelines:\n"
        "1. Base the service intervals on the provided manual excerpts when "
        "there are any, citing the page\n"
        "2. Use the vehicle's year and mileage to decide what is due now "
        "and what is due next\n"
        "3. Add a checklist section with the services due now, most urgent "
        "first\n"
        "4. Add a list section with upcoming services and the mileage or date "
        "they are due\n"
        "5. If the mileage is unknown, say so and give the intervals instead\n"
        "6. Answer in the same language the user writes in\n\n" + SECTIONS_FORMAT
    ),
}


def question_for(kind: QueryKind, payload: dict[str, Any]) -> str:
    """The user's input in a request payload, used for manual retrieval."""  # noqa: DOC201
    if kind is QueryKind.OBD_LOOKUP:
        return f"OBD-II code {payload.get('code', '')}"
    if kind is QueryKind.DIAGNOSIS:
        return str(payload.get("symptoms", ""))
    if kind is QueryKind.MAINTENANCE_RECOMMENDATIONS:
        focus = payload.get("focus")
        return f"Maintenance schedule and service intervals {focus or ''}".strip()
    return str(payload.get("message", ""))


def format_vehicle(vehicle: dict[str, Any] | None) -> str:
    if not vehicle:
        return ""
    labels = (
        ("name", "Name"),
        ("brand", "Brand"),
        ("model", "Model"),
        ("year", "Year"),
        ("mileage", "Mileage (km)"),
    )
    lines = [
        f"{label}: {vehicle[key]}"
        for key, label in labels
        if vehicle.get(key) not in {None, ""}
    ]
    if not lines:
        return ""
    return "=== Vehicle ===\n" + "\n".join(lines) + "\n\n"


def format_excerpts(excerpts: list[tuple[ManualChunk, float]]) -> str:
    if not excerpts:
        return ""
    context = "=== Owner's Manual Excerpts ===\n"
    for i, (chunk, score) in enumerate(excerpts):
        context += (
            f"\n[Excerpt {i + 1}] (Page: {chunk.metadata.get('page')}, "
            f"Similarity: {score:.4f})\n"
            f"{chunk.content}\n"
        )
    return context + "\n"


def build_messages(
    kind: QueryKind,
    payload: dict[str, Any],
    excerpts: list[tuple[ManualChunk, float]],
) -> list[dict[str, str]]:
    """Build the chat completion messages for a request.

    Returns:
        System prompt, prior chat turns (maintenance chat only) and the
        current user message with vehicle and manual context.
    """
    messages = [{"role": "system", "content": SYSTEM_PROMPTS[kind]}]

    if kind is QueryKind.MAINTENANCE_CHAT:
        messages.extend(
            {"role": turn["role"], "content": turn["content"]}
            for turn in payload.get("history", [])
        )
        request = f"Question: {payload.get('message', '')}"
    elif kind is QueryKind.OBD_LOOKUP:
        request = f"Explain the OBD-II code: {payload.get('code', '')}"
    elif kind is QueryKind.MAINTENANCE_RECOMMENDATIONS:
        request = "Recommend preventive maintenance for this vehicle."
        if payload.get("focus"):
            request += f"\nFocus: {payload['focus']}"
    else:
        request = f"Symptoms: {payload.get('symptoms', '')}"

    messages.append({
        "role": "user",
        "content": (
            format_vehicle(payload.get("vehicle"))
            + format_excerpts(excerpts)
            + request
        ),
    })
    return messages
