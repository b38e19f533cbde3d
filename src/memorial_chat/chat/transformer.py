"""
Stored turn -> renderable message.

The chat history table has accumulated three payload shapes over time, and the
answering pipeline writes AI answers as a JSON document inside a string. This
module turns any of them into a 'NormalizedMessage' in two explicit steps:

    'decode_payload'  - classify the raw 'message' column into exactly one
                        'RawPayload' variant (never raises).
    'transform_message' - build the 'ChatMessage' for that variant, running
                        'build_segments' for structured AI answers.

Every failure on the way degrades to a renderable value: unparseable AI JSON
is shown as the original string, an unknown citation source is labelled
"Unknown Source", and a payload of an unknown shape becomes a human message
reading "Unable to parse message".
"""

import json
from collections.abc import Iterable, Mapping
from typing import Any

from loguru import logger
from pydantic import BaseModel, ValidationError

from memorial_chat.chat.citations import (
    UNKNOWN_SOURCE_TITLE,
    ChatMessage,
    Citation,
    CitedContent,
    MessageSegment,
    MessageType,
    NormalizedMessage,
    SourceInfo,
    SourceType,
)
from memorial_chat.conversation_database.data_models.source import Source
from memorial_chat.conversation_database.data_models.stored_turn import StoredTurn

EMPTY_MESSAGE = "Empty message"
UNPARSEABLE_MESSAGE = "Unable to parse message"

_METADATA_FIELDS = ("additional_kwargs", "response_metadata", "tool_calls", "invalid_tool_calls")


class PayloadMetadata(BaseModel):
    """Pass-through fields of an object payload, kept only when well-typed."""

    additional_kwargs: dict[str, Any] | None = None
    response_metadata: dict[str, Any] | None = None
    tool_calls: list[Any] | None = None
    invalid_tool_calls: list[Any] | None = None


class PlainText(BaseModel):
    """Legacy row: the whole 'message' column is a string typed by the visitor."""

    text: str


class ObjectPayload(BaseModel):
    """'{type, content}' object whose content is used as-is (human turns, AI turns with non-string content)."""

    type: MessageType
    content: Any
    metadata: PayloadMetadata


class AiTextPayload(BaseModel):
    """AI turn whose string content is not a structured answer."""

    content: str
    metadata: PayloadMetadata


class AiStructuredPayload(BaseModel):
    """AI turn whose content decoded to '{"output": [...]}'."""

    output: list[Any]
    metadata: PayloadMetadata


class Unparseable(BaseModel):
    """Anything else: null, numbers, lists, objects without 'type'/'content'."""

    raw_type: str


RawPayload = PlainText | ObjectPayload | AiTextPayload | AiStructuredPayload | Unparseable


def decode_payload(raw: Any) -> RawPayload:
    if isinstance(raw, str):
        return PlainText(text=raw)

    if not isinstance(raw, Mapping) or "type" not in raw or "content" not in raw:
        return Unparseable(raw_type=type(raw).__name__)

    metadata = _extract_metadata(raw)
    content = raw["content"]

    if raw["type"] == MessageType.AI and isinstance(content, str):
        try:
            parsed = json.loads(content)
        except (json.JSONDecodeError, RecursionError):
            logger.debug("AI content is not JSON, treating it as plain text")
            return AiTextPayload(content=content, metadata=metadata)
        if isinstance(parsed, Mapping) and isinstance(parsed.get("output"), list):
            return AiStructuredPayload(output=parsed["output"], metadata=metadata)
        return AiTextPayload(content=content, metadata=metadata)

    message_type = MessageType.HUMAN if raw["type"] == MessageType.HUMAN else MessageType.AI
    return ObjectPayload(type=message_type, content=content, metadata=metadata)


def _extract_metadata(raw: Mapping[str, Any]) -> PayloadMetadata:
    fields: dict[str, Any] = {}
    for name in _METADATA_FIELDS:
        value = raw.get(name)
        expected = list if name.endswith("tool_calls") else Mapping
        if isinstance(value, expected):
            fields[name] = value
    return PayloadMetadata.model_validate(fields)


def build_source_map(sources: Iterable[Source]) -> dict[str, SourceInfo]:
    return {source.id: SourceInfo(title=source.title, type=source.type) for source in sources}


def resolve_source(chunk_source_id: str, source_map: Mapping[str, SourceInfo]) -> tuple[str, SourceInfo | None]:
    """
    Map the id reported by the answering pipeline to a known source.

    The pipeline sometimes reports a wrong id when the notebook holds a single
    source, so a miss against a one-entry map resolves to that entry. With zero
    or several sources a miss stays unresolved and the original id is kept.
    """
    info = source_map.get(chunk_source_id)
    if info is not None:
        return chunk_source_id, info
    if len(source_map) == 1:
        (only_id, only_info), = source_map.items()
        logger.warning(f"Citation source {chunk_source_id!r} not found, using the only source {only_id!r}")
        return only_id, only_info
    logger.warning(f"Citation source {chunk_source_id!r} not found among {len(source_map)} sources")
    return chunk_source_id, None


def _as_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


def _build_citation(citation_id: int, raw: Mapping[str, Any], source_map: Mapping[str, SourceInfo]) -> Citation:
    source_id, info = resolve_source(str(raw.get("chunk_source_id") or ""), source_map)
    lines_from = _as_int(raw.get("chunk_lines_from"))
    lines_to = _as_int(raw.get("chunk_lines_to"))

    excerpt = raw.get("chunk_text") if isinstance(raw.get("chunk_text"), str) else None
    if not excerpt and (lines_from is not None or lines_to is not None):
        excerpt = f"Lines {lines_from}-{lines_to}"

    return Citation(
        citation_id=citation_id,
        source_id=source_id,
        source_title=info.title if info else UNKNOWN_SOURCE_TITLE,
        source_type=info.type if info else SourceType.PDF,
        chunk_index=_as_int(raw.get("chunk_index")),
        excerpt=excerpt or None,
        chunk_lines_from=lines_from,
        chunk_lines_to=lines_to,
    )


def build_segments(output: list[Any], source_map: Mapping[str, SourceInfo]) -> CitedContent:
    """
    Fold the 'output' items of a structured answer into segments and citations.

    The citation counter starts at 1 and advances once per item that carries
    citations, so every cited item owns exactly one 'citation_id'. When an item
    lists several citations the first one is kept; the rest point at the same
    id and are dropped so ids stay unique within the message.
    """
    segments: list[MessageSegment] = []
    citations: list[Citation] = []
    next_id = 1

    for item in output:
        if not isinstance(item, Mapping):
            logger.debug(f"Output item of type {type(item).__name__} has no text, keeping an empty segment")
            segments.append(MessageSegment(text=""))
            continue
        text = item.get("text")
        listed = item.get("citations")
        raw_citations = [c for c in listed if isinstance(c, Mapping)] if isinstance(listed, list) else []

        if not raw_citations:
            segments.append(MessageSegment(text=text if isinstance(text, str) else ""))
            continue

        citations.append(_build_citation(next_id, raw_citations[0], source_map))
        if len(raw_citations) > 1:
            logger.debug(f"Citation {next_id}: dropping {len(raw_citations) - 1} extra citation(s) of the same segment")
        segments.append(MessageSegment(text=text if isinstance(text, str) else "", citation_id=next_id))
        next_id += 1

    return CitedContent(segments=segments, citations=citations)


def _coerce_content(content: Any) -> str | CitedContent:
    if isinstance(content, str):
        return content or EMPTY_MESSAGE
    if not content:
        return EMPTY_MESSAGE
    if isinstance(content, Mapping) and "segments" in content:
        try:
            return CitedContent.model_validate(content)
        except ValidationError:
            logger.warning("Stored segments could not be validated, showing them as text")
    try:
        return json.dumps(content, ensure_ascii=False)
    except (TypeError, ValueError):
        return str(content)


def transform_message(turn: StoredTurn, source_map: Mapping[str, SourceInfo]) -> NormalizedMessage:
    payload = decode_payload(turn.message)

    match payload:
        case PlainText(text=text):
            message = ChatMessage(type=MessageType.HUMAN, content=text)
        case AiStructuredPayload(output=output, metadata=metadata):
            message = ChatMessage(
                type=MessageType.AI, content=build_segments(output, source_map), **metadata.model_dump()
            )
        case AiTextPayload(content=content, metadata=metadata):
            message = ChatMessage(type=MessageType.AI, content=content, **metadata.model_dump())
        case ObjectPayload(type=message_type, content=content, metadata=metadata):
            message = ChatMessage(type=message_type, content=_coerce_content(content), **metadata.model_dump())
        case Unparseable(raw_type=raw_type):
            logger.warning(f"Turn {turn.id}: cannot decode message of type {raw_type}")
            message = ChatMessage(type=MessageType.HUMAN, content=UNPARSEABLE_MESSAGE)

    logger.debug(f"Turn {turn.id} transformed as {message.type}")
    return NormalizedMessage(id=turn.id, session_id=turn.session_id, message=message)


def transform_messages(turns: Iterable[StoredTurn], source_map: Mapping[str, SourceInfo]) -> list[NormalizedMessage]:
    return [transform_message(turn, source_map) for turn in sorted(turns, key=lambda t: t.id)]
