"""
Conversion between builder snapshots and the webhook wire payload.

build_payload() emits only fields that carry a value: the receiving API treats
an absent key differently from an empty one. hydrate() is the tolerant inverse
used for anything read back from storage and never raises.
"""

import json
import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from webhook_scheduler.constants.message_limits import (
    DEFAULT_EMBED_COLOR,
    MAX_ATTACHMENT_BYTES,
    MAX_CONTENT_LENGTH,
    MAX_EMBED_DESCRIPTION_LENGTH,
    MAX_EMBEDS,
    SUPPRESS_EMBEDS_FLAG,
    SUPPRESS_NOTIFICATIONS_FLAG,
)
from webhook_scheduler.schemas.builder import (
    BuilderState,
    EmbedData,
    EmbedField,
    StoredFileAttachment,
)

log = logging.getLogger(__name__)

_HEX_COLOR_RE = re.compile(r"^#?([0-9A-Fa-f]{6})$")


class PayloadValidationError(ValueError):
    """Snapshot cannot be delivered as-is."""

    def __init__(self, errors: List[str]):
        self.errors = errors
        super().__init__("; ".join(errors))


def calculate_message_flags(suppress_embeds: bool, suppress_notifications: bool) -> int:
    flags = 0
    if suppress_embeds:
        flags |= SUPPRESS_EMBEDS_FLAG
    if suppress_notifications:
        flags |= SUPPRESS_NOTIFICATIONS_FLAG
    return flags


def parse_color(value: Any) -> Optional[int]:
    """'#5865F2' or '5865F2' -> 5793266. Anything else is absent, never zero."""
    if not isinstance(value, str):
        return None
    match = _HEX_COLOR_RE.match(value.strip())
    if not match:
        return None
    return int(match.group(1), 16)


def normalize_timestamp(value: Any) -> Optional[str]:
    """
    Normalize an ISO-8601 timestamp to 'YYYY-MM-DDTHH:MM:SS.mmmZ'.

    Naive values (the editor's datetime-local input) are taken as UTC.
    Returns None when the value cannot be parsed.
    """
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    parsed = parsed.astimezone(timezone.utc)
    return parsed.strftime("%Y-%m-%dT%H:%M:%S.") + f"{parsed.microsecond // 1000:03d}Z"


def embed_has_renderable_content(embed: EmbedData) -> bool:
    has_fields = any(field.name.strip() or field.value.strip() for field in embed.fields)
    return bool(
        embed.author_name.strip()
        or embed.title.strip()
        or embed.description.strip()
        or embed.footer_text.strip()
        or embed.image_url.strip()
        or embed.thumbnail_url.strip()
        or has_fields
        or embed.timestamp_value
    )


def transform_embed(embed: EmbedData) -> Dict[str, Any]:
    payload: Dict[str, Any] = {}

    if embed.author_name.strip():
        author = {"name": embed.author_name.strip()}
        if embed.author_url.strip():
            author["url"] = embed.author_url.strip()
        if embed.author_icon_url.strip():
            author["icon_url"] = embed.author_icon_url.strip()
        payload["author"] = author

    if embed.title.strip():
        payload["title"] = embed.title.strip()
    if embed.url.strip():
        payload["url"] = embed.url.strip()
    if embed.description.strip():
        payload["description"] = embed.description.strip()

    color = parse_color(embed.color)
    if color is not None:
        payload["color"] = color

    if embed.image_url.strip():
        payload["image"] = {"url": embed.image_url.strip()}
    if embed.thumbnail_url.strip():
        payload["thumbnail"] = {"url": embed.thumbnail_url.strip()}

    if embed.footer_text.strip():
        footer = {"text": embed.footer_text.strip()}
        if embed.footer_icon_url.strip():
            footer["icon_url"] = embed.footer_icon_url.strip()
        payload["footer"] = footer

    timestamp = normalize_timestamp(embed.timestamp_value)
    if timestamp:
        payload["timestamp"] = timestamp

    fields = [
        {"name": field.name.strip(), "value": field.value.strip(), "inline": field.inline}
        for field in embed.fields
        if field.name.strip() and field.value.strip()
    ]
    if fields:
        payload["fields"] = fields

    return payload


def build_payload(snapshot: BuilderState) -> Dict[str, Any]:
    """Materialize the wire payload for a builder snapshot."""
    payload: Dict[str, Any] = {}

    content = snapshot.content.strip()
    if content:
        payload["content"] = content

    username = snapshot.username.strip()
    if username:
        payload["username"] = username

    avatar_url = snapshot.avatar_url.strip()
    if avatar_url:
        payload["avatar_url"] = avatar_url

    thread_name = snapshot.thread_name.strip()
    if thread_name:
        payload["thread_name"] = thread_name

    flags = calculate_message_flags(snapshot.suppress_embeds, snapshot.suppress_notifications)
    if flags:
        payload["flags"] = flags

    embeds = [
        embed_payload
        for embed_payload in (
            transform_embed(embed) for embed in snapshot.embeds if embed_has_renderable_content(embed)
        )
        if embed_payload
    ]
    if embeds:
        payload["embeds"] = embeds

    return payload


def validate_snapshot(snapshot: BuilderState) -> None:
    """Raise PayloadValidationError if the snapshot cannot be delivered."""
    errors: List[str] = []
    renderable = [embed for embed in snapshot.embeds if embed_has_renderable_content(embed)]

    if not snapshot.content.strip() and not renderable and not snapshot.files:
        errors.append("Cannot send an empty message: add content, an embed or a file")
    if len(snapshot.content.strip()) > MAX_CONTENT_LENGTH:
        errors.append(f"Content exceeds {MAX_CONTENT_LENGTH} characters")
    if len(renderable) > MAX_EMBEDS:
        errors.append(f"A message can have at most {MAX_EMBEDS} embeds")
    for index, embed in enumerate(renderable):
        if len(embed.description.strip()) > MAX_EMBED_DESCRIPTION_LENGTH:
            errors.append(f"Embed {index + 1} description exceeds {MAX_EMBED_DESCRIPTION_LENGTH} characters")
    if sum(file.size for file in snapshot.files) > MAX_ATTACHMENT_BYTES:
        errors.append("Total file size exceeds 25 MB")

    if errors:
        raise PayloadValidationError(errors)


# Hydration helpers: every helper accepts arbitrary JSON and falls back to a default.

def _pick(data: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return None


def _as_str(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return ""


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    if isinstance(value, (int, float)):
        return value != 0
    return False


def _as_list(value: Any) -> list:
    return value if isinstance(value, list) else []


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _color_to_hex(value: Any) -> str:
    if isinstance(value, bool):
        return DEFAULT_EMBED_COLOR
    if isinstance(value, int) and 0 <= value <= 0xFFFFFF:
        return f"#{value:06X}"
    if isinstance(value, str) and value.strip():
        return value.strip()
    return DEFAULT_EMBED_COLOR


def _hydrate_field(data: Dict[str, Any]) -> EmbedField:
    return EmbedField(
        id=_as_str(data.get("id")),
        name=_as_str(data.get("name")),
        value=_as_str(data.get("value")),
        inline=_as_bool(data.get("inline")),
    )


def _hydrate_embed(data: Dict[str, Any]) -> EmbedData:
    # Editor snapshots use flat camelCase keys; wire payloads nest author/image/footer.
    author = _as_dict(data.get("author"))
    footer = _as_dict(data.get("footer"))
    image = _as_dict(data.get("image"))
    thumbnail = _as_dict(data.get("thumbnail"))
    timestamp = _pick(data, "timestampValue", "timestamp_value", "timestamp")

    return EmbedData(
        id=_as_str(data.get("id")),
        author_name=_as_str(_pick(data, "authorName", "author_name") or author.get("name")),
        author_url=_as_str(_pick(data, "authorUrl", "author_url") or author.get("url")),
        author_icon_url=_as_str(_pick(data, "authorIconUrl", "author_icon_url") or author.get("icon_url")),
        title=_as_str(data.get("title")),
        url=_as_str(data.get("url")),
        description=_as_str(data.get("description")),
        color=_color_to_hex(data.get("color")),
        image_url=_as_str(_pick(data, "imageUrl", "image_url") or image.get("url")),
        thumbnail_url=_as_str(_pick(data, "thumbnailUrl", "thumbnail_url") or thumbnail.get("url")),
        footer_text=_as_str(_pick(data, "footerText", "footer_text") or footer.get("text")),
        footer_icon_url=_as_str(_pick(data, "footerIconUrl", "footer_icon_url") or footer.get("icon_url")),
        timestamp_value=_as_str(timestamp) or None,
        fields=[_hydrate_field(item) for item in _as_list(data.get("fields")) if isinstance(item, dict)],
    )


def _hydrate_file(data: Dict[str, Any]) -> Optional[StoredFileAttachment]:
    storage_path = _as_str(_pick(data, "storagePath", "storage_path"))
    if not storage_path:
        return None
    size = data.get("size")
    original_index = _pick(data, "originalIndex", "original_index")
    return StoredFileAttachment(
        name=_as_str(data.get("name")) or storage_path.rsplit("/", 1)[-1],
        size=size if isinstance(size, int) and not isinstance(size, bool) and size >= 0 else 0,
        mime_type=_as_str(_pick(data, "mimeType", "mime_type")) or "application/octet-stream",
        storage_path=storage_path,
        original_index=original_index if isinstance(original_index, int) and not isinstance(original_index, bool) else None,
    )


def hydrate(stored: Any) -> BuilderState:
    """
    Rebuild a BuilderState from whatever was persisted.

    Accepts the editor snapshot, older snake_case snapshots, a JSON string, or a
    wire payload. Unknown keys are ignored, missing or mistyped ones default.
    """
    if isinstance(stored, BuilderState):
        return stored
    if isinstance(stored, (str, bytes)):
        try:
            stored = json.loads(stored)
        except ValueError:
            log.warning("Stored builder state is not valid JSON; using defaults")
            stored = {}
    data = _as_dict(stored)

    flags = data.get("flags")
    flags = flags if isinstance(flags, int) and not isinstance(flags, bool) else 0
    suppress_embeds = _pick(data, "suppressEmbeds", "suppress_embeds")
    suppress_notifications = _pick(data, "suppressNotifications", "suppress_notifications")

    files = [
        hydrated
        for hydrated in (_hydrate_file(item) for item in _as_list(data.get("files")) if isinstance(item, dict))
        if hydrated is not None
    ]
    webhook_url = _as_str(_pick(data, "webhookUrl", "webhook_url")) or None

    return BuilderState(
        content=_as_str(data.get("content")),
        username=_as_str(data.get("username")),
        avatar_url=_as_str(_pick(data, "avatarUrl", "avatar_url")),
        thread_name=_as_str(_pick(data, "threadName", "thread_name")),
        suppress_embeds=_as_bool(suppress_embeds) if suppress_embeds is not None else bool(flags & SUPPRESS_EMBEDS_FLAG),
        suppress_notifications=(
            _as_bool(suppress_notifications)
            if suppress_notifications is not None
            else bool(flags & SUPPRESS_NOTIFICATIONS_FLAG)
        ),
        embeds=[_hydrate_embed(item) for item in _as_list(data.get("embeds")) if isinstance(item, dict)],
        files=files,
        webhook_url=webhook_url,
    )
