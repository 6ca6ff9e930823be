"""Builder snapshot models, persisted with the editor's camelCase keys."""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from webhook_scheduler.constants.message_limits import DEFAULT_EMBED_COLOR


class SnapshotModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class EmbedField(SnapshotModel):
    id: str = ""
    name: str = ""
    value: str = ""
    inline: bool = False


class EmbedData(SnapshotModel):
    id: str = ""
    author_name: str = ""
    author_url: str = ""
    author_icon_url: str = ""
    title: str = ""
    url: str = ""
    description: str = ""
    color: str = DEFAULT_EMBED_COLOR
    image_url: str = ""
    thumbnail_url: str = ""
    footer_text: str = ""
    footer_icon_url: str = ""
    timestamp_value: Optional[str] = None
    fields: List[EmbedField] = Field(default_factory=list)


class StoredFileAttachment(SnapshotModel):
    name: str
    size: int = Field(0, ge=0)
    mime_type: str = "application/octet-stream"
    storage_path: str
    original_index: Optional[int] = None


class BuilderState(SnapshotModel):
    """Everything the editor needs to rebuild a message."""
    content: str = ""
    username: str = ""
    avatar_url: str = ""
    thread_name: str = ""
    suppress_embeds: bool = False
    suppress_notifications: bool = False
    embeds: List[EmbedData] = Field(default_factory=list)
    files: List[StoredFileAttachment] = Field(default_factory=list)
    webhook_url: Optional[str] = None

    def to_storage(self) -> dict:
        """Dump with the camelCase keys the editor reads back."""
        return self.model_dump(by_alias=True, exclude={"webhook_url"})
