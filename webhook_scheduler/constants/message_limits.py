"""Limits and flag bits of the webhook message wire format."""

MAX_CONTENT_LENGTH = 2000
MAX_EMBEDS = 10
MAX_EMBED_DESCRIPTION_LENGTH = 4096
MAX_ATTACHMENT_BYTES = 25 * 1024 * 1024

# Message flag bits
SUPPRESS_EMBEDS_FLAG = 1 << 2
SUPPRESS_NOTIFICATIONS_FLAG = 1 << 12

DEFAULT_EMBED_COLOR = "#5865F2"
