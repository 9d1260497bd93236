"""Content type detection from the leading bytes of a payload."""

import mimetypes

import magic

SNIFF_LENGTH = 2048
DEFAULT_BINARY_TYPE = "application/octet-stream"
PLAIN_TEXT_TYPE = "text/plain; charset=utf-8"
UTF8_PARAMETER = "; charset=utf-8"


def sniff_content_type(content: bytes) -> str:
    """Return a MIME type for ``content`` as reported by libmagic.

    Text types are labelled UTF-8 and an empty payload counts as plain text.
    """
    if not content:
        return PLAIN_TEXT_TYPE
    mime_type = magic.from_buffer(content[:SNIFF_LENGTH], mime=True)
    if not mime_type:
        return DEFAULT_BINARY_TYPE
    if mime_type.startswith("text/"):
        return mime_type + UTF8_PARAMETER
    return mime_type


def content_type_for(path: str, content: bytes) -> str:
    """Sniff ``content``, consulting the file extension only for opaque bytes."""
    sniffed = sniff_content_type(content)
    if sniffed != DEFAULT_BINARY_TYPE:
        return sniffed
    mime_type, _ = mimetypes.guess_type(path)
    return mime_type or DEFAULT_BINARY_TYPE
