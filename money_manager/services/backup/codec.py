"""
Attachment Codec

Voucher attachments are binary and the backup document is JSON text, so
attachments travel as standard base64 (RFC 4648, padded).

Bytes are processed in bounded chunks. Raw chunks are a multiple of 3
bytes, so each chunk encodes to whole base64 groups with no inner
padding and the concatenated pieces equal the one-shot encoding. Text is
decoded in pieces that are a multiple of 4 characters for the same reason.
"""

import base64
import binascii
import re
from typing import Iterator


DEFAULT_CHUNK_SIZE = 196608

_WHITESPACE = re.compile(r"\s+")


class BackupError(Exception):
    """Base exception for backup export/import."""
    pass


class InvalidDocumentError(BackupError):
    """Backup input is not a document we can restore."""
    pass


class AttachmentDecodeError(BackupError):
    """An attachment's base64 text does not decode to bytes."""

    def __init__(self, message: str, record_id: str = ""):
        self.record_id = record_id
        super().__init__(message)


def _check_chunk_size(chunk_size: int) -> None:
    if chunk_size <= 0 or chunk_size % 3 != 0:
        raise ValueError(f"chunk_size must be a positive multiple of 3, got {chunk_size}")


def iter_encoded_chunks(data: bytes, chunk_size: int = DEFAULT_CHUNK_SIZE) -> Iterator[str]:
    """Yield the base64 encoding of `data` one chunk at a time."""
    _check_chunk_size(chunk_size)
    view = memoryview(data)
    for start in range(0, len(view), chunk_size):
        yield base64.b64encode(view[start:start + chunk_size]).decode("ascii")


def encode_attachment(data: bytes, chunk_size: int = DEFAULT_CHUNK_SIZE) -> str:
    """Encode attachment bytes as base64 text."""
    return "".join(iter_encoded_chunks(data, chunk_size))


def decode_attachment(text: str, chunk_size: int = DEFAULT_CHUNK_SIZE) -> bytes:
    """
    Decode base64 text back to the exact original bytes.

    ASCII whitespace (line breaks from other tools) is ignored; anything
    else outside the base64 alphabet is an error.

    Raises:
        AttachmentDecodeError: If the text is not valid base64
    """
    _check_chunk_size(chunk_size)
    if not isinstance(text, str):
        raise AttachmentDecodeError(
            f"Attachment must be base64 text, got {type(text).__name__}"
        )

    compact = _WHITESPACE.sub("", text)
    if len(compact) % 4 != 0:
        raise AttachmentDecodeError(
            f"Attachment base64 length {len(compact)} is not a multiple of 4"
        )

    step = chunk_size // 3 * 4
    out = bytearray()
    try:
        for start in range(0, len(compact), step):
            out += base64.b64decode(compact[start:start + step], validate=True)
    except (binascii.Error, ValueError) as e:
        raise AttachmentDecodeError(f"Attachment is not valid base64: {e}") from e
    return bytes(out)
