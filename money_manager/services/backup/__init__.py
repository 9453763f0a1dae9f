"""Backup export/import services."""

from money_manager.services.backup.codec import (
    AttachmentDecodeError,
    BackupError,
    InvalidDocumentError,
    decode_attachment,
    encode_attachment,
    iter_encoded_chunks,
)
from money_manager.services.backup.service import BackupService

__all__ = [
    "AttachmentDecodeError",
    "BackupError",
    "BackupService",
    "InvalidDocumentError",
    "decode_attachment",
    "encode_attachment",
    "iter_encoded_chunks",
]
