"""
Attachment ingestion: validates uploaded files, names them and stores them
on disk under the upload directory.

Validation happens for the whole batch before anything is written, so a
rejected call leaves no files and no rows behind.
"""
import logging
import os
import re
import secrets
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Sequence

import errors

logger = logging.getLogger(__name__)

MAX_FILES_PER_UPLOAD = 10
MAX_FILE_SIZE = 5 * 1024 * 1024

ALLOWED_EXTENSIONS = {"jpeg", "jpg", "png", "gif", "pdf", "doc", "docx", "txt", "zip", "rar"}
ALLOWED_MEDIA_TYPES = {
    "image/jpeg",
    "image/jpg",
    "image/png",
    "image/gif",
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "text/plain",
    "application/zip",
    "application/x-rar-compressed",
}

_UNSAFE_NAME_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')


@dataclass
class IncomingFile:
    """Transport-neutral view of one uploaded file."""
    filename: str
    content_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass
class StoredFile:
    filename: str
    original_name: str
    file_path: str


def file_extension(filename: str) -> str:
    return os.path.splitext(filename or "")[1].lstrip(".").lower()


def repair_filename_encoding(name: str) -> str:
    """
    Undo the classic mojibake where UTF-8 filename bytes were decoded as
    Latin-1 by the client. Names that do not survive the round-trip are
    returned unchanged.
    """
    if name.isascii():
        return name
    try:
        return name.encode("latin-1").decode("utf-8")
    except (UnicodeEncodeError, UnicodeDecodeError):
        return name


def sanitize_display_name(name: str) -> str:
    # Browsers on Windows may send full paths.
    base = re.split(r"[\\/]", name or "")[-1]
    cleaned = _UNSAFE_NAME_CHARS.sub("_", base).strip()
    return cleaned[:255] or "file"


def generate_stored_filename(original_name: str) -> str:
    ext = re.sub(r"[^a-z0-9]", "", file_extension(original_name))
    suffix = f".{ext}" if ext else ""
    return f"{int(time.time() * 1000)}-{secrets.token_hex(8)}{suffix}"


class AttachmentStorage:
    """Flat directory of stored files, served publicly under ``url_prefix``."""

    def __init__(self, upload_dir: str, url_prefix: str = "/uploads"):
        self.upload_dir = Path(upload_dir)
        self.url_prefix = url_prefix.rstrip("/")
        self.upload_dir.mkdir(parents=True, exist_ok=True)

    def url_for(self, stored_filename: str) -> str:
        return f"{self.url_prefix}/{stored_filename}"

    def save(self, stored_filename: str, data: bytes) -> str:
        path = self.upload_dir / stored_filename
        path.write_bytes(data)
        return str(path)

    def remove(self, file_path: str) -> None:
        try:
            Path(file_path).unlink()
        except FileNotFoundError:
            logger.warning("Stored file already gone: %s", file_path)
        except OSError:
            logger.exception("Could not remove stored file %s", file_path)


class AttachmentIngestion:
    def __init__(self, storage: AttachmentStorage, repair_encoding: bool = True):
        self.storage = storage
        self.repair_encoding = repair_encoding

    def validate(self, files: Sequence[IncomingFile]) -> None:
        """Check count, size and type of every file. An empty batch passes; see require_files."""
        if len(files) > MAX_FILES_PER_UPLOAD:
            raise errors.UploadRejected(f"Too many files. Maximum {MAX_FILES_PER_UPLOAD} files per upload.")
        for incoming in files:
            if incoming.size > MAX_FILE_SIZE:
                raise errors.UploadRejected("File too large. Maximum size is 5MB per file.")
            media_type = (incoming.content_type or "").split(";")[0].strip().lower()
            if file_extension(incoming.filename) not in ALLOWED_EXTENSIONS or media_type not in ALLOWED_MEDIA_TYPES:
                raise errors.UploadRejected("Only images, PDFs, documents, and archives are allowed")

    def require_files(self, files: Sequence[IncomingFile]) -> None:
        if not files:
            raise errors.UploadRejected("No files uploaded")

    def display_name(self, filename: str) -> str:
        name = repair_filename_encoding(filename) if self.repair_encoding else filename
        return sanitize_display_name(name)

    def store(self, files: Sequence[IncomingFile]) -> List[StoredFile]:
        """Write already validated files. On a write error the ones written so far are removed."""
        stored: List[StoredFile] = []
        try:
            for incoming in files:
                original_name = self.display_name(incoming.filename)
                stored_name = generate_stored_filename(original_name)
                path = self.storage.save(stored_name, incoming.data)
                stored.append(StoredFile(filename=stored_name, original_name=original_name, file_path=path))
        except OSError:
            self.discard(stored)
            raise
        return stored

    def discard(self, stored: Sequence[StoredFile]) -> None:
        for item in stored:
            self.storage.remove(item.file_path)
