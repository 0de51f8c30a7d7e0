"""Batch upload intake: type detection, ZIP expansion and size limits."""

import io
import logging
import zipfile
from pathlib import PurePosixPath

from services.batch.models import SourceDocument
from services.shared.config import Settings

logger = logging.getLogger(__name__)

MB = 1024 * 1024

PDF = "application/pdf"
PNG = "image/png"
JPEG = "image/jpeg"
ZIP = "application/zip"

ALLOWED_MIME_TYPES = frozenset({PDF, PNG, JPEG})
EXTENSION_MIME_TYPES = {".pdf": PDF, ".png": PNG, ".jpg": JPEG, ".jpeg": JPEG, ".zip": ZIP}


class IntakeError(ValueError):
    """Upload rejected before job creation."""


def detect_mime_type(filename: str, content: bytes) -> str | None:
    """Identify PDF, PNG, JPEG or ZIP by magic bytes, then by extension."""
    if content.startswith(b"%PDF"):
        return PDF
    if content.startswith(b"\x89PNG\r\n\x1a\n"):
        return PNG
    if content.startswith(b"\xff\xd8\xff"):
        return JPEG
    if content.startswith(b"PK\x03\x04"):
        return ZIP
    return EXTENSION_MIME_TYPES.get(PurePosixPath(filename.lower()).suffix)


def _skip_member(info: zipfile.ZipInfo) -> bool:
    name = PurePosixPath(info.filename)
    return (
        info.is_dir()
        or "__MACOSX" in name.parts
        or name.name.startswith(".")
    )


def expand_zip(filename: str, content: bytes, max_file_bytes: int) -> list[SourceDocument]:
    """Extract supported documents from a ZIP archive.

    Directories, macOS resource forks and hidden files are skipped, as are members of
    unsupported type.

    Raises:
        IntakeError: If the archive is corrupt or a member exceeds the file size limit
    """
    documents: list[SourceDocument] = []
    try:
        with zipfile.ZipFile(io.BytesIO(content)) as archive:
            for info in archive.infolist():
                if _skip_member(info):
                    continue
                if info.file_size > max_file_bytes:
                    raise IntakeError(
                        f"{filename}: {info.filename} exceeds the {max_file_bytes // MB} MB file limit"
                    )
                data = archive.read(info)
                member_name = PurePosixPath(info.filename).name
                mime_type = detect_mime_type(member_name, data)
                if mime_type not in ALLOWED_MIME_TYPES:
                    logger.warning(f"Skipping unsupported ZIP member {info.filename} in {filename}")
                    continue
                documents.append(SourceDocument(filename=member_name, mime_type=mime_type, content=data))
    except zipfile.BadZipFile as e:
        raise IntakeError(f"{filename}: invalid ZIP archive ({e})") from e
    return documents


def prepare_sources(uploads: list[tuple[str, bytes]], settings: Settings) -> list[SourceDocument]:
    """Validate uploads and expand ZIP archives into source documents.

    Args:
        uploads: (filename, content) pairs as received
        settings: Limits (batch_max_file_size_mb, batch_max_total_size_mb, batch_max_files)

    Returns:
        Source documents in upload order

    Raises:
        IntakeError: If a limit is exceeded or no supported document remains
    """
    max_file_bytes = settings.batch_max_file_size_mb * MB
    max_total_bytes = settings.batch_max_total_size_mb * MB

    total = sum(len(content) for _, content in uploads)
    if total > max_total_bytes:
        raise IntakeError(f"Batch exceeds the {settings.batch_max_total_size_mb} MB total limit")

    documents: list[SourceDocument] = []
    for filename, content in uploads:
        if not content:
            raise IntakeError(f"{filename}: empty file")
        if len(content) > max_file_bytes:
            raise IntakeError(f"{filename}: exceeds the {settings.batch_max_file_size_mb} MB file limit")

        mime_type = detect_mime_type(filename, content)
        if mime_type == ZIP:
            documents.extend(expand_zip(filename, content, max_file_bytes))
        elif mime_type in ALLOWED_MIME_TYPES:
            documents.append(SourceDocument(filename=filename, mime_type=mime_type, content=content))
        else:
            raise IntakeError(f"{filename}: unsupported file type, expected PDF, PNG, JPEG or ZIP")

        if len(documents) > settings.batch_max_files:
            raise IntakeError(f"Batch exceeds the {settings.batch_max_files} file limit")

    if sum(len(doc.content) for doc in documents) > max_total_bytes:
        raise IntakeError(f"Batch exceeds the {settings.batch_max_total_size_mb} MB total limit")
    if not documents:
        raise IntakeError("No supported documents in upload")

    logger.info(f"Accepted {len(documents)} document(s) from {len(uploads)} upload(s)")
    return documents
