"""
Document Service
================
Document register and file uploads.

The database is the source of truth, not the filesystem: every stored
file belongs to a ``Document`` row, and ``sync_storage_consistency``
flags rows whose file has vanished.
"""

import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

import metrics as app_metrics
from config import Settings, get_settings
from exceptions import NotFoundError, UploadRejectedError
from models import Document, DocumentStatus

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = frozenset({
    "pdf", "doc", "docx", "xls", "xlsx", "ppt", "pptx", "csv", "txt", "md",
    "png", "jpg", "jpeg", "gif", "dwg", "dxf", "xml", "json", "zip",
})

BLOCKED_EXTENSIONS = frozenset({
    "exe", "dll", "bat", "cmd", "com", "msi", "scr", "sh", "bash", "ps1",
    "vbs", "js", "mjs", "jar", "py", "rb", "pl", "php", "cgi", "app", "so",
})

# Executable and script signatures, rejected whatever the extension says
EXECUTABLE_SIGNATURES: Tuple[Tuple[bytes, str], ...] = (
    (b"MZ", "Windows executable"),
    (b"\x7fELF", "ELF executable"),
    (b"\xfe\xed\xfa\xce", "Mach-O executable"),
    (b"\xfe\xed\xfa\xcf", "Mach-O executable"),
    (b"\xce\xfa\xed\xfe", "Mach-O executable"),
    (b"\xcf\xfa\xed\xfe", "Mach-O executable"),
    (b"\xca\xfe\xba\xbe", "Mach-O universal binary"),
    (b"#!", "script"),
)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")


def sanitize_filename(filename: str) -> str:
    """
    Reduce an uploaded filename to a safe basename.

    Directory components are dropped, characters outside ``[A-Za-z0-9._-]``
    become ``_`` and leading dots are stripped.
    """
    base = re.split(r"[\\/]", filename or "")[-1]
    safe = _UNSAFE_CHARS.sub("_", base).lstrip(".")
    return safe[:200] or "upload"


def file_extension(filename: str) -> str:
    name = filename.rsplit("/", 1)[-1]
    return name.rsplit(".", 1)[-1].lower() if "." in name else ""


def sniff_executable(content: bytes) -> Optional[str]:
    """Name of the executable format ``content`` starts with, if any."""
    for signature, label in EXECUTABLE_SIGNATURES:
        if content.startswith(signature):
            return label
    return None


def validate_upload(filename: str, content: bytes, max_bytes: int) -> Tuple[str, str]:
    """
    Check an upload before anything is written.

    Returns:
        ``(safe_filename, extension)``

    Raises:
        UploadRejectedError: 413 when too large, 415 for disallowed types
    """
    if len(content) > max_bytes:
        app_metrics.uploads_rejected_total.labels(reason="too_large").inc()
        raise UploadRejectedError(
            f"File exceeds the {max_bytes // (1024 * 1024)} MB upload limit",
            filename=filename,
            too_large=True,
        )

    extension = file_extension(filename or "")
    if extension in BLOCKED_EXTENSIONS:
        app_metrics.uploads_rejected_total.labels(reason="blocked_extension").inc()
        raise UploadRejectedError(f"File type '.{extension}' is not allowed", filename=filename)
    if extension not in ALLOWED_EXTENSIONS:
        app_metrics.uploads_rejected_total.labels(reason="unsupported_extension").inc()
        raise UploadRejectedError(
            f"Unsupported file type '.{extension}'" if extension else "File has no extension",
            filename=filename,
        )

    detected = sniff_executable(content[:8])
    if detected:
        app_metrics.uploads_rejected_total.labels(reason="executable_content").inc()
        logger.warning(f"Rejected upload with executable content: filename={filename}, detected={detected}")
        raise UploadRejectedError("File content is not allowed", filename=filename)

    return sanitize_filename(filename), extension


class DocumentService:
    """
    Document register operations bound to one session.

    Usage:
        service = DocumentService.from_session(session)
        doc = await service.store_upload(project_id, "P&ID rev B.pdf", content, user_id)
    """

    def __init__(self, session: AsyncSession, settings: Optional[Settings] = None):
        self._session = session
        self.settings = settings or get_settings()

    @classmethod
    def from_session(cls, session: AsyncSession) -> "DocumentService":
        return cls(session)

    @property
    def upload_root(self) -> Path:
        return Path(self.settings.upload_dir)

    # =========================================================================
    # CRUD Operations
    # =========================================================================

    async def list_documents(self, project_id: int, status: Optional[str] = None) -> List[Document]:
        stmt = select(Document).where(Document.project_id == project_id)
        if status:
            stmt = stmt.where(Document.status == DocumentStatus(status))
        stmt = stmt.order_by(Document.created_at.desc(), Document.id.desc())
        return list((await self._session.execute(stmt)).scalars().all())

    async def get_document(self, project_id: int, doc_id: int) -> Document:
        doc = await self._session.get(Document, doc_id)
        if doc is None or doc.project_id != project_id:
            raise NotFoundError("Document", doc_id)
        return doc

    async def create_document(self, project_id: int, data: Dict[str, Any], user_id: Optional[str]) -> Document:
        values = dict(data)
        if values.get("status"):
            values["status"] = DocumentStatus(values["status"])
        doc = Document(project_id=project_id, uploaded_by=user_id, **values)
        self._session.add(doc)
        await self._session.flush()
        logger.info(f"Created document record: id={doc.id}, project_id={project_id}")
        return doc

    async def update_document(self, doc: Document, changes: Dict[str, Any]) -> Document:
        for key, value in changes.items():
            if key == "status" and value is not None:
                value = DocumentStatus(value)
            setattr(doc, key, value)
        await self._session.flush()
        return doc

    async def delete_document(self, doc: Document) -> None:
        """Delete the record and its stored file."""
        if doc.file_path:
            Path(doc.file_path).unlink(missing_ok=True)
        await self._session.delete(doc)
        await self._session.flush()
        logger.info(f"Deleted document record: id={doc.id}")

    # =========================================================================
    # Uploads
    # =========================================================================

    async def store_upload(
        self,
        project_id: int,
        filename: str,
        content: bytes,
        user_id: Optional[str],
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Document:
        """
        Validate, write to ``upload_dir/<project_id>/<uuid>_<name>`` and register.

        Raises:
            UploadRejectedError: See ``validate_upload``
        """
        safe_name, extension = validate_upload(filename, content, self.settings.max_upload_bytes)

        target_dir = self.upload_root / str(project_id)
        target_dir.mkdir(parents=True, exist_ok=True)
        target = target_dir / f"{uuid4().hex}_{safe_name}"
        target.write_bytes(content)

        values = {k: v for k, v in (metadata or {}).items() if v is not None}
        values.setdefault("name", safe_name)
        values.update(file_path=str(target), file_type=extension, size_bytes=len(content))

        try:
            doc = await self.create_document(project_id, values, user_id)
        except Exception:
            target.unlink(missing_ok=True)
            raise

        logger.info(f"Stored upload: doc_id={doc.id}, bytes={len(content)}, type={extension}")
        return doc

    async def resolve_download(self, doc: Document) -> Path:
        """
        Path of the stored file.

        Raises:
            NotFoundError: No file attached, or the file vanished (the
                record is then marked MISSING)
        """
        if not doc.file_path:
            raise NotFoundError("Document file", doc.id)
        path = Path(doc.file_path)
        if not path.is_file():
            doc.status = DocumentStatus.MISSING
            await self._session.flush()
            logger.warning(f"Stored file missing on download: doc_id={doc.id}")
            raise NotFoundError("Document file", doc.id)
        return path

    # =========================================================================
    # Consistency Check (Self-Healing)
    # =========================================================================

    async def sync_storage_consistency(self, project_id: Optional[int] = None) -> Dict[str, Any]:
        """
        Mark documents whose stored file vanished as MISSING.

        Only rows that reference a file and are not already MISSING are
        checked. Never raises for individual rows.

        Returns:
            Dict with ``checked``, ``healthy``, ``missing`` and ``errors``
        """
        stats: Dict[str, Any] = {"checked": 0, "healthy": 0, "missing": 0, "errors": []}

        stmt = select(Document).where(
            Document.file_path.is_not(None),
            Document.status != DocumentStatus.MISSING,
        )
        if project_id is not None:
            stmt = stmt.where(Document.project_id == project_id)
        documents = list((await self._session.execute(stmt)).scalars().all())
        stats["checked"] = len(documents)

        for doc in documents:
            try:
                if Path(doc.file_path).exists():
                    stats["healthy"] += 1
                    continue
                doc.status = DocumentStatus.MISSING
                stats["missing"] += 1
                logger.warning(f"Storage consistency check failed: doc_id={doc.id}, file missing")
            except OSError as e:
                logger.error(f"Storage consistency check error: doc_id={doc.id}, error={e}")
                stats["errors"].append({"doc_id": doc.id, "error": str(e)})

        await self._session.flush()
        logger.info(
            f"Storage consistency check complete: "
            f"checked={stats['checked']}, healthy={stats['healthy']}, missing={stats['missing']}"
        )
        return stats
