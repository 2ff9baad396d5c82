"""
Document Models
===============
Controlled project documents. The database row is the source of truth;
the stored file is referenced by ``file_path``.
"""

import enum

from sqlalchemy import (
    BigInteger,
    Column,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)

from .base import Base, TimestampMixin


class DocumentStatus(str, enum.Enum):
    """
    Document lifecycle status.

    DRAFT: Registered, not yet issued
    REVIEW: Issued for review/comment
    APPROVED: Approved for construction / use
    SUPERSEDED: Replaced by a later revision
    MISSING: Record exists but the stored file vanished
    """
    DRAFT = "draft"
    REVIEW = "review"
    APPROVED = "approved"
    SUPERSEDED = "superseded"
    MISSING = "missing"


class Document(TimestampMixin, Base):
    """
    Document register entry.

    Attributes:
        document_number: Project document number (e.g. ``P100-ME-DS-001``)
        revision: Revision label, ``0`` for first issue
        file_path: Path of the uploaded file, if any
        size_bytes: Size of the uploaded file
    """
    __tablename__ = "documents"

    id = Column(Integer, primary_key=True, autoincrement=True)

    project_id = Column(
        Integer,
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        doc="Parent project ID"
    )

    document_number = Column(String(100), nullable=True)
    name = Column(String(512), nullable=False, doc="Original or display filename")
    title = Column(String(512), nullable=True)
    description = Column(Text, nullable=True)
    category = Column(String(50), nullable=True)
    discipline = Column(String(50), nullable=True)
    document_type = Column(String(50), nullable=True)
    revision = Column(String(20), nullable=False, default="0")

    status = Column(
        Enum(
            DocumentStatus,
            native_enum=False,
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
        default=DocumentStatus.DRAFT,
        doc="Current document lifecycle state"
    )

    file_path = Column(String(1024), nullable=True, doc="Stored file on disk")
    file_type = Column(String(20), nullable=True)
    size_bytes = Column(BigInteger, nullable=True)
    uploaded_by = Column(String(64), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    __table_args__ = (
        Index("ix_documents_project_status", "project_id", "status"),
    )

    def __repr__(self) -> str:
        return (
            f"<Document("
            f"id={self.id}, "
            f"name='{self.name}', "
            f"status={self.status.value if self.status else None}"
            f")>"
        )
