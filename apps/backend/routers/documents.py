"""
Documents Router
================
Document register and file uploads.

Endpoints (under /api/projects/{project_id}):
- GET    /documents                     - List documents (optional status filter)
- POST   /documents                     - Register metadata without a file
- POST   /documents/upload              - Upload a file (multipart)
- GET    /documents/{doc_id}            - Get one document
- PATCH  /documents/{doc_id}            - Update metadata
- DELETE /documents/{doc_id}            - Delete record and stored file
- GET    /documents/{doc_id}/download   - Download the stored file
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from fastapi.responses import FileResponse
from sqlalchemy.ext.asyncio import AsyncSession

from auth import ProjectAccess, require_project_role
from database import get_db
from schemas import DocumentCreate, DocumentResponse, DocumentStatusValue, DocumentUpdate
from services.document_service import DocumentService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/{project_id}/documents", response_model=List[DocumentResponse])
async def list_documents(
    status: Optional[DocumentStatusValue] = Query(None),
    access: ProjectAccess = Depends(require_project_role("viewer")),
    db: AsyncSession = Depends(get_db),
):
    return await DocumentService.from_session(db).list_documents(access.project.id, status)


@router.post("/{project_id}/documents", response_model=DocumentResponse, status_code=201)
async def create_document(
    body: DocumentCreate,
    access: ProjectAccess = Depends(require_project_role("member")),
    db: AsyncSession = Depends(get_db),
):
    doc = await DocumentService.from_session(db).create_document(access.project.id, body.model_dump(), access.user.id)
    await db.commit()
    return doc


@router.post("/{project_id}/documents/upload", response_model=DocumentResponse, status_code=201)
async def upload_document(
    file: UploadFile = File(...),
    title: Optional[str] = Form(None),
    document_number: Optional[str] = Form(None),
    discipline: Optional[str] = Form(None),
    document_type: Optional[str] = Form(None),
    revision: Optional[str] = Form(None),
    access: ProjectAccess = Depends(require_project_role("member")),
    db: AsyncSession = Depends(get_db),
):
    """
    Upload a file into the project's document register.

    Rejects oversized files (413) and executable or disallowed types (415).
    """
    service = DocumentService.from_session(db)
    # One byte past the limit is enough to know it is too large
    content = await file.read(service.settings.max_upload_bytes + 1)
    metadata = {
        "title": title,
        "document_number": document_number,
        "discipline": discipline,
        "document_type": document_type,
        "revision": revision,
    }
    doc = await service.store_upload(access.project.id, file.filename or "", content, access.user.id, metadata)
    await db.commit()
    return doc


@router.get("/{project_id}/documents/{doc_id}", response_model=DocumentResponse)
async def get_document(
    doc_id: int,
    access: ProjectAccess = Depends(require_project_role("viewer")),
    db: AsyncSession = Depends(get_db),
):
    return await DocumentService.from_session(db).get_document(access.project.id, doc_id)


@router.patch("/{project_id}/documents/{doc_id}", response_model=DocumentResponse)
async def update_document(
    doc_id: int,
    body: DocumentUpdate,
    access: ProjectAccess = Depends(require_project_role("member")),
    db: AsyncSession = Depends(get_db),
):
    service = DocumentService.from_session(db)
    doc = await service.get_document(access.project.id, doc_id)
    doc = await service.update_document(doc, body.model_dump(exclude_unset=True))
    await db.commit()
    return doc


@router.delete("/{project_id}/documents/{doc_id}", status_code=204)
async def delete_document(
    doc_id: int,
    access: ProjectAccess = Depends(require_project_role("member")),
    db: AsyncSession = Depends(get_db),
):
    service = DocumentService.from_session(db)
    await service.delete_document(await service.get_document(access.project.id, doc_id))
    await db.commit()


@router.get("/{project_id}/documents/{doc_id}/download")
async def download_document(
    doc_id: int,
    access: ProjectAccess = Depends(require_project_role("viewer")),
    db: AsyncSession = Depends(get_db),
):
    service = DocumentService.from_session(db)
    doc = await service.get_document(access.project.id, doc_id)
    try:
        path = await service.resolve_download(doc)
    finally:
        # Persist a MISSING status even when the download fails
        await db.commit()
    return FileResponse(path, filename=doc.name, media_type="application/octet-stream")
