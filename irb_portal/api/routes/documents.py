"""
Document Routes
===============
Upload, metadata, download and deletion of study documents.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile
from fastapi.responses import FileResponse
from sqlalchemy.orm import Session

from irb_portal.api.dependencies import get_visible_study, scoped_study_ids
from irb_portal.auth.audit import get_audit_logger
from irb_portal.auth.authorization import get_rbac_authorizer
from irb_portal.auth.models import Permission
from irb_portal.core.cache import invalidate_study_caches
from irb_portal.core.errors import NotFoundError
from irb_portal.core.rate_limit import READ_ONLY_LIMIT, WRITE_LIMIT, limiter
from irb_portal.core.security import get_current_user
from irb_portal.core.utils import Pagination, get_pagination, sanitize_text
from irb_portal.database.enums import AuditAction, DocumentType, EntityType
from irb_portal.database.models import Document, User
from irb_portal.database.repositories import DocumentRepository
from irb_portal.database.session import get_db
from irb_portal.models.schemas import (
    VERSION_RE, DocumentListResponse, DocumentResponse, DocumentUpdate, MessageResponse,
)
from irb_portal.services.storage import get_storage

logger = logging.getLogger(__name__)

router = APIRouter()
global_router = APIRouter()


def _get_document(db: Session, study_id: str, document_id: str) -> Document:
    document = DocumentRepository(db).get_in_study(study_id, document_id)
    if document is None:
        raise NotFoundError("Document")
    return document


def _ensure_can_view(user: User, study) -> None:
    rbac = get_rbac_authorizer()
    rbac.ensure(rbac.can_view_documents(user, study), "You cannot view documents for this study")


@router.get("/{study_id}/documents", response_model=DocumentListResponse)
@limiter.limit(READ_ONLY_LIMIT)
async def list_documents(
    request: Request,
    study_id: str,
    doc_type: Optional[DocumentType] = Query(None, alias="type"),
    pagination: Pagination = Depends(get_pagination),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Get documents attached to a study."""
    study = get_visible_study(db, study_id, current_user)
    _ensure_can_view(current_user, study)

    repo = DocumentRepository(db)
    documents, total = repo.page(
        repo.search(study_id=study.id, doc_type=doc_type.value if doc_type else None),
        pagination.offset, pagination.limit,
    )
    return DocumentListResponse(
        documents=[DocumentResponse.model_validate(d) for d in documents],
        pagination=pagination.meta(total),
    )


@router.post("/{study_id}/documents", response_model=DocumentResponse, status_code=201)
@limiter.limit(WRITE_LIMIT)
async def upload_document(
    request: Request,
    study_id: str,
    file: UploadFile = File(...),
    name: str = Form(..., min_length=3, max_length=100),
    doc_type: DocumentType = Form(..., alias="type"),
    description: Optional[str] = Form(None, max_length=2000),
    version: str = Form("1.0", pattern=VERSION_RE),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Upload a document (multipart) to a study."""
    study = get_visible_study(db, study_id, current_user)
    rbac = get_rbac_authorizer()
    rbac.ensure(rbac.can_upload_document(current_user, study), "You cannot upload documents to this study")

    storage = get_storage()
    stored = storage.save(study.id, file)

    document = Document(
        study_id=study.id,
        name=sanitize_text(name),
        type=doc_type.value,
        description=sanitize_text(description),
        version=version,
        file_path=stored.relative_path,
        file_name=stored.file_name,
        file_size=stored.file_size,
        mime_type=stored.mime_type,
        uploaded_by_id=current_user.id,
        is_approved=False,
    )
    try:
        db.add(document)
        db.flush()
        get_audit_logger().log(
            db, current_user, AuditAction.UPLOAD_DOCUMENT, EntityType.DOCUMENT, document.id,
            details={
                "study_id": study.id,
                "name": document.name,
                "type": document.type,
                "file_name": stored.file_name,
                "file_size": stored.file_size,
            },
            request=request,
        )
        db.commit()
    except Exception:
        db.rollback()
        storage.delete(stored.relative_path)
        raise

    invalidate_study_caches()
    logger.info(f"Document {document.name} uploaded to {study.protocol_number} by {current_user.email}")
    return DocumentResponse.model_validate(document)


@router.get("/{study_id}/documents/{document_id}", response_model=DocumentResponse)
@limiter.limit(READ_ONLY_LIMIT)
async def get_document(
    request: Request,
    study_id: str,
    document_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    study = get_visible_study(db, study_id, current_user)
    _ensure_can_view(current_user, study)
    return DocumentResponse.model_validate(_get_document(db, study.id, document_id))


@router.get("/{study_id}/documents/{document_id}/download")
@limiter.limit(READ_ONLY_LIMIT)
async def download_document(
    request: Request,
    study_id: str,
    document_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Stream the stored file."""
    study = get_visible_study(db, study_id, current_user)
    _ensure_can_view(current_user, study)
    document = _get_document(db, study.id, document_id)

    path = get_storage().resolve(document.file_path)
    get_audit_logger().log(
        db, current_user, AuditAction.DOWNLOAD_DOCUMENT, EntityType.DOCUMENT, document.id,
        details={"study_id": study.id, "file_name": document.file_name}, request=request,
    )
    db.commit()
    return FileResponse(path, media_type=document.mime_type, filename=document.file_name)


@router.put("/{study_id}/documents/{document_id}", response_model=DocumentResponse)
@limiter.limit(WRITE_LIMIT)
async def update_document(
    request: Request,
    study_id: str,
    document_id: str,
    body: DocumentUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Update document metadata. Only document managers may change approval."""
    study = get_visible_study(db, study_id, current_user)
    document = _get_document(db, study.id, document_id)
    rbac = get_rbac_authorizer()
    rbac.ensure(rbac.can_manage_document(current_user, document), "You cannot edit this document")

    data = body.model_dump(exclude_unset=True)
    if "is_approved" in data:
        rbac.require_permission(current_user, Permission.MANAGE_DOCUMENTS)

    changes = {}
    for key, value in data.items():
        value = getattr(value, "value", value)
        old = getattr(document, key)
        if old != value:
            changes[key] = {"old": old, "new": value}
            setattr(document, key, value)

    if changes:
        get_audit_logger().log(
            db, current_user, AuditAction.UPDATE_DOCUMENT, EntityType.DOCUMENT, document.id,
            details={"study_id": study.id, "changes": changes}, request=request,
        )
        db.commit()
    return DocumentResponse.model_validate(document)


@router.delete("/{study_id}/documents/{document_id}", response_model=MessageResponse)
@limiter.limit(WRITE_LIMIT)
async def delete_document(
    request: Request,
    study_id: str,
    document_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Delete the document record and its stored file."""
    study = get_visible_study(db, study_id, current_user)
    document = _get_document(db, study.id, document_id)
    rbac = get_rbac_authorizer()
    rbac.ensure(rbac.can_delete_document(current_user, document), "You cannot delete this document")

    file_path = document.file_path
    get_audit_logger().log(
        db, current_user, AuditAction.DELETE_DOCUMENT, EntityType.DOCUMENT, document.id,
        details={"study_id": study.id, "name": document.name, "file_name": document.file_name},
        request=request,
    )
    db.delete(document)
    db.commit()
    invalidate_study_caches()

    get_storage().delete(file_path)
    return MessageResponse(message="Document deleted successfully")


@global_router.get("", response_model=DocumentListResponse)
@limiter.limit(READ_ONLY_LIMIT)
async def list_all_documents(
    request: Request,
    study_id: Optional[str] = None,
    doc_type: Optional[DocumentType] = Query(None, alias="type"),
    pagination: Pagination = Depends(get_pagination),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Documents across every study the caller can view."""
    repo = DocumentRepository(db)
    documents, total = repo.page(
        repo.search(
            study_ids=scoped_study_ids(current_user),
            study_id=study_id,
            doc_type=doc_type.value if doc_type else None,
        ),
        pagination.offset, pagination.limit,
    )
    return DocumentListResponse(
        documents=[DocumentResponse.model_validate(d) for d in documents],
        pagination=pagination.meta(total),
    )
