import logging
import uuid
from typing import Annotated, Optional
from urllib.parse import quote
from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile
from fastapi.responses import StreamingResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette import status
from docportal.model.model import DocumentCategory, Documents
from docportal.model.schemas import DocumentOut, MessageResponse
from docportal.utils.auth import active_user_dependency
from docportal.utils.config import MAX_UPLOAD_BYTES
from docportal.utils.database import get_db
from docportal.utils.events import DOCUMENT_DELETED, DOCUMENT_UPLOADED, build_event, publish_event
from docportal.utils.limits import rate_limit
from docportal.utils.parser import (
    PDF_MIMETYPE,
    InvalidPDFError,
    UnsupportedFileTypeError,
    inspect_pdf,
    validate_pdf_upload,
)
from docportal.utils.storage import (
    ObjectNotFoundError,
    ObjectStorage,
    acl_metadata,
    can_access_object,
    get_storage,
)

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/documents",
    tags=["documents"],
    dependencies=[Depends(rate_limit)]
)

UPLOAD_PREFIX = "uploads"
ORIGINAL_FILENAME_MAX = 255

db_dependency = Annotated[Session, Depends(get_db)]
storage_dependency = Annotated[ObjectStorage, Depends(get_storage)]


def parse_category(value: Optional[str], allow_all: bool = False) -> Optional[str]:
    if value is None or value == "" or (allow_all and value == "all"):
        return None
    try:
        return DocumentCategory(value).value
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid category"
        ) from None


def get_owned_document(db: Session, document_id: str, user_id: str) -> Documents:
    document = db.query(Documents).filter(Documents.id == document_id).first()
    if document is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Document not found"
        )
    if document.user_id != user_id:
        logger.warning("User %s denied access to document %s", user_id, document_id)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access denied"
        )
    return document


async def open_document_stream(storage: ObjectStorage, document: Documents, user_id: str):
    """
        Check the stored object and its access policy before any bytes are sent.
    """
    try:
        metadata = await storage.get_metadata(document.filepath)
    except ObjectNotFoundError:
        logger.error("Object %s missing for document %s", document.filepath, document.id)
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="File not found on server"
        )
    if not can_access_object(metadata, user_id):
        logger.warning("Object policy denied user %s on %s", user_id, document.filepath)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access denied"
        )
    headers = {}
    if metadata.get("size") is not None:
        headers["Content-Length"] = str(metadata["size"])
    return storage.stream(document.filepath), headers


@router.get('', response_model=list[DocumentOut])
async def list_documents(user: active_user_dependency, db: db_dependency,
                         search: Optional[str] = None,
                         category: Optional[str] = None,
                         limit: Annotated[int, Query(ge=1, le=500)] = 100,
                         offset: Annotated[int, Query(ge=0)] = 0):
    """
        List the caller's documents, newest first, optionally filtered by filename and category.
    """
    category_value = parse_category(category, allow_all=True)
    query = db.query(Documents).filter(Documents.user_id == user['id'])
    if search:
        query = query.filter(Documents.original_filename.icontains(search.strip(), autoescape=True))
    if category_value:
        query = query.filter(Documents.category == category_value)
    return query.order_by(Documents.created_at.desc(), Documents.id).offset(offset).limit(limit).all()


@router.post('/upload', status_code=status.HTTP_201_CREATED, response_model=DocumentOut)
async def upload_document(user: active_user_dependency, db: db_dependency, storage: storage_dependency,
                          file: Optional[UploadFile] = File(None),
                          category: Optional[str] = Form(None)):
    """
        Upload a PDF and record it for the caller. The object is stored privately under uploads/.
    """
    if file is None or not file.filename:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No file uploaded"
        )
    category_value = parse_category(category) or DocumentCategory.OTHER.value

    content = await file.read(MAX_UPLOAD_BYTES + 1)
    if len(content) > MAX_UPLOAD_BYTES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"File size must be less than {MAX_UPLOAD_BYTES // (1024 * 1024)}MB"
        )
    try:
        validate_pdf_upload(file.filename, file.content_type, content)
        inspect_pdf(content)
    except (UnsupportedFileTypeError, InvalidPDFError) as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc)
        ) from exc

    object_id = str(uuid.uuid4())
    object_path = f"{UPLOAD_PREFIX}/{object_id}.pdf"
    await storage.put(object_path, content, PDF_MIMETYPE, metadata=acl_metadata(user['id']))

    document = Documents(
        filename=f"{object_id}.pdf",
        original_filename=file.filename[:ORIGINAL_FILENAME_MAX],
        filepath=object_path,
        filesize=len(content),
        mimetype=PDF_MIMETYPE,
        category=category_value,
        user_id=user['id']
    )
    try:
        db.add(document)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to record upload %s, removing stored object", object_path)
        await storage.delete(object_path)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to upload document"
        )
    db.refresh(document)
    logger.info("User %s uploaded document %s (%d bytes)", user['id'], document.id, document.filesize)

    await publish_event(build_event(DOCUMENT_UPLOADED, document))
    return document


@router.get('/{document_id}', response_model=DocumentOut)
async def get_document(user: active_user_dependency, db: db_dependency, document_id: str):
    return get_owned_document(db, document_id, user['id'])


@router.get('/{document_id}/download')
async def download_document(user: active_user_dependency, db: db_dependency, storage: storage_dependency,
                            document_id: str):
    """
        Stream the PDF as an attachment named after the original upload.
    """
    document = get_owned_document(db, document_id, user['id'])
    body, headers = await open_document_stream(storage, document, user['id'])
    headers["Content-Disposition"] = f'attachment; filename="{quote(document.original_filename, safe="!~*()")}"'
    return StreamingResponse(body, media_type=PDF_MIMETYPE, headers=headers)


@router.get('/{document_id}/preview')
async def preview_document(user: active_user_dependency, db: db_dependency, storage: storage_dependency,
                           document_id: str):
    """
        Stream the PDF for inline display.
    """
    document = get_owned_document(db, document_id, user['id'])
    body, headers = await open_document_stream(storage, document, user['id'])
    headers["Content-Disposition"] = "inline"
    return StreamingResponse(body, media_type=PDF_MIMETYPE, headers=headers)


@router.delete('/{document_id}', status_code=status.HTTP_200_OK, response_model=MessageResponse)
async def delete_document(user: active_user_dependency, db: db_dependency, storage: storage_dependency,
                          document_id: str):
    """
        Delete the stored object, then the record.
    """
    document = get_owned_document(db, document_id, user['id'])
    event = build_event(DOCUMENT_DELETED, document)
    if not await storage.delete(document.filepath):
        logger.warning("Object %s was already missing for document %s", document.filepath, document.id)

    db.delete(document)
    db.commit()
    logger.info("User %s deleted document %s", user['id'], document_id)

    await publish_event(event)
    return {"message": "Document deleted successfully"}
