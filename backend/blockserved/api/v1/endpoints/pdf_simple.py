"""
Standalone PDF store: upload by multipart, retrieve by file id.
No notice record is involved.
"""
from io import BytesIO

from fastapi import APIRouter, Depends, File, UploadFile
from fastapi.responses import StreamingResponse

from blockserved.api.v1.deps import get_storage
from blockserved.core.logger import logger
from blockserved.services.storage_service import DocumentStorage, is_pdf, simple_file_name
from blockserved.utils.exceptions import ValidationError

router = APIRouter()


@router.post("/upload")
async def upload_pdf(
    document: UploadFile = File(...),
    storage: DocumentStorage = Depends(get_storage),
):
    data = await document.read()
    if not is_pdf(data, document.filename):
        raise ValidationError("Only PDF files are allowed")

    file_id, _, storage_type = storage.store_simple_pdf(data)
    logger.info(f"Simple PDF {file_id} stored ({len(data)} bytes, {storage_type.value})")
    return {
        "success": True,
        "fileId": file_id,
        "fileSize": len(data),
        "retrieveUrl": f"/api/pdf-simple/retrieve/{file_id}",
        "directUrl": f"/api/v2/documents/serve/{simple_file_name(file_id)}",
    }


@router.get("/retrieve/{file_id}")
def retrieve_pdf(
    file_id: str,
    storage: DocumentStorage = Depends(get_storage),
):
    data = storage.read_simple_pdf(file_id)
    return StreamingResponse(
        BytesIO(data),
        media_type="application/pdf",
        headers={"Content-Disposition": f'inline; filename="{file_id}.pdf"'},
    )


@router.get("/list")
def list_pdfs(storage: DocumentStorage = Depends(get_storage)):
    files = [{"fileId": f["fileId"], "size": f["size"]} for f in storage.list_simple_pdfs()]
    return {"success": True, "count": len(files), "files": files}


@router.get("/health")
def pdf_store_health(storage: DocumentStorage = Depends(get_storage)):
    upload_dir = storage.writable_root()
    return {
        "success": upload_dir is not None,
        "uploadDir": upload_dir,
        "pdfCount": len(storage.list_simple_pdfs()),
    }
