import base64
import binascii
import logging
from urllib.parse import quote

from dotenv import load_dotenv

load_dotenv(".env.local"); load_dotenv()  # also loads .env if present

import os  # noqa: E402
from typing import Optional  # noqa: E402

from fastapi import FastAPI, HTTPException, Response  # noqa: E402
from fastapi.middleware.cors import CORSMiddleware  # noqa: E402
from pydantic import BaseModel  # noqa: E402

from deal_docs import AssemblyEmptyResult, DealDocsError, DealDocumentService, ImagePage  # noqa: E402
from deal_docs.errors import TemplateIOError, TemplateNotFoundError  # noqa: E402

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

DEFAULT_CORS_ORIGINS = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "").split(",") if o.strip()] or DEFAULT_CORS_ORIGINS

app = FastAPI(title="Deal Documents")
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

deal_document_service = DealDocumentService()


class TemplateUploadRequest(BaseModel):
    name: str
    pdf_base64: str


class FillRequest(BaseModel):
    template_id: str
    data: dict
    confidence: dict[str, str] = {}


class ImageUpload(BaseModel):
    content_base64: str
    media_type: str
    purpose: str = ""


class GenerateRequest(BaseModel):
    template_ids: list[str]
    data: dict
    confidence: dict[str, str] = {}
    images: list[ImageUpload] = []


class ReviewRequest(BaseModel):
    confidence: dict[str, str]


def _decode_base64(payload: str, what: str) -> bytes:
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise HTTPException(status_code=400, detail=f"Invalid base64 for {what}") from exc


def _http_error(exc: DealDocsError) -> HTTPException:
    if isinstance(exc, TemplateNotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, TemplateIOError):
        return HTTPException(status_code=502, detail=str(exc))
    if isinstance(exc, AssemblyEmptyResult):
        return HTTPException(status_code=422, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


def _content_disposition(filename: str, disposition: str = "attachment") -> str:
    ascii_name = filename.encode("ascii", "ignore").decode("ascii").replace('"', "") or "document.pdf"
    return f"{disposition}; filename=\"{ascii_name}\"; filename*=UTF-8''{quote(filename)}"


@app.get("/health")
def health():
    backend = "s3" if deal_document_service.s3_bucket else "local"
    return {"status": "ok", "templates": backend}


# --- Template endpoints -------------------------------------------------------


@app.get("/api/templates")
def list_templates():
    try:
        templates = deal_document_service.list_templates()
    except DealDocsError as exc:
        raise _http_error(exc) from exc
    return {"templates": templates}


@app.post("/api/templates")
def upload_template(req: TemplateUploadRequest):
    content = _decode_base64(req.pdf_base64, "template")
    try:
        template = deal_document_service.upload_template(req.name, content)
    except DealDocsError as exc:
        raise _http_error(exc) from exc
    return {"ok": True, "template": template}


@app.get("/api/templates/{template_name}/scan")
def scan_template(template_name: str):
    try:
        scan = deal_document_service.describe_template(template_name)
    except DealDocsError as exc:
        raise _http_error(exc) from exc
    return {"template": template_name, "scan": scan}


# --- Document endpoints -------------------------------------------------------


@app.post("/api/documents/fill")
def fill_document(req: FillRequest):
    try:
        document = deal_document_service.fill_one(req.template_id, req.data, req.confidence)
    except DealDocsError as exc:
        raise _http_error(exc) from exc

    return {
        "metadata": {
            "template_id": document.template_id,
            "title": document.title,
            "filename": document.filename,
            "fields_processed": document.fields_processed,
            "fields_total": document.fields_total,
            "used_fallback": document.used_fallback,
            "page_count": document.page_count,
        },
        "pdf_base64": base64.b64encode(document.content).decode("ascii"),
    }


@app.post("/api/documents/generate")
def generate_documents(req: GenerateRequest):
    if not req.template_ids and not req.images:
        raise HTTPException(status_code=400, detail="Select at least one template or image")

    images = [
        ImagePage(
            content=_decode_base64(image.content_base64, f"image '{image.purpose or index}'"),
            media_type=image.media_type,
            purpose=image.purpose,
        )
        for index, image in enumerate(req.images)
    ]
    try:
        result = deal_document_service.generate(req.template_ids, req.data, req.confidence, images)
    except DealDocsError as exc:
        raise _http_error(exc) from exc
    return result


@app.post("/api/review")
def review(req: ReviewRequest):
    flagged = sorted(k for k, level in req.confidence.items() if level in ("medium", "low"))
    return {"needs_review": deal_document_service.needs_review(req.confidence), "fields": flagged}


@app.get("/api/download/{key}")
def download(key: str, inline: Optional[bool] = False):
    """Download a generated PDF by its cache key"""
    entry = deal_document_service.cache_get(key)
    if entry is None:
        raise HTTPException(status_code=404, detail="Document not found or expired")
    headers = {
        "Content-Disposition": _content_disposition(entry.filename, "inline" if inline else "attachment"),
        "Cache-Control": "no-cache, no-store, must-revalidate",
    }
    return Response(content=entry.content, media_type=entry.content_type, headers=headers)
