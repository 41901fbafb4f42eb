import base64
import binascii
import logging

from dotenv import load_dotenv

load_dotenv(".env.local"); load_dotenv()  # also loads .env if present

import os  # noqa: E402
from typing import Dict, Optional  # noqa: E402

from fastapi import FastAPI, HTTPException, Response  # noqa: E402
from fastapi.middleware.cors import CORSMiddleware  # noqa: E402
from pydantic import BaseModel, Field  # noqa: E402

from docmix import (  # noqa: E402
    DocMixError,
    DocumentNotFoundError,
    DocumentService,
    FillError,
    InvalidArgumentError,
    TemplateNotFoundError,
)

logger = logging.getLogger(__name__)

app = FastAPI(title="DocMix document service")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

document_service = DocumentService()


class DocumentMetadata(BaseModel):
    title: Optional[str] = None
    author: Optional[str] = None
    subject: Optional[str] = None
    keywords: Optional[str] = None
    creator: Optional[str] = None


class DocumentOptions(BaseModel):
    full_compression: Optional[bool] = None
    remove_fields: Optional[bool] = None
    display_doc_title: Optional[bool] = None


class GenerateRequest(BaseModel):
    template: str
    texts: Dict[str, str] = Field(default_factory=dict)
    images: Dict[str, str] = Field(default_factory=dict)  # field name -> base64 image
    metadata: DocumentMetadata = Field(default_factory=DocumentMetadata)
    options: DocumentOptions = Field(default_factory=DocumentOptions)
    persist: bool = True


def _status_for(exc: DocMixError) -> int:
    if isinstance(exc, (TemplateNotFoundError, DocumentNotFoundError)):
        return 404
    if isinstance(exc, InvalidArgumentError):
        return 400
    if isinstance(exc, FillError):
        return 422
    return 500


def _decode_images(images: Dict[str, str]) -> Dict[str, bytes]:
    decoded = {}
    for name, payload in images.items():
        try:
            decoded[name] = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise HTTPException(status_code=400, detail=f"Image for field '{name}' is not valid base64") from exc
    return decoded


@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/templates")
def list_templates():
    return {"templates": document_service.list_templates()}


@app.post("/documents")
def generate_document(req: GenerateRequest):
    images = _decode_images(req.images)
    try:
        result = document_service.generate(
            req.template,
            texts=req.texts,
            images=images,
            metadata=req.metadata.model_dump(exclude_none=True),
            options=req.options.model_dump(exclude_none=True),
            persist=req.persist,
        )
    except DocMixError as exc:
        logger.error("Document generation failed: %s", exc)
        raise HTTPException(status_code=_status_for(exc), detail=str(exc)) from exc
    return {"metadata": result["metadata"]}


@app.get("/documents/{document_id}")
def get_document(document_id: str):
    try:
        record = document_service.get_document(document_id)
    except DocMixError as exc:
        raise HTTPException(status_code=_status_for(exc), detail=str(exc)) from exc
    filename = record["metadata"].get("filename") or f"{document_id}.pdf"
    headers = {"Content-Disposition": f'attachment; filename="{filename}"'}
    return Response(content=record["bytes"], media_type="application/pdf", headers=headers)
