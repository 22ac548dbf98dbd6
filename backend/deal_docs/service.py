"""
High-level service that exposes deal document capabilities to the FastAPI layer.

Responsibilities
----------------
* manage fillable templates (local directory or S3)
* fill single templates and assemble the combined deal package
* keep generated PDFs in a short-lived artifact cache for download
"""

from __future__ import annotations

import datetime as dt
import logging
import os
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from pypdf.errors import PyPdfError

from .artifact_cache import ArtifactCache, InMemoryArtifactCache, S3ArtifactCache
from .assembler import DocumentAssembler
from .errors import DealDocsError, TemplateNotFoundError
from .field_mapper import DEFAULT_FIELD_MAPPER, FieldMapper
from .models import PDF_CONTENT_TYPE, CacheEntry, CombinedArtifact, ConfidenceMap, DataRecord, FilledDocument, ImagePage
from .pdf_utils import count_pages
from .template_filler import TemplateFiller, needs_review, template_title
from .template_repository import (
    LocalTemplateRepository,
    S3TemplateRepository,
    TemplateRepository,
    is_safe_template_id,
)
from .template_scanner import scan_template

logger = logging.getLogger(__name__)


class DealDocumentService:
    def __init__(
        self,
        templates_dir: Optional[Path] = None,
        s3_client=None,
        cache: Optional[ArtifactCache] = None,
        clock: Optional[Callable[[], dt.datetime]] = None,
        field_mapper: Optional[FieldMapper] = None,
    ):
        self.clock = clock or dt.datetime.now
        self.field_mapper = field_mapper or DEFAULT_FIELD_MAPPER

        self.s3_bucket = os.getenv("DEAL_DOCS_S3_BUCKET")
        self.s3_prefix = os.getenv("DEAL_DOCS_S3_PREFIX", "templates/")
        self.templates_dir = Path(
            templates_dir
            or os.getenv("DEAL_DOCS_TEMPLATES_DIR")
            or Path(__file__).resolve().parent / "pdf_templates"
        )

        self.repository: TemplateRepository
        if self.s3_bucket:
            self.repository = S3TemplateRepository(self.s3_bucket, self.s3_prefix, s3_client=s3_client)
        else:
            self.repository = LocalTemplateRepository(self.templates_dir)

        self.cache = cache if cache is not None else self._cache_from_env(s3_client)
        self.filler = TemplateFiller(self.repository, self.field_mapper, clock=self.clock)
        self.assembler = DocumentAssembler(self.filler, clock=self.clock)

    @staticmethod
    def _cache_from_env(s3_client) -> ArtifactCache:
        bucket = os.getenv("DEAL_DOCS_ARTIFACT_BUCKET")
        if bucket:
            prefix = os.getenv("DEAL_DOCS_ARTIFACT_PREFIX", "artifacts/")
            return S3ArtifactCache(bucket, prefix, s3_client=s3_client)
        return InMemoryArtifactCache()

    # ------------------------------------------------------------------
    # Template management
    # ------------------------------------------------------------------
    def list_templates(self) -> List[Dict]:
        return [
            {"name": name, "title": template_title(name)}
            for name in self.repository.list_templates()
        ]

    def upload_template(self, name: str, content: bytes) -> Dict:
        template_id = name[: -len(".pdf")] if name.lower().endswith(".pdf") else name
        if not is_safe_template_id(template_id):
            raise DealDocsError(f"Invalid template name '{name}'")
        if content.lstrip()[:5] != b"%PDF-":
            raise DealDocsError(f"Uploaded file '{name}' is not a PDF")
        try:
            page_count = count_pages(content)
        except (PyPdfError, ValueError) as exc:
            raise DealDocsError(f"Uploaded file '{name}' is not a readable PDF: {exc}") from exc

        self.repository.save_template(template_id, content)
        scan = scan_template(content)
        return {
            "name": template_id,
            "page_count": page_count,
            "field_count": scan["field_count"],
            "has_fields": scan["has_fields"],
        }

    def describe_template(self, name: str) -> Dict:
        """Scan a stored template and report which data key each field maps to."""
        content = self.repository.get_template_bytes(name)
        if content is None:
            raise TemplateNotFoundError(name, "not found")
        scan = scan_template(content)
        for entry in scan["fields"]:
            entry["mapped_key"] = self.field_mapper.map_field_name(entry["name"])
        scan["name"] = name
        scan["title"] = template_title(name)
        return scan

    # ------------------------------------------------------------------
    # Filling / assembly
    # ------------------------------------------------------------------
    def fill_one(
        self,
        template_id: str,
        data: DataRecord,
        confidence: Optional[ConfidenceMap] = None,
    ) -> FilledDocument:
        return self.filler.fill(template_id, data, confidence)

    def assemble(
        self,
        template_ids: Sequence[str],
        data: DataRecord,
        confidence: Optional[ConfidenceMap] = None,
        images: Iterable[ImagePage] = (),
    ) -> CombinedArtifact:
        return self.assembler.assemble(template_ids, data, confidence, images)

    def generate(
        self,
        template_ids: Sequence[str],
        data: DataRecord,
        confidence: Optional[ConfidenceMap] = None,
        images: Iterable[ImagePage] = (),
    ) -> Dict:
        """
        Assemble the deal package and cache every produced PDF.

        Returns metadata for each filled document and for the combined PDF,
        each with the ``download_key`` to fetch it through ``cache_get``.
        """
        confidence = confidence or {}
        artifact = self.assemble(template_ids, data, confidence, images)

        documents = []
        for document in artifact.documents:
            key = self.cache_put(document.content, PDF_CONTENT_TYPE, document.filename)
            documents.append(
                {
                    "template_id": document.template_id,
                    "title": document.title,
                    "filename": document.filename,
                    "download_key": key,
                    "fields_processed": document.fields_processed,
                    "fields_total": document.fields_total,
                    "used_fallback": document.used_fallback,
                    "page_count": document.page_count,
                }
            )

        combined_key = self.cache_put(artifact.content, PDF_CONTENT_TYPE, artifact.filename)
        logger.info("Generated %s with %d document download(s)", artifact.filename, len(documents))
        return {
            "generated_at": self.clock().isoformat(),
            "documents": documents,
            "combined": {
                "filename": artifact.filename,
                "download_key": combined_key,
                "page_count": artifact.page_count,
            },
            "documents_included": artifact.documents_included,
            "templates_skipped": artifact.templates_skipped,
            "images_included": artifact.images_included,
            "images_skipped": artifact.images_skipped,
            "needs_review": needs_review(confidence),
        }

    # ------------------------------------------------------------------
    # Artifact cache
    # ------------------------------------------------------------------
    def cache_put(self, content: bytes, content_type: str, filename: str) -> str:
        return self.cache.put(content, content_type, filename)

    def cache_get(self, key: str) -> Optional[CacheEntry]:
        return self.cache.get(key)

    @staticmethod
    def needs_review(confidence: ConfidenceMap) -> bool:
        return needs_review(confidence)
