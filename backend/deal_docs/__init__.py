"""
Deal document package for the dealership paperwork backend.

This module bundles reusable utilities for:
  - scanning fillable PDF templates and mapping their fields onto deal data
  - filling templates, with a synthetic summary page when a template is missing
  - assembling the combined deal package with uploaded photos
  - caching generated PDFs for short-lived download
"""

from .errors import AssemblyEmptyResult, DealDocsError, TemplateError
from .models import CacheEntry, CombinedArtifact, FilledDocument, ImagePage
from .service import DealDocumentService

__all__ = [
    "DealDocumentService",
    "DealDocsError",
    "TemplateError",
    "AssemblyEmptyResult",
    "FilledDocument",
    "ImagePage",
    "CombinedArtifact",
    "CacheEntry",
]
