"""
Value types shared by the filler, the assembler and the artifact cache.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Mapping, Optional

# Canonical key -> textual value, and canonical key -> "high" | "medium" | "low".
DataRecord = Mapping[str, object]
ConfidenceMap = Mapping[str, str]

PDF_CONTENT_TYPE = "application/pdf"


@dataclass
class FilledDocument:
    """One template filled (or synthesized) for a deal."""

    template_id: str
    title: str
    content: bytes
    filename: str
    fields_processed: int
    fields_total: int
    used_fallback: bool = False
    page_count: int = 1


@dataclass
class ImagePage:
    """An uploaded photo destined to become one page of the combined PDF."""

    content: bytes
    media_type: str
    purpose: str = ""


@dataclass
class CombinedArtifact:
    content: bytes
    filename: str
    page_count: int
    documents_included: List[str] = field(default_factory=list)
    templates_skipped: List[str] = field(default_factory=list)
    images_included: List[str] = field(default_factory=list)
    images_skipped: List[str] = field(default_factory=list)
    documents: List[FilledDocument] = field(default_factory=list)


@dataclass
class CacheEntry:
    key: str
    content: bytes
    content_type: str
    filename: str
    created_at: Optional[float] = None
