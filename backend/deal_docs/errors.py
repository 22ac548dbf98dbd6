"""
Exception hierarchy for the deal document engine.

Field-, template- and image-level errors are absorbed and logged by the
filler and the assembler; only ``AssemblyEmptyResult`` is meant to reach the
caller of a batch.
"""

from __future__ import annotations


class DealDocsError(RuntimeError):
    """Domain-specific exception for service errors."""


class TemplateError(DealDocsError):
    """A single template could not be produced."""

    def __init__(self, template_id: str, message: str):
        self.template_id = template_id
        super().__init__(f"Template '{template_id}': {message}")


class TemplateNotFoundError(TemplateError):
    """The repository has no template under the requested id."""


class TemplateIOError(TemplateError):
    """The template repository failed for a reason other than not-found."""


class TemplateFillError(TemplateError):
    """Template bytes were returned but could not be parsed or written."""


class FieldFillError(DealDocsError):
    """One form field could not be set (wrong kind, invalid option)."""

    def __init__(self, field_name: str, reason: str):
        self.field_name = field_name
        self.reason = reason
        super().__init__(f"Field '{field_name}': {reason}")


class UnsupportedImageFormat(DealDocsError):
    def __init__(self, media_type: str):
        self.media_type = media_type
        super().__init__(f"Unsupported image media type: {media_type}")


class AssemblyEmptyResult(DealDocsError):
    """Every template and image failed or was skipped."""
