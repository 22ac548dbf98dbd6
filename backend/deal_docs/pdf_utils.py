"""
Low-level PDF utilities for filling AcroForm-based templates.

Thin wrappers around pypdf (reading, writing, setting field values) and
reportlab (drawing synthetic pages). Field-kind decisions live in the
filler; these helpers only know how to write a value into a field.
"""

from __future__ import annotations

import io
import logging
from typing import Iterable

from pypdf import PdfReader, PdfWriter
from pypdf.generic import NameObject
from reportlab.lib.pagesizes import letter
from reportlab.pdfgen import canvas

from .template_scanner import OFF_STATE, FormField, appearance_states

logger = logging.getLogger(__name__)

PAGE_SIZE = letter  # 612 x 792 points
LEFT_MARGIN = 50
TITLE_FONT_SIZE = 18
LINE_FONT_SIZE = 12
LINE_SPACING = 25


def open_writer(content: bytes) -> PdfWriter:
    """Clone a PDF (including its AcroForm) into a writable document."""
    reader = PdfReader(io.BytesIO(content), strict=False)
    return PdfWriter(clone_from=reader)


def writer_to_bytes(writer: PdfWriter) -> bytes:
    buffer = io.BytesIO()
    writer.write(buffer)
    buffer.seek(0)
    return buffer.getvalue()


def count_pages(content: bytes) -> int:
    return len(PdfReader(io.BytesIO(content), strict=False).pages)


def set_text_value(writer: PdfWriter, form_field: FormField, value: str) -> None:
    """Set /V of a text or drop-down field and regenerate its appearance."""
    writer.update_page_form_field_values(None, {form_field.qualified_name: value})


def set_button_state(form_field: FormField, state: str) -> None:
    """
    Switch a checkbox or radio group to ``state`` (a name such as "/Yes").

    The field gets ``/V``; each widget shows the state when it has an
    appearance for it and ``/Off`` otherwise.
    """
    state_name = NameObject(state)
    form_field.node[NameObject("/V")] = state_name
    for widget in form_field.widgets:
        if state in appearance_states([widget]):
            shown = state_name
        else:
            if state != OFF_STATE:
                logger.debug("Field %s has a widget without a %s appearance; showing /Off", form_field.name, state)
            shown = NameObject(OFF_STATE)
        widget[NameObject("/AS")] = shown


def render_text_page(title: str, lines: Iterable[str]) -> bytes:
    """Draw a single letter-size page with a title and one line per entry."""
    buffer = io.BytesIO()
    pdf = canvas.Canvas(buffer, pagesize=PAGE_SIZE)
    _, height = PAGE_SIZE

    pdf.setFont("Helvetica", TITLE_FONT_SIZE)
    pdf.drawString(LEFT_MARGIN, height - 50, title)

    pdf.setFont("Helvetica", LINE_FONT_SIZE)
    y = height - 100
    for line in lines:
        pdf.drawString(LEFT_MARGIN, y, line)
        y -= LINE_SPACING

    pdf.showPage()
    pdf.save()
    return buffer.getvalue()
