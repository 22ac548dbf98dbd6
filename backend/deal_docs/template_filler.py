"""
Template Filler

Fills one template's AcroForm fields from a deal's DataRecord, or, when the
template repository has nothing for the requested id, renders a synthetic
one-page summary of the fields that template category expects.
"""

from __future__ import annotations

import datetime as dt
import logging
import re
from typing import Callable, Dict, List, Mapping, Optional, Tuple

from pypdf.errors import PyPdfError

from .errors import FieldFillError, TemplateFillError
from .field_mapper import DEFAULT_FIELD_MAPPER, FieldMapper
from .models import ConfidenceMap, DataRecord, FilledDocument
from .pdf_utils import (
    open_writer,
    render_text_page,
    set_button_state,
    set_text_value,
    writer_to_bytes,
)
from .template_repository import TemplateRepository
from .template_scanner import OFF_STATE, FieldKind, FormField, scan_form_fields

logger = logging.getLogger(__name__)

TRUTHY_VALUES = frozenset({"true", "yes", "1", "checked", "x"})

DATE_KEYS = ("currentDate", "todaysDate", "dealDate")

_UNSAFE_FILENAME_CHARS = re.compile(r'[\x00-\x1f\x7f/\\:*?"<>|]')

TEMPLATE_TITLES: Mapping[str, str] = {
    "deal-check": "Deal Check List",
    "delivery-receipt": "Delivery Receipt",
    "we-owe": "We Owe Form",
    "trade-agreement": "Trade Agreement",
    "bill-of-sale": "Bill of Sale",
    "odometer-disclosure": "Odometer Disclosure Statement",
}

# Fallback rendering: printed label -> canonical key, per template category.
BASE_FIELDS: Tuple[Tuple[str, str], ...] = (
    ("Customer First Name", "firstName"),
    ("Customer Last Name", "lastName"),
    ("Customer Address", "address"),
    ("Driver License Number", "licenseNumber"),
    ("License Expiration", "licenseExpiration"),
    ("Insurance Company", "insuranceCompany"),
)
VEHICLE_FIELDS: Tuple[Tuple[str, str], ...] = (
    ("New Vehicle VIN", "newCarVin"),
    ("New Vehicle Odometer", "newCarOdometer"),
)
TRADE_IN_FIELDS: Tuple[Tuple[str, str], ...] = (
    ("Trade-in VIN", "tradeInVin"),
    ("Trade-in Odometer", "tradeInOdometer"),
    ("Trade-in Year", "tradeInYear"),
    ("Trade-in Make", "tradeInMake"),
    ("Trade-in Model", "tradeInModel"),
)

FALLBACK_FIELDS: Mapping[str, Tuple[Tuple[str, str], ...]] = {
    "deal-check": BASE_FIELDS + VEHICLE_FIELDS,
    "delivery-receipt": BASE_FIELDS + VEHICLE_FIELDS,
    "bill-of-sale": BASE_FIELDS + VEHICLE_FIELDS,
    "odometer-disclosure": BASE_FIELDS + VEHICLE_FIELDS,
    "trade-agreement": BASE_FIELDS + VEHICLE_FIELDS + TRADE_IN_FIELDS,
    "we-owe": BASE_FIELDS,
}


def template_title(template_id: str) -> str:
    title = TEMPLATE_TITLES.get(template_id)
    if title:
        return title
    words = template_id.replace("_", " ").replace("-", " ").split()
    return " ".join(w[:1].upper() + w[1:] for w in words) or template_id


def fallback_fields(template_id: str) -> Tuple[Tuple[str, str], ...]:
    return FALLBACK_FIELDS.get(template_id, BASE_FIELDS)


def has_value(data: DataRecord, key: str) -> bool:
    value = data.get(key)
    return value is not None and str(value) != ""


def is_truthy(value: str) -> bool:
    return str(value).strip().lower() in TRUTHY_VALUES


def needs_review(confidence: ConfidenceMap) -> bool:
    """True when any extracted value was tagged medium or low confidence."""
    return any(level in ("medium", "low") for level in confidence.values())


def filename_part(value) -> str:
    """Drop separators and control characters; whitespace becomes ``_``."""
    cleaned = _UNSAFE_FILENAME_CHARS.sub("", str(value)).strip()
    return re.sub(r"\s+", "_", cleaned)


def customer_name(data: DataRecord) -> Optional[str]:
    """``First_Last`` for filenames, or None unless both names survive cleaning."""
    if not (has_value(data, "firstName") and has_value(data, "lastName")):
        return None
    first, last = filename_part(data["firstName"]), filename_part(data["lastName"])
    if not (first and last):
        return None
    return f"{first}_{last}"


def build_filename(title: str, data: DataRecord, today: dt.date) -> str:
    name = filename_part(title)
    customer = customer_name(data)
    if customer:
        name = f"{name}_{customer}"
    return f"{name}_{today.strftime('%Y%m%d')}.pdf"


# ----------------------------------------------------------------------
# Fill strategies, one per field kind
# ----------------------------------------------------------------------
def _fill_text(writer, form_field: FormField, value: str) -> None:
    set_text_value(writer, form_field, value)


def _fill_boolean(writer, form_field: FormField, value: str) -> None:
    state = form_field.on_state if is_truthy(value) else OFF_STATE
    set_button_state(form_field, state)


def _fill_choice_group(writer, form_field: FormField, value: str) -> None:
    if value not in form_field.options:
        raise FieldFillError(form_field.name, f"'{value}' is not one of {form_field.options}")
    if form_field.field_type == "/Btn":
        set_button_state(form_field, f"/{value}")
    else:
        set_text_value(writer, form_field, value)


def _fill_unsupported(writer, form_field: FormField, value: str) -> None:
    raise FieldFillError(form_field.name, f"unsupported field type {form_field.field_type or 'unknown'}")


FILL_STRATEGIES: Dict[FieldKind, Callable[..., None]] = {
    FieldKind.TEXT: _fill_text,
    FieldKind.BOOLEAN: _fill_boolean,
    FieldKind.CHOICE_GROUP: _fill_choice_group,
    FieldKind.UNSUPPORTED: _fill_unsupported,
}


class TemplateFiller:
    def __init__(
        self,
        repository: TemplateRepository,
        field_mapper: Optional[FieldMapper] = None,
        clock: Optional[Callable[[], dt.datetime]] = None,
    ):
        self.repository = repository
        self.field_mapper = field_mapper or DEFAULT_FIELD_MAPPER
        self.clock = clock or dt.datetime.now

    def fill(
        self,
        template_id: str,
        data: DataRecord,
        confidence: Optional[ConfidenceMap] = None,
    ) -> FilledDocument:
        """
        Fill ``template_id`` for one deal.

        Raises:
            TemplateIOError: the repository failed for a reason other than not-found.
            TemplateFillError: the repository returned bytes that are not a usable PDF.
        """
        now = self.clock()
        working = self._with_dates(data, now)
        title = template_title(template_id)

        template_bytes = self.repository.get_template_bytes(template_id)
        if template_bytes is None:
            logger.info("No template bytes for '%s'; rendering fallback document", template_id)
            content, processed, total = self._render_fallback(template_id, title, working, confidence or {})
            used_fallback = True
            page_count = 1
        else:
            content, processed, total, page_count = self._fill_form(template_id, template_bytes, working)
            used_fallback = False

        filename = build_filename(title, working, now.date())
        logger.info(
            "Filled template '%s' (%d/%d fields%s)",
            template_id, processed, total, ", fallback" if used_fallback else "",
        )
        return FilledDocument(
            template_id=template_id,
            title=title,
            content=content,
            filename=filename,
            fields_processed=processed,
            fields_total=total,
            used_fallback=used_fallback,
            page_count=page_count,
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    @staticmethod
    def _with_dates(data: DataRecord, now: dt.datetime) -> Dict[str, object]:
        working = dict(data)
        today = now.strftime("%m/%d/%y")
        for key in DATE_KEYS:
            if not has_value(working, key):
                working[key] = today
        return working

    def _fill_form(self, template_id: str, template_bytes: bytes, data: DataRecord) -> Tuple[bytes, int, int, int]:
        try:
            writer = open_writer(template_bytes)
            form_fields = scan_form_fields(writer.root_object)
        except (PyPdfError, ValueError, KeyError, TypeError) as exc:
            raise TemplateFillError(template_id, f"unreadable template: {exc}") from exc

        processed = 0
        for form_field in form_fields:
            key = self.field_mapper.map_field_name(form_field.name)
            if key is None or not has_value(data, key):
                continue
            value = str(data[key])
            strategy = FILL_STRATEGIES[form_field.kind]
            try:
                strategy(writer, form_field, value)
            except FieldFillError as exc:
                logger.warning("Skipping field in template '%s': %s", template_id, exc)
                continue
            except Exception as exc:
                logger.error(
                    "Failed to fill field '%s' in template '%s': %s",
                    form_field.qualified_name, template_id, exc, exc_info=True,
                )
                continue
            processed += 1

        try:
            content = writer_to_bytes(writer)
        except (PyPdfError, ValueError, TypeError) as exc:
            raise TemplateFillError(template_id, f"could not write filled PDF: {exc}") from exc
        return content, processed, len(form_fields), len(writer.pages)

    @staticmethod
    def _fallback_lines(template_id: str, data: DataRecord, confidence: ConfidenceMap) -> Tuple[List[str], int]:
        lines: List[str] = []
        processed = 0
        for label, key in fallback_fields(template_id):
            if has_value(data, key):
                level = confidence.get(key) or "low"
                lines.append(f"{label}: {data[key]} ({level} confidence)")
                processed += 1
            else:
                lines.append(f"{label}: [NOT PROVIDED]")
        return lines, processed

    def _render_fallback(self, template_id: str, title: str, data: DataRecord, confidence: ConfidenceMap):
        lines, processed = self._fallback_lines(template_id, data, confidence)
        return render_text_page(title, lines), processed, len(lines)
