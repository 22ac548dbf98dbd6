"""
PDF Template Scanner

Walks the AcroForm field tree of a template and describes every terminal
form field as a ``FormField`` tagged with its ``FieldKind``.
"""

from __future__ import annotations

import enum
import io
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from pypdf import PdfReader
from pypdf.errors import PyPdfError
from pypdf.generic import DictionaryObject

logger = logging.getLogger(__name__)

# Field flag bits (PDF 32000-1, table 226 and 228)
FF_RADIO = 1 << 15
FF_PUSHBUTTON = 1 << 16

OFF_STATE = "/Off"


class FieldKind(enum.Enum):
    TEXT = "text"
    BOOLEAN = "boolean"
    CHOICE_GROUP = "choice-group"
    UNSUPPORTED = "unsupported"


@dataclass
class FormField:
    """One terminal form field of a template.

    ``node`` is the field dictionary that carries ``/V``; ``widgets`` are the
    annotations that draw it (the node itself for merged field/widgets).
    Both point into the document the field was scanned from, so writing to
    them edits that document.
    """

    name: str
    qualified_name: str
    kind: FieldKind
    field_type: str = ""
    label: Optional[str] = None
    options: List[str] = field(default_factory=list)
    on_state: Optional[str] = None
    node: Any = field(default=None, repr=False, compare=False)
    widgets: List[Any] = field(default_factory=list, repr=False, compare=False)


def _get(obj: DictionaryObject, key: str, default=None):
    if key not in obj:
        return default
    return obj[key]


def appearance_states(widgets: List[DictionaryObject]) -> List[str]:
    """On-states found in the widgets' normal appearance dictionaries."""
    states: List[str] = []
    for widget in widgets:
        ap = _get(widget, "/AP")
        if not isinstance(ap, DictionaryObject):
            continue
        normal = _get(ap, "/N")
        if not isinstance(normal, DictionaryObject):
            continue
        for state in normal.keys():
            state = str(state)
            if state != OFF_STATE and state not in states:
                states.append(state)
    return states


def _choice_options(node: DictionaryObject) -> List[str]:
    options: List[str] = []
    for entry in _get(node, "/Opt", []) or []:
        entry = entry.get_object()
        if isinstance(entry, list):
            # [export value, display text]
            entry = entry[0].get_object() if entry else ""
        options.append(str(entry))
    return options


def _classify(node: DictionaryObject, widgets: List[DictionaryObject], field_type: str, flags: int):
    if field_type == "/Tx":
        return FieldKind.TEXT, [], None
    if field_type == "/Btn":
        if flags & FF_PUSHBUTTON:
            return FieldKind.UNSUPPORTED, [], None
        states = appearance_states(widgets)
        if flags & FF_RADIO:
            return FieldKind.CHOICE_GROUP, [s.lstrip("/") for s in states], None
        return FieldKind.BOOLEAN, [], states[0] if states else "/Yes"
    if field_type == "/Ch":
        return FieldKind.CHOICE_GROUP, _choice_options(node), None
    return FieldKind.UNSUPPORTED, [], None


def scan_form_fields(root: DictionaryObject) -> List[FormField]:
    """Return the terminal form fields of a document catalog, in tree order."""
    if "/AcroForm" not in root:
        return []
    acro_form = root["/AcroForm"]
    if "/Fields" not in acro_form:
        return []

    fields: List[FormField] = []
    visited = set()

    def extract_field_info(field_ref, parent_name: str, inherited_type: str, inherited_flags: int):
        """Recursively extract field information"""
        field_obj = field_ref.get_object()
        if id(field_obj) in visited:
            return
        visited.add(id(field_obj))

        partial_name = str(_get(field_obj, "/T", ""))
        qualified_name = f"{parent_name}.{partial_name}" if parent_name and partial_name else (partial_name or parent_name)
        field_type = str(_get(field_obj, "/FT", inherited_type) or "")
        flags = int(_get(field_obj, "/Ff", inherited_flags) or 0)

        kids = [kid.get_object() for kid in _get(field_obj, "/Kids", []) or []]
        child_fields = [kid for kid in kids if "/T" in kid]
        if child_fields:
            for kid in _get(field_obj, "/Kids"):
                if "/T" in kid.get_object():
                    extract_field_info(kid, qualified_name, field_type, flags)
            return

        if not partial_name:
            logger.debug("Skipping unnamed form field widget")
            return

        widgets = kids or [field_obj]
        kind, options, on_state = _classify(field_obj, widgets, field_type, flags)
        label = _get(field_obj, "/TU")
        fields.append(
            FormField(
                name=partial_name,
                qualified_name=qualified_name,
                kind=kind,
                field_type=field_type,
                label=str(label) if label else None,
                options=options,
                on_state=on_state,
                node=field_obj,
                widgets=widgets,
            )
        )

    for field_ref in acro_form["/Fields"]:
        extract_field_info(field_ref, "", "", 0)
    return fields


def scan_template(content: bytes) -> Dict:
    """
    Describe the fillable fields of a template PDF.

    Returns: {
        "form_fields": ["field1", ...],
        "fields": [{"name", "qualified_name", "kind", "label", "options"}, ...],
        "field_count": int,
        "has_fields": bool
    }
    """
    try:
        reader = PdfReader(io.BytesIO(content), strict=False)
        form_fields = scan_form_fields(reader.trailer["/Root"])
    except (PyPdfError, ValueError, KeyError) as exc:
        logger.error("Error scanning template: %s", exc)
        return {"form_fields": [], "fields": [], "field_count": 0, "has_fields": False, "error": str(exc)}

    return {
        "form_fields": [f.qualified_name for f in form_fields],
        "fields": [
            {
                "name": f.name,
                "qualified_name": f.qualified_name,
                "kind": f.kind.value,
                "label": f.label,
                "options": list(f.options),
            }
            for f in form_fields
        ],
        "field_count": len(form_fields),
        "has_fields": bool(form_fields),
    }
