from __future__ import annotations

import datetime as dt
import io
import logging
from typing import List, Optional

import pytest
from pypdf import PdfReader

from conftest import FIXED_NOW, make_form_pdf
from deal_docs.errors import FieldFillError, TemplateFillError, TemplateIOError
from deal_docs.field_mapper import FieldMapper
from deal_docs.template_filler import (
    FILL_STRATEGIES,
    TemplateFiller,
    build_filename,
    is_truthy,
    needs_review,
    template_title,
)
from deal_docs.template_repository import TemplateRepository
from deal_docs.template_scanner import FieldKind, FormField


class BrokenRepository(TemplateRepository):
    def get_template_bytes(self, template_id: str) -> Optional[bytes]:
        raise TemplateIOError(template_id, "disk on fire")

    def list_templates(self) -> List[str]:
        return []

    def save_template(self, template_id: str, content: bytes) -> None:
        raise NotImplementedError


def _fields(content: bytes):
    return PdfReader(io.BytesIO(content)).get_fields()


def _text(content: bytes) -> str:
    return "\n".join(page.extract_text() for page in PdfReader(io.BytesIO(content)).pages)


@pytest.fixture
def filler(repository, fixed_clock) -> TemplateFiller:
    return TemplateFiller(repository, clock=fixed_clock)


def test_fills_mapped_text_fields(repository, filler, bill_of_sale_pdf, deal_data) -> None:
    repository.save_template("bill-of-sale", bill_of_sale_pdf)

    document = filler.fill("bill-of-sale", deal_data, {"firstName": "high"})

    assert document.used_fallback is False
    assert document.title == "Bill of Sale"
    assert document.fields_total == 4
    assert document.fields_processed == 3
    assert document.page_count == 1
    fields = _fields(document.content)
    assert fields["First Name"]["/V"] == "Jane"
    assert fields["Last_Name"]["/V"] == "Doe"
    assert fields["VIN"]["/V"] == "1HGCM82633A004352"
    assert not fields["Unknown Box"].get("/V")


def test_missing_values_leave_fields_untouched(repository, filler, bill_of_sale_pdf) -> None:
    repository.save_template("bill-of-sale", bill_of_sale_pdf)

    document = filler.fill("bill-of-sale", {"firstName": "Jane", "lastName": ""})

    assert document.fields_processed == 1
    assert not _fields(document.content)["Last_Name"].get("/V")


def test_keeps_every_template_page(repository, filler) -> None:
    repository.save_template("deal-check", make_form_pdf(text_fields=("VIN",), extra_pages=2))

    document = filler.fill("deal-check", {"newCarVin": "VIN123"})

    assert document.page_count == 3
    assert len(PdfReader(io.BytesIO(document.content)).pages) == 3


def test_fallback_document_when_template_missing(filler, deal_data) -> None:
    document = filler.fill("we-owe", deal_data, {"firstName": "high", "lastName": "medium"})

    assert document.used_fallback is True
    assert document.page_count == 1
    assert document.title == "We Owe Form"
    # base customer fields only: 6 lines, 3 of them with values
    assert document.fields_total == 6
    assert document.fields_processed == 3
    text = _text(document.content)
    assert "We Owe Form" in text
    assert "Customer First Name: Jane (high confidence)" in text
    assert "Customer Last Name: Doe (medium confidence)" in text
    # missing confidence tag renders as low
    assert "Customer Address: 12 Main St (low confidence)" in text
    assert "Driver License Number: [NOT PROVIDED]" in text


def test_fallback_trade_agreement_lists_trade_in_fields(filler) -> None:
    document = filler.fill("trade-agreement", {"tradeInVin": "TRADE1"})

    text = _text(document.content)
    assert document.fields_total == 13
    assert "Trade-in VIN: TRADE1 (low confidence)" in text
    assert "New Vehicle VIN: [NOT PROVIDED]" in text


def test_date_fields_default_to_today(repository, filler) -> None:
    repository.save_template("delivery-receipt", make_form_pdf(text_fields=("Date", "Delivery Date")))

    document = filler.fill("delivery-receipt", {"dealDate": "01/02/24"})

    fields = _fields(document.content)
    assert fields["Date"]["/V"] == "03/15/24"
    # caller-supplied date wins
    assert fields["Delivery Date"]["/V"] == "01/02/24"
    assert document.fields_processed == 2


def test_checkbox_radio_and_choice_fields(repository, fixed_clock) -> None:
    mapper = FieldMapper(
        {
            "Has Trade": "hasTrade",
            "Warranty": "warranty",
            "Payment": "paymentType",
            "Color": "exteriorColor",
        }
    )
    filler = TemplateFiller(repository, field_mapper=mapper, clock=fixed_clock)
    repository.save_template(
        "options",
        make_form_pdf(
            checkboxes=("Has Trade", "Warranty"),
            radios={"Payment": ("Cash", "Finance")},
            choices={"Color": ("Red", "Blue")},
        ),
    )

    document = filler.fill(
        "options",
        {"hasTrade": " Yes ", "warranty": "nope", "paymentType": "Finance", "exteriorColor": "Blue"},
    )

    assert document.fields_processed == 4
    fields = _fields(document.content)
    assert fields["Has Trade"]["/V"] == "/Yes"
    # a falsy value is a successful set to Off
    assert fields["Warranty"]["/V"] == "/Off"
    assert fields["Payment"]["/V"] == "/Finance"
    assert fields["Color"]["/V"] == "Blue"

    reader = PdfReader(io.BytesIO(document.content))
    states = [
        str(annot.get_object().get("/AS"))
        for annot in reader.pages[0]["/Annots"]
        if annot.get_object().get("/Parent") is not None
    ]
    assert states == ["/Off", "/Finance"]


def test_radio_widgets_without_the_state_are_logged(repository, fixed_clock, caplog) -> None:
    filler = TemplateFiller(repository, field_mapper=FieldMapper({"Payment": "paymentType"}), clock=fixed_clock)
    repository.save_template("payment", make_form_pdf(radios={"Payment": ("Cash", "Finance")}))

    with caplog.at_level(logging.DEBUG, logger="deal_docs.pdf_utils"):
        filler.fill("payment", {"paymentType": "Finance"})

    assert "Field Payment has a widget without a /Finance appearance" in caplog.text


def test_choice_value_must_match_an_option_exactly(repository, fixed_clock) -> None:
    mapper = FieldMapper({"Payment": "paymentType", "Color": "exteriorColor"})
    filler = TemplateFiller(repository, field_mapper=mapper, clock=fixed_clock)
    repository.save_template(
        "options",
        make_form_pdf(radios={"Payment": ("Cash", "Finance")}, choices={"Color": ("Red", "Blue")}),
    )

    document = filler.fill("options", {"paymentType": "finance", "exteriorColor": "Green"})

    assert document.fields_processed == 0
    assert document.fields_total == 2


def test_unsupported_strategy_raises_field_error() -> None:
    form_field = FormField(name="Print", qualified_name="Print", kind=FieldKind.UNSUPPORTED, field_type="/Btn")

    with pytest.raises(FieldFillError, match="unsupported"):
        FILL_STRATEGIES[FieldKind.UNSUPPORTED](None, form_field, "x")


def test_unreadable_template_raises_fill_error(repository, filler) -> None:
    repository.save_template("bill-of-sale", b"%PDF-1.4 garbage")

    with pytest.raises(TemplateFillError) as excinfo:
        filler.fill("bill-of-sale", {})

    assert excinfo.value.template_id == "bill-of-sale"


def test_repository_errors_propagate(fixed_clock) -> None:
    filler = TemplateFiller(BrokenRepository(), clock=fixed_clock)

    with pytest.raises(TemplateIOError):
        filler.fill("bill-of-sale", {})


def test_filename_uses_title_names_and_date(filler, deal_data) -> None:
    assert filler.fill("bill-of-sale", deal_data).filename == "Bill_of_Sale_Jane_Doe_20240315.pdf"
    assert filler.fill("bill-of-sale", {"firstName": "Jane"}).filename == "Bill_of_Sale_20240315.pdf"


def test_build_filename_replaces_spaces() -> None:
    name = build_filename("Odometer Disclosure Statement", {"firstName": "Mary Ann", "lastName": "Lee"}, dt.date(2024, 1, 5))

    assert name == "Odometer_Disclosure_Statement_Mary_Ann_Lee_20240105.pdf"


def test_build_filename_drops_unsafe_characters() -> None:
    data = {"firstName": "../Ja\x00ne", "lastName": 'D/o\\e:*?"<>|\n'}

    name = build_filename("Bill of Sale", data, dt.date(2024, 3, 15))

    assert name == "Bill_of_Sale_..Jane_Doe_20240315.pdf"
    assert "/" not in name and "\\" not in name


def test_build_filename_ignores_names_that_clean_to_nothing() -> None:
    name = build_filename("Bill of Sale", {"firstName": "///", "lastName": "Doe"}, dt.date(2024, 3, 15))

    assert name == "Bill_of_Sale_20240315.pdf"


@pytest.mark.parametrize(
    "template_id, title",
    [("deal-check", "Deal Check List"), ("odometer-disclosure", "Odometer Disclosure Statement"), ("spot_delivery", "Spot Delivery")],
)
def test_template_title(template_id: str, title: str) -> None:
    assert template_title(template_id) == title


@pytest.mark.parametrize("value", ["true", "YES", "1", "Checked", " x "])
def test_truthy_values(value: str) -> None:
    assert is_truthy(value)


@pytest.mark.parametrize("value", ["false", "no", "0", "on", ""])
def test_falsy_values(value: str) -> None:
    assert not is_truthy(value)


def test_needs_review() -> None:
    assert needs_review({"firstName": "high", "vin": "medium"}) is True
    assert needs_review({"firstName": "high"}) is False
    assert needs_review({}) is False


def test_fixed_clock_date() -> None:
    assert FIXED_NOW.strftime("%m/%d/%y") == "03/15/24"
