from __future__ import annotations

import datetime as dt
import io
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import pytest
from botocore.exceptions import ClientError
from PIL import Image
from reportlab.lib.pagesizes import letter
from reportlab.pdfgen import canvas

from deal_docs.template_repository import LocalTemplateRepository

FIXED_NOW = dt.datetime(2024, 3, 15, 10, 30, 0)


class FakeClock:
    """Manually advanced clock usable both as a float timer and a datetime source."""

    def __init__(self, start: float = 1_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_form_pdf(
    text_fields: Sequence[str] = (),
    checkboxes: Sequence[str] = (),
    radios: Optional[Dict[str, Sequence[str]]] = None,
    choices: Optional[Dict[str, Sequence[str]]] = None,
    extra_pages: int = 0,
) -> bytes:
    """Build a letter-size PDF whose first page carries the requested AcroForm fields."""
    buffer = io.BytesIO()
    pdf = canvas.Canvas(buffer, pagesize=letter)
    form = pdf.acroForm
    y = 720

    pdf.drawString(50, 760, "Test Template")
    for name in text_fields:
        form.textfield(name=name, tooltip=name, x=200, y=y, width=250, height=20)
        y -= 30
    for name in checkboxes:
        form.checkbox(name=name, x=200, y=y, size=16)
        y -= 30
    for name, values in (radios or {}).items():
        x = 200
        for value in values:
            form.radio(name=name, value=value, x=x, y=y, size=16)
            x += 40
        y -= 30
    for name, options in (choices or {}).items():
        form.choice(name=name, value=options[0], options=list(options), x=200, y=y, width=150, height=20)
        y -= 30

    pdf.showPage()
    for index in range(extra_pages):
        pdf.drawString(50, 760, f"Page {index + 2}")
        pdf.showPage()
    pdf.save()
    return buffer.getvalue()


def make_image(fmt: str = "PNG", size: Tuple[int, int] = (400, 300), mode: str = "RGB") -> bytes:
    buffer = io.BytesIO()
    Image.new(mode, size, color=(200, 30, 30) if mode == "RGB" else 128).save(buffer, format=fmt)
    return buffer.getvalue()


class FakeBody:
    def __init__(self, data: bytes):
        self._data = data

    def read(self) -> bytes:
        return self._data


class FakePaginator:
    def __init__(self, client: "FakeS3Client"):
        self.client = client

    def paginate(self, Bucket: str, Prefix: str = "") -> Iterable[Dict]:
        contents = [
            {"Key": key, "LastModified": obj["LastModified"], "Size": len(obj["Body"])}
            for (bucket, key), obj in sorted(self.client.objects.items())
            if bucket == Bucket and key.startswith(Prefix)
        ]
        # Two pages so callers have to follow pagination
        half = len(contents) // 2
        return [{"Contents": contents[:half]}, {"Contents": contents[half:]}]


class FakeS3Client:
    """The handful of boto3 S3 client calls the repositories and caches use."""

    def __init__(self, clock=None):
        self.objects: Dict[Tuple[str, str], Dict] = {}
        self.clock = clock
        self.fail_with: Optional[str] = None
        self.deleted: List[str] = []

    def _now(self) -> dt.datetime:
        seconds = self.clock() if self.clock else FIXED_NOW.timestamp()
        return dt.datetime.fromtimestamp(seconds, tz=dt.timezone.utc)

    def _maybe_fail(self, operation: str) -> None:
        if self.fail_with:
            raise ClientError({"Error": {"Code": self.fail_with, "Message": "boom"}}, operation)

    def put_object(self, Bucket: str, Key: str, Body: bytes, ContentType: str = "", Metadata=None):
        self._maybe_fail("PutObject")
        self.objects[(Bucket, Key)] = {
            "Body": Body,
            "ContentType": ContentType,
            "Metadata": dict(Metadata or {}),
            "LastModified": self._now(),
        }
        return {}

    def get_object(self, Bucket: str, Key: str):
        self._maybe_fail("GetObject")
        obj = self.objects.get((Bucket, Key))
        if obj is None:
            raise ClientError({"Error": {"Code": "NoSuchKey", "Message": "missing"}}, "GetObject")
        return {
            "Body": FakeBody(obj["Body"]),
            "ContentType": obj["ContentType"],
            "Metadata": obj["Metadata"],
            "LastModified": obj["LastModified"],
        }

    def delete_object(self, Bucket: str, Key: str):
        self.objects.pop((Bucket, Key), None)
        self.deleted.append(Key)
        return {}

    def get_paginator(self, name: str) -> FakePaginator:
        assert name == "list_objects_v2"
        return FakePaginator(self)


@pytest.fixture
def fixed_clock():
    return lambda: FIXED_NOW


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_s3() -> FakeS3Client:
    return FakeS3Client()


@pytest.fixture
def templates_dir(tmp_path):
    path = tmp_path / "templates"
    path.mkdir()
    return path


@pytest.fixture
def repository(templates_dir) -> LocalTemplateRepository:
    return LocalTemplateRepository(templates_dir)


@pytest.fixture
def deal_data() -> Dict[str, str]:
    return {
        "firstName": "Jane",
        "lastName": "Doe",
        "address": "12 Main St",
        "newCarVin": "1HGCM82633A004352",
        "newCarOdometer": "12",
    }


@pytest.fixture
def bill_of_sale_pdf() -> bytes:
    return make_form_pdf(text_fields=("First Name", "Last_Name", "VIN", "Unknown Box"))
