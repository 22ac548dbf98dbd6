"""
Document Assembler

Runs the filler over the selected templates and appends one page per uploaded
photo, producing a single combined PDF plus manifests of what went in and what
was skipped. Partial failures are logged and recorded; only an assembly that
produced no pages at all is an error.
"""

from __future__ import annotations

import datetime as dt
import io
import logging
from typing import Callable, Iterable, Mapping, Optional, Sequence, Tuple

from PIL import Image, ImageOps, UnidentifiedImageError
from pypdf import PdfReader, PdfWriter
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas

from .errors import AssemblyEmptyResult, TemplateError, UnsupportedImageFormat
from .models import CombinedArtifact, ConfidenceMap, DataRecord, FilledDocument, ImagePage
from .pdf_utils import LEFT_MARGIN, PAGE_SIZE, writer_to_bytes
from .template_filler import TemplateFiller, customer_name

logger = logging.getLogger(__name__)

SUPPORTED_IMAGE_TYPES = frozenset({"image/jpeg", "image/jpg", "image/png", "image/webp"})

IMAGE_LABELS: Mapping[str, str] = {
    "drivers-license": "Driver's License",
    "insurance": "Insurance Card",
    "spot-registration": "Spot Registration",
    "new-car-vin": "New Car VIN",
    "new-car-odometer": "New Car Odometer",
    "trade-in-vin": "Trade-in VIN",
    "trade-in-odometer": "Trade-in Odometer",
}

PAGE_MARGIN = 50
LABEL_TOP_MARGIN = 50
LABEL_FONT_SIZE = 16
# Space reserved under the page top for the label before the image band starts
LABEL_BAND = 80


def image_label(purpose: str) -> str:
    label = IMAGE_LABELS.get(purpose)
    if label:
        return label
    words = (purpose or "").replace("_", " ").replace("-", " ").split()
    return " ".join(w[:1].upper() + w[1:] for w in words) or "Uploaded Image"


def fit_image(image_width: float, image_height: float, box_width: float, box_height: float) -> Tuple[float, float]:
    """Scale an image to fit a box, preserving its aspect ratio."""
    if image_width <= 0 or image_height <= 0:
        raise ValueError("Image dimensions must be positive")
    image_aspect = image_width / image_height
    box_aspect = box_width / box_height
    if image_aspect > box_aspect:
        # wider than the box: width is the limiting side
        return box_width, box_width / image_aspect
    return box_height * image_aspect, box_height


def image_placement(image_width: float, image_height: float) -> Tuple[float, float, float, float]:
    """Return (x, y, width, height) of an image centred in the band below the label."""
    page_width, page_height = PAGE_SIZE
    band_width = page_width - 2 * PAGE_MARGIN
    band_bottom = PAGE_MARGIN
    band_height = page_height - LABEL_BAND - band_bottom
    width, height = fit_image(image_width, image_height, band_width, band_height)
    x = (page_width - width) / 2
    y = band_bottom + (band_height - height) / 2
    return x, y, width, height


def decode_image(image: ImagePage) -> Image.Image:
    media_type = (image.media_type or "").lower()
    if media_type not in SUPPORTED_IMAGE_TYPES:
        raise UnsupportedImageFormat(media_type or "unknown")
    decoded = Image.open(io.BytesIO(image.content))
    decoded.load()
    decoded = ImageOps.exif_transpose(decoded)
    if decoded.mode not in ("RGB", "L"):
        decoded = decoded.convert("RGB")
    return decoded


def render_image_page(label: str, picture: Image.Image) -> bytes:
    buffer = io.BytesIO()
    pdf = canvas.Canvas(buffer, pagesize=PAGE_SIZE)
    _, page_height = PAGE_SIZE

    pdf.setFont("Helvetica-Bold", LABEL_FONT_SIZE)
    pdf.drawString(LEFT_MARGIN, page_height - LABEL_TOP_MARGIN, label)

    x, y, width, height = image_placement(*picture.size)
    pdf.drawImage(ImageReader(picture), x, y, width=width, height=height)

    pdf.showPage()
    pdf.save()
    return buffer.getvalue()


def combined_filename(data: DataRecord, today: dt.date) -> str:
    customer = customer_name(data) or "Customer"
    return f"Deal_Package_{customer}_{today.strftime('%Y%m%d')}.pdf"


def _append_pages(writer: PdfWriter, content: bytes) -> int:
    reader = PdfReader(io.BytesIO(content), strict=False)
    for page in reader.pages:
        writer.add_page(page)
    return len(reader.pages)


class DocumentAssembler:
    def __init__(self, filler: TemplateFiller, clock: Optional[Callable[[], dt.datetime]] = None):
        self.filler = filler
        self.clock = clock or filler.clock

    def assemble(
        self,
        template_ids: Sequence[str],
        data: DataRecord,
        confidence: Optional[ConfidenceMap] = None,
        images: Iterable[ImagePage] = (),
    ) -> CombinedArtifact:
        """
        Build the combined deal package.

        Pages of the filled templates come first, in selection order, followed
        by one page per supported image, in upload order.

        Raises:
            AssemblyEmptyResult: no template and no image produced a page.
        """
        confidence = confidence or {}
        writer = PdfWriter()
        artifact = CombinedArtifact(content=b"", filename="", page_count=0)

        for template_id in template_ids:
            document = self._fill(template_id, data, confidence)
            if document is None:
                artifact.templates_skipped.append(template_id)
                continue
            _append_pages(writer, document.content)
            artifact.documents.append(document)
            artifact.documents_included.append(document.title)

        for image in images:
            label = image_label(image.purpose)
            try:
                picture = decode_image(image)
            except UnsupportedImageFormat as exc:
                logger.warning("Skipping image '%s': %s", label, exc)
                artifact.images_skipped.append(f"{label} (unsupported: {exc.media_type})")
                continue
            except (UnidentifiedImageError, OSError, ValueError) as exc:
                logger.warning("Skipping image '%s': could not decode (%s)", label, exc)
                artifact.images_skipped.append(f"{label} (unreadable)")
                continue
            _append_pages(writer, render_image_page(label, picture))
            artifact.images_included.append(label)

        if len(writer.pages) == 0:
            raise AssemblyEmptyResult(
                f"No pages produced from {len(template_ids)} template(s) and "
                f"{len(artifact.images_skipped)} image(s)"
            )

        artifact.page_count = len(writer.pages)
        artifact.content = writer_to_bytes(writer)
        artifact.filename = combined_filename(data, self.clock().date())
        logger.info(
            "Assembled %s: %d pages, %d document(s), %d image(s), %d skipped",
            artifact.filename, artifact.page_count, len(artifact.documents_included),
            len(artifact.images_included), len(artifact.templates_skipped) + len(artifact.images_skipped),
        )
        return artifact

    def _fill(self, template_id: str, data: DataRecord, confidence: ConfidenceMap) -> Optional[FilledDocument]:
        try:
            return self.filler.fill(template_id, data, confidence)
        except TemplateError as exc:
            logger.warning("Skipping template '%s': %s", template_id, exc)
        except Exception as exc:
            logger.error("Error generating PDF for template %s: %s", template_id, exc, exc_info=True)
        return None
