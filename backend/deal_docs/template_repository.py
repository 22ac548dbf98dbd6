"""
Template storage collaborators.

The filler only needs ``get_template_bytes``; listing and saving back the
template upload endpoints. ``None`` from ``get_template_bytes`` means "no
such template" and makes the filler render its synthetic fallback; any other
failure is raised as ``TemplateIOError``.
"""

from __future__ import annotations

import abc
import logging
from pathlib import Path
from typing import List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .errors import TemplateIOError

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = {"NoSuchKey", "404", "NotFound"}


def is_safe_template_id(template_id: str) -> bool:
    return bool(template_id) and not any(sep in template_id for sep in ("/", "\\", "\x00")) \
        and template_id not in (".", "..")


class TemplateRepository(abc.ABC):
    @abc.abstractmethod
    def get_template_bytes(self, template_id: str) -> Optional[bytes]:
        """Return the template PDF, or None when it does not exist."""

    @abc.abstractmethod
    def list_templates(self) -> List[str]:
        ...

    @abc.abstractmethod
    def save_template(self, template_id: str, content: bytes) -> None:
        ...


class LocalTemplateRepository(TemplateRepository):
    """Templates stored as ``<templates_dir>/<template_id>.pdf``."""

    def __init__(self, templates_dir: Path):
        self.templates_dir = Path(templates_dir)
        self.templates_dir.mkdir(parents=True, exist_ok=True)

    def get_template_bytes(self, template_id: str) -> Optional[bytes]:
        path = self._resolve_template_path(template_id)
        if path is None:
            logger.info("Template '%s' not found in %s", template_id, self.templates_dir)
            return None
        try:
            with path.open("rb") as f:
                return f.read()
        except OSError as exc:
            raise TemplateIOError(template_id, f"could not read {path.name}: {exc}") from exc

    def list_templates(self) -> List[str]:
        if not self.templates_dir.exists():
            return []
        return sorted(p.stem for p in self.templates_dir.glob("*.pdf") if p.is_file())

    def save_template(self, template_id: str, content: bytes) -> None:
        if not is_safe_template_id(template_id):
            raise TemplateIOError(template_id, "invalid template name")
        target = self.templates_dir / f"{template_id}.pdf"
        try:
            with target.open("wb") as f:
                f.write(content)
        except OSError as exc:
            raise TemplateIOError(template_id, f"could not write {target.name}: {exc}") from exc
        logger.info("Saved template '%s' (%d bytes)", template_id, len(content))

    def _resolve_template_path(self, template_id: str) -> Optional[Path]:
        if not is_safe_template_id(template_id):
            return None

        # Try exact filename first
        candidate = self.templates_dir / f"{template_id}.pdf"
        if candidate.is_file():
            return candidate

        # Try with _template suffix if not already present
        if not template_id.endswith("_template"):
            candidate = self.templates_dir / f"{template_id}_template.pdf"
            if candidate.is_file():
                return candidate

        # Case-insensitive stem match, never partial
        wanted = template_id.lower()
        for pdf_file in sorted(self.templates_dir.glob("*.pdf")):
            if pdf_file.is_file() and pdf_file.stem.lower() in (wanted, f"{wanted}_template"):
                return pdf_file
        return None


class S3TemplateRepository(TemplateRepository):
    """Templates stored as ``s3://<bucket>/<prefix><template_id>.pdf``."""

    def __init__(self, bucket: str, prefix: str = "templates/", s3_client=None):
        self.bucket = bucket
        self.prefix = prefix
        self.s3 = s3_client if s3_client is not None else boto3.client("s3")

    def _key(self, template_id: str) -> str:
        return f"{self.prefix}{template_id}.pdf"

    def get_template_bytes(self, template_id: str) -> Optional[bytes]:
        if not is_safe_template_id(template_id):
            return None
        key = self._key(template_id)
        try:
            obj = self.s3.get_object(Bucket=self.bucket, Key=key)
            return obj["Body"].read()
        except ClientError as exc:
            code = str(exc.response.get("Error", {}).get("Code", ""))
            if code in _NOT_FOUND_CODES:
                logger.info("Template '%s' not found at s3://%s/%s", template_id, self.bucket, key)
                return None
            raise TemplateIOError(template_id, f"S3 error {code}: {exc}") from exc
        except BotoCoreError as exc:
            raise TemplateIOError(template_id, f"S3 error: {exc}") from exc

    def list_templates(self) -> List[str]:
        names = []
        paginator = self.s3.get_paginator("list_objects_v2")
        try:
            for page in paginator.paginate(Bucket=self.bucket, Prefix=self.prefix):
                for item in page.get("Contents", []):
                    rest = item["Key"][len(self.prefix):]
                    if "/" in rest or not rest.lower().endswith(".pdf"):
                        continue
                    names.append(rest[: -len(".pdf")])
        except (ClientError, BotoCoreError) as exc:
            raise TemplateIOError("*", f"S3 listing failed: {exc}") from exc
        return sorted(names)

    def save_template(self, template_id: str, content: bytes) -> None:
        if not is_safe_template_id(template_id):
            raise TemplateIOError(template_id, "invalid template name")
        try:
            self.s3.put_object(
                Bucket=self.bucket,
                Key=self._key(template_id),
                Body=content,
                ContentType="application/pdf",
            )
        except (ClientError, BotoCoreError) as exc:
            raise TemplateIOError(template_id, f"S3 upload failed: {exc}") from exc
