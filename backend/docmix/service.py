"""
High-level service that exposes document generation to the FastAPI layer.

Responsibilities
----------------
* discover templates (``pdf_templates/<name>.pdf``) and their optional
  defaults (``pdf_templates/<name>.json``)
* fill a template through `DocMix` with per-request values
* persist the result locally or in S3
* keep a TTL cache of recently generated documents
"""

from __future__ import annotations

import datetime as dt
import json
import logging
import uuid
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import boto3
from botocore.exceptions import ClientError
from cachetools import TTLCache

from .config import Settings, get_settings
from .doc_mix import DocMix
from .exceptions import (
    DocumentNotFoundError,
    DocumentStoreError,
    InvalidArgumentError,
    TemplateNotFoundError,
)
from .pdf_utils import ImageValue

logger = logging.getLogger(__name__)


class DocumentService:
    def __init__(
        self,
        base_dir: Optional[Path] = None,
        settings: Optional[Settings] = None,
        s3_client=None,
    ):
        self.settings = settings or get_settings()
        self.base_dir = Path(base_dir or self.settings.base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)

        self.templates_dir = self.base_dir / "pdf_templates"
        self.generated_dir = self.base_dir / "generated"
        self.templates_dir.mkdir(parents=True, exist_ok=True)
        self.generated_dir.mkdir(parents=True, exist_ok=True)

        self.s3_bucket = self.settings.s3_bucket
        self.s3_prefix = self.settings.s3_prefix
        self.s3 = s3_client
        if self.s3_bucket and self.s3 is None:
            self.s3 = boto3.client("s3", region_name=self.settings.aws_region)

        self._cache: TTLCache = TTLCache(maxsize=self.settings.cache_size, ttl=self.settings.cache_ttl)

    # ------------------------------------------------------------------
    # Templates
    # ------------------------------------------------------------------
    def list_templates(self) -> List[Dict]:
        results = []
        for pdf_file in sorted(self.templates_dir.glob("*.pdf")):
            config = self.get_template_config(pdf_file.stem)
            results.append(
                {
                    "name": pdf_file.stem,
                    "template_file": pdf_file.name,
                    "description": config.get("description"),
                    "metadata": config.get("metadata", {}),
                    "options": config.get("options", {}),
                }
            )
        return results

    def get_template_config(self, template_name: str) -> Dict:
        """Defaults stored next to the template, or an empty config."""
        config_file = self.templates_dir / f"{template_name}.json"
        if not config_file.exists():
            return {}
        try:
            with config_file.open("r", encoding="utf-8") as f:
                config = json.load(f)
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Ignoring malformed template config %s: %s", config_file.name, exc)
            return {}
        return config if isinstance(config, dict) else {}

    # ------------------------------------------------------------------
    # Generation / storage
    # ------------------------------------------------------------------
    def generate(
        self,
        template_name: str,
        texts: Optional[Mapping[str, str]] = None,
        images: Optional[Mapping[str, ImageValue]] = None,
        metadata: Optional[Mapping[str, Optional[str]]] = None,
        options: Optional[Mapping[str, Any]] = None,
        persist: bool = True,
    ) -> Dict:
        pdf_path = self._resolve_template_path(template_name)
        config = self.get_template_config(template_name)
        doc_meta = {**config.get("metadata", {}), **(metadata or {})}
        doc_options = {**config.get("options", {}), **(options or {})}

        mix = DocMix(pdf_path, self.settings)
        if texts:
            mix.put_all_texts(texts)
        if images:
            mix.put_all_images(images)
        (
            mix.title(doc_meta.get("title"))
            .author(doc_meta.get("author"))
            .subject(doc_meta.get("subject"))
            .keywords(doc_meta.get("keywords"))
            .creator(doc_meta.get("creator"))
        )
        if doc_options.get("full_compression") is not None:
            mix.with_full_compression(bool(doc_options["full_compression"]))
        if doc_options.get("remove_fields") is not None:
            mix.remove_fields(bool(doc_options["remove_fields"]))
        if doc_options.get("display_doc_title") is not None:
            mix.display_doc_title(bool(doc_options["display_doc_title"]))

        logger.info(
            "Generating document from template '%s' (%d texts, %d images)",
            template_name,
            len(texts or {}),
            len(images or {}),
        )
        pdf_bytes = mix.to_bytes()

        document_id = str(uuid.uuid4())
        record = {
            "document_id": document_id,
            "template_name": template_name,
            "generated_at": dt.datetime.now(dt.timezone.utc).isoformat(),
            "filename": f"{template_name}_{document_id[:8]}.pdf",
            "size": len(pdf_bytes),
        }

        if persist:
            record.update(self._store_document(document_id, record, pdf_bytes))

        self._cache[document_id] = {"metadata": record, "bytes": pdf_bytes}
        return {"metadata": record, "bytes": pdf_bytes}

    def get_document(self, document_id: str) -> Dict:
        entry = self._cache.get(document_id)
        if entry:
            return entry

        try:
            document_id = str(uuid.UUID(document_id))
        except ValueError as exc:
            raise DocumentNotFoundError(f"Document '{document_id}' not found") from exc

        file_path = self.generated_dir / f"{document_id}.pdf"
        if file_path.exists():
            with file_path.open("rb") as f:
                pdf_bytes = f.read()
            record = {}
            record_path = file_path.with_suffix(".json")
            if record_path.exists():
                with record_path.open("r", encoding="utf-8") as f:
                    record = json.load(f)
            entry = {"metadata": record, "bytes": pdf_bytes}
            self._cache[document_id] = entry
            return entry

        if self.s3_bucket:
            key = f"{self.s3_prefix}{document_id}.pdf"
            try:
                obj = self.s3.get_object(Bucket=self.s3_bucket, Key=key)
            except ClientError as exc:
                logger.info("Document %s not found in S3: %s", document_id, exc)
                raise DocumentNotFoundError(f"Document '{document_id}' not found") from exc
            entry = {"metadata": {"s3_key": key}, "bytes": obj["Body"].read()}
            self._cache[document_id] = entry
            return entry

        raise DocumentNotFoundError(f"Document '{document_id}' not found")

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _resolve_template_path(self, template_name: str) -> Path:
        if not template_name or not template_name.strip():
            raise InvalidArgumentError("Template name is required")
        if "/" in template_name or "\\" in template_name or ".." in template_name:
            raise InvalidArgumentError(f"Invalid template name '{template_name}'")

        candidate = self.templates_dir / f"{template_name}.pdf"
        if candidate.exists():
            return candidate

        # Case-insensitive fallback
        for pdf_file in self.templates_dir.glob("*.pdf"):
            if pdf_file.stem.lower() == template_name.lower():
                return pdf_file

        raise TemplateNotFoundError(f"PDF template '{template_name}' not found in {self.templates_dir}")

    def _store_document(self, document_id: str, record: Dict, pdf_bytes: bytes) -> Dict:
        if self.s3_bucket:
            key = f"{self.s3_prefix}{document_id}.pdf"
            try:
                self.s3.put_object(
                    Bucket=self.s3_bucket,
                    Key=key,
                    Body=pdf_bytes,
                    ContentType="application/pdf",
                    Metadata={"filename": record["filename"]},
                )
            except ClientError as exc:
                logger.error("Error storing document %s in S3: %s", document_id, exc, exc_info=True)
                raise DocumentStoreError(f"Cannot store document '{document_id}': {exc}") from exc
            return {"s3_bucket": self.s3_bucket, "s3_key": key}

        target = self.generated_dir / f"{document_id}.pdf"
        with target.open("wb") as f:
            f.write(pdf_bytes)
        record_path = target.with_suffix(".json")
        with record_path.open("w", encoding="utf-8") as f:
            json.dump(record, f, indent=2)
        return {"file_path": str(target)}
