"""
Template sources.

A template can be handed over as raw bytes, a URL (``http``, ``https``,
``file`` or ``s3``), a readable binary stream, a path string or a
``pathlib.Path``. Every form is read fully into memory right away, so the
binder only ever deals with an immutable ``bytes`` buffer.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import BinaryIO, Optional, Union
from urllib.parse import unquote, urlparse

import boto3
import requests

from .config import Settings, get_settings
from .exceptions import InvalidArgumentError, TemplateLoadError

logger = logging.getLogger(__name__)

TemplateSource = Union[bytes, bytearray, memoryview, str, "os.PathLike[str]", BinaryIO]

URL_SCHEMES = ("http", "https", "file", "s3")


def is_url(value: str) -> bool:
    parsed = urlparse(value)
    return parsed.scheme.lower() in URL_SCHEMES and bool(parsed.netloc or parsed.path)


def check_source(source: Optional[TemplateSource]) -> None:
    """Reject missing or blank sources before any I/O is attempted."""
    if source is None:
        raise InvalidArgumentError("Template source is required")
    if isinstance(source, str) and not source.strip():
        raise InvalidArgumentError("Template path is blank")


def read_template(source: TemplateSource, settings: Optional[Settings] = None) -> bytes:
    """
    Normalize any supported template source to bytes.

    Raises:
        InvalidArgumentError: If `source` is None, blank or of an unsupported type.
        TemplateLoadError: If the source cannot be read.
    """
    check_source(source)

    if isinstance(source, (bytes, bytearray, memoryview)):
        return bytes(source)
    if isinstance(source, str):
        if is_url(source):
            return read_url(source, settings or get_settings())
        return read_path(Path(source))
    if isinstance(source, os.PathLike):
        return read_path(Path(source))
    if hasattr(source, "read"):
        return read_stream(source)

    raise InvalidArgumentError(f"Unsupported template source: {type(source).__name__}")


def read_path(path: Path) -> bytes:
    try:
        with path.open("rb") as f:
            return f.read()
    except OSError as exc:
        logger.error("Error reading template %s: %s", path, exc, exc_info=True)
        raise TemplateLoadError(f"Cannot read template file {path}: {exc}") from exc


def read_stream(stream: BinaryIO) -> bytes:
    try:
        data = stream.read()
    except (OSError, ValueError) as exc:
        logger.error("Error reading template stream: %s", exc, exc_info=True)
        raise TemplateLoadError(f"Cannot read template stream: {exc}") from exc
    if isinstance(data, str):
        raise InvalidArgumentError("Template stream must be opened in binary mode")
    return bytes(data)


def read_url(url: str, settings: Settings) -> bytes:
    parsed = urlparse(url)
    scheme = parsed.scheme.lower()

    if scheme == "file":
        return read_path(Path(unquote(parsed.path)))

    if scheme == "s3":
        bucket, key = parsed.netloc, parsed.path.lstrip("/")
        if not bucket or not key:
            raise InvalidArgumentError(f"S3 URL needs a bucket and a key: {url}")
        try:
            s3 = boto3.client("s3", region_name=settings.aws_region)
            obj = s3.get_object(Bucket=bucket, Key=key)
            return obj["Body"].read()
        except Exception as exc:
            logger.error("Error fetching template %s: %s", url, exc, exc_info=True)
            raise TemplateLoadError(f"Cannot fetch template {url}: {exc}") from exc

    try:
        resp = requests.get(url, timeout=settings.http_timeout)
        resp.raise_for_status()
    except requests.RequestException as exc:
        logger.error("Error fetching template %s: %s", url, exc, exc_info=True)
        raise TemplateLoadError(f"Cannot fetch template {url}: {exc}") from exc
    logger.info("Fetched template %s (%d bytes)", url, len(resp.content))
    return resp.content
