"""
Template binder: fills a PDF form template and finalizes the result.

A `DocMix` holds a template, text and image bindings, document metadata and
finalization options. Every output accessor (`to_bytes`, `to_stream`,
`to_file`) runs one full cycle through the stages

    CONFIGURED --init--> ENGINE_OPEN --fill--> FILLED --finalize--> EMITTED

on a fresh engine session. A failed cycle ends in FAILED; the next output
request starts over from there. Stage methods invoked out of order raise
InvalidStateError.

Instances are not thread safe.
"""

from __future__ import annotations

import dataclasses
import io
import logging
import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, Mapping, Optional, Tuple, Union

from .config import Settings
from .doc_info import DOC_CREATOR, DOC_PRODUCER, DocInfo
from .engine import EngineSession
from .exceptions import (
    FatalCloseError,
    FatalInitError,
    FillError,
    InvalidArgumentError,
    InvalidStateError,
)
from .pdf_utils import ImageValue
from .sources import TemplateSource, check_source, read_template

logger = logging.getLogger(__name__)

CREATOR_SUFFIX = "by jrimum.org/bopepo"


class Stage(Enum):
    CONFIGURED = "configured"
    ENGINE_OPEN = "engine_open"
    FILLED = "filled"
    EMITTED = "emitted"
    FAILED = "failed"


_IDLE_STAGES = (Stage.CONFIGURED, Stage.EMITTED, Stage.FAILED)


class FieldPolicy(Enum):
    """What happens to form fields once they are filled."""

    REMOVE = "remove"
    FLATTEN = "flatten"


@dataclass
class FinishOptions:
    full_compression: bool = True
    field_policy: FieldPolicy = FieldPolicy.REMOVE
    display_doc_title: Optional[bool] = None  # None leaves the viewer preference alone


def merge_creator(creator: Optional[str]) -> str:
    """Append the attribution suffix to `creator` (or use it alone if blank)."""
    if creator is None or not creator.strip():
        return CREATOR_SUFFIX
    return f"{creator} {CREATOR_SUFFIX}"


def _check_field_name(name: str) -> None:
    if not isinstance(name, str) or not name.strip():
        raise InvalidArgumentError("Field name is required")


def _check_dest(dest: Union[str, "os.PathLike[str]", None]) -> Path:
    if dest is None:
        raise InvalidArgumentError("Destination file is required")
    if not os.fspath(dest).strip():
        raise InvalidArgumentError("Destination path is blank")
    return Path(dest)


class DocMix:
    """
    Mixes a PDF form template with field values and metadata.

    Example:
        >>> pdf = (
        ...     DocMix("templates/boleto.pdf")
        ...     .put("nome", "Maria Silva")
        ...     .put("logo", logo_png_bytes)
        ...     .title("Boleto")
        ...     .remove_fields(False)
        ...     .to_bytes()
        ... )
    """

    def __init__(self, template: TemplateSource, settings: Optional[Settings] = None):
        self._settings = settings
        self._template = b""
        self._doc_info = DocInfo.create()
        self._texts: Optional[Dict[str, str]] = None
        self._images: Optional[Dict[str, ImageValue]] = None
        self._options = FinishOptions()
        self._session: Optional[EngineSession] = None
        self._stage = Stage.CONFIGURED
        self._creator_cache: Optional[Tuple[Optional[str], str]] = None
        self._set_template(template)

    @classmethod
    def create_with_template(cls, template: TemplateSource, settings: Optional[Settings] = None) -> "DocMix":
        check_source(template)
        return cls(template, settings)

    # ------------------------------------------------------------------
    # Template management
    # ------------------------------------------------------------------
    @property
    def template(self) -> bytes:
        return self._template

    def change_template(self, template: TemplateSource) -> "DocMix":
        """Replace the template; bindings, metadata and options are kept."""
        self._require(*_IDLE_STAGES, action="change the template")
        return self._set_template(template)

    def _set_template(self, template: TemplateSource) -> "DocMix":
        data = read_template(template, self._settings)
        self._template = data
        self._session = None
        self._stage = Stage.CONFIGURED
        logger.debug("Template loaded (%d bytes)", len(data))
        return self

    # ------------------------------------------------------------------
    # Field bindings
    # ------------------------------------------------------------------
    @property
    def text_fields(self) -> Dict[str, str]:
        return dict(self._texts or {})

    @property
    def image_fields(self) -> Dict[str, ImageValue]:
        return dict(self._images or {})

    def put(self, name: str, value: Union[str, ImageValue]) -> "DocMix":
        """Bind `value` to the field `name`; strings are text, anything else an image."""
        if value is None or isinstance(value, str):
            return self.put_text(name, value)
        return self.put_image(name, value)

    def put_text(self, name: str, value: str) -> "DocMix":
        _check_field_name(name)
        if value is None:
            raise InvalidArgumentError(f"Text value for field '{name}' is required")
        if self._texts is None:
            self._texts = {}
        self._texts[name] = value
        return self

    def put_image(self, name: str, image: ImageValue) -> "DocMix":
        _check_field_name(name)
        if image is None:
            raise InvalidArgumentError(f"Image for field '{name}' is required")
        if self._images is None:
            self._images = {}
        self._images[name] = image
        return self

    def put_all_texts(self, texts: Mapping[str, str]) -> "DocMix":
        """Replace every text binding with `texts` (must not be empty)."""
        if not texts:
            raise InvalidArgumentError("Text fields are required")
        for name, value in texts.items():
            _check_field_name(name)
            if value is None:
                raise InvalidArgumentError(f"Text value for field '{name}' is required")
        self._texts = dict(texts)
        return self

    def put_all_images(self, images: Mapping[str, ImageValue]) -> "DocMix":
        """Replace every image binding with `images` (must not be empty)."""
        if not images:
            raise InvalidArgumentError("Image fields are required")
        for name, image in images.items():
            _check_field_name(name)
            if image is None:
                raise InvalidArgumentError(f"Image for field '{name}' is required")
        self._images = dict(images)
        return self

    # ------------------------------------------------------------------
    # Options and metadata
    # ------------------------------------------------------------------
    @property
    def options(self) -> FinishOptions:
        return dataclasses.replace(self._options)

    @property
    def stage(self) -> Stage:
        return self._stage

    @property
    def doc_info(self) -> DocInfo:
        return DocInfo.create(self._doc_info.to_map())

    def with_doc_info(self, info: DocInfo) -> "DocMix":
        """Replace the metadata with a copy of `info`."""
        if info is None:
            raise InvalidArgumentError("Document info is required")
        self._doc_info = DocInfo.create(info.to_map())
        return self

    def with_full_compression(self, option: bool) -> "DocMix":
        self._options.full_compression = option
        return self

    def remove_fields(self, option: bool) -> "DocMix":
        """True strips the form; False flattens the fields into the page instead."""
        self._options.field_policy = FieldPolicy.REMOVE if option else FieldPolicy.FLATTEN
        return self

    def with_field_policy(self, policy: FieldPolicy) -> "DocMix":
        self._options.field_policy = FieldPolicy(policy)
        return self

    def display_doc_title(self, option: bool) -> "DocMix":
        self._options.display_doc_title = option
        return self

    def title(self, title: Optional[str]) -> "DocMix":
        self._doc_info.set_title(title)
        return self

    def author(self, author: Optional[str]) -> "DocMix":
        self._doc_info.set_author(author)
        return self

    def subject(self, subject: Optional[str]) -> "DocMix":
        self._doc_info.set_subject(subject)
        return self

    def keywords(self, keywords: Optional[str]) -> "DocMix":
        self._doc_info.set_keywords(keywords)
        return self

    def creator(self, creator: Optional[str]) -> "DocMix":
        self._doc_info.set_creator(creator)
        return self

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------
    def to_bytes(self) -> bytes:
        return self._process()

    def to_stream(self) -> io.BytesIO:
        return io.BytesIO(self._process())

    def to_file(self, dest: Union[str, "os.PathLike[str]"]) -> Path:
        """Write the document to `dest` (created or overwritten) and return its path."""
        path = _check_dest(dest)
        data = self._process()
        with path.open("wb") as f:
            f.write(data)
        logger.info("Wrote %s (%d bytes)", path, len(data))
        return path

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------
    def _process(self) -> bytes:
        self._init()
        try:
            self._fill_fields()
        except Exception:
            self._abort()
            raise
        return self._finalize()

    def _require(self, *stages: Stage, action: str) -> None:
        if self._stage not in stages:
            raise InvalidStateError(f"Cannot {action} while {self._stage.value}")

    def _effective_creator(self) -> str:
        stored = self._doc_info.creator()
        if self._creator_cache is None or self._creator_cache[0] != stored:
            self._creator_cache = (stored, merge_creator(stored))
        return self._creator_cache[1]

    def _engine_info(self) -> Dict[str, str]:
        info = self._doc_info.to_map()
        info.pop(DOC_PRODUCER, None)
        info[DOC_CREATOR] = self._effective_creator()
        return info

    def _init(self) -> None:
        self._require(*_IDLE_STAGES, action="open the engine")
        self._session = EngineSession(self._template)
        try:
            self._session.open()
            self._session.set_info(self._engine_info())
            if self._options.display_doc_title is not None:
                self._session.set_display_doc_title(self._options.display_doc_title)
            fields = self._session.field_names()
        except Exception as exc:
            logger.error("Error opening template: %s", exc, exc_info=True)
            self._abort()
            raise FatalInitError(f"Cannot open template: {exc}") from exc

        self._stage = Stage.ENGINE_OPEN
        logger.debug("Engine open, template exposes %d fields", len(fields))

    def _fill_fields(self) -> None:
        self._require(Stage.ENGINE_OPEN, action="fill fields")
        session = self._session

        for name, value in (self._texts or {}).items():
            try:
                session.set_field(name, value)
            except Exception as exc:
                logger.error("Error setting field '%s': %s", name, exc, exc_info=True)
                raise FillError(f"Cannot set field '{name}': {exc}", field_name=name) from exc

        for name, image in (self._images or {}).items():
            try:
                positions = session.field_positions(name)
                for position in positions:
                    session.replace_with_image(position, image)
            except Exception as exc:
                logger.error("Error placing image in field '%s': %s", name, exc, exc_info=True)
                raise FillError(f"Cannot place image in field '{name}': {exc}", field_name=name) from exc
            if not positions:
                logger.warning("Image field '%s' not found in template, skipped", name)

        self._stage = Stage.FILLED

    def _finalize(self) -> bytes:
        self._require(Stage.FILLED, action="finalize")
        session = self._session
        try:
            session.full_compression = self._options.full_compression
            if self._options.field_policy is FieldPolicy.REMOVE:
                session.remove_fields()
            else:
                session.flatten_fields()
            session.normalize()
            data = session.serialize()
        except Exception as exc:
            logger.error("Error writing document: %s", exc, exc_info=True)
            self._abort()
            raise FatalCloseError(f"Cannot write document: {exc}") from exc

        self._session = None
        try:
            session.close()
        except FatalCloseError:
            self._stage = Stage.FAILED
            raise

        self._stage = Stage.EMITTED
        logger.info(
            "Generated document (%d bytes, %d text fields, %d image fields, %s)",
            len(data),
            len(self._texts or {}),
            len(self._images or {}),
            self._options.field_policy.value,
        )
        return data

    def _abort(self) -> None:
        """Release the session of a failed cycle; close errors are only logged."""
        self._stage = Stage.FAILED
        session, self._session = self._session, None
        if session is None:
            return
        try:
            session.close()
        except FatalCloseError as exc:
            logger.error("Error releasing engine after failure: %s", exc)
