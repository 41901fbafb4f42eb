"""
Engine session: one pypdf reader/writer pair bound to an in-memory output.

A session lives for exactly one init -> fill -> finalize cycle of a
:class:`docmix.doc_mix.DocMix`. It is opened fresh for every output request
and always closed at the end, whether or not filling succeeded.
"""

from __future__ import annotations

import io
import logging
from typing import List, Mapping, Optional

from pypdf import PdfReader, PdfWriter

from . import pdf_utils
from .exceptions import FatalCloseError
from .pdf_utils import FieldPosition, ImageValue

logger = logging.getLogger(__name__)


class EngineSession:
    def __init__(self, template: bytes):
        self._input = io.BytesIO(template)
        self.reader: Optional[PdfReader] = None
        self.output: Optional[io.BytesIO] = None
        self.writer: Optional[PdfWriter] = None
        self.full_compression = False
        self.closed = False

    def open(self) -> "EngineSession":
        """Parse the template and clone it into a writer (raises pypdf errors as-is)."""
        self.reader = PdfReader(self._input, strict=False)
        self.output = io.BytesIO()
        self.writer = PdfWriter(clone_from=self.reader)
        logger.debug("Engine session opened (%d pages)", len(self.writer.pages))
        return self

    # ------------------------------------------------------------------
    # Document level
    # ------------------------------------------------------------------
    def set_info(self, info: Mapping[str, str]) -> None:
        pdf_utils.write_info(self.writer, info)

    def set_display_doc_title(self, flag: bool) -> None:
        pdf_utils.set_display_doc_title(self.writer, flag)

    # ------------------------------------------------------------------
    # Field accessors
    # ------------------------------------------------------------------
    def field_names(self) -> List[str]:
        return pdf_utils.field_names(self.writer)

    def set_field(self, name: str, value: str) -> None:
        pdf_utils.set_field_text(self.writer, name, value)

    def field_positions(self, name: str) -> List[FieldPosition]:
        return pdf_utils.field_positions(self.writer, name)

    def replace_with_image(self, position: FieldPosition, image: ImageValue) -> None:
        pdf_utils.stamp_image(self.writer, position, image)

    # ------------------------------------------------------------------
    # Finalization
    # ------------------------------------------------------------------
    def remove_fields(self) -> None:
        pdf_utils.remove_fields(self.writer)

    def flatten_fields(self) -> None:
        pdf_utils.flatten_fields(self.writer)

    def normalize(self) -> None:
        pdf_utils.consolidate_named_destinations(self.writer)
        pdf_utils.eliminate_shared_streams(self.writer)

    def serialize(self) -> bytes:
        if self.full_compression:
            pdf_utils.compress(self.writer)
        self.writer.write(self.output)
        self.output.flush()
        return self.output.getvalue()

    def close(self) -> None:
        """
        Close the output, the reader and the writer, in that order.

        Every step is attempted even if an earlier one fails; the first failure
        is raised afterwards as FatalCloseError.
        """
        if self.closed:
            return
        self.closed = True

        failures = []
        for label, closer in (
            ("output", self._close_output),
            ("reader", self._input.close),
            ("writer", self._close_writer),
        ):
            try:
                closer()
            except Exception as exc:
                logger.error("Failed to close %s: %s", label, exc, exc_info=True)
                failures.append((label, exc))

        if failures:
            label, exc = failures[0]
            raise FatalCloseError(f"Failed to close engine {label}: {exc}") from exc

    def _close_output(self) -> None:
        if self.output is not None:
            self.output.close()

    def _close_writer(self) -> None:
        if self.writer is not None:
            self.writer.close()
