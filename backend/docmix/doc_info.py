"""
Document information (metadata) holder.

`DocInfo` wraps a plain ``{key: value}`` mapping keyed by the standard PDF
information dictionary names, so engine specific keys survive a round trip
untouched. Setters ignore ``None`` and return the holder for chaining.
"""

from __future__ import annotations

import datetime as dt
from typing import Dict, Mapping, Optional

from .exceptions import InvalidArgumentError
from .pdf_utils import decode_pdf_date, read_info

DOC_TITLE = "Title"
DOC_AUTHOR = "Author"
DOC_SUBJECT = "Subject"
DOC_KEYWORDS = "Keywords"
DOC_CREATOR = "Creator"
DOC_PRODUCER = "Producer"
DOC_CREATION_DATE = "CreationDate"
DOC_MODIFICATION_DATE = "ModDate"

_EMPTY: Mapping[str, str] = {}


class DocInfo:
    """
    Title, author, subject, keywords and creator of a document, plus the
    engine managed producer and dates.

    Build instances with :meth:`create` or :meth:`from_pdf`.

    Example:
        >>> info = DocInfo.create().set_title("Boleto").set_author("Banco")
        >>> info.title()
        'Boleto'
    """

    def __init__(self, info: Dict[str, str]):
        self._info = info

    @classmethod
    def create(cls, info: Optional[Mapping[str, str]] = _EMPTY) -> "DocInfo":
        """
        Create an empty holder, or one pre-populated from `info`.

        Raises:
            InvalidArgumentError: If `info` is given as None.
        """
        if info is _EMPTY:
            return cls({})
        if info is None:
            raise InvalidArgumentError("Document info mapping is required")
        return cls(dict(info))

    @classmethod
    def from_pdf(cls, data: bytes) -> "DocInfo":
        """Read the information dictionary of an existing PDF."""
        if data is None:
            raise InvalidArgumentError("PDF data is required")
        return cls(read_info(data))

    # ------------------------------------------------------------------
    # Setters
    # ------------------------------------------------------------------
    def _put(self, key: str, value: Optional[str]) -> "DocInfo":
        if value is not None:
            self._info[key] = value
        return self

    def set_title(self, title: Optional[str]) -> "DocInfo":
        return self._put(DOC_TITLE, title)

    def set_author(self, author: Optional[str]) -> "DocInfo":
        return self._put(DOC_AUTHOR, author)

    def set_subject(self, subject: Optional[str]) -> "DocInfo":
        return self._put(DOC_SUBJECT, subject)

    def set_keywords(self, keywords: Optional[str]) -> "DocInfo":
        return self._put(DOC_KEYWORDS, keywords)

    def set_creator(self, creator: Optional[str]) -> "DocInfo":
        return self._put(DOC_CREATOR, creator)

    # ------------------------------------------------------------------
    # Getters
    # ------------------------------------------------------------------
    def title(self) -> Optional[str]:
        return self._info.get(DOC_TITLE)

    def author(self) -> Optional[str]:
        return self._info.get(DOC_AUTHOR)

    def subject(self) -> Optional[str]:
        return self._info.get(DOC_SUBJECT)

    def keywords(self) -> Optional[str]:
        return self._info.get(DOC_KEYWORDS)

    def creator(self) -> Optional[str]:
        return self._info.get(DOC_CREATOR)

    def producer(self) -> Optional[str]:
        """Producer written by the PDF engine; there is no setter."""
        return self._info.get(DOC_PRODUCER)

    def creation_raw(self) -> Optional[str]:
        return self._info.get(DOC_CREATION_DATE)

    def creation(self) -> dt.datetime:
        """Creation date decoded from the raw PDF date; DecodeError if absent."""
        return decode_pdf_date(self.creation_raw())

    def modification_raw(self) -> Optional[str]:
        return self._info.get(DOC_MODIFICATION_DATE)

    def modification(self) -> dt.datetime:
        return decode_pdf_date(self.modification_raw())

    def to_map(self) -> Dict[str, str]:
        return dict(self._info)

    def __eq__(self, other: object) -> bool:
        if self is other:
            return True
        if not isinstance(other, DocInfo):
            return NotImplemented
        return self._info == other._info

    def __hash__(self) -> int:
        return hash(frozenset(self._info.items()))

    def __repr__(self) -> str:
        return f"DocInfo({self._info!r})"
