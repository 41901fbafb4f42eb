"""
PDF template mixing for mass-produced documents (payment slips and the like).

This package bundles:
  - `DocInfo`, the document metadata holder
  - `DocMix`, which binds text and images to a form template's fields and
    finalizes the result (compression, field removal or flattening)
  - `DocumentService`, a small host layer that serves templates from a
    directory and stores generated documents locally or in S3
"""

from .doc_info import DocInfo
from .doc_mix import CREATOR_SUFFIX, DocMix, FieldPolicy, FinishOptions, Stage
from .exceptions import (
    DecodeError,
    DocMixError,
    DocumentNotFoundError,
    DocumentStoreError,
    FatalCloseError,
    FatalInitError,
    FillError,
    InvalidArgumentError,
    InvalidStateError,
    TemplateLoadError,
    TemplateNotFoundError,
)
from .service import DocumentService

__all__ = [
    "CREATOR_SUFFIX",
    "DecodeError",
    "DocInfo",
    "DocMix",
    "DocMixError",
    "DocumentNotFoundError",
    "DocumentStoreError",
    "DocumentService",
    "FatalCloseError",
    "FatalInitError",
    "FieldPolicy",
    "FillError",
    "FinishOptions",
    "InvalidArgumentError",
    "InvalidStateError",
    "Stage",
    "TemplateLoadError",
    "TemplateNotFoundError",
]
