"""Exception classes for template binding and document generation."""

from typing import Optional


class DocMixError(RuntimeError):
    """Base class for every error raised by docmix."""


class InvalidArgumentError(DocMixError, ValueError):
    """Raised when a required input is missing, blank or empty."""


class InvalidStateError(DocMixError):
    """Raised when a pipeline stage is invoked out of order."""


class TemplateLoadError(DocMixError):
    """Raised when a template source cannot be read into memory."""


class FatalInitError(DocMixError):
    """Raised when the template cannot be parsed or the engine session cannot open."""


class FillError(DocMixError):
    """
    Raised when the engine fails to set a single field.

    Attributes:
        field_name: Name of the failing field, when known.
    """

    def __init__(self, message: str, field_name: Optional[str] = None):
        self.field_name = field_name
        super().__init__(message)


class FatalCloseError(DocMixError):
    """Raised when flushing or closing the engine session fails."""


class DecodeError(DocMixError, ValueError):
    """Raised when a stored PDF date string cannot be decoded."""


class TemplateNotFoundError(DocMixError):
    """Raised by the document service for an unknown template name."""


class DocumentNotFoundError(DocMixError):
    """Raised by the document service for an unknown document id."""


class DocumentStoreError(DocMixError):
    """Raised by the document service when a generated document cannot be stored."""
