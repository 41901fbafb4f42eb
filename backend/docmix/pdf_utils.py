"""
Low-level PDF utilities for filling and finalizing AcroForm-based templates.

pypdf owns the document model: field values, metadata, viewer preferences,
field removal/flattening and serialization. PyMuPDF is only used to render
image stamps, which pypdf cannot draw on its own; the stamp is produced as a
one-page overlay and merged onto the target page with pypdf.
"""

from __future__ import annotations

import datetime as dt
import io
import logging
import re
from dataclasses import dataclass
from typing import Dict, Iterator, List, Mapping, Optional, Tuple, Union

import fitz  # PyMuPDF
from pypdf import PageObject, PdfReader, PdfWriter, Transformation
from pypdf.generic import (
    ArrayObject,
    BooleanObject,
    ByteStringObject,
    DecodedStreamObject,
    DictionaryObject,
    IndirectObject,
    NameObject,
    StreamObject,
)

from .exceptions import DecodeError

logger = logging.getLogger(__name__)

ImageValue = Union[bytes, bytearray, memoryview, fitz.Pixmap]

# Annotation flag bit 2 (/F): hidden annotations are never painted.
_HIDDEN_FLAG = 2

_PDF_DATE = re.compile(
    r"^(?:D:)?(?P<year>\d{4})(?P<month>\d{2})?(?P<day>\d{2})?"
    r"(?P<hour>\d{2})?(?P<minute>\d{2})?(?P<second>\d{2})?"
    r"(?:(?P<tz>[Zz+\-])(?:(?P<tz_hour>\d{2})'?(?:(?P<tz_minute>\d{2})'?)?)?)?$"
)


@dataclass(frozen=True)
class FieldPosition:
    """Page-relative rectangle of one widget, in PDF user space."""

    page_index: int
    left: float
    bottom: float
    right: float
    top: float


# ----------------------------------------------------------------------
# Dates and metadata
# ----------------------------------------------------------------------
def decode_pdf_date(raw: Optional[str]) -> dt.datetime:
    """
    Decode a PDF date string (``D:YYYYMMDDHHmmSSOHH'mm'``) into a datetime.

    Every component after the year is optional. A missing offset or ``Z`` is
    read as UTC.

    Raises:
        DecodeError: If `raw` is None or not a PDF date.
    """
    if raw is None:
        raise DecodeError("No date stored")

    match = _PDF_DATE.match(raw.strip())
    if not match:
        raise DecodeError(f"Malformed PDF date: {raw!r}")

    parts = match.groupdict()
    tz = dt.timezone.utc
    if parts["tz"] in ("+", "-"):
        offset = dt.timedelta(
            hours=int(parts["tz_hour"] or 0),
            minutes=int(parts["tz_minute"] or 0),
        )
        tz = dt.timezone(-offset if parts["tz"] == "-" else offset)
    try:
        return dt.datetime(
            int(parts["year"]),
            int(parts["month"] or 1),
            int(parts["day"] or 1),
            int(parts["hour"] or 0),
            int(parts["minute"] or 0),
            int(parts["second"] or 0),
            tzinfo=tz,
        )
    except ValueError as exc:
        raise DecodeError(f"Malformed PDF date: {raw!r}") from exc


def read_info(data: bytes) -> Dict[str, str]:
    """Return the document information dictionary of a PDF, keys without '/'."""
    reader = PdfReader(io.BytesIO(data), strict=False)
    info = reader.metadata
    if info is None:
        return {}
    return {str(key)[1:]: str(info[key]) for key in info}


def write_info(writer: PdfWriter, info: Mapping[str, str]) -> None:
    writer.add_metadata({f"/{key}": value for key, value in info.items()})


def set_display_doc_title(writer: PdfWriter, flag: bool) -> None:
    root = writer._root_object
    prefs = root.get("/ViewerPreferences")
    if prefs is None:
        prefs = DictionaryObject()
        root[NameObject("/ViewerPreferences")] = prefs
    prefs[NameObject("/DisplayDocTitle")] = BooleanObject(flag)


# ----------------------------------------------------------------------
# Fields
# ----------------------------------------------------------------------
def _annotations(page: PageObject) -> ArrayObject:
    annots = page.get("/Annots")
    return annots.get_object() if annots is not None else ArrayObject()


def _widgets(writer: PdfWriter) -> Iterator[Tuple[int, DictionaryObject]]:
    for index, page in enumerate(writer.pages):
        for ref in _annotations(page):
            annotation = ref.get_object()
            if annotation.get("/Subtype") == "/Widget":
                yield index, annotation


def _field_names(annotation: DictionaryObject) -> Tuple[Optional[str], Optional[str]]:
    """Return (fully qualified name, terminal name) of a widget's field."""
    parts: List[str] = []
    node: Optional[DictionaryObject] = annotation
    while node is not None:
        if "/T" in node:
            parts.append(str(node["/T"]))
        parent = node.get("/Parent")
        node = parent.get_object() if parent is not None else None
    if not parts:
        return None, None
    return ".".join(reversed(parts)), parts[0]


def field_positions(writer: PdfWriter, name: str) -> List[FieldPosition]:
    """Rectangles of every widget bound to the field `name` (may be empty)."""
    positions = []
    for index, annotation in _widgets(writer):
        if name not in _field_names(annotation) or "/Rect" not in annotation:
            continue
        x0, y0, x1, y1 = (float(v) for v in annotation["/Rect"])
        positions.append(
            FieldPosition(index, min(x0, x1), min(y0, y1), max(x0, x1), max(y0, y1))
        )
    return positions


def field_names(writer: PdfWriter) -> List[str]:
    names = []
    for _, annotation in _widgets(writer):
        full_name, _ = _field_names(annotation)
        if full_name and full_name not in names:
            names.append(full_name)
    return names


def set_field_text(writer: PdfWriter, name: str, value: str) -> None:
    """Set a text field on every page; pypdf ignores names it cannot match."""
    for page in writer.pages:
        if "/Annots" in page:
            writer.update_page_form_field_values(page, {name: value}, auto_regenerate=False)


def stamp_image(writer: PdfWriter, position: FieldPosition, image: ImageValue) -> None:
    """Draw `image` stretched over `position` on top of the page content."""
    page = writer.pages[position.page_index]
    box = page.mediabox
    width, height = float(box.width), float(box.height)
    left, bottom = float(box.left), float(box.bottom)

    # PyMuPDF pages have a top-left origin.
    target = fitz.Rect(
        position.left - left,
        height - (position.top - bottom),
        position.right - left,
        height - (position.bottom - bottom),
    )

    overlay = fitz.open()
    try:
        canvas = overlay.new_page(width=width, height=height)
        if isinstance(image, fitz.Pixmap):
            canvas.insert_image(target, pixmap=image, keep_proportion=False)
        else:
            canvas.insert_image(target, stream=bytes(image), keep_proportion=False)
        stamp = PdfReader(io.BytesIO(overlay.tobytes()), strict=False).pages[0]
    finally:
        overlay.close()

    page.merge_transformed_page(stamp, Transformation().translate(left, bottom))


# ----------------------------------------------------------------------
# Finalization
# ----------------------------------------------------------------------
def remove_fields(writer: PdfWriter) -> None:
    """Strip every widget annotation and the AcroForm dictionary."""
    writer.remove_annotations(subtypes="/Widget")
    writer._root_object.pop(NameObject("/AcroForm"), None)


def flatten_fields(writer: PdfWriter) -> int:
    """
    Paint each visible widget's normal appearance into its page content, then
    drop the widgets and the AcroForm. Returns the number of widgets painted.
    """
    painted = 0
    for page in writer.pages:
        annots = page.get("/Annots")
        if annots is None:
            continue

        kept = ArrayObject()
        commands = []
        for ref in annots.get_object():
            annotation = ref.get_object()
            if annotation.get("/Subtype") != "/Widget":
                kept.append(ref)
                continue
            if int(annotation.get("/F", 0)) & _HIDDEN_FLAG:
                continue
            appearance = _normal_appearance(writer, annotation)
            if appearance is None:
                continue

            name = NameObject(f"/DocMixFlat{painted}")
            _page_xobjects(page)[name] = appearance
            command = _placement(annotation, appearance.get_object(), name)
            if command:
                commands.append(command)
                painted += 1

        if commands:
            _append_content(writer, page, "".join(commands))
        if kept:
            page[NameObject("/Annots")] = kept
        else:
            del page["/Annots"]

    writer._root_object.pop(NameObject("/AcroForm"), None)
    logger.debug("Flattened %d widgets", painted)
    return painted


def _normal_appearance(writer: PdfWriter, annotation: DictionaryObject) -> Optional[IndirectObject]:
    appearances = annotation.get("/AP")
    if appearances is None or "/N" not in appearances:
        return None
    normal = appearances.raw_get("/N")
    target = normal.get_object()
    if not isinstance(target, StreamObject):
        # Checkboxes and radios keep one appearance per state.
        state = annotation.get("/AS")
        if state is None or state not in target:
            return None
        normal = target.raw_get(state)
    if not isinstance(normal, IndirectObject):
        normal = writer._add_object(normal)
    return normal


def _page_xobjects(page: PageObject) -> DictionaryObject:
    resources = page.get("/Resources")
    if resources is None:
        resources = DictionaryObject()
        page[NameObject("/Resources")] = resources
    resources = resources.get_object()
    xobjects = resources.get("/XObject")
    if xobjects is None:
        xobjects = DictionaryObject()
        resources[NameObject("/XObject")] = xobjects
    return xobjects.get_object()


def _placement(annotation: DictionaryObject, appearance: StreamObject, name: str) -> str:
    """Content operators mapping the appearance's bounding box onto /Rect."""
    bbox = [float(v) for v in appearance.get("/BBox", [0, 0, 0, 0])]
    a, b, c, d, e, f = (float(v) for v in appearance.get("/Matrix", [1, 0, 0, 1, 0, 0]))
    corners = [
        (a * x + c * y + e, b * x + d * y + f)
        for x, y in ((bbox[0], bbox[1]), (bbox[2], bbox[1]), (bbox[0], bbox[3]), (bbox[2], bbox[3]))
    ]
    x0, x1 = min(x for x, _ in corners), max(x for x, _ in corners)
    y0, y1 = min(y for _, y in corners), max(y for _, y in corners)
    if x1 == x0 or y1 == y0:
        return ""

    rx0, ry0, rx1, ry1 = (float(v) for v in annotation["/Rect"])
    rx0, rx1 = min(rx0, rx1), max(rx0, rx1)
    ry0, ry1 = min(ry0, ry1), max(ry0, ry1)
    sx = (rx1 - rx0) / (x1 - x0)
    sy = (ry1 - ry0) / (y1 - y0)
    tx = rx0 - x0 * sx
    ty = ry0 - y0 * sy
    return f"q {sx:.6f} 0 0 {sy:.6f} {tx:.6f} {ty:.6f} cm {name} Do Q\n"


def _append_content(writer: PdfWriter, page: PageObject, commands: str) -> None:
    head = DecodedStreamObject()
    head.set_data(b"q\n")
    tail = DecodedStreamObject()
    tail.set_data(("Q\n" + commands).encode("latin-1"))

    streams = ArrayObject([writer._add_object(head)])
    streams.extend(_content_refs(writer, page))
    streams.append(writer._add_object(tail))
    page[NameObject("/Contents")] = streams


def _content_refs(writer: PdfWriter, page: PageObject) -> List[IndirectObject]:
    if "/Contents" not in page:
        return []
    contents = page.raw_get("/Contents")
    target = contents.get_object()
    items = list(target) if isinstance(target, ArrayObject) else [contents]
    return [
        item if isinstance(item, IndirectObject) else writer._add_object(item)
        for item in items
    ]


def eliminate_shared_streams(writer: PdfWriter) -> None:
    """Give every page its own copy of content streams shared with another page."""
    seen = set()
    for page in writer.pages:
        refs = _content_refs(writer, page)
        if not refs:
            continue
        fresh = ArrayObject()
        changed = False
        for ref in refs:
            if ref.idnum in seen:
                copy = DecodedStreamObject()
                copy.set_data(ref.get_object().get_data())
                ref = writer._add_object(copy)
                changed = True
            seen.add(ref.idnum)
            fresh.append(ref)
        if changed:
            page[NameObject("/Contents")] = fresh


def _dest_key(value) -> str:
    if isinstance(value, ByteStringObject):
        return bytes(value).decode("latin-1")
    if isinstance(value, NameObject):
        return str(value)[1:]
    return str(value)


def _explicit_destination(value) -> Optional[ArrayObject]:
    value = value.get_object()
    if isinstance(value, DictionaryObject):
        value = value.get("/D")
    return value if isinstance(value, ArrayObject) else None


def _named_destinations(writer: PdfWriter) -> Dict[str, ArrayObject]:
    found: Dict[str, ArrayObject] = {}
    root = writer._root_object

    legacy = root.get("/Dests")
    if legacy is not None:
        for key, value in legacy.get_object().items():
            explicit = _explicit_destination(value)
            if explicit is not None:
                found[_dest_key(key)] = explicit

    names = root.get("/Names")
    tree = names.get_object().get("/Dests") if names is not None else None
    pending = [tree] if tree is not None else []
    while pending:
        node = pending.pop().get_object()
        pairs = node.get("/Names", ArrayObject())
        for key, value in zip(pairs[0::2], pairs[1::2]):
            explicit = _explicit_destination(value)
            if explicit is not None:
                found[_dest_key(key)] = explicit
        pending.extend(node.get("/Kids", ArrayObject()))
    return found


def consolidate_named_destinations(writer: PdfWriter) -> int:
    """Replace local named links with their explicit destinations."""
    named = _named_destinations(writer)
    if not named:
        return 0

    replaced = 0
    for page in writer.pages:
        for ref in _annotations(page):
            annotation = ref.get_object()
            if annotation.get("/Subtype") != "/Link":
                continue
            if "/Dest" in annotation:
                explicit = named.get(_dest_key(annotation["/Dest"]))
                if explicit is not None:
                    annotation[NameObject("/Dest")] = explicit
                    replaced += 1
                continue
            action = annotation.get("/A")
            if action is None or action.get("/S") != "/GoTo" or "/D" not in action:
                continue
            explicit = named.get(_dest_key(action["/D"]))
            if explicit is not None:
                action[NameObject("/D")] = explicit
                replaced += 1
    return replaced


def compress(writer: PdfWriter) -> None:
    for page in writer.pages:
        page.compress_content_streams()
    # Identical objects stay apart so page content streams are never re-shared.
    writer.compress_identical_objects(remove_duplicates=False, remove_unreferenced=True)
