import io

import fitz  # PyMuPDF
import pytest
from pypdf import PdfReader

PAGE_WIDTH = 595
PAGE_HEIGHT = 842


def build_template(text_fields=("nome", "valor"), image_fields=("logo",), pages=1) -> bytes:
    """A fillable PDF with one text widget per field name on the first page."""
    doc = fitz.open()
    try:
        for index in range(pages):
            page = doc.new_page(width=PAGE_WIDTH, height=PAGE_HEIGHT)
            page.insert_text((72, 40), f"Template page {index + 1}", fontsize=10)
            if index:
                continue
            top = 72
            for name in (*text_fields, *image_fields):
                widget = fitz.Widget()
                widget.field_name = name
                widget.field_type = fitz.PDF_WIDGET_TYPE_TEXT
                widget.rect = fitz.Rect(72, top, 320, top + 24)
                widget.text_font = "Helv"
                widget.text_fontsize = 11
                page.add_widget(widget)
                top += 40
        return doc.tobytes()
    finally:
        doc.close()


def build_png(width=8, height=8) -> bytes:
    pix = fitz.Pixmap(fitz.csRGB, fitz.IRect(0, 0, width, height), False)
    pix.clear_with(200)
    return pix.tobytes("png")


def read_pdf(data: bytes) -> PdfReader:
    return PdfReader(io.BytesIO(data))


def widget_annotations(reader: PdfReader):
    widgets = []
    for page in reader.pages:
        for ref in page.get("/Annots", []):
            annotation = ref.get_object()
            if annotation.get("/Subtype") == "/Widget":
                widgets.append(annotation)
    return widgets


def page_xobjects(reader: PdfReader, page_index=0):
    resources = reader.pages[page_index].get("/Resources", {})
    xobjects = resources.get("/XObject", {})
    return {str(name): xobjects[name].get_object() for name in xobjects}


@pytest.fixture
def template_bytes() -> bytes:
    return build_template()


@pytest.fixture
def png_bytes() -> bytes:
    return build_png()


@pytest.fixture
def template_file(tmp_path, template_bytes):
    path = tmp_path / "boleto.pdf"
    path.write_bytes(template_bytes)
    return path
