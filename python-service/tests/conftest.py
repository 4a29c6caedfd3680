import base64
import io

import fitz
import pytest
from PIL import Image

PAGE_TEXTS = ("Page one", "Page two", "Page three")


def png_bytes(size=(20, 10), color=(200, 30, 30), mode="RGB"):
    buf = io.BytesIO()
    Image.new(mode, size, color).save(buf, format="PNG")
    return buf.getvalue()


def png_data_url(size=(20, 10), color=(200, 30, 30)):
    return "data:image/png;base64," + base64.b64encode(png_bytes(size, color)).decode("ascii")


def build_pdf(texts=PAGE_TEXTS, image_rects=()):
    """A4 pages with one line of text each; `image_rects` draws the same image on page 1."""
    doc = fitz.open()
    for text in texts:
        page = doc.new_page(width=595, height=842)
        page.insert_text((72, 72), text, fontsize=12)
    if image_rects:
        first = doc[0]
        xref = first.insert_image(fitz.Rect(image_rects[0]), stream=png_bytes())
        for rect in image_rects[1:]:
            first.insert_image(fitz.Rect(rect), xref=xref)
    data = doc.tobytes()
    doc.close()
    return data


class DummyOcrEngine:
    def __init__(self, text="recognised"):
        self.text = text
        self.calls = 0

    def recognize(self, source, progress=None):
        self.calls += 1
        if progress: progress(0)
        if progress: progress(100)
        return self.text


@pytest.fixture
def pdf_bytes():
    return build_pdf()


@pytest.fixture
def ocr_engine():
    return DummyOcrEngine()
