import html
import logging
import os
from collections import OrderedDict

import fitz
import requests
from PIL import Image, ImageDraw

from . import config
from .errors import EmptyDocumentError, EnrichmentError

logger = logging.getLogger(__name__)


# ============ Server side ============
def _page_items(page):
    items = []
    for block in page.get_text("dict").get("blocks", []):
        for line in block.get("lines", []):
            for sp in line.get("spans", []):
                t = sp.get("text") or ""
                if t.strip():
                    items.append((t, sp.get("origin") or sp["bbox"][:2]))
    return items

def rasterize_text(items, width, height) -> Image.Image:
    """Draw the extracted strings on a white page-sized canvas for OCR."""
    img = Image.new("RGB", (max(1, int(round(width))), max(1, int(round(height)))), "white")
    draw = ImageDraw.Draw(img)
    for text, (x, y) in items:
        # origin is the baseline; the default font is roughly 10px tall
        try:
            draw.text((float(x), max(0.0, float(y) - 10)), text, fill="black")
        except UnicodeEncodeError:
            logger.debug("Skipping glyphs the default font cannot draw: %r", text)
    return img

def enhanced_text_html(text_content: str, ocr_content: str) -> str:
    out = f'<div class="extracted-text"><div class="pdf-text">{html.escape(text_content)}</div>'
    if ocr_content:
        out += f'<div class="ocr-text">{html.escape(ocr_content)}</div>'
    return out + "</div>"


def enrich_document(pdf_path, engine):
    """Re-extract text per page and OCR a rasterised copy of it."""
    doc = fitz.open(pdf_path)
    try:
        if doc.page_count < 1:
            raise EmptyDocumentError()
        pages = []
        for number, page in enumerate(doc, start=1):
            items = _page_items(page)
            width, height = float(page.rect.width), float(page.rect.height)
            text_content = " ".join(t for t, _ in items)
            ocr_content = engine.recognize(rasterize_text(items, width, height)) if engine else ""
            pages.append(OrderedDict([
                ("pageNumber", number), ("width", width), ("height", height),
                ("textContent", text_content), ("ocrContent", ocr_content),
                ("enhancedText", enhanced_text_html(text_content, ocr_content)),
            ]))
        return OrderedDict([("success", True), ("pages", pages), ("pageCount", doc.page_count)])
    finally:
        doc.close()


# ============ Client side ============
class EnrichmentClient:
    """Posts a PDF to the upload endpoint and returns its JSON answer."""

    def __init__(self, url=None, timeout=None):
        self.url = url or config.ENRICHMENT_URL
        self.timeout = config.ENRICHMENT_TIMEOUT if timeout is None else timeout
        if not self.url:
            raise ValueError("ENRICHMENT_URL not set")

    def __call__(self, data: bytes, filename="document.pdf"):
        try:
            response = requests.post(
                self.url,
                files={"pdf": (os.path.basename(filename), data, "application/pdf")},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise EnrichmentError(f"Server communication error: {e}") from e
        if not response.ok:
            try: message = response.json().get("error")
            except ValueError: message = response.text
            raise EnrichmentError(f"Server-side PDF processing failed ({response.status_code}): {message}")
        return response.json()
