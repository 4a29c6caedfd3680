import logging
from collections import namedtuple

import fitz

from .errors import DocumentLoadError, EmptyDocumentError, PageReconstructionError, PasswordProtectedError

logger = logging.getLogger(__name__)

# transform follows the PDF convention (a, b, c, d, e, f): origin bottom-left,
# e/f the baseline start, |a| the font size for unrotated text
TextRun = namedtuple("TextRun", "text transform width height font")
Viewport = namedtuple("Viewport", "width height scale")
# one entry per image draw operation; the same xref can appear more than once
ImageDraw = namedtuple("ImageDraw", "xref smask transform bbox width height")


def open_document(data: bytes):
    try:
        doc = fitz.open(stream=data, filetype="pdf")
    except Exception as e:
        raise DocumentLoadError(f"Invalid PDF document: {e}") from e
    if doc.needs_pass:
        doc.close()
        raise PasswordProtectedError()
    if doc.page_count < 1:
        doc.close()
        raise EmptyDocumentError()
    return doc


def page_viewport(page, max_width, max_height) -> Viewport:
    w, h = float(page.rect.width), float(page.rect.height)
    if w <= 0 or h <= 0:
        raise PageReconstructionError(f"Invalid viewport dimensions {w}x{h}")
    scale = min(max_width / w, max_height / h)
    return Viewport(w * scale, h * scale, scale)


def read_text_runs(page):
    page_h = float(page.rect.height)
    runs = []
    for block in page.get_text("dict").get("blocks", []):
        if "lines" not in block: continue
        for line in block["lines"]:
            dx, dy = line.get("dir") or (1.0, 0.0)
            for sp in line.get("spans", []):
                text = sp.get("text") or ""
                if not text.strip(): continue
                bx = sp.get("bbox") or (0, 0, 0, 0)
                origin = sp.get("origin")
                size = float(sp.get("size") or 0)
                transform = None
                if origin is not None:
                    # PyMuPDF reports top-left coordinates; flip to PDF space
                    transform = (size * dx, -size * dy, size * dy, size * dx,
                                 float(origin[0]), page_h - float(origin[1]))
                runs.append(TextRun(text, transform, float(bx[2] - bx[0]), float(bx[3] - bx[1]), sp.get("font") or ""))
    return runs


def image_draws(page):
    smasks = {img[0]: img[1] for img in page.get_images(full=True)}
    draws = []
    for info in page.get_image_info(xrefs=True):
        xref = int(info.get("xref") or 0)
        draws.append(ImageDraw(
            xref=xref, smask=smasks.get(xref, 0),
            transform=tuple(info["transform"]) if info.get("transform") else None,
            bbox=tuple(info["bbox"]) if info.get("bbox") else None,
            width=int(info.get("width") or 0), height=int(info.get("height") or 0),
        ))
    logger.debug("page %d: %d image draw operations", page.number + 1, len(draws))
    return draws
