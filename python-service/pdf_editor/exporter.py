"""Export pipelines.

`PageRasterizer` turns reconstructed pages back into a PDF by rasterising
each page fragment and embedding the bitmap as a full-page image.
`export_html` is the server-side variant that lays arbitrary HTML out on A4
pages.
"""
import base64
import io
import logging
import threading
import time

import fitz
from PIL import Image, ImageDraw, ImageFont

from . import config
from .errors import ExportError, ExportTimeoutError
from .styles import is_absolute, parse_fragment, parse_style, px, update_style

logger = logging.getLogger(__name__)

RASTER_CSS = "body { margin: 0; padding: 0; background-color: #ffffff; } p { margin: 0 0 0.2em 0; }"

PRINT_CSS = """
body { font-family: Arial, sans-serif; margin: 0; padding: 0; }
img { max-width: 100%; height: auto; display: block; }
.pdf-page { page-break-after: always; position: relative; width: 100%; box-sizing: border-box; }
.pdf-page:last-child { page-break-after: auto; }
img[data-placeholder] { background-color: #f0f0f0; }
"""


# ============ Placeholders ============
def placeholder_png(width, height) -> bytes:
    w, h = max(1, int(round(width))), max(1, int(round(height)))
    img = Image.new("RGB", (w, h), "#eeeeee")
    draw = ImageDraw.Draw(img)
    font = ImageFont.load_default()
    left, top, right, bottom = draw.textbbox((0, 0), "Image Error", font=font)
    draw.text(((w - (right - left)) / 2, (h - (bottom - top)) / 2), "Image Error", fill="#999999", font=font)
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()

def placeholder_data_url(width, height) -> str:
    return "data:image/png;base64," + base64.b64encode(placeholder_png(width, height)).decode("ascii")


# ============ Image repair ============
def _intended_size(img):
    style = parse_style(img.get("style", ""))
    w = px(img.get("width")) or px(style.get("width"))
    h = px(img.get("height")) or px(style.get("height"))
    parent = img.parent
    if (not w or not h) and parent is not None and parent.name == "figure":
        pstyle = parse_style(parent.get("style", ""))
        w = w or px(pstyle.get("width"))
        h = h or px(pstyle.get("height"))
    return (w or config.PLACEHOLDER_SIZE[0], h or config.PLACEHOLDER_SIZE[1])

def _open_source(src):
    if not src or not src.startswith("data:") or "," not in src:
        raise ValueError("unsupported image source")
    header, payload = src.split(",", 1)
    data = base64.b64decode(payload) if ";base64" in header else payload.encode("utf-8")
    return Image.open(io.BytesIO(data))

def _is_broken(src) -> bool:
    # "complete" but no natural size
    try:
        img = _open_source(src)
    except Exception:
        return False
    return img.width == 0 or img.height == 0

def _load(src):
    img = _open_source(src)
    img.load()
    return img

def repair_images(root) -> int:
    """Replace every image that cannot be displayed with a placeholder.

    Images are checked twice, first for a decodable source that reports no
    size, then by fully loading them; either failure swaps in a placeholder
    of the size the image was meant to have.
    """
    images = root.find_all("img")
    fixed = {}
    for i, img in enumerate(images):
        if _is_broken(img.get("src")):
            logger.warning("Detected broken image %s", img.get("id") or i)
            fixed[i] = placeholder_data_url(*_intended_size(img))
    for i, src in fixed.items():
        images[i]["src"] = src
        images[i]["data-placeholder"] = "true"
    for i, img in enumerate(images):
        if i in fixed: continue
        try:
            _load(img.get("src"))
        except Exception as e:
            logger.warning("Failed to load image %s: %s", img.get("id") or i, e)
            img["src"] = placeholder_data_url(*_intended_size(img))
            img["data-placeholder"] = "true"
            fixed[i] = img["src"]
    return len(fixed)


# ============ Rasterisation ============
def _story_pdf(html_str, frame, css=None, deadline=None, timeout=None) -> bytes:
    story = fitz.Story(html=html_str, user_css=css)
    buf = io.BytesIO()
    writer = fitz.DocumentWriter(buf)
    more = True
    while more:
        if deadline is not None and time.monotonic() > deadline:
            raise ExportTimeoutError(timeout)
        device = writer.begin_page(frame)
        more, _ = story.place(frame)
        story.draw(device)
        writer.end_page()
        if deadline is None: break
    writer.close()
    return buf.getvalue()

def rasterize_fragment(fragment_html, width, height, scale=None, quality=None) -> bytes:
    """Render an HTML fragment onto a width x height page and return JPEG bytes."""
    scale = scale or config.EXPORT_SCALE
    quality = quality or config.EXPORT_JPEG_QUALITY
    frame = fitz.Rect(0, 0, width, height)
    with fitz.open(stream=_story_pdf(fragment_html, frame, css=RASTER_CSS), filetype="pdf") as tmp:
        pix = tmp[0].get_pixmap(matrix=fitz.Matrix(scale, scale), alpha=False)
        img = Image.frombytes("RGB", (pix.width, pix.height), pix.samples)
    buf = io.BytesIO()
    img.save(buf, format="JPEG", quality=quality)
    return buf.getvalue()


def _padding_origin(style):
    """Top and left padding of a block, from `padding` and its longhands."""
    parts = (style.get("padding") or "0").split()[:4]
    top = parts[0]
    left = parts[3] if len(parts) == 4 else parts[1] if len(parts) > 1 else parts[0]
    return px(style.get("padding-top", top), 0.0), px(style.get("padding-left", left), 0.0)

def _shift_positioned(block):
    # Story resolves left/top against the content box, the page was placed against the padding box
    top, left = _padding_origin(parse_style(block.get("style", "")))
    if not (top or left):
        return
    for node in block.find_all(is_absolute, recursive=False):
        style = parse_style(node.get("style", ""))
        update_style(node, left=f"{px(style.get('left'), 0.0) - left:g}px",
                     top=f"{px(style.get('top'), 0.0) - top:g}px")


class PageRasterizer:
    """Exports pages through a single scratch container, one export at a time."""

    def __init__(self, scale=None, quality=None):
        self.scale = scale or config.EXPORT_SCALE
        self.quality = quality or config.EXPORT_JPEG_QUALITY
        self._lock = threading.Lock()
        self._container = None

    def _materialize(self, page):
        soup, root = parse_fragment(page.display_content)
        block = root.select_one("div.pdf-page") or root
        if block is not root:
            _shift_positioned(block)
            # the editor chrome (margin, border, shadow) is not part of the page
            update_style(block, margin="0", border=None, box_shadow=None,
                         width=f"{page.width}px", height=f"{page.height}px")
        self._container = soup
        return block

    def export_pages(self, pages) -> bytes:
        if not pages:
            raise ExportError("Nothing to export")
        with self._lock:
            out = fitz.open()
            try:
                for number, page in enumerate(pages, start=1):
                    try:
                        block = self._materialize(page)
                        repaired = repair_images(block)
                        if repaired: logger.info("Page %d: replaced %d broken images", number, repaired)
                        jpeg = rasterize_fragment(str(block), page.width, page.height, self.scale, self.quality)
                        pdf_page = out.new_page(width=page.width, height=page.height)
                        pdf_page.insert_image(pdf_page.rect, stream=jpeg)
                    except Exception as e:
                        raise ExportError(f"Error exporting page {number}: {e}") from e
                    finally:
                        self._container = None
                logger.info("Exported %d pages", out.page_count)
                return out.tobytes()
            finally:
                out.close()


# ============ Server-side HTML export ============
def wrap_document(html_content: str) -> str:
    return ('<!DOCTYPE html><html><head><meta charset="UTF-8">'
            f"<style>{PRINT_CSS}</style></head><body>{html_content}</body></html>")

def render_html_document(html_content, scale=1.0, timeout=None) -> bytes:
    """Lay `html_content` out on A4 pages with fixed margins.

    A scale below 1 lays the content out on a proportionally larger frame
    which is then shrunk onto the page.
    """
    timeout = config.EXPORT_TIMEOUT if timeout is None else timeout
    deadline = time.monotonic() + timeout
    _, root = parse_fragment(html_content)
    repair_images(root)

    a4 = fitz.Rect(0, 0, *config.A4_SIZE)
    m = config.EXPORT_MARGIN
    content = fitz.Rect(a4.x0 + m, a4.y0 + m, a4.x1 - m, a4.y1 - m)
    frame = fitz.Rect(0, 0, content.width / scale, content.height / scale)
    laid_out = _story_pdf(wrap_document("".join(str(c) for c in root.contents)), frame,
                          deadline=deadline, timeout=timeout)

    out = fitz.open()
    try:
        with fitz.open(stream=laid_out, filetype="pdf") as src:
            for pno in range(src.page_count):
                if time.monotonic() > deadline:
                    raise ExportTimeoutError(timeout)
                out.new_page(width=a4.width, height=a4.height).show_pdf_page(content, src, pno)
        return out.tobytes()
    finally:
        out.close()

def export_html(html_content: str) -> bytes:
    try:
        return render_html_document(html_content, scale=1.0, timeout=config.EXPORT_TIMEOUT)
    except Exception as e:
        logger.error("PDF generation error: %s", e)
    logger.info("Retrying PDF generation with fallback options")
    try:
        return render_html_document(html_content, scale=config.EXPORT_RETRY_SCALE, timeout=config.EXPORT_RETRY_TIMEOUT)
    except Exception as e:
        raise ExportError(f"Failed to generate PDF: {e}") from e
