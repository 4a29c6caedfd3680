import logging
import threading

from . import config
from .image_extractor import ImageCache, extract_images
from .layout import error_fragment, page_html
from .models import Page
from .pdf_parser import open_document, page_viewport, read_text_runs

logger = logging.getLogger(__name__)


def _fallback_page(doc, page_number, max_width, max_height):
    try:
        vp = page_viewport(doc.load_page(page_number - 1), max_width, max_height)
        width, height, scale = vp
    except Exception:
        scale = min(max_width / config.DEFAULT_PAGE_WIDTH, max_height / config.DEFAULT_PAGE_HEIGHT)
        width, height = config.DEFAULT_PAGE_WIDTH * scale, config.DEFAULT_PAGE_HEIGHT * scale
    return Page(content=error_fragment(width, height), width=width, height=height, scale=scale, images=[])


def render_page(doc, page_number, max_width=None, max_height=None, lock=None) -> Page:
    """Reconstruct one page; never raises.

    Image failures only drop the image. Anything else produces a page that
    keeps its dimensions but carries an error message instead of content.
    """
    max_width = max_width or config.VIEWPORT_MAX_WIDTH
    max_height = max_height or config.VIEWPORT_MAX_HEIGHT
    lock = lock or threading.Lock()
    try:
        with lock:
            page = doc.load_page(page_number - 1)
            viewport = page_viewport(page, max_width, max_height)
            runs = read_text_runs(page)
        try:
            images = extract_images(doc, page, viewport.scale, cache=ImageCache(), lock=lock)
        except Exception as e:
            logger.warning("Failed to extract images from page %d: %s", page_number, e)
            images = []
        content = page_html(runs, images, viewport, page_number)
        return Page(content=content, width=viewport.width, height=viewport.height, scale=viewport.scale, images=images)
    except Exception:
        logger.exception("Error rendering page %d", page_number)
        return _fallback_page(doc, page_number, max_width, max_height)


def render_document(data: bytes, progress=None, max_width=None, max_height=None):
    """Open `data` and reconstruct every page in source order.

    Pages are processed one after the other; `progress(done, total)` is
    called after each. Raises DocumentLoadError when the document itself is
    unusable.
    """
    doc = open_document(data)
    try:
        total = doc.page_count
        logger.info("PDF loaded with %d pages", total)
        pages = []
        for number in range(1, total + 1):
            logger.debug("Processing page %d...", number)
            pages.append(render_page(doc, number, max_width, max_height))
            if progress: progress(number, total)
        return pages
    finally:
        doc.close()
