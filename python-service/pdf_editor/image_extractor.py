import base64
import io
import logging
import threading
import time
from collections import namedtuple
from concurrent.futures import ThreadPoolExecutor

import fitz
from PIL import Image

from . import config
from .errors import ImageExtractionError, ObjectResolutionTimeout
from .models import ImagePlacement
from .pdf_parser import image_draws

logger = logging.getLogger(__name__)

EncodedImage = namedtuple("EncodedImage", "data_url width height")
RawImage = namedtuple("RawImage", "mode width height samples")


def wait_for(resolve, attempts, delay, ref=None):
    """Poll `resolve` until it returns something other than None."""
    for _ in range(max(1, attempts)):
        obj = resolve()
        if obj is not None:
            return obj
        time.sleep(delay)
    raise ObjectResolutionTimeout(ref, attempts)


class ImageCache:
    """Encoded images keyed by xref, shared by every draw of one page."""

    def __init__(self):
        self._entries = {}
        self._lock = threading.Lock()
        self.decodes = 0

    def get(self, xref):
        with self._lock:
            return self._entries.get(xref)

    def get_or_decode(self, xref, decode):
        cached = self.get(xref)
        if cached is not None:
            return cached
        entry = decode()
        with self._lock:
            self.decodes += 1
            return self._entries.setdefault(xref, entry)

    def __contains__(self, xref):
        return self.get(xref) is not None

    def __len__(self):
        return len(self._entries)


# ============ Encoding ============
def _has_transparency(img: Image.Image) -> bool:
    if "A" not in img.getbands():
        return False
    alpha = img.getchannel("A").tobytes()
    step = max(1, len(alpha) // config.ALPHA_SAMPLE_SIZE)
    return min(alpha[::step]) < 255

def encode_image(img: Image.Image, pixel_threshold=None, quality=None) -> str:
    """Large opaque images become JPEG, everything else PNG to keep alpha."""
    pixel_threshold = config.JPEG_PIXEL_THRESHOLD if pixel_threshold is None else pixel_threshold
    quality = config.IMAGE_JPEG_QUALITY if quality is None else quality
    buf = io.BytesIO()
    if img.width * img.height > pixel_threshold and not _has_transparency(img):
        img.convert("RGB").save(buf, format="JPEG", quality=quality)
        mime = "image/jpeg"
    else:
        img.save(buf, format="PNG")
        mime = "image/png"
    return f"data:{mime};base64," + base64.b64encode(buf.getvalue()).decode("ascii")


# ============ Decoding ============
def _resolve_raw(doc, xref, smask):
    # None means the object is not an image stream (yet); callers poll
    if not doc.xref_is_stream(xref):
        return None
    pix = fitz.Pixmap(doc, xref)
    if pix.colorspace is None:
        raise ImageExtractionError(xref, "stencil masks are not supported")
    if pix.colorspace.n != 3:
        pix = fitz.Pixmap(fitz.csRGB, pix)
    if smask and not pix.alpha:
        pix = fitz.Pixmap(pix, fitz.Pixmap(doc, smask))
    return RawImage("RGBA" if pix.alpha else "RGB", pix.width, pix.height, bytes(pix.samples))

def decode_image(doc, draw, lock, attempts=None, delay=None) -> EncodedImage:
    attempts = config.IMAGE_RESOLVE_ATTEMPTS if attempts is None else attempts
    delay = config.IMAGE_RESOLVE_DELAY if delay is None else delay
    if draw.xref <= 0:
        raise ImageExtractionError(draw.xref, "inline images have no reference")

    def resolve():
        with lock:
            return _resolve_raw(doc, draw.xref, draw.smask)

    raw = wait_for(resolve, attempts, delay, ref=draw.xref)
    img = Image.frombytes(raw.mode, (raw.width, raw.height), raw.samples)
    return EncodedImage(encode_image(img), raw.width, raw.height)


def _draw_rect(draw, size):
    if draw.bbox:
        rect = fitz.Rect(draw.bbox)
        if not rect.is_empty and rect.is_valid:
            return rect
    if draw.transform:
        return fitz.Rect(0, 0, 1, 1) * fitz.Matrix(draw.transform)
    return fitz.Rect(0, 0, size[0], size[1])


def extract_images(doc, page, scale, cache=None, lock=None, attempts=None, delay=None, workers=None):
    """Return one ImagePlacement per image draw on `page`, in draw order.

    Every distinct xref is decoded once, concurrently with the others; a
    failing image is logged and left out without affecting the rest.
    """
    cache = cache if cache is not None else ImageCache()
    lock = lock or threading.Lock()
    with lock:
        draws = image_draws(page)
    first_draws, seen = [], set()
    for d in draws:
        if d.xref in seen: continue
        seen.add(d.xref); first_draws.append(d)

    def work(draw):
        try:
            cache.get_or_decode(draw.xref, lambda: decode_image(doc, draw, lock, attempts, delay))
        except Exception as e:
            logger.warning("Failed to extract image %s on page %d: %s", draw.xref, page.number + 1, e)

    if first_draws:
        workers = workers or config.IMAGE_WORKERS
        with ThreadPoolExecutor(max_workers=max(1, min(workers, len(first_draws)))) as pool:
            list(pool.map(work, first_draws))

    placements = []
    for draw in draws:
        entry = cache.get(draw.xref)
        if entry is None: continue
        rect = _draw_rect(draw, (entry.width, entry.height))
        placements.append(ImagePlacement(
            data_url=entry.data_url,
            width=rect.width * scale, height=rect.height * scale,
            x=rect.x0 * scale, y=rect.y0 * scale,
        ))
    logger.info("Extracted %d images from page %d", len(placements), page.number + 1)
    return placements
