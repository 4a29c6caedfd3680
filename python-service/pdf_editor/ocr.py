"""Text recognition engine.

One `OcrEngine` is built per process (or per editing session), started once,
handed to whoever needs recognition and closed at shutdown. Recognition never
raises: an unavailable engine, a Tesseract failure or a timeout all yield an
empty string.
"""
import base64
import io
import logging
import threading
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout

import pytesseract
from PIL import Image

from . import config

logger = logging.getLogger(__name__)


def to_image(source) -> Image.Image:
    if isinstance(source, Image.Image):
        return source
    if isinstance(source, str):
        if not source.startswith("data:"):
            raise ValueError("only data URLs are accepted as string sources")
        source = base64.b64decode(source.split(",", 1)[1])
    return Image.open(io.BytesIO(source))


class OcrEngine:
    def __init__(self, lang=None, timeout=None, oem=None):
        self.lang = lang or config.OCR_LANG
        self.timeout = config.OCR_TIMEOUT if timeout is None else timeout
        self.oem = config.OCR_ENGINE_MODE if oem is None else oem
        self.available = False
        self._started = False
        self._closed = False
        self._lock = threading.Lock()
        # a single worker serialises recognitions, concurrent callers queue
        self._executor = None

    def start(self):
        with self._lock:
            if self._started:
                return self.available
            self._started = True
            self._closed = False
            try:
                version = pytesseract.get_tesseract_version()
                self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="ocr")
                self.available = True
                logger.info("Tesseract %s initialized (lang=%s)", version, self.lang)
            except Exception as e:
                logger.error("Failed to initialize Tesseract: %s", e)
                self.available = False
            return self.available

    def _run(self, image):
        return pytesseract.image_to_string(
            image, lang=self.lang, config=f"--oem {self.oem}", timeout=self.timeout
        ) or ""

    def recognize(self, source, progress=None) -> str:
        if self._closed:
            logger.warning("OCR engine closed, returning empty text")
            return ""
        if not self._started:
            self.start()
        if not self.available:
            logger.warning("OCR engine not available, returning empty text")
            return ""
        try:
            image = to_image(source)
            if progress: progress(0)
            future = self._executor.submit(self._run, image)
            text = future.result(timeout=self.timeout)
            if progress: progress(100)
            return text
        except FutureTimeout:
            logger.error("OCR processing timeout after %ss", self.timeout)
            return ""
        except Exception as e:
            logger.error("OCR processing error: %s", e)
            return ""

    def close(self):
        with self._lock:
            if self._executor is not None:
                self._executor.shutdown(wait=False)
                self._executor = None
            self.available = False
            self._started = False
            self._closed = True

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, *exc):
        self.close()
