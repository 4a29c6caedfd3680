"""Configuration constants.

Every value can be overridden from the environment (a `.env` file is loaded
by the service entry point before this module is imported).
"""
import os

BASE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


def _env_float(name, default):
    try: return float(os.getenv(name, default))
    except (TypeError, ValueError): return float(default)

def _env_int(name, default):
    try: return int(os.getenv(name, default))
    except (TypeError, ValueError): return int(default)


# ============ Service ============
PORT = _env_int("PORT", 5001)
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
APP_ENV = os.getenv("APP_ENV", "production")
UPLOAD_DIR = os.getenv("UPLOAD_DIR", os.path.join(BASE_DIR, "uploads"))
PUBLIC_DIR = os.getenv("PUBLIC_DIR", os.path.join(BASE_DIR, "public"))
MAX_UPLOAD_MB = _env_float("MAX_UPLOAD_MB", 10)
MAX_JSON_MB = _env_float("MAX_JSON_MB", 50)

# ============ Reconstruction ============
VIEWPORT_MAX_WIDTH = _env_float("VIEWPORT_MAX_WIDTH", 800)
VIEWPORT_MAX_HEIGHT = _env_float("VIEWPORT_MAX_HEIGHT", 1100)
DEFAULT_PAGE_WIDTH = 595.0   # A4 in points, used when a page has no usable size
DEFAULT_PAGE_HEIGHT = 842.0
LINE_Y_THRESHOLD = _env_float("LINE_Y_THRESHOLD", 2)
MIN_SPACING_EM = _env_float("MIN_SPACING_EM", 0.1)

# ============ Image extraction ============
IMAGE_RESOLVE_ATTEMPTS = _env_int("IMAGE_RESOLVE_ATTEMPTS", 50)
IMAGE_RESOLVE_DELAY = _env_float("IMAGE_RESOLVE_DELAY", 0.15)
JPEG_PIXEL_THRESHOLD = _env_int("JPEG_PIXEL_THRESHOLD", 10000)
IMAGE_JPEG_QUALITY = _env_int("IMAGE_JPEG_QUALITY", 95)
ALPHA_SAMPLE_SIZE = 4096
IMAGE_WORKERS = _env_int("IMAGE_WORKERS", 4)

# ============ Editing surface ============
PAGE_HEIGHT_BUDGET = _env_float("PAGE_HEIGHT_BUDGET", 1123)  # A4 at 96 DPI
PAGE_WIDTH = _env_float("PAGE_WIDTH", 794)
PAGE_PADDING = 40.0
REPAGINATE_DEBOUNCE = _env_float("REPAGINATE_DEBOUNCE", 0.1)
MAX_INSERTED_IMAGE_WIDTH = 700

# ============ Export ============
EXPORT_SCALE = _env_float("EXPORT_SCALE", 2)
EXPORT_JPEG_QUALITY = _env_int("EXPORT_JPEG_QUALITY", 92)
PLACEHOLDER_SIZE = (200, 200)
A4_SIZE = (595.0, 842.0)
EXPORT_MARGIN = 20.0
EXPORT_TIMEOUT = _env_float("EXPORT_TIMEOUT", 60)
EXPORT_RETRY_TIMEOUT = _env_float("EXPORT_RETRY_TIMEOUT", 120)
EXPORT_RETRY_SCALE = 0.8
DOWNLOAD_NAME = "edited-document.pdf"

# ============ OCR ============
OCR_LANG = os.getenv("OCR_LANG", "eng")
OCR_TIMEOUT = _env_float("OCR_TIMEOUT", 30)
OCR_ENGINE_MODE = _env_int("OCR_ENGINE_MODE", 1)  # LSTM only

# ============ Enrichment ============
ENRICHMENT_URL = os.getenv("ENRICHMENT_URL") or None
ENRICHMENT_TIMEOUT = _env_float("ENRICHMENT_TIMEOUT", 60)
