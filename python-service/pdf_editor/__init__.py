from .editor import EditingSurface, EditorConfig
from .errors import (
    DocumentLoadError, EnrichmentError, ExportError, ExportTimeoutError, PdfEditorError,
)
from .exporter import PageRasterizer, export_html
from .models import ImagePlacement, Page
from .ocr import OcrEngine
from .pipeline import render_document
from .session import EditorSession

__version__ = "0.1.0"
