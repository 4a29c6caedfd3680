import logging
import os
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace

from bs4 import BeautifulSoup

from . import config
from .editor import EditingSurface
from .errors import DocumentLoadError
from .exporter import PageRasterizer
from .models import Page
from .pipeline import render_document
from .styles import inner_html, parse_fragment

logger = logging.getLogger(__name__)

NEXT_KEYS = ("ArrowRight", "ArrowDown")
PREVIOUS_KEYS = ("ArrowLeft", "ArrowUp")


def merge_enrichment(pages, server_data):
    """Append each server page's enhanced text to the page at the same index.

    The text goes into a hidden `server-ocr-text` element inside the page
    block. Pages are matched by position only.
    """
    server_pages = (server_data or {}).get("pages") or []
    merged = []
    for index, page in enumerate(pages):
        enhanced = server_pages[index].get("enhancedText") if index < len(server_pages) else None
        if not enhanced:
            merged.append(page); continue
        soup, root = parse_fragment(page.content)
        block = root.select_one(".pdf-page")
        if block is None:
            merged.append(page); continue
        holder = soup.new_tag("div", attrs={"class": "server-ocr-text", "style": "display: none;"})
        for node in list(BeautifulSoup(enhanced, "lxml").body or []):
            holder.append(node)
        block.append(holder)
        merged.append(replace(page, content=inner_html(root)))
    return merged


class EditorSession:
    """State of one editing session: the loaded pages and the page being edited.

    Exactly one page is bound to the editing surface at a time. Navigation
    always commits the surface content to the current page before switching.
    The session shares the surface lock, so repagination never interleaves
    with a page switch.
    """

    def __init__(self, editor=None, rasterizer=None, ocr_engine=None, enrichment=None):
        self.editor = editor or EditingSurface()
        self.editor.on_change = self._on_editor_change
        self.editor.on_page_added = self._on_page_added
        self.rasterizer = rasterizer or PageRasterizer()
        self.ocr_engine = ocr_engine
        self.enrichment = enrichment
        self._lock = self.editor.lock
        self._enrichment_pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="enrichment")
        self._generation = 0
        self.is_loading = False
        self.load_progress = 0
        self.ocr_progress = 0
        self.is_ocr_processing = False
        self._reset()

    def _reset(self):
        self.pages = []
        self.total_pages = 0
        self.current_page = 1
        self.edited_contents = {}

    @property
    def page(self):
        with self._lock:
            return self.pages[self.current_page - 1] if self.pages else None

    # ============ Loading ============
    def _on_progress(self, done, total):
        self.load_progress = int(done * 100 / total) if total else 100

    def load(self, data: bytes, filename="document.pdf"):
        """Replace the session content with the pages of `data`.

        Enrichment, when configured, runs alongside the reconstruction and is
        merged whenever it succeeds. Document-level failures empty the session
        and are re-raised.
        """
        self.is_loading = True
        self.load_progress = 0
        future = self._enrichment_pool.submit(self.enrichment, data, filename) if self.enrichment else None
        try:
            pages = render_document(data, progress=self._on_progress)
            if not pages:
                raise DocumentLoadError("No pages could be processed from the PDF")
        except Exception as e:
            logger.error("Error loading PDF: %s", e)
            with self._lock:
                self._reset()
                self._generation += 1
            self.editor.load("")
            if isinstance(e, DocumentLoadError):
                raise
            raise DocumentLoadError(f"Could not process the PDF file: {e}") from e
        finally:
            self.is_loading = False

        with self._lock:
            self.pages = pages
            self.total_pages = len(pages)
            self.current_page = 1
            self.edited_contents = {}
            self._generation += 1
            generation = self._generation
        self.editor.load(pages[0].display_content)
        if future is not None:
            future.add_done_callback(lambda f: self._apply_enrichment(f, generation))
        return pages

    def _apply_enrichment(self, future, generation):
        try:
            server_data = future.result()
        except Exception as e:
            logger.warning("Server-side PDF processing warning: %s", e)
            return
        with self._lock:
            if generation != self._generation:
                return
            self.pages = merge_enrichment(self.pages, server_data)
            page = self.pages[self.current_page - 1]
            reload = page.edited_content is None
        logger.info("Merged server-side enrichment into %d pages", len(self.pages))
        if reload:
            self.editor.load(page.content)

    # ============ Editing ============
    def _on_editor_change(self, html_str):
        bookmark = self.editor.get_bookmark()
        with self._lock:
            if self.pages:
                self.edited_contents[self.current_page] = html_str
                self.pages[self.current_page - 1].edited_content = html_str
        self.editor.move_to_bookmark(bookmark)

    def edit(self, html_str, selection=None):
        self.editor.set_content(html_str, selection)

    def commit(self):
        with self._lock:
            # a pending overflow check belongs to the page being left
            self.editor.flush()
            if self.pages:
                self._on_editor_change(self.editor.get_content())

    def _on_page_added(self, kept_html, new_block_html):
        with self._lock:
            if not self.pages:
                return
            index = self.current_page - 1
            current = self.pages[index]
            current.edited_content = kept_html
            self.edited_contents = {(k + 1 if k > self.current_page else k): v for k, v in self.edited_contents.items()}
            self.edited_contents[self.current_page] = kept_html
            self.pages.insert(index + 1, Page(content=new_block_html, width=current.width, height=current.height,
                                              scale=current.scale, images=[]))
            self.total_pages = len(self.pages)
            self.editor.load(kept_html)

    # ============ Navigation ============
    def go_to(self, number) -> int:
        with self._lock:
            if not self.pages:
                return self.current_page
            self.editor.flush()
            number = max(1, min(self.total_pages, int(number)))
            if number == self.current_page:
                return number
            self.commit()
            self.current_page = number
            self.editor.load(self.pages[number - 1].display_content)
            return number

    def next_page(self) -> int:
        return self.go_to(self.current_page + 1)

    def previous_page(self) -> int:
        return self.go_to(self.current_page - 1)

    def handle_key(self, key) -> int:
        if key in NEXT_KEYS: return self.next_page()
        if key in PREVIOUS_KEYS: return self.previous_page()
        return self.current_page

    # ============ OCR ============
    def _on_ocr_progress(self, percent):
        self.ocr_progress = int(percent)

    def recognize_image(self, placement) -> str:
        if self.ocr_engine is None:
            logger.warning("OCR engine not configured")
            return ""
        self.is_ocr_processing = True
        self.ocr_progress = 0
        try:
            return self.ocr_engine.recognize(placement.data_url, progress=self._on_ocr_progress)
        finally:
            self.is_ocr_processing = False

    # ============ Export ============
    def export(self) -> bytes:
        """Commit the page being edited and rasterise every page into a PDF."""
        self.commit()
        with self._lock:
            pages = list(self.pages)
        self.is_loading = True
        try:
            return self.rasterizer.export_pages(pages)
        except Exception as e:
            logger.error("Error exporting PDF: %s", e)
            raise
        finally:
            self.is_loading = False

    def save(self, directory, filename=None) -> str:
        path = os.path.join(directory, filename or config.DOWNLOAD_NAME)
        data = self.export()
        with open(path, "wb") as f:
            f.write(data)
        return path

    def close(self):
        self.editor.close()
        self._enrichment_pool.shutdown(wait=False)
