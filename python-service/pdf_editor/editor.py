"""Headless rich-text editing surface.

The surface holds the HTML of one page at a time. Hosts push edits through
`set_content`, read them back with `get_content`, and report editor events
through `notify`; after a short debounce the surface measures the last page
block and moves whatever exceeds the page height into a new block.
"""
import base64
import io
import logging
import threading
from collections import namedtuple
from dataclasses import dataclass

import fitz
from bs4 import Tag
from PIL import Image

from . import config
from .styles import inner_html, is_absolute, page_blocks, parse_fragment, update_style

logger = logging.getLogger(__name__)

Selection = namedtuple("Selection", "start end")

PLACEHOLDER_SVG = (
    "data:image/svg+xml;base64,PHN2ZyB3aWR0aD0iMjAwIiBoZWlnaHQ9IjIwMCIgeG1sbnM9Imh0dHA6Ly93d3cudzMub3JnLzIwMDAvc3ZnIj48"
    "cmVjdCB3aWR0aD0iMjAwIiBoZWlnaHQ9IjIwMCIgZmlsbD0iI2VlZWVlZSIvPjx0ZXh0IHg9IjUwJSIgeT0iNTAlIiBmb250LWZhbWlseT0iQXJpYWws"
    "IHNhbnMtc2VyaWYiIGZvbnQtc2l6ZT0iMjAiIHRleHQtYW5jaG9yPSJtaWRkbGUiIGRvbWluYW50LWJhc2VsaW5lPSJtaWRkbGUiIGZpbGw9IiM5OTk5"
    "OTkiPkltYWdlIEVycm9yPC90ZXh0Pjwvc3ZnPg=="
)


@dataclass
class EditorConfig:
    """Options understood by the editing surface.

    page_height: height budget of one page block; content beyond it moves
        to a new block.
    page_width, page_padding: geometry used when measuring block content.
    debounce_seconds: delay between the last observed event and the
        overflow check.
    auto_repaginate: run the overflow check on observed events at all.
    observed_events: editor events that schedule an overflow check.
    compact_spacing: start with compact paragraph spacing.
    max_image_width, image_quality: inserted images wider than the limit are
        scaled down and re-encoded at this quality.
    forced_root_block: element used to wrap content that has no page block.
    """
    page_height: float = config.PAGE_HEIGHT_BUDGET
    page_width: float = config.PAGE_WIDTH
    page_padding: float = config.PAGE_PADDING
    debounce_seconds: float = config.REPAGINATE_DEBOUNCE
    auto_repaginate: bool = True
    observed_events: tuple = ("NodeChange", "KeyUp", "Change")
    compact_spacing: bool = True
    compact_paragraph: tuple = ("0.2em", "1.3")   # margin-bottom, line-height
    relaxed_paragraph: tuple = ("0.8em", "1.6")
    max_image_width: int = config.MAX_INSERTED_IMAGE_WIDTH
    image_quality: float = 0.95
    forced_root_block: str = "div"


class Debouncer:
    """Runs `fn` once, `delay` seconds after the last trigger.

    `fn` always runs while holding `lock`; a timer that was cancelled or
    superseded after it started waiting does nothing.
    """

    def __init__(self, delay, fn, lock=None):
        self.delay = delay
        self.fn = fn
        self._timer = None
        self._lock = lock or threading.RLock()

    def trigger(self):
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            timer = threading.Timer(self.delay, lambda: self._fire(timer))
            timer.daemon = True
            self._timer = timer
            timer.start()

    def _fire(self, timer):
        with self._lock:
            if self._timer is not timer:
                return
            self._timer = None
            self.fn()

    @property
    def pending(self) -> bool:
        return self._timer is not None

    def flush(self):
        with self._lock:
            timer, self._timer = self._timer, None
            if timer is not None:
                timer.cancel()
                self.fn()

    def cancel(self):
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = None


class StoryMeasurer:
    """Measures the laid-out height of an HTML element with PyMuPDF."""

    MAX_HEIGHT = 100000

    def __call__(self, element_html, width) -> float:
        story = fitz.Story(html=element_html)
        _, filled = story.place(fitz.Rect(0, 0, width, self.MAX_HEIGHT))
        return float(filled.height)


class EditingSurface:
    def __init__(self, options=None, measure=None, on_change=None, on_page_added=None):
        self.options = options or EditorConfig()
        self.measure = measure or StoryMeasurer()
        self.on_change = on_change
        self.on_page_added = on_page_added
        self.compact_spacing = self.options.compact_spacing
        self._html = ""
        self._selection = Selection(0, 0)
        # shared with hosts that must not interleave with a repagination
        self.lock = threading.RLock()
        self._debouncer = Debouncer(self.options.debounce_seconds, self.check_overflow, lock=self.lock)

    # ============ Content ============
    def load(self, html_str):
        """Replace the content without treating it as an edit."""
        with self.lock:
            if "pdf-page" not in (html_str or ""):
                root_tag = self.options.forced_root_block
                html_str = f'<{root_tag} class="pdf-page">{html_str or ""}</{root_tag}>'
            self._html = self._apply_spacing(html_str)
            self._selection = Selection(0, 0)

    def get_content(self) -> str:
        with self.lock:
            return self._html

    def set_content(self, html_str, selection=None):
        """Apply an edit and propagate it to `on_change`."""
        with self.lock:
            self._html = html_str
            if selection is not None:
                self._selection = self._clamp(Selection(*selection))
            if self.on_change:
                self.on_change(html_str)
        self.notify("Change")

    # ============ Selection ============
    def _text_length(self):
        _, root = parse_fragment(self._html)
        return len(root.get_text())

    def _clamp(self, sel):
        n = self._text_length()
        start = max(0, min(sel.start, n))
        return Selection(start, max(start, min(sel.end, n)))

    @property
    def selection(self) -> Selection:
        return self._selection

    def select(self, start, end=None):
        with self.lock:
            self._selection = self._clamp(Selection(start, start if end is None else end))

    def get_bookmark(self) -> Selection:
        return self._selection

    def move_to_bookmark(self, bookmark):
        with self.lock:
            self._selection = self._clamp(bookmark)

    # ============ Observer ============
    def notify(self, event):
        if self.options.auto_repaginate and event in self.options.observed_events:
            self._debouncer.trigger()

    def flush(self):
        self._debouncer.flush()

    def close(self):
        self._debouncer.cancel()

    def _flow_height(self, node, width):
        if is_absolute(node):
            return 0.0
        return self.measure(str(node), width)

    def check_overflow(self) -> bool:
        """Move the nodes that overflow the last page block into a new block.

        The first node whose cumulative height exceeds the budget and every
        node after it move. A block whose first node alone is too tall is
        left alone.
        """
        with self.lock:
            soup, root = parse_fragment(self._html)
            blocks = page_blocks(root)
            if not blocks:
                return False
            last = blocks[-1]
            opts = self.options
            width = opts.page_width - 2 * opts.page_padding
            budget = opts.page_height - 2 * opts.page_padding
            children = [c for c in last.children if isinstance(c, Tag)]
            total, overflow_at = 0.0, None
            for i, node in enumerate(children):
                total += self._flow_height(node, width)
                if total > budget and overflow_at is None:
                    overflow_at = i
            if not overflow_at:
                return False

            new_block = soup.new_tag(last.name, attrs={"class": "pdf-page"})
            for attr in ("style", "contenteditable"):
                if last.get(attr): new_block[attr] = last[attr]
            for node in children[overflow_at:]:
                new_block.append(node.extract())
            kept = inner_html(root)
            last.insert_after(new_block)
            self._html = inner_html(root)
            logger.info("Content overflowed the page, moved %d nodes to a new page", len(children) - overflow_at)
            if self.on_page_added:
                self.on_page_added(kept, str(new_block))
        self.notify("NodeChange")
        return True

    # ============ Formatting ============
    def _apply_spacing(self, html_str):
        margin, line_height = self.options.compact_paragraph if self.compact_spacing else self.options.relaxed_paragraph
        _, root = parse_fragment(html_str)
        for p in root.find_all("p"):
            update_style(p, margin_bottom=margin, line_height=line_height)
        return inner_html(root)

    def toggle_paragraph_spacing(self) -> bool:
        with self.lock:
            self.compact_spacing = not self.compact_spacing
            html_str = self._apply_spacing(self._html)
        self.set_content(html_str, self._selection)
        return self.compact_spacing

    def insert_image(self, data: bytes, mime="image/png") -> str:
        """Insert an image into the last page block and return its data URL."""
        try:
            img = Image.open(io.BytesIO(data))
            img.load()
            width, height = img.width, img.height
            if width > self.options.max_image_width:
                ratio = self.options.max_image_width / width
                width, height = self.options.max_image_width, max(1, round(height * ratio))
                img = img.resize((width, height))
            buf = io.BytesIO()
            if mime == "image/jpeg":
                img.convert("RGB").save(buf, format="JPEG", quality=int(self.options.image_quality * 100))
            else:
                img.save(buf, format="PNG")
            src = f"data:{mime if mime == 'image/jpeg' else 'image/png'};base64," + base64.b64encode(buf.getvalue()).decode("ascii")
        except Exception as e:
            logger.error("Failed to load image: %s", e)
            src, width, height = PLACEHOLDER_SVG, 200, 200

        with self.lock:
            soup, root = parse_fragment(self._html)
            blocks = page_blocks(root)
            target = blocks[-1] if blocks else root
            target.append(soup.new_tag("img", attrs={"src": src, "width": str(width), "height": str(height)}))
            html_str = inner_html(root)
        self.set_content(html_str, self._selection)
        return src
