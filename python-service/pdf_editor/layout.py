import html
import math

from . import config

PAGE_STYLE = ("width: {w}px; height: {h}px; position: relative; background-color: white; "
              "margin: 20px auto; border: 1px solid #ddd; box-shadow: 0 2px 4px rgba(0, 0, 0, 0.1); "
              "padding: 40px; box-sizing: border-box;")
LINE_STYLE = ("margin: 0 0 0.2em 0; padding: 0; font-size: {size}px; line-height: 1.3; "
              "color: #000000; background-color: rgba(255, 255, 255, 0.7);")
ERROR_MESSAGE = "Error rendering page content. The page may be corrupted or contain unsupported elements."


def _fmt(v: float) -> str:
    return f"{v:.2f}".rstrip("0").rstrip(".")

def _round_half_up(v: float) -> int:
    return int(math.floor(v + 0.5))

def image_id(page_number: int, index: int) -> str:
    return f"pdf-img-{page_number}-{index}"


# ============ Line grouping ============
def _scaled(run, viewport):
    a, _, _, _, e, f = run.transform
    x = e * viewport.scale
    y = viewport.height - f * viewport.scale
    return x, y, abs(a) * viewport.scale

def group_lines(runs, viewport, threshold=None):
    """Sort runs top-to-bottom, left-to-right and cut them into lines.

    A run joins the current line while its vertical distance to the previous
    run is within `threshold` scaled pixels. Runs without a transform are
    dropped.
    """
    threshold = config.LINE_Y_THRESHOLD if threshold is None else threshold
    placed = [(_scaled(r, viewport), r) for r in runs if r.transform]
    placed.sort(key=lambda p: (p[0][1], p[0][0]))

    lines, cur, cur_y = [], [], None
    for (x, y, size), run in placed:
        if cur_y is None or abs(y - cur_y) > threshold:
            if cur: lines.append(cur)
            cur = []
        cur.append((x, size, run))
        cur_y = y
    if cur: lines.append(cur)
    return lines


def _line_html(line, scale, min_spacing):
    font_size = line[0][1]
    parts = []
    for i, (x, _, run) in enumerate(line):
        if i > 0 and font_size > 0:
            prev_x, _, prev = line[i - 1]
            gap = (x - (prev_x + prev.width * scale)) / font_size
            if gap > min_spacing:
                parts.append("&nbsp;" * _round_half_up(gap))
        parts.append(html.escape(run.text, quote=False))
    return f'<p style="{LINE_STYLE.format(size=_fmt(font_size))}">' + "".join(parts) + "</p>"


# ============ Images ============
def _image_html(img, page_number, index):
    return (
        f'<figure class="image-container" style="position: absolute; left: {_fmt(img.x)}px; top: {_fmt(img.y)}px; '
        f'width: {_fmt(img.width)}px; height: {_fmt(img.height)}px; z-index: 1; margin: 0;">'
        f'<img src="{img.data_url}" id="{image_id(page_number, index)}" '
        f'style="width: 100%; height: 100%; object-fit: contain;" data-pdf-img="true" '
        f'width="{_fmt(img.width)}" height="{_fmt(img.height)}" alt="PDF Image {index + 1}"/>'
        f'</figure>'
    )


# ============ Page fragments ============
def page_html(runs, images, viewport, page_number, threshold=None, min_spacing=None) -> str:
    min_spacing = config.MIN_SPACING_EM if min_spacing is None else min_spacing
    out = [f'<div class="pdf-page" contenteditable="true" style="{PAGE_STYLE.format(w=_fmt(viewport.width), h=_fmt(viewport.height))}">']
    out.extend(_image_html(img, page_number, i) for i, img in enumerate(images) if img and img.data_url)
    out.extend(_line_html(line, viewport.scale, min_spacing) for line in group_lines(runs, viewport, threshold))
    out.append("</div>")
    return "".join(out)


def error_fragment(width, height) -> str:
    style = PAGE_STYLE.format(w=_fmt(width), h=_fmt(height))
    return (f'<div class="pdf-page" contenteditable="true" style="{style}">'
            f'<p style="color: red;">{ERROR_MESSAGE}</p></div>')
