import base64
import io

import fitz
import pytest
from PIL import Image

from pdf_editor import exporter
from pdf_editor.errors import ExportError, ExportTimeoutError
from pdf_editor.exporter import PageRasterizer, export_html, placeholder_png, render_html_document, repair_images
from pdf_editor.layout import page_html
from pdf_editor.models import ImagePlacement, Page
from pdf_editor.pdf_parser import Viewport
from pdf_editor.styles import parse_fragment

from conftest import png_data_url


def decoded_size(data_url):
    return Image.open(io.BytesIO(base64.b64decode(data_url.split(",", 1)[1]))).size


def test_placeholder_has_requested_size():
    img = Image.open(io.BytesIO(placeholder_png(120, 80)))
    assert img.size == (120, 80)
    assert img.getpixel((0, 0)) == (0xee, 0xee, 0xee)


def test_broken_images_are_replaced():
    good = png_data_url()
    _, root = parse_fragment(
        f'<div class="pdf-page"><img id="a" src="{good}"/>'
        '<img id="b" src="data:image/png;base64,AAAA" width="120" height="80"/>'
        '<img id="c" src="http://example.com/remote.png"/></div>'
    )
    assert repair_images(root) == 2
    a, b, c = root.find_all("img")
    assert a["src"] == good and not a.get("data-placeholder")
    assert b["data-placeholder"] == "true"
    assert decoded_size(b["src"]) == (120, 80)
    assert decoded_size(c["src"]) == (200, 200)


def test_placeholder_size_falls_back_to_figure():
    _, root = parse_fragment('<figure style="width: 64px; height: 32px;"><img src="data:,broken"/></figure>')
    repair_images(root)
    assert decoded_size(root.find("img")["src"]) == (64, 32)


def test_pages_export_with_broken_images():
    page = Page('<div class="pdf-page" style="margin: 20px auto; border: 1px solid #ddd;"><p>hello</p>'
                '<img src="data:image/png;base64,AAAA" width="50" height="50"/></div>', 300, 400)
    data = PageRasterizer(scale=0.5).export_pages([page])
    with fitz.open(stream=data, filetype="pdf") as doc:
        assert doc.page_count == 1
        assert (doc[0].rect.width, doc[0].rect.height) == pytest.approx((300, 400))


def test_edited_content_is_exported():
    page = Page('<div class="pdf-page"><p>original</p></div>', 300, 400,
                edited_content='<div class="pdf-page"><p>edited</p></div>')
    rasterizer = PageRasterizer(scale=0.5)
    assert rasterizer._materialize(page).get_text() == "edited"


def test_nothing_to_export():
    with pytest.raises(ExportError):
        PageRasterizer().export_pages([])


def test_html_export_uses_a4():
    data = export_html("<h1>Title</h1><p>Body text</p>")
    with fitz.open(stream=data, filetype="pdf") as doc:
        assert doc.page_count >= 1
        assert (doc[0].rect.width, doc[0].rect.height) == pytest.approx((595, 842))
        assert "Body text" in doc[0].get_text()


def test_html_export_respects_deadline():
    with pytest.raises(ExportTimeoutError):
        render_html_document("<p>late</p>", timeout=-1)


def test_html_export_retries_once_with_smaller_scale(monkeypatch):
    calls = []

    def flaky(html_content, scale=1.0, timeout=None):
        calls.append((scale, timeout))
        if len(calls) == 1:
            raise ExportTimeoutError(timeout)
        return b"%PDF-retry"
    monkeypatch.setattr(exporter, "render_html_document", flaky)
    assert export_html("<p>x</p>") == b"%PDF-retry"
    assert calls == [(1.0, 60), (0.8, 120)]


def test_html_export_gives_up_after_retry(monkeypatch):
    def broken(html_content, scale=1.0, timeout=None):
        raise RuntimeError("layout failed")
    monkeypatch.setattr(exporter, "render_html_document", broken)
    with pytest.raises(ExportError, match="Failed to generate PDF"):
        export_html("<p>x</p>")


def is_red(pixel):
    r, g, b = pixel[:3]
    return r > 200 and g < 80 and b < 80


def is_white(pixel):
    return all(c > 230 for c in pixel[:3])


def test_positioned_images_keep_their_place():
    placement = ImagePlacement(png_data_url(size=(20, 20), color=(255, 0, 0)), 200, 200, 100, 100)
    page = Page(page_html([], [placement], Viewport(800, 1100, 1.0), 1), 800, 1100)
    data = PageRasterizer(scale=1).export_pages([page])
    with fitz.open(stream=data, filetype="pdf") as doc:
        pix = doc[0].get_pixmap(alpha=False)
        img = Image.frombytes("RGB", (pix.width, pix.height), pix.samples)
    assert is_red(img.getpixel((200, 200)))
    assert is_red(img.getpixel((110, 110)))
    assert is_white(img.getpixel((90, 90)))
    assert is_white(img.getpixel((320, 320)))


def test_page_padding_is_taken_out_of_offsets():
    page = Page('<div class="pdf-page" style="padding: 10px 30px;">'
                '<figure style="position: absolute; left: 50px; top: 60px;"></figure><p>text</p></div>', 300, 400)
    figure = PageRasterizer()._materialize(page).find("figure")
    assert "left: 20px;" in figure["style"] and "top: 50px;" in figure["style"]
