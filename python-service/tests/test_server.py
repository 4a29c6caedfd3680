import io
import os

import fitz
import pytest

from pdf_editor.exporter import PageRasterizer
from pdf_editor.server import create_app

from conftest import build_pdf


@pytest.fixture
def app(tmp_path, ocr_engine):
    public = tmp_path / "public"
    public.mkdir()
    (public / "index.html").write_text("<h1>PDF Editor</h1>")
    app = create_app({
        "TESTING": True,
        "UPLOAD_DIR": str(tmp_path / "uploads"),
        "PUBLIC_DIR": str(public),
    }, ocr_engine=ocr_engine)
    app.extensions["rasterizer"] = PageRasterizer(scale=0.5)
    return app


@pytest.fixture
def client(app):
    return app.test_client()


def upload(client, data, name="doc.pdf", mimetype="application/pdf", url="/api/upload"):
    return client.post(url, data={"pdf": (io.BytesIO(data), name, mimetype)}, content_type="multipart/form-data")


def test_health(client):
    res = client.get("/api/health")
    assert res.status_code == 200
    body = res.get_json()
    assert body["status"] == "ok"
    assert "T" in body["timestamp"]
    assert body["uptime"] >= 0


def test_upload_requires_file(client):
    res = client.post("/api/upload", data={}, content_type="multipart/form-data")
    assert res.status_code == 400
    assert res.get_json() == {"error": "No PDF file uploaded"}


def test_upload_rejects_other_types(client, app):
    res = upload(client, b"hello", name="notes.txt", mimetype="text/plain")
    assert res.status_code == 400
    assert res.get_json()["error"] == "Only PDF files are allowed"
    assert os.listdir(app.config["UPLOAD_DIR"]) == []


def test_upload_returns_enriched_pages(client, app, ocr_engine):
    res = upload(client, build_pdf(texts=("first", "second")))
    assert res.status_code == 200
    body = res.get_json()
    assert body["success"] is True and body["pageCount"] == 2
    assert [p["pageNumber"] for p in body["pages"]] == [1, 2]
    assert body["pages"][1]["textContent"] == "second"
    assert ocr_engine.calls == 2
    assert os.listdir(app.config["UPLOAD_DIR"]) == []


def test_upload_processing_failure(client, app):
    res = upload(client, b"not a pdf at all")
    assert res.status_code == 500
    assert res.get_json() == {"error": "Failed to process PDF"}
    assert os.listdir(app.config["UPLOAD_DIR"]) == []


def test_export_requires_html(client):
    res = client.post("/api/export", json={})
    assert res.status_code == 400
    assert res.get_json() == {"error": "No HTML content provided"}


def test_export_returns_pdf_attachment(client):
    res = client.post("/api/export", json={"htmlContent": "<p>Exported text</p>"})
    assert res.status_code == 200
    assert res.mimetype == "application/pdf"
    assert "attachment" in res.headers["Content-Disposition"]
    assert "exported.pdf" in res.headers["Content-Disposition"]
    with fitz.open(stream=res.data, filetype="pdf") as doc:
        assert "Exported text" in doc[0].get_text()


def test_convert_returns_pages(client, pdf_bytes):
    res = upload(client, pdf_bytes, url="/api/convert")
    assert res.status_code == 200
    body = res.get_json()
    assert body["pageCount"] == 3
    assert 'class="pdf-page"' in body["pages"][0]["content"]
    assert body["pages"][2]["editedContent"] is None


def test_convert_rejects_corrupt_documents(client):
    res = upload(client, b"not a pdf", url="/api/convert")
    assert res.status_code == 422
    assert "error" in res.get_json()


def test_converted_pages_export(client, pdf_bytes):
    pages = upload(client, pdf_bytes, url="/api/convert").get_json()["pages"]
    pages[0]["editedContent"] = pages[0]["content"].replace("Page one", "Changed")
    res = client.post("/api/export/pages", json={"pages": pages})
    assert res.status_code == 200
    assert "edited-document.pdf" in res.headers["Content-Disposition"]
    with fitz.open(stream=res.data, filetype="pdf") as doc:
        assert doc.page_count == 3


def test_export_pages_requires_pages(client):
    assert client.post("/api/export/pages", json={"pages": []}).status_code == 400


def test_unknown_route_is_json(client):
    res = client.get("/api/nothing-here")
    assert res.status_code == 404
    assert "error" in res.get_json()


def test_index_is_served(client):
    res = client.get("/")
    assert res.status_code == 200
    assert b"PDF Editor" in res.data


def test_details_only_in_development(tmp_path):
    app = create_app({"UPLOAD_DIR": str(tmp_path), "PUBLIC_DIR": str(tmp_path), "APP_ENV": "development"})
    res = app.test_client().post("/api/convert", data={"pdf": (io.BytesIO(b"junk"), "a.pdf", "application/pdf")},
                                 content_type="multipart/form-data")
    assert res.status_code == 422
    assert "details" in res.get_json()
