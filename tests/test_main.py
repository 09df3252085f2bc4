import json

import pytest
from fastapi.testclient import TestClient

from folio.main import app

from conftest import COVERED_PAGE


@pytest.fixture()
def client():
    return TestClient(app)


def _upload(path, name="sample.pdf"):
    return {"file": (name, path.read_bytes(), "application/pdf")}


def test_root_lists_features(client):
    response = client.get("/")

    assert response.status_code == 200
    assert response.json()["features"]


def test_health_reports_dependencies(client):
    response = client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert {"pdfminer", "pikepdf", "fontTools"} <= set(body["dependencies"])


def test_convert_returns_html_and_pages(client, text_pdf):
    response = client.post("/convert", files=_upload(text_pdf))

    assert response.status_code == 200
    body = response.json()
    assert body["pageCount"] == 1
    assert body["pages"][0]["status"] == "converted"
    assert "<title>Sample</title>" in body["html"]
    assert body["assets"] == {}


def test_convert_with_files_returns_base64_assets(client, pdf_factory):
    path = pdf_factory("covered.pdf", [COVERED_PAGE])

    response = client.post(
        "/convert",
        data={"config": json.dumps({"embed_image": False})},
        files=_upload(path),
    )

    assert response.status_code == 200
    body = response.json()
    names = list(body["assets"])
    assert len(names) == 1 and names[0].endswith(".svg")
    assert body["pages"][0]["background"]["reference"] == names[0]


def test_convert_html_returns_document(client, text_pdf):
    response = client.post("/convert/html", files=_upload(text_pdf))

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/html")
    assert response.text.startswith("<!DOCTYPE html>")


def test_non_pdf_extension_is_rejected(client, text_pdf):
    response = client.post("/convert", files=_upload(text_pdf, name="sample.txt"))

    assert response.status_code == 400


def test_non_pdf_content_is_rejected(client):
    response = client.post("/convert", files={"file": ("fake.pdf", b"hello world", "application/pdf")})

    assert response.status_code == 400


@pytest.mark.parametrize("config", ["{not json", "[1, 2]", json.dumps({"zoom": -1})])
def test_bad_config_is_rejected(client, text_pdf, config):
    response = client.post("/convert", data={"config": config}, files=_upload(text_pdf))

    assert response.status_code == 400


def test_timeout_is_bounded(client, text_pdf):
    response = client.post("/convert?processing_timeout=5000", files=_upload(text_pdf))

    assert response.status_code == 422
