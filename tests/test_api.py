import base64
from unittest import mock

import pytest
from botocore.exceptions import ClientError
from fastapi.testclient import TestClient

from conftest import build_template
from docmix import DocumentService
from docmix.config import Settings


@pytest.fixture
def client(tmp_path, monkeypatch):
    monkeypatch.setenv("DOCMIX_BASE_DIR", str(tmp_path / "import"))
    import main

    service = DocumentService(base_dir=tmp_path, settings=Settings(base_dir=tmp_path))
    (service.templates_dir / "boleto.pdf").write_bytes(build_template())
    monkeypatch.setattr(main, "document_service", service)
    return TestClient(main.app)


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_list_templates(client):
    resp = client.get("/templates")
    assert resp.status_code == 200
    assert [t["name"] for t in resp.json()["templates"]] == ["boleto"]


def test_generate_and_download(client, png_bytes):
    resp = client.post(
        "/documents",
        json={
            "template": "boleto",
            "texts": {"nome": "Maria Silva"},
            "images": {"logo": base64.b64encode(png_bytes).decode("ascii")},
            "metadata": {"title": "Boleto"},
            "options": {"remove_fields": False},
        },
    )
    assert resp.status_code == 200, resp.text
    record = resp.json()["metadata"]

    download = client.get(f"/documents/{record['document_id']}")
    assert download.status_code == 200
    assert download.headers["content-type"] == "application/pdf"
    assert record["filename"] in download.headers["content-disposition"]
    assert download.content.startswith(b"%PDF-")


def test_unknown_template_is_404(client):
    resp = client.post("/documents", json={"template": "carne"})
    assert resp.status_code == 404


def test_invalid_template_name_is_400(client):
    resp = client.post("/documents", json={"template": "../boleto"})
    assert resp.status_code == 400


def test_bad_base64_image_is_400(client):
    resp = client.post("/documents", json={"template": "boleto", "images": {"logo": "***"}})
    assert resp.status_code == 400
    assert "logo" in resp.json()["detail"]


def test_broken_image_is_422(client):
    payload = base64.b64encode(b"not an image").decode("ascii")
    resp = client.post("/documents", json={"template": "boleto", "images": {"logo": payload}})
    assert resp.status_code == 422


def test_unknown_document_is_404(client):
    assert client.get("/documents/3f1c1d7e-8d1e-4c3e-9b7a-2f6b8b0c0a11").status_code == 404


def test_storage_failure_is_500(client):
    import main

    s3 = mock.Mock()
    s3.put_object.side_effect = ClientError({"Error": {"Code": "AccessDenied"}}, "PutObject")
    main.document_service.s3_bucket = "docs"
    main.document_service.s3 = s3

    resp = client.post("/documents", json={"template": "boleto", "texts": {"nome": "Maria"}})
    assert resp.status_code == 500
    assert "Cannot store document" in resp.json()["detail"]
