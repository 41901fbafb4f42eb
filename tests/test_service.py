import io
import json
from unittest import mock

import pytest
from botocore.exceptions import ClientError

from conftest import build_template
from docmix import (
    DocInfo,
    DocumentNotFoundError,
    DocumentService,
    DocumentStoreError,
    InvalidArgumentError,
    TemplateNotFoundError,
)
from docmix.config import Settings


@pytest.fixture
def service(tmp_path):
    svc = DocumentService(base_dir=tmp_path, settings=Settings(base_dir=tmp_path))
    (svc.templates_dir / "boleto.pdf").write_bytes(build_template())
    return svc


def test_list_templates_reads_defaults(service):
    (service.templates_dir / "boleto.json").write_text(
        json.dumps({"description": "Boleto bancario", "metadata": {"title": "Boleto"}}),
        encoding="utf-8",
    )
    (service.templates_dir / "carne.pdf").write_bytes(build_template())

    templates = service.list_templates()
    assert [t["name"] for t in templates] == ["boleto", "carne"]
    assert templates[0]["description"] == "Boleto bancario"
    assert templates[0]["metadata"] == {"title": "Boleto"}
    assert templates[1]["metadata"] == {}


def test_malformed_defaults_are_ignored(service):
    (service.templates_dir / "boleto.json").write_text("{not json", encoding="utf-8")
    assert service.get_template_config("boleto") == {}


def test_generate_persists_locally(service, tmp_path):
    result = service.generate("boleto", texts={"nome": "Maria"}, metadata={"title": "Boleto"})

    record = result["metadata"]
    assert result["bytes"].startswith(b"%PDF-")
    assert record["template_name"] == "boleto"
    assert record["size"] == len(result["bytes"])
    assert record["filename"].startswith("boleto_")

    stored = tmp_path / "generated" / f"{record['document_id']}.pdf"
    assert stored.read_bytes() == result["bytes"]
    assert json.loads(stored.with_suffix(".json").read_text(encoding="utf-8"))["document_id"] == record["document_id"]
    assert DocInfo.from_pdf(result["bytes"]).title() == "Boleto"


def test_request_metadata_overrides_template_defaults(service):
    (service.templates_dir / "boleto.json").write_text(
        json.dumps({"metadata": {"title": "Boleto", "author": "Banco"}, "options": {"display_doc_title": True}}),
        encoding="utf-8",
    )
    result = service.generate("boleto", metadata={"title": "Segunda via"}, persist=False)

    info = DocInfo.from_pdf(result["bytes"])
    assert (info.title(), info.author()) == ("Segunda via", "Banco")
    assert "file_path" not in result["metadata"]


def test_get_document_from_disk_after_restart(service, tmp_path):
    document_id = service.generate("boleto", texts={"nome": "Maria"})["metadata"]["document_id"]

    fresh = DocumentService(base_dir=tmp_path, settings=Settings(base_dir=tmp_path))
    entry = fresh.get_document(document_id)
    assert entry["bytes"].startswith(b"%PDF-")
    assert entry["metadata"]["document_id"] == document_id


def test_template_lookup_is_case_insensitive(service):
    assert service.generate("BOLETO", persist=False)["metadata"]["template_name"] == "BOLETO"


def test_unknown_template(service):
    with pytest.raises(TemplateNotFoundError):
        service.generate("carne")


@pytest.mark.parametrize("name", ["", "../boleto", "sub/boleto", "sub\\boleto"])
def test_invalid_template_name(service, name):
    with pytest.raises(InvalidArgumentError):
        service.generate(name)


@pytest.mark.parametrize("document_id", ["not-a-uuid", "3f1c1d7e-8d1e-4c3e-9b7a-2f6b8b0c0a11"])
def test_unknown_document(service, document_id):
    with pytest.raises(DocumentNotFoundError):
        service.get_document(document_id)


def test_s3_storage(tmp_path):
    s3 = mock.Mock()
    settings = Settings(base_dir=tmp_path, s3_bucket="docs", s3_prefix="boletos/")
    svc = DocumentService(settings=settings, s3_client=s3)
    (svc.templates_dir / "boleto.pdf").write_bytes(build_template())

    record = svc.generate("boleto", texts={"nome": "Maria"})["metadata"]
    key = f"boletos/{record['document_id']}.pdf"
    assert record["s3_key"] == key
    kwargs = s3.put_object.call_args.kwargs
    assert (kwargs["Bucket"], kwargs["Key"], kwargs["ContentType"]) == ("docs", key, "application/pdf")
    assert not list((tmp_path / "generated").iterdir())

    # Cached entries do not hit S3 again.
    svc.get_document(record["document_id"])
    s3.get_object.assert_not_called()


def test_s3_lookup(tmp_path):
    s3 = mock.Mock()
    s3.get_object.return_value = {"Body": io.BytesIO(b"%PDF-1.7")}
    svc = DocumentService(settings=Settings(base_dir=tmp_path, s3_bucket="docs"), s3_client=s3)
    document_id = "3f1c1d7e-8d1e-4c3e-9b7a-2f6b8b0c0a11"

    assert svc.get_document(document_id)["bytes"] == b"%PDF-1.7"
    s3.get_object.assert_called_once_with(Bucket="docs", Key=f"docmix/{document_id}.pdf")

    s3.get_object.side_effect = ClientError({"Error": {"Code": "NoSuchKey"}}, "GetObject")
    with pytest.raises(DocumentNotFoundError):
        svc.get_document("0b6f0f5e-1c2d-4e3f-8a9b-0c1d2e3f4a5b")


def test_s3_store_failure(tmp_path):
    s3 = mock.Mock()
    s3.put_object.side_effect = ClientError({"Error": {"Code": "AccessDenied"}}, "PutObject")
    svc = DocumentService(settings=Settings(base_dir=tmp_path, s3_bucket="docs"), s3_client=s3)
    (svc.templates_dir / "boleto.pdf").write_bytes(build_template())

    with pytest.raises(DocumentStoreError):
        svc.generate("boleto", texts={"nome": "Maria"})
    assert len(svc._cache) == 0
