import pytest

from backoffice_service.app.ares_client import parse_company
from backoffice_service.app.s3_client import S3FileStore, SIGNATURES_FOLDER


ARES_RESPONSE = {
    "ico": "27074358",
    "obchodniJmeno": "Asseco Central Europe, a.s.",
    "dic": "CZ27074358",
    "sidlo": {"textovaAdresa": "Budějovická 778/3a, Michle, 14000 Praha 4"},
}


def test_parse_company_maps_registry_fields():
    assert parse_company("27074358", ARES_RESPONSE) == {
        "company_name": "Asseco Central Europe, a.s.",
        "company_id": "27074358",
        "vat_id": "CZ27074358",
        "address": "Budějovická 778/3a, Michle, 14000 Praha 4",
    }


def test_parse_company_without_vat_or_address():
    company = parse_company("12345678", {"obchodniJmeno": "Jan Novák"})
    assert company["vat_id"] == ""
    assert company["address"] == ""


@pytest.fixture
def store(monkeypatch):
    monkeypatch.setenv("S3_BUCKET_NAME", "vans")
    monkeypatch.setenv("AWS_REGION", "eu-central-1")
    monkeypatch.delenv("S3_ENDPOINT_URL", raising=False)
    monkeypatch.delenv("S3_ACCESS_DOMAIN", raising=False)
    return S3FileStore()


def test_build_key_keeps_extension():
    key = S3FileStore.build_key(SIGNATURES_FOLDER, "Handover.PNG")
    folder, name = key.split("/")
    assert folder == "signatures"
    assert name.endswith(".png")
    assert S3FileStore.build_key(SIGNATURES_FOLDER, "Handover.PNG") != key


def test_build_key_without_extension():
    assert S3FileStore.build_key("licenses", "scan").endswith(".bin")


@pytest.mark.parametrize("extension, content_type", [
    ("jpg", "image/jpeg"),
    ("PNG", "image/png"),
    ("pdf", "application/pdf"),
    ("exe", "application/octet-stream"),
])
def test_content_type(extension, content_type):
    assert S3FileStore.get_content_type(extension) == content_type


def test_file_url_for_aws(store):
    assert store.get_file_url("licenses/a.png") == "https://vans.s3.eu-central-1.amazonaws.com/licenses/a.png"


def test_file_url_for_custom_endpoint(store):
    store.endpoint_url = "http://minio:9000/"
    assert store.get_file_url("licenses/a.png") == "http://minio:9000/vans/licenses/a.png"


def test_file_url_prefers_public_domain(store):
    store.endpoint_url = "http://minio:9000"
    store.access_domain = "files.example.com"
    assert store.get_file_url("licenses/a.png") == "https://files.example.com/licenses/a.png"
