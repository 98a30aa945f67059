import pytest
from fastapi.testclient import TestClient

from address_book.api import create_app
from address_book.config_loader import AppConfig
from address_book.errors import UpstreamStorageError
from address_book.repository import InMemoryContactRepository


@pytest.fixture
def client():
    app = create_app(AppConfig(), repository=InMemoryContactRepository())
    return TestClient(app)


def _create(client, name, email, phone, **extra):
    payload = {"name": name, "email": email, "phone": phone}
    payload.update(extra)
    return client.post("/contacts", json=payload)


def test_create_and_fetch_contact(client):
    resp = _create(client, "  Émile Zola ", "Emile@Example.com", "+33611111111")
    assert resp.status_code == 201
    body = resp.json()
    assert body["name"] == "Émile Zola"
    assert body["nameNormalized"] == "emile zola"
    assert body["emailNormalized"] == "emile@example.com"
    assert body["_id"]

    fetched = client.get(f"/contacts/{body['_id']}")
    assert fetched.status_code == 200
    assert fetched.json()["email"] == "Emile@Example.com"


def test_create_rejects_missing_and_invalid_fields(client):
    resp = client.post("/contacts", json={"name": "No Email", "phone": "+33611111111"})
    assert resp.status_code == 400
    assert resp.json()["fields"] == ["email"]

    resp = _create(client, "Bad", "bad-email", "+33611111111")
    assert resp.status_code == 400
    assert resp.json()["fields"] == ["email"]

    resp = _create(client, "Sneaky", "s@x.com", "+33611111111", nameNormalized="x")
    assert resp.status_code == 400
    assert resp.json()["fields"] == ["nameNormalized"]


def test_create_conflict_reports_field(client):
    assert _create(client, "Alice", "alice@x.com", "+33611111111").status_code == 201
    resp = _create(client, "Alice Bis", "ALICE@x.com", "+33622222222")
    assert resp.status_code == 409
    assert resp.json() == {"error": "A contact with this email already exists.", "field": "email"}

    resp = _create(client, "Alice Ter", "ter@x.com", "+33611111111")
    assert resp.status_code == 409
    assert resp.json()["field"] == "phone"


def test_list_pages_in_name_order(client):
    for i, name in enumerate(["Zoé", "emile", "Émile", "Marc", "Anne", "Bruno"]):
        _create(client, name, f"p{i}@x.com", f"+3360000000{i}")

    first = client.get("/contacts").json()
    assert first["total"] == 6
    assert (first["page"], first["limit"]) == (1, 5)
    assert [c["name"] for c in first["data"]] == ["Anne", "Bruno", "emile", "Émile", "Marc"]

    second = client.get("/contacts", params={"page": 2, "limit": 5}).json()
    assert [c["name"] for c in second["data"]] == ["Zoé"]

    fallback = client.get("/contacts", params={"page": "zero", "limit": "-1"}).json()
    assert (fallback["page"], fallback["limit"]) == (1, 5)


def test_search_endpoint(client):
    _create(client, "Émile Zola", "ez@lettres.fr", "+33611111111")
    _create(client, "Zoé Durand", "zoe@example.org", "+33622222222")

    resp = client.get("/contacts/search", params={"q": "EMI"})
    assert resp.status_code == 200
    assert [c["name"] for c in resp.json()["data"]] == ["Émile Zola"]

    assert client.get("/contacts/search", params={"q": "example.ORG"}).json()["total"] == 1
    assert client.get("/contacts/search", params={"q": ""}).json()["total"] == 0
    assert client.get("/contacts/search").json() == {
        "data": [],
        "total": 0,
        "page": 1,
        "limit": 5,
    }


def test_update_contact(client):
    alice = _create(client, "Alice", "alice@x.com", "+33611111111").json()
    bob = _create(client, "Bob", "bob@x.com", "+33622222222").json()

    resp = client.put(f"/contacts/{alice['_id']}", json={"name": "Älice", "email": "ALICE@x.com"})
    assert resp.status_code == 200
    assert resp.json()["nameNormalized"] == "alice"
    assert resp.json()["phone"] == "+33611111111"

    resp = client.put(f"/contacts/{alice['_id']}", json={"phone": bob["phone"]})
    assert resp.status_code == 409
    assert resp.json()["field"] == "phone"

    resp = client.put(f"/contacts/{alice['_id']}", json={"phone": "12"})
    assert resp.status_code == 400
    assert resp.json()["fields"] == ["phone"]

    assert client.put("/contacts/missing", json={"name": "X"}).status_code == 404


def test_delete_contact_and_delete_all(client):
    alice = _create(client, "Alice", "alice@x.com", "+33611111111").json()
    _create(client, "Bob", "bob@x.com", "+33622222222")

    resp = client.delete(f"/contacts/{alice['_id']}")
    assert resp.status_code == 204
    assert client.get(f"/contacts/{alice['_id']}").status_code == 404
    assert client.delete(f"/contacts/{alice['_id']}").status_code == 404

    resp = client.delete("/contacts")
    assert resp.status_code == 200
    assert resp.json() == {"message": "All contacts deleted.", "deletedCount": 1}
    assert client.get("/contacts").json()["total"] == 0


def test_import_and_export_csv(client):
    data = (
        "name;email;phone;avatar\n"
        "Alice;alice@x.com;+33611111111;\n"
        "Bad;nope;+33622222222;\n"
        "Copy;copy@x.com;+33611111111;\n"
        "Zoé;zoe@x.com;+33633333333;\n"
    ).encode("utf-8")
    resp = client.post("/contacts/import-csv", files={"file": ("contacts.csv", data, "text/csv")})
    assert resp.status_code == 200
    assert resp.json() == {
        "message": "2 contacts imported, 2 ignored (duplicates or invalid).",
        "imported": 2,
        "ignored": 2,
    }

    export = client.get("/contacts/export-csv")
    assert export.status_code == 200
    assert export.headers["content-type"].startswith("text/csv")
    assert "contacts.csv" in export.headers["content-disposition"]
    assert export.content.decode("utf-8").splitlines() == [
        "name;email;phone;avatar",
        "Alice;alice@x.com;+33611111111;",
        "Zoé;zoe@x.com;+33633333333;",
    ]

    again = client.post(
        "/contacts/import-csv", files={"file": ("contacts.csv", export.content, "text/csv")}
    )
    assert again.json()["imported"] == 0


def test_import_counts_overlong_lines_as_ignored(client):
    data = (
        b"name;email;phone\n"
        b"Alice;alice@x.com;+33611111111;\n"
        b"Bob;bob@x.com;+33622222222;junk\n"
    )
    resp = client.post("/contacts/import-csv", files={"file": ("c.csv", data, "text/csv")})
    assert resp.status_code == 200
    assert (resp.json()["imported"], resp.json()["ignored"]) == (1, 1)


def test_import_without_file_or_with_bad_header(client):
    resp = client.post("/contacts/import-csv")
    assert resp.status_code == 400
    assert resp.json()["fields"] == ["file"]

    resp = client.post(
        "/contacts/import-csv", files={"file": ("c.csv", b"nom;courriel\nA;b\n", "text/csv")}
    )
    assert resp.status_code == 400
    assert "missing column" in resp.json()["error"]


def test_export_with_bom_flag():
    config = AppConfig()
    config.export.include_bom = True
    client = TestClient(create_app(config, repository=InMemoryContactRepository()))
    assert client.get("/contacts/export-csv").content.startswith(b"\xef\xbb\xbf")


def test_stats_and_initialize_normalized():
    repo = InMemoryContactRepository(
        documents=[{"name": "Émile", "email": "E@Example.com", "phone": "+33611111111"}]
    )
    client = TestClient(create_app(AppConfig(), repository=repo))

    resp = client.post("/contacts/initialize-normalized")
    assert resp.status_code == 200
    assert resp.json()["updated"] == 1
    assert client.post("/contacts/initialize-normalized").json()["updated"] == 0

    stats = client.get("/contacts/stats").json()
    assert stats == {"total": 1, "withAvatar": 0, "withoutAvatar": 1, "byDomain": {"example.com": 1}}


class BrokenRepository(InMemoryContactRepository):
    def find_page(self, query):
        raise UpstreamStorageError("connection refused")


def test_storage_failure_maps_to_500():
    client = TestClient(create_app(AppConfig(), repository=BrokenRepository()))
    resp = client.get("/contacts")
    assert resp.status_code == 500
    assert resp.json() == {"error": "Internal storage error."}


if __name__ == "__main__":
    pytest.main(["-q"])
