import logging
from types import SimpleNamespace

import pytest
from pymongo.errors import BulkWriteError, DuplicateKeyError, PyMongoError

from address_book.config_loader import AppConfig, load_app_config
from address_book.errors import BulkInsertError, ConflictError, UpstreamStorageError
from address_book.logging_utils import _resolve_level, configure_logging
from address_book.models import Contact
from address_book.mongo_repository import MongoContactRepository, _conflict_field, build_filter
from address_book.query import ContactQuery


def test_load_app_config_defaults(monkeypatch):
    monkeypatch.delenv("MONGO_URI", raising=False)
    monkeypatch.delenv("MONGO_DB", raising=False)
    config = load_app_config(SimpleNamespace())
    assert config.storage.backend == "mongo"
    assert config.storage.uri == "mongodb://localhost:27017"
    assert config.validation.phone_policy == "generic"
    assert config.validation.email_policy == "shape"
    assert config.pagination.default_limit == 5
    assert config.export.include_bom is False
    assert config.export.delimiter == ";"
    assert config.server.port == 5000
    assert config.logging.level == "WARNING"


def test_load_app_config_yaml_then_cli(tmp_path, monkeypatch):
    monkeypatch.delenv("MONGO_URI", raising=False)
    monkeypatch.delenv("MONGO_DB", raising=False)
    cfg = tmp_path / "config.yaml"
    cfg.write_text(
        "\n".join(
            [
                "storage:",
                "  backend: memory",
                "  database: yaml_db",
                "validation:",
                "  phone_policy: fr",
                "pagination:",
                "  default_limit: 20",
                "export:",
                "  include_bom: true",
                "server:",
                "  port: 8080",
                "logging:",
                "  level: info",
            ]
        ),
        encoding="utf-8",
    )
    config = load_app_config(SimpleNamespace(config=str(cfg)))
    assert config.storage.backend == "memory"
    assert config.storage.database == "yaml_db"
    assert config.validation.phone_policy == "fr"
    assert config.pagination.default_limit == 20
    assert config.export.include_bom is True
    assert config.server.port == 8080
    assert config.logging.level == "INFO"

    overridden = load_app_config(
        SimpleNamespace(
            config=str(cfg),
            phone_policy="phonenumbers",
            export_bom=False,
            port=9000,
            log_level="debug",
        )
    )
    assert overridden.validation.phone_policy == "phonenumbers"
    assert overridden.export.include_bom is False
    assert overridden.server.port == 9000
    assert overridden.logging.level == "DEBUG"


def test_environment_overrides_yaml_but_not_cli(tmp_path, monkeypatch):
    cfg = tmp_path / "config.yaml"
    cfg.write_text("storage:\n  uri: mongodb://yaml:27017\n", encoding="utf-8")
    monkeypatch.setenv("MONGO_URI", "mongodb://env:27017")
    monkeypatch.setenv("MONGO_DB", "env_db")

    config = load_app_config(SimpleNamespace(config=str(cfg)))
    assert config.storage.uri == "mongodb://env:27017"
    assert config.storage.database == "env_db"

    config = load_app_config(SimpleNamespace(config=str(cfg), mongo_uri="mongodb://cli:27017"))
    assert config.storage.uri == "mongodb://cli:27017"


def test_resolve_level_helper():
    assert _resolve_level("debug") == logging.DEBUG
    assert _resolve_level("15") == 15
    assert _resolve_level("nonsense") == logging.INFO


def test_configure_logging_env_precedence(monkeypatch):
    root = logging.getLogger()
    previous = root.level
    try:
        monkeypatch.setenv("ADDRESS_BOOK_LOG_LEVEL", "ERROR")
        configure_logging(AppConfig(), level_override="DEBUG")
        assert root.level == logging.ERROR

        monkeypatch.delenv("ADDRESS_BOOK_LOG_LEVEL")
        assert configure_logging(AppConfig(), level_override="DEBUG") == logging.DEBUG
        assert root.level == logging.DEBUG
        assert logging.getLogger("pymongo").level == logging.INFO
    finally:
        root.setLevel(previous)


def test_build_filter_escapes_search_key():
    assert build_filter(ContactQuery()) == {}
    spec = build_filter(ContactQuery(search="a.b+c"))
    clauses = spec["$or"]
    assert clauses[0] == {"nameNormalized": {"$regex": r"a\.b\+c"}}
    assert clauses[1] == {"emailNormalized": {"$regex": r"a\.b\+c"}}
    assert clauses[2]["phone"]["$options"] == "i"


def test_conflict_field_from_driver_details():
    assert _conflict_field({"keyPattern": {"phone": 1}}) == "phone"
    assert _conflict_field({"keyValue": {"emailNormalized": "a@x.com"}}) == "email"
    assert _conflict_field({"errmsg": "E11000 duplicate key error index: phone_unique"}) == "phone"
    assert _conflict_field(None) == "email"


class FakeCollection:
    def __init__(self, error=None):
        self.error = error

    def insert_one(self, doc):
        raise self.error

    def insert_many(self, docs, ordered=True):
        raise self.error

    def find_one(self, spec):
        raise self.error


def _contacts():
    return [
        Contact.create("Alice", "alice@x.com", "+33611111111"),
        Contact.create("Bob", "bob@x.com", "+33622222222"),
    ]


def test_mongo_bulk_duplicates_become_partial_insert():
    error = BulkWriteError(
        {
            "nInserted": 1,
            "writeErrors": [
                {"index": 1, "code": 11000, "keyPattern": {"phone": 1}, "errmsg": "E11000"}
            ],
        }
    )
    repo = MongoContactRepository(FakeCollection(error))
    with pytest.raises(BulkInsertError) as excinfo:
        repo.insert_many(_contacts())
    assert excinfo.value.inserted_count == 1
    assert excinfo.value.field == "phone"


def test_mongo_bulk_other_errors_are_storage_failures():
    error = BulkWriteError({"nInserted": 0, "writeErrors": [{"index": 0, "code": 121}]})
    repo = MongoContactRepository(FakeCollection(error))
    with pytest.raises(UpstreamStorageError):
        repo.insert_many(_contacts())


def test_mongo_single_insert_conflict_and_driver_failure():
    duplicate = DuplicateKeyError(
        "E11000", code=11000, details={"keyPattern": {"emailNormalized": 1}}
    )
    with pytest.raises(ConflictError) as excinfo:
        MongoContactRepository(FakeCollection(duplicate)).insert(_contacts()[0])
    assert excinfo.value.field == "email"

    with pytest.raises(UpstreamStorageError):
        MongoContactRepository(FakeCollection(PyMongoError("down"))).insert(_contacts()[0])


def test_mongo_invalid_identifier_is_not_found():
    repo = MongoContactRepository(FakeCollection(PyMongoError("should not be called")))
    assert repo.get("not-an-object-id") is None
    assert repo.delete("not-an-object-id") is False
    assert repo.replace(_contacts()[0].with_changes(id="zzz")) is None


if __name__ == "__main__":
    pytest.main(["-q"])
