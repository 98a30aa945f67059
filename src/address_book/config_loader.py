from __future__ import annotations

import argparse
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import yaml  # type: ignore[import-untyped]

from .normalization import ValidationSettings


@dataclass
class StorageConfig:
    backend: str = "mongo"
    uri: str = "mongodb://localhost:27017"
    database: str = "addressbook"
    collection: str = "contacts"


@dataclass
class ValidationConfig:
    phone_policy: str = "generic"
    phone_region: str = "FR"
    email_policy: str = "shape"
    email_check_deliverability: bool = False
    max_avatar_bytes: int = 2 * 1024 * 1024

    def to_settings(self) -> ValidationSettings:
        return ValidationSettings(
            email_policy=self.email_policy,
            email_check_deliverability=self.email_check_deliverability,
            phone_policy=self.phone_policy,
            phone_region=self.phone_region,
            max_avatar_bytes=self.max_avatar_bytes,
        )


@dataclass
class PaginationConfig:
    default_limit: int = 5


@dataclass
class ExportConfig:
    include_bom: bool = False
    delimiter: str = ";"
    filename: str = "contacts.csv"


@dataclass
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 5000
    cors_origins: List[str] = field(default_factory=lambda: ["*"])


@dataclass
class LoggingConfig:
    level: str = "WARNING"


@dataclass
class AppConfig:
    storage: StorageConfig = field(default_factory=StorageConfig)
    validation: ValidationConfig = field(default_factory=ValidationConfig)
    pagination: PaginationConfig = field(default_factory=PaginationConfig)
    export: ExportConfig = field(default_factory=ExportConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _load_yaml(path: Optional[str]) -> Dict[str, Any]:
    if not path:
        return {}
    with open(path, "r", encoding="utf-8") as handle:
        return yaml.safe_load(handle) or {}


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def load_app_config(args: Optional[argparse.Namespace] = None) -> AppConfig:
    """Build the configuration from YAML, then CLI arguments, then environment.

    CLI attributes are read with ``getattr`` so any namespace-like object
    works; unset attributes fall back to the YAML value, then the default.
    """
    args = args or argparse.Namespace()
    config_data = _load_yaml(getattr(args, "config", None))
    storage_cfg = config_data.get("storage", {}) or {}
    validation_cfg = config_data.get("validation", {}) or {}
    pagination_cfg = config_data.get("pagination", {}) or {}
    export_cfg = config_data.get("export", {}) or {}
    server_cfg = config_data.get("server", {}) or {}
    logging_cfg = config_data.get("logging", {}) or {}

    storage = StorageConfig(
        backend=getattr(args, "storage_backend", None) or storage_cfg.get("backend", "mongo"),
        uri=getattr(args, "mongo_uri", None)
        or os.getenv("MONGO_URI")
        or storage_cfg.get("uri", "mongodb://localhost:27017"),
        database=getattr(args, "mongo_db", None)
        or os.getenv("MONGO_DB")
        or storage_cfg.get("database", "addressbook"),
        collection=storage_cfg.get("collection", "contacts"),
    )

    validation = ValidationConfig(
        phone_policy=getattr(args, "phone_policy", None)
        or validation_cfg.get("phone_policy", "generic"),
        phone_region=getattr(args, "phone_region", None)
        or validation_cfg.get("phone_region", "FR"),
        email_policy=getattr(args, "email_policy", None)
        or validation_cfg.get("email_policy", "shape"),
        email_check_deliverability=_as_bool(
            validation_cfg.get("email_check_deliverability", False)
        ),
        max_avatar_bytes=int(validation_cfg.get("max_avatar_bytes", 2 * 1024 * 1024)),
    )

    pagination = PaginationConfig(
        default_limit=int(pagination_cfg.get("default_limit", 5)),
    )

    arg_bom = getattr(args, "export_bom", None)
    export = ExportConfig(
        include_bom=_as_bool(export_cfg.get("include_bom", False))
        if arg_bom is None
        else bool(arg_bom),
        delimiter=export_cfg.get("delimiter", ";"),
        filename=export_cfg.get("filename", "contacts.csv"),
    )

    server = ServerConfig(
        host=getattr(args, "host", None) or server_cfg.get("host", "0.0.0.0"),
        port=int(getattr(args, "port", None) or server_cfg.get("port", 5000)),
        cors_origins=list(server_cfg.get("cors_origins", ["*"])),
    )

    arg_level = getattr(args, "log_level", None)
    effective_level = (arg_level or logging_cfg.get("level") or "WARNING").upper()

    return AppConfig(
        storage=storage,
        validation=validation,
        pagination=pagination,
        export=export,
        server=server,
        logging=LoggingConfig(level=effective_level),
    )
