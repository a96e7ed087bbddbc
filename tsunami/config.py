"""JSON configuration file loading for the server."""

from __future__ import annotations

import json
from dataclasses import dataclass, field, replace
from datetime import datetime
from pathlib import Path
from typing import Any

from tsunami.frontconfig import FrontingConfig

DEFAULT_LISTEN = ":443"
DEFAULT_SURGE_MODE = "auto"
DEFAULT_MAX_CONNECTIONS = 4
DEFAULT_SURGE_THRESHOLD = 8
TLS_VERSION_1_3 = 0x0304


class ConfigError(Exception):
    """Raised when a configuration file cannot be read, parsed or validated."""


class _DecodeError(ValueError):
    pass


def _object(value: Any, where: str) -> dict:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise _DecodeError(f"cannot unmarshal {type(value).__name__} into {where}")
    return value


def _get(obj: dict, key: str, kind: type, default: Any, where: str) -> Any:
    value = obj.get(key)
    if value is None:
        return default
    if kind is int:
        ok = isinstance(value, int) and not isinstance(value, bool)
    else:
        ok = isinstance(value, kind)
    if not ok:
        raise _DecodeError(
            f"cannot unmarshal {type(value).__name__} into {where}.{key} of type {kind.__name__}"
        )
    return value


def _parse_time(value: Any, where: str) -> datetime | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise _DecodeError(f"cannot unmarshal {type(value).__name__} into {where}")
    text = value[:-1] + "+00:00" if value.endswith(("Z", "z")) else value
    try:
        return datetime.fromisoformat(text)
    except ValueError as exc:
        raise _DecodeError(f"invalid time {value!r} for {where}") from exc


@dataclass
class UserEntry:
    """One configured user."""

    id: str = ""
    name: str = ""
    password: str = ""
    token_hash: str = ""
    disabled: bool = False
    expires_at: datetime | None = None
    bandwidth: int = 0
    speed_limit_bps: int = 0
    quota_bytes: int = 0
    used_upload_bytes: int = 0
    used_download_bytes: int = 0
    max_sessions: int = 0
    max_devices: int = 0
    metadata: dict[str, str] = field(default_factory=dict)

    @classmethod
    def _from_json(cls, raw: Any, where: str) -> UserEntry:
        obj = _object(raw, where)
        metadata = _get(obj, "metadata", dict, {}, where)
        for key, value in metadata.items():
            if not isinstance(value, str):
                raise _DecodeError(f"cannot unmarshal {type(value).__name__} into {where}.metadata[{key}]")
        return cls(
            id=_get(obj, "id", str, "", where),
            name=_get(obj, "name", str, "", where),
            password=_get(obj, "password", str, "", where),
            token_hash=_get(obj, "token_hash", str, "", where),
            disabled=_get(obj, "disabled", bool, False, where),
            expires_at=_parse_time(obj.get("expires_at"), f"{where}.expires_at"),
            bandwidth=_get(obj, "bandwidth", int, 0, where),
            speed_limit_bps=_get(obj, "speed_limit_bps", int, 0, where),
            quota_bytes=_get(obj, "quota_bytes", int, 0, where),
            used_upload_bytes=_get(obj, "used_upload_bytes", int, 0, where),
            used_download_bytes=_get(obj, "used_download_bytes", int, 0, where),
            max_sessions=_get(obj, "max_sessions", int, 0, where),
            max_devices=_get(obj, "max_devices", int, 0, where),
            metadata=dict(metadata),
        )


@dataclass
class TLSSection:
    """Certificate paths and optional ACME settings (domain and email)."""

    cert: str = ""
    key: str = ""
    acme: dict[str, str] | None = None

    @classmethod
    def _from_json(cls, raw: Any) -> TLSSection:
        obj = _object(raw, "server.tls")
        acme = None
        if obj.get("acme") is not None:
            acme_obj = _object(obj["acme"], "server.tls.acme")
            acme = {
                "domain": _get(acme_obj, "domain", str, "", "server.tls.acme"),
                "email": _get(acme_obj, "email", str, "", "server.tls.acme"),
            }
        return cls(
            cert=_get(obj, "cert", str, "", "server.tls"),
            key=_get(obj, "key", str, "", "server.tls"),
            acme=acme,
        )


@dataclass
class SurgeSection:
    """Multi-connection surge settings."""

    mode: str = ""
    max_connections: int = 0
    threshold: int = 0

    @classmethod
    def _from_json(cls, raw: Any) -> SurgeSection:
        obj = _object(raw, "server.surge")
        return cls(
            mode=_get(obj, "mode", str, "", "server.surge"),
            max_connections=_get(obj, "max_connections", int, 0, "server.surge"),
            threshold=_get(obj, "threshold", int, 0, "server.surge"),
        )


@dataclass
class FrontingSection:
    """HTTP fronting settings as written in the file."""

    enabled: bool = False
    path: str = ""
    secret: str = ""
    server_header: str = ""
    site_name: str = ""
    decoy_proxy: str = ""

    @classmethod
    def _from_json(cls, raw: Any) -> FrontingSection:
        obj = _object(raw, "server.fronting")
        where = "server.fronting"
        return cls(
            enabled=_get(obj, "enabled", bool, False, where),
            path=_get(obj, "path", str, "", where),
            secret=_get(obj, "secret", str, "", where),
            server_header=_get(obj, "server_header", str, "", where),
            site_name=_get(obj, "site_name", str, "", where),
            decoy_proxy=_get(obj, "decoy_proxy", str, "", where),
        )


@dataclass
class ServerSettings:
    """Runtime server settings with defaults applied."""

    listen: str = DEFAULT_LISTEN
    tls_cert_file: str = ""
    tls_key_file: str = ""
    alpn: list[str] = field(default_factory=lambda: ["h2"])
    tls_min_version: int = TLS_VERSION_1_3
    surge_mode: str = DEFAULT_SURGE_MODE
    max_connections: int = DEFAULT_MAX_CONNECTIONS
    surge_threshold: int = DEFAULT_SURGE_THRESHOLD
    fallback_addr: str = ""
    fronting: FrontingConfig = field(default_factory=FrontingConfig)
    padding_scheme: str = ""
    allow_all: bool = False
    users: list[UserEntry] = field(default_factory=list)


@dataclass
class ServerConfig:
    """The contents of the ``server`` section of a configuration file."""

    listen: str = ""
    tls: TLSSection = field(default_factory=TLSSection)
    users: list[UserEntry] = field(default_factory=list)
    surge: SurgeSection = field(default_factory=SurgeSection)
    fallback: str = ""
    fronting: FrontingSection = field(default_factory=FrontingSection)
    padding_scheme: str = ""
    allow_all: bool = False

    @classmethod
    def _from_json(cls, raw: Any) -> ServerConfig:
        root = _object(raw, "config")
        obj = _object(root.get("server"), "server")
        users_raw = _get(obj, "users", list, [], "server")
        return cls(
            listen=_get(obj, "listen", str, "", "server"),
            tls=TLSSection._from_json(obj.get("tls")),
            users=[UserEntry._from_json(u, f"server.users[{i}]") for i, u in enumerate(users_raw)],
            surge=SurgeSection._from_json(obj.get("surge")),
            fallback=_get(obj, "fallback", str, "", "server"),
            fronting=FrontingSection._from_json(obj.get("fronting")),
            padding_scheme=_get(obj, "padding_scheme", str, "", "server"),
            allow_all=_get(obj, "allow_all", bool, False, "server"),
        )

    def to_server_settings(self) -> ServerSettings:
        """Runtime settings, with defaults filled in where the file left zeros."""
        return ServerSettings(
            listen=self.listen or DEFAULT_LISTEN,
            tls_cert_file=self.tls.cert,
            tls_key_file=self.tls.key,
            alpn=["h2"],
            tls_min_version=TLS_VERSION_1_3,
            surge_mode=self.surge.mode or DEFAULT_SURGE_MODE,
            max_connections=self.surge.max_connections or DEFAULT_MAX_CONNECTIONS,
            surge_threshold=self.surge.threshold or DEFAULT_SURGE_THRESHOLD,
            fallback_addr=self.fallback,
            fronting=FrontingConfig(
                enabled=self.fronting.enabled,
                path=self.fronting.path,
                secret=self.fronting.secret,
                server_header=self.fronting.server_header,
                site_name=self.fronting.site_name,
                decoy_proxy=self.fronting.decoy_proxy,
            ),
            padding_scheme=self.padding_scheme.strip(),
            allow_all=self.allow_all,
            users=[replace(u, metadata=dict(u.metadata)) for u in self.users],
        )


def load_file(path: str | Path) -> ServerConfig:
    """Load and validate a JSON configuration file."""
    try:
        text = Path(path).read_bytes()
    except OSError as exc:
        raise ConfigError(f"config: read file {path}: {exc}") from exc

    try:
        cfg = ServerConfig._from_json(json.loads(text))
    except (ValueError, UnicodeDecodeError) as exc:
        raise ConfigError(f"config: parse JSON {path}: {exc}") from exc

    if not cfg.users:
        raise ConfigError("config: at least one user is required")
    for i, user in enumerate(cfg.users):
        if not user.password and not user.token_hash:
            raise ConfigError(f"config: user[{i}] ({user.name}) password or token_hash is required")
    return cfg