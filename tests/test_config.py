import hashlib
from datetime import datetime, timezone

import pytest

from tsunami.config import ConfigError, load_file

FULL_CONFIG = """{
  "server": {
    "listen": ":8443",
    "tls": {
      "cert": "/etc/ssl/cert.pem",
      "key": "/etc/ssl/key.pem",
      "acme": { "domain": "example.com", "email": "admin@example.com" }
    },
    "users": [
      { "name": "alice", "password": "password", "bandwidth": 100 },
      { "name": "bob", "password": "password" }
    ],
    "surge": {
      "mode": "auto",
      "max_connections": 6,
      "threshold": 10
    },
    "fronting": {
      "enabled": true,
      "path": "/assets/update",
      "secret": "secret",
      "server_header": "Caddy",
      "site_name": "Front Site",
      "decoy_proxy": "http://127.0.0.1:8081"
    },
    "fallback": "127.0.0.1:8080",
    "padding_scheme": "stop=4\\n0=50-50"
  }
}"""


def _write(tmp_path, text, name="config.json"):
    path = tmp_path / name
    path.write_text(text)
    return path


def test_load_file(tmp_path):
    cfg = load_file(_write(tmp_path, FULL_CONFIG))

    assert cfg.listen == ":8443"
    assert cfg.tls.cert == "/etc/ssl/cert.pem"
    assert cfg.tls.acme == {"domain": "example.com", "email": "admin@example.com"}
    assert len(cfg.users) == 2
    assert cfg.users[0].name == "alice"
    assert cfg.users[0].bandwidth == 100
    assert cfg.surge.max_connections == 6
    assert cfg.surge.threshold == 10
    assert cfg.fallback == "127.0.0.1:8080"
    assert cfg.fronting.enabled
    assert cfg.fronting.path == "/assets/update"

    scfg = cfg.to_server_settings()
    assert scfg.listen == ":8443"
    assert len(scfg.users) == 2
    assert scfg.max_connections == 6
    assert scfg.fallback_addr == "127.0.0.1:8080"
    assert scfg.fronting.enabled
    assert scfg.fronting.secret == "secret"
    assert scfg.fronting.site_name == "Front Site"
    assert scfg.fronting.decoy_proxy == "http://127.0.0.1:8081"
    assert scfg.padding_scheme == "stop=4\n0=50-50"
    assert scfg.tls_cert_file == "/etc/ssl/cert.pem"
    assert scfg.alpn == ["h2"]


def test_load_file_defaults(tmp_path):
    text = '{ "server": { "users": [ { "name": "default", "password": "password" } ] } }'
    scfg = load_file(_write(tmp_path, text)).to_server_settings()
    assert scfg.listen == ":443"
    assert scfg.surge_mode == "auto"
    assert scfg.max_connections == 4
    assert scfg.surge_threshold == 8


def test_load_file_panel_user_fields(tmp_path):
    token_hash = hashlib.sha256(b"token").hexdigest()
    text = """{
  "server": {
    "users": [
      {
        "id": "u_1001",
        "name": "alice",
        "token_hash": "%s",
        "speed_limit_bps": 1048576,
        "quota_bytes": 1073741824,
        "max_sessions": 2,
        "expires_at": "2030-01-02T03:04:05Z",
        "metadata": { "source": "panel" }
      }
    ]
  }
}""" % token_hash
    scfg = load_file(_write(tmp_path, text)).to_server_settings()
    assert len(scfg.users) == 1
    user = scfg.users[0]
    assert user.id == "u_1001"
    assert user.token_hash == token_hash
    assert user.speed_limit_bps == 1048576
    assert user.quota_bytes == 1073741824
    assert user.max_sessions == 2
    assert user.metadata["source"] == "panel"
    assert user.expires_at == datetime(2030, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


def test_load_file_requires_users(tmp_path):
    with pytest.raises(ConfigError, match="at least one user"):
        load_file(_write(tmp_path, '{ "server": {} }', "bad.json"))


def test_load_file_requires_password_or_hash(tmp_path):
    text = '{ "server": { "users": [{ "name": "x", "password": "" }] } }'
    with pytest.raises(ConfigError, match="password or token_hash"):
        load_file(_write(tmp_path, text, "bad.json"))


def test_load_file_not_found(tmp_path):
    with pytest.raises(ConfigError, match="read file"):
        load_file(tmp_path / "missing" / "config.json")


def test_load_file_bad_json(tmp_path):
    with pytest.raises(ConfigError, match="parse JSON"):
        load_file(_write(tmp_path, "not json {{{", "bad.json"))


def test_load_file_wrong_field_type(tmp_path):
    text = '{ "server": { "users": [{ "name": "x", "password": "password", "bandwidth": "fast" }] } }'
    with pytest.raises(ConfigError, match="bandwidth"):
        load_file(_write(tmp_path, text, "bad.json"))


def test_settings_users_are_copies(tmp_path):
    cfg = load_file(_write(tmp_path, FULL_CONFIG))
    scfg = cfg.to_server_settings()
    scfg.users[0].name = "changed"
    assert cfg.users[0].name == "alice"