import ssl

import pytest

from tsunami.frontconfig import (
    DEFAULT_PATH,
    DEFAULT_SERVER_HEADER,
    TRANSPORT_H2,
    FrontingConfig,
    auth_jitter,
    caddy_like_tls_context,
    key_from_secret,
    validate_transport,
)


def test_normalize_fills_defaults():
    cfg = FrontingConfig()
    cfg.normalize()
    assert cfg.path == DEFAULT_PATH
    assert cfg.transport == TRANSPORT_H2
    assert cfg.server_header == DEFAULT_SERVER_HEADER
    assert cfg.site_name == "Welcome"


def test_normalize_keeps_explicit_values():
    cfg = FrontingConfig(path="/custom", transport="websocket", server_header="nginx", site_name="Site")
    cfg.normalize()
    assert (cfg.path, cfg.transport, cfg.server_header, cfg.site_name) == (
        "/custom", "websocket", "nginx", "Site",
    )


def test_normalize_cleans_path():
    cfg = FrontingConfig(path="assets//x/../y")
    cfg.normalize()
    assert cfg.path == "/assets/y"


def test_normalize_is_idempotent():
    cfg = FrontingConfig(path="a/./b/")
    cfg.normalize()
    first = cfg.path
    cfg.normalize()
    assert cfg.path == first
    assert first.startswith("/")


def test_url_uses_default_path_without_mutating():
    cfg = FrontingConfig()
    assert cfg.url("example.com:443") == "https://example.com:443" + DEFAULT_PATH
    assert cfg.path == ""


def test_url_ipv6_host():
    cfg = FrontingConfig(path="/assets/update")
    assert cfg.url("[::1]:443") == "https://[::1]:443/assets/update"


def test_key_from_secret_is_deterministic():
    key = key_from_secret("secret")
    assert len(key) == 32
    assert key == key_from_secret("secret")
    assert key != key_from_secret("token")


@pytest.mark.parametrize("transport", ["quic", "H2", "ws"])
def test_validate_transport_rejects_unknown(transport):
    with pytest.raises(ValueError, match="unsupported transport"):
        validate_transport(transport)


def test_auth_jitter_range():
    values = {auth_jitter() for _ in range(200)}
    assert all(0.001 <= v <= 0.005 for v in values)
    assert all(abs(v * 1000 - round(v * 1000)) < 1e-9 for v in values)


def test_tls_context_versions():
    context = caddy_like_tls_context()
    assert context.minimum_version == ssl.TLSVersion.TLSv1_2
    assert context.maximum_version == ssl.TLSVersion.TLSv1_3