# tsunami

Building blocks for a multiplexed tunnelling proxy: programmable traffic
padding, a session pool, an atomically replaceable user store with a
middleware pipeline, per-user traffic accounting and rate limiting, an
HTTP fronting layer (request signing, HTTP and WebSocket stream adapters),
a fallback handler that makes failed connections look like an ordinary web
server, and JSON server configuration loading.

The package has no runtime dependencies beyond the Python standard library
and supports Python 3.10 and later.

## Installation

```
pip install .
```

To run the test suite:

```
pip install ".[test]"
pytest
```

## Modules

| Module | What it provides |
| --- | --- |
| `tsunami.scheme` | Padding scheme parsing: `parse`, `default_scheme`, `Scheme`, `Segment`, `KeepaliveConfig`, `random_in_range`, `SchemeError` |
| `tsunami.padwriter` | `Frame`, `serialize_frames`, `waste_frame`, `PaddingWriter`, `KeepaliveGenerator` |
| `tsunami.autherror` | `AuthError`, `AuthFailedError`, `AuthFailureReason`, `auth_read_error`, `unexpected_auth_frame_error` |
| `tsunami.snapshot` | `Snapshot`, `Adapter`, `StaticAdapter`, `ControlError` |
| `tsunami.middleware` | `Pipeline`, `Middleware`, `FunctionMiddleware`, `apply_middleware`, `normalize_users`, `validate_users` |
| `tsunami.store` | `UserStore`, `AuthResult` |
| `tsunami.fallback` | `FallbackHandler`, `build_default_page`, `handle_default` |
| `tsunami.traffic` | `TrafficPolicy`, `UsageTracker`, `UsageDelta`, `UserLimiter`, `Direction`, `user_limit_bps` |
| `tsunami.pool` | `Pool`, `PoolConfig`, `PoolError` |
| `tsunami.frontconfig` | `FrontingConfig`, `key_from_secret`, `validate_transport`, `auth_jitter`, `caddy_like_tls_context` |
| `tsunami.frontauth` | `sign_request`, `verify_request`, `strip_auth_headers`, `NonceCache` |
| `tsunami.httpconn` | `HTTPServerConn`, `HTTPClientConn`, `HTTPResponseResult` |
| `tsunami.wsconn` | `WebSocketConn`, `upgrade_server`, `client_handshake`, `is_websocket_upgrade`, `websocket_accept`, `WebSocketError` |
| `tsunami.config` | `load_file`, `ServerConfig`, `ServerSettings`, `ConfigError` |

## Padding schemes

A padding scheme describes how the first packets of a session are split and
padded. Each line is `key=value`; blank lines and lines starting with `#`
are ignored, as are unknown keys.

```
stop=3
0=50-50
1=200-300,c,400-500
2=100-200
keepalive=10000-20000:2-4
```

* `stop` — packets with this index or higher are sent unpadded (default 8).
* `N=...` — segment list for packet `N`: `min-max` ranges of segment sizes,
  with `c` meaning "stop here if the user data is used up".
* `keepalive=interval_min-interval_max:size_min-size_max` — tiny filler
  packets sent while every stream is idle, intervals in milliseconds.

A malformed `stop` value or packet rule raises `SchemeError`.

```python
from tsunami.scheme import parse, default_scheme

scheme = parse("stop=3\n0=50-50\n1=200-300,c,400-500\n2=100-200")
scheme.get_segments(1)   # three segments, the middle one a check mark
scheme.get_segments(5)   # None: beyond stop
scheme.md5()             # hex digest of the scheme text

default_scheme().stop    # 8
```

`PaddingWriter` applies a scheme to an output stream, splitting serialized
frames into segments and filling short segments with waste frames. Frames
are written as a 1-byte command, 4-byte stream id, 2-byte length and the
payload; the command byte used for waste frames is given by the caller.

```python
import io
from tsunami.scheme import parse
from tsunami.padwriter import PaddingWriter, Frame

WASTE_COMMAND = 6  # whatever command value your protocol uses for padding

out = io.BytesIO()
writer = PaddingWriter(out, parse("stop=1\n0=50-50"), WASTE_COMMAND)
writer.write_frames([Frame(command=4, stream_id=1, data=b"")])
len(out.getvalue())   # 50
```

`KeepaliveGenerator(config, write_fn, waste_command)` runs a background
thread that calls `write_fn` with small waste frames at random intervals
while `set_active(False)` is in effect.

## Users, snapshots and the store

Users are duck-typed: the store and middleware expect objects with `id`
and `name` attributes and the methods `auth_hash()`, `identity()` and
`is_usable(now)` (returning `(ok, reason)`). An `Adapter` produces a
`Snapshot`; a `Pipeline` runs the adapter and a middleware chain such as
`normalize_users()` and `validate_users()`; `UserStore.apply_snapshot`
installs a full or incremental snapshot, rejecting duplicate auth hashes,
and `UserStore.authenticate(hash)` returns the matching usable user or
`None`.

## Traffic accounting and limiting

`TrafficPolicy(limiter, usage)` wraps readers (`wrap_reader`) and
read/write streams (`wrap_stream`, reads counted as upload and writes as
download). `UsageTracker` collects per-user `UsageDelta` values;
`UserLimiter` is a per-user token bucket driven by a user's
`speed_limit_bps` or `bandwidth` (Mbit/s) attribute.

## Session pool

`Pool(config, dial_fn)` keeps duck-typed session objects (with
`is_closed()`, `is_idle()`, `seq()`, `active_stream_count()`,
`idle_since()`, `send_heartbeat()`, `is_alive(timeout)` and `close()`),
reuses the newest idle one, dials only when none is open, and closes idle
and dead sessions from background threads.

## HTTP fronting authentication

Fronting requests carry an HMAC signature over the method, path, host,
timestamp and a random nonce. A `NonceCache` rejects replays.

```python
import time
from tsunami.frontconfig import key_from_secret
from tsunami.frontauth import sign_request, verify_request, NonceCache

key = key_from_secret("secret")
now = time.time()
headers = {}
sign_request(headers, "POST", "/assets/update", "example.com", key, now)

cache = NonceCache(300)
verify_request(headers, "POST", "/assets/update", "example.com", [key], now, 120, cache)
# True; the same headers a second time give False
```

`HTTPServerConn` and `HTTPClientConn` turn HTTP request and response bodies
into byte streams; `WebSocketConn`, `upgrade_server` and
`client_handshake` do the same over WebSocket binary frames.

## Server configuration

`load_file` reads a JSON configuration; at least one user is required, and
every user needs a `password` or a `token_hash`.

```json
{
  "server": {
    "listen": ":8443",
    "tls": { "cert": "/etc/ssl/cert.pem", "key": "/etc/ssl/key.pem" },
    "users": [
      { "name": "alice", "password": "password", "bandwidth": 100 }
    ],
    "surge": { "mode": "auto", "max_connections": 6, "threshold": 10 },
    "fallback": "127.0.0.1:8080",
    "padding_scheme": "stop=4\n0=50-50"
  }
}
```

```python
from tsunami.config import load_file

cfg = load_file("config.json")
settings = cfg.to_server_settings()
```

Missing values take their defaults in `to_server_settings`: listen address
`:443`, surge mode `auto`, four connections at most, surge threshold 8.
Errors in reading, parsing or validating the file raise `ConfigError`.

## What this package does not do

It is a library of components, not a runnable proxy. There is no client or
server that speaks the tunnel protocol, no session or stream
implementation (the pool and store work with objects you supply), no
SOCKS5 or HTTP CONNECT front end, no HTTP/2 server for the fronting layer,
and no command-line program.