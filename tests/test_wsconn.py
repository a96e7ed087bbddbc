import socket
import struct
import threading
import time

import pytest

from tsunami.frontauth import verify_request
from tsunami.frontconfig import key_from_secret
from tsunami.wsconn import (
    WebSocketConn,
    WebSocketError,
    client_handshake,
    is_websocket_upgrade,
    upgrade_server,
    websocket_accept,
)


@pytest.fixture
def pair():
    a, b = socket.socketpair()
    a.settimeout(5)
    b.settimeout(5)
    yield a, b
    a.close()
    b.close()


def _recv_exact(sock, size):
    data = b""
    while len(data) < size:
        chunk = sock.recv(size - len(data))
        if not chunk:
            break
        data += chunk
    return data


def test_is_websocket_upgrade():
    assert is_websocket_upgrade({"upgrade": "WebSocket", "Connection": "keep-alive, Upgrade"})
    assert not is_websocket_upgrade({"Upgrade": "websocket", "Connection": "keep-alive"})
    assert not is_websocket_upgrade({})


def test_unmasked_write_wire_bytes(pair):
    a, b = pair
    conn = WebSocketConn(a)
    assert conn.write(b"hi") == 2
    assert _recv_exact(b, 4) == b"\x82\x02hi"


def test_masked_write_round_trip(pair):
    a, b = pair
    client = WebSocketConn(a, mask_writes=True)
    server = WebSocketConn(b)
    client.write(b"hello masked world")
    assert server.read() == b"hello masked world"


def test_partial_reads(pair):
    a, b = pair
    conn = WebSocketConn(a)
    b.sendall(b"\x82\x06abcdef")
    assert conn.read(4) == b"abcd"
    assert conn.read(4) == b"ef"


@pytest.mark.parametrize("size", [300, 70000])
def test_extended_lengths_round_trip(pair, size):
    a, b = pair
    sender = WebSocketConn(a, mask_writes=True)
    receiver = WebSocketConn(b)
    payload = bytes(range(256)) * (size // 256) + b"z" * (size % 256)
    thread = threading.Thread(target=sender.write, args=(payload,))
    thread.start()
    received = b""
    while len(received) < size:
        received += receiver.read()
    thread.join(5)
    assert received == payload


def test_ping_gets_pong(pair):
    a, b = pair
    conn = WebSocketConn(a)
    b.sendall(b"\x89\x03abc" + b"\x82\x02hi")
    assert conn.read() == b"hi"
    assert _recv_exact(b, 5) == b"\x8a\x03abc"


def test_close_frame_ends_stream(pair):
    a, b = pair
    conn = WebSocketConn(a)
    b.sendall(b"\x88\x00")
    assert conn.read() == b""


def test_truncated_frame_raises(pair):
    a, b = pair
    conn = WebSocketConn(a)
    b.sendall(b"\x82\x05ab")
    b.shutdown(socket.SHUT_WR)
    with pytest.raises(EOFError):
        conn.read()


def test_unsupported_opcode(pair):
    a, b = pair
    conn = WebSocketConn(a)
    b.sendall(b"\x83\x00")
    with pytest.raises(WebSocketError, match="opcode"):
        conn.read()


def test_frame_too_large(pair):
    a, b = pair
    conn = WebSocketConn(a)
    b.sendall(b"\x82\x7f" + struct.pack(">Q", 17 * 1024 * 1024))
    with pytest.raises(WebSocketError, match="too large"):
        conn.read()


def test_upgrade_server_requires_key(pair):
    a, _ = pair
    with pytest.raises(WebSocketError, match="key"):
        upgrade_server(a, {"Sec-WebSocket-Version": "13"}, "Caddy")


def test_upgrade_server_requires_version_13(pair):
    a, _ = pair
    with pytest.raises(WebSocketError, match="version"):
        upgrade_server(a, {"Sec-WebSocket-Key": "abc", "Sec-WebSocket-Version": "8"}, "Caddy")


def test_upgrade_server_response(pair):
    a, b = pair
    upgrade_server(a, {"Sec-WebSocket-Key": "dGhlIHNhbXBsZSBub25jZQ==", "Sec-WebSocket-Version": "13"}, "Caddy")
    reader = b.makefile("rb")
    head = b""
    while not head.endswith(b"\r\n\r\n"):
        head += reader.readline()
    text = head.decode()
    assert text.startswith("HTTP/1.1 101 Switching Protocols\r\n")
    assert "Sec-WebSocket-Accept: " + websocket_accept("dGhlIHNhbXBsZSBub25jZQ==") in text
    assert "Server: Caddy\r\n" in text


def _read_request(sock):
    reader = sock.makefile("rb")
    request_line = reader.readline().decode().rstrip("\r\n")
    headers = {}
    while True:
        line = reader.readline().decode()
        if line in ("\r\n", ""):
            break
        name, _, value = line.partition(":")
        headers[name.strip()] = value.strip()
    return request_line, headers


def test_client_handshake_end_to_end(pair):
    a, b = pair
    key = key_from_secret("secret")
    seen = {}

    def serve():
        request_line, headers = _read_request(b)
        seen["request_line"] = request_line
        seen["headers"] = headers
        conn = upgrade_server(b, headers, "Caddy")
        data = conn.read()
        conn.write(data.upper())

    thread = threading.Thread(target=serve)
    thread.start()
    client = client_handshake(a, "https://example.com/assets/update", "localhost", key)
    client.write(b"hello")
    assert client.read() == b"HELLO"
    thread.join(5)

    assert seen["request_line"] == "GET /assets/update HTTP/1.1"
    assert seen["headers"]["Host"] == "localhost"
    assert verify_request(seen["headers"], "GET", "/assets/update", "localhost", [key], time.time())
    assert not verify_request(seen["headers"], "GET", "/assets/update", "example.com", [key], time.time())


def _serve_raw_response(sock, response):
    _read_request(sock)
    sock.sendall(response)


def test_client_handshake_rejects_status(pair):
    a, b = pair
    thread = threading.Thread(
        target=_serve_raw_response,
        args=(b, b"HTTP/1.1 403 Forbidden\r\nContent-Length: 0\r\n\r\n"),
    )
    thread.start()
    with pytest.raises(WebSocketError, match="status 403"):
        client_handshake(a, "https://example.com/assets/update", "", key_from_secret("secret"))
    thread.join(5)


def test_client_handshake_rejects_bad_accept(pair):
    a, b = pair
    response = (
        b"HTTP/1.1 101 Switching Protocols\r\nUpgrade: websocket\r\n"
        b"Connection: Upgrade\r\nSec-WebSocket-Accept: wrong\r\n\r\n"
    )
    thread = threading.Thread(target=_serve_raw_response, args=(b, response))
    thread.start()
    with pytest.raises(WebSocketError, match="accept"):
        client_handshake(a, "https://example.com/assets/update", "", key_from_secret("secret"))
    thread.join(5)