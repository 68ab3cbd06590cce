import io
import threading
from email.message import Message
from http.cookiejar import CookieJar
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest

from opskit.client.bodyio import drain_and_close, read_all_and_close_limit
from opskit.client.builder import Client, new_client
from opskit.client.transport import (
    DEFAULT_TRANSPORT,
    Request,
    Response,
    UrllibTransport,
    set_header,
)


def _redirect(location, status=302):
    headers = Message()
    headers["Location"] = location
    return Response(status=status, headers=headers, body=io.BytesIO(b"moved"))


class _Scripted:
    def __init__(self, responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        return self.responses.pop(0)


class _Handler(BaseHTTPRequestHandler):
    def do_GET(self):
        if self.path == "/echo":
            payload = (self.headers.get("X-Test") or "").encode()
        else:
            payload = b"ok"
        self.send_response(200)
        self.send_header("Content-Length", str(len(payload)))
        self.end_headers()
        self.wfile.write(payload)

    def log_message(self, *args):
        pass


@pytest.fixture
def server_url():
    server = ThreadingHTTPServer(("127.0.0.1", 0), _Handler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield f"http://127.0.0.1:{server.server_address[1]}"
    finally:
        server.shutdown()
        server.server_close()


def test_new_client_default_transport_is_independent():
    client = new_client()
    assert isinstance(client.transport, UrllibTransport)
    assert client.transport is not DEFAULT_TRANSPORT
    assert client.transport == DEFAULT_TRANSPORT


def test_new_client_timeout():
    client = new_client(timeout=0.123)
    assert client.timeout == 0.123


def test_new_client_default_timeout_is_zero():
    assert new_client().timeout == 0.0


def test_new_client_cookie_jar():
    jar = CookieJar()
    client = new_client(cookie_jar=jar)
    assert client.cookie_jar is jar


def test_new_client_transport_is_cloned():
    given = UrllibTransport(timeout=12.3)
    client = new_client(transport=given)
    assert client.transport is not given
    assert client.transport.timeout == 12.3


def test_new_client_round_tripper_takes_precedence():
    def wanted(request):
        return Response(status=204)

    client = new_client(transport=UrllibTransport(timeout=1.0), round_tripper=wanted)
    assert client.transport is wanted


def test_new_client_middlewares_wrap_transport():
    def base(request):
        return Response(status=200)

    def mw(next_rt):
        def round_trip(request):
            resp = next_rt(request)
            resp.status = 201
            return resp

        return round_trip

    client = new_client(round_tripper=base, middlewares=[mw])
    assert client.transport(Request("GET", "http://example.com")).status == 201


def test_new_client_middlewares_order_and_skip_none():
    def base(request):
        return Response(status=200)

    def mw(delta):
        def middleware(next_rt):
            def round_trip(request):
                resp = next_rt(request)
                resp.status += delta
                return resp

            return round_trip

        return middleware

    client = new_client(round_tripper=base, middlewares=[mw(1), None, mw(10), mw(100)])
    assert client.do(Request("GET", "http://example.com")).status == 311


def test_check_redirect_error_aborts_and_closes_body():
    moved = _redirect("/next")
    transport = _Scripted([moved])

    def refuse(request, via):
        raise ValueError("no")

    client = Client(transport=transport, check_redirect=refuse)
    with pytest.raises(ValueError, match="no"):
        client.do(Request("GET", "http://example.com/start"))
    assert moved.body.closed
    assert len(transport.requests) == 1


def test_check_redirect_false_returns_last_response():
    transport = _Scripted([_redirect("/next")])
    client = Client(transport=transport, check_redirect=lambda request, via: False)
    resp = client.do(Request("GET", "http://example.com/start"))
    assert resp.status == 302
    assert resp.body.read() == b"moved"


def test_default_follows_redirect():
    first = _redirect("/next")
    transport = _Scripted([first, Response(status=200, body=io.BytesIO(b"done"))])
    client = Client(transport=transport)
    resp = client.do(Request("GET", "http://example.com/start"))
    assert resp.status == 200
    assert [r.url for r in transport.requests] == [
        "http://example.com/start",
        "http://example.com/next",
    ]
    assert first.body.closed


def test_check_redirect_sees_via_chain():
    seen = []

    def record(request, via):
        seen.append((request.url, [r.url for r in via]))

    transport = _Scripted([_redirect("/b"), Response(status=200)])
    resp = Client(transport=transport, check_redirect=record).do(
        Request("GET", "http://example.com/a")
    )
    assert (resp.status, seen) == (
        200,
        [("http://example.com/b", ["http://example.com/a"])],
    )


def test_default_stops_after_ten_redirects():
    transport = _Scripted([_redirect("/loop") for _ in range(20)])
    client = Client(transport=transport)
    with pytest.raises(RuntimeError, match="stopped after 10 redirects"):
        client.do(Request("GET", "http://example.com/loop"))
    assert len(transport.requests) == 10


def test_see_other_turns_post_into_get_without_body():
    transport = _Scripted([_redirect("/result", status=303), Response(status=200)])
    client = Client(transport=transport)
    client.do(
        Request(
            "POST",
            "http://example.com/form",
            headers={"Content-Type": "text/plain"},
            body=b"data",
        )
    )
    followed = transport.requests[1]
    assert followed.method == "GET"
    assert followed.body is None
    assert followed.header("Content-Type") is None


def test_temporary_redirect_keeps_method_and_body():
    transport = _Scripted([_redirect("/again", status=307), Response(status=200)])
    Client(transport=transport).do(Request("PUT", "http://example.com/x", body=b"data"))
    followed = transport.requests[1]
    assert (followed.method, followed.body) == ("PUT", b"data")


def test_cross_host_redirect_drops_authorization():
    transport = _Scripted([_redirect("http://other.example.com/"), Response(status=200)])
    Client(transport=transport).do(
        Request("GET", "http://example.com/", headers={"Authorization": "Bearer token"})
    )
    assert transport.requests[1].header("Authorization") is None


def test_timeout_is_passed_to_request():
    transport = _Scripted([Response(status=200)])
    Client(transport=transport, timeout=5.0).do(Request("GET", "http://example.com/"))
    hop_timeout = transport.requests[0].timeout
    assert 0 < hop_timeout <= 5.0


def test_real_server_read_with_limit(server_url):
    client = new_client(timeout=2.0)
    resp = client.do(Request("GET", server_url + "/"))
    assert read_all_and_close_limit(resp.body, 16) == b"ok"


def test_real_server_set_header(server_url):
    client = new_client(timeout=2.0, middlewares=[set_header("X-Test", "v")])
    resp = client.do(Request("GET", server_url + "/echo"))
    body = read_all_and_close_limit(resp.body, 16)
    drain_and_close(resp.body, 0)
    assert body == b"v"