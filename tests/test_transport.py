import io
import json
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest

from opskit.client.transport import (
    DEFAULT_TRANSPORT,
    Request,
    Response,
    UrllibTransport,
    chain,
    set_header,
)


def _ok_base(request):
    return Response(status=200)


class _Handler(BaseHTTPRequestHandler):
    def do_GET(self):
        if self.path == "/redirect":
            self.send_response(302)
            self.send_header("Location", "/")
            self.send_header("Content-Length", "0")
            self.end_headers()
            return
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


def test_chain_order():
    got = []

    def mw(name):
        def middleware(next_rt):
            def round_trip(request):
                got.append("before:" + name)
                resp = next_rt(request)
                got.append("after:" + name)
                return resp

            return round_trip

        return middleware

    rt = chain(_ok_base, mw("a"), mw("b"), mw("c"))
    resp = rt(Request("GET", "http://example.com"))

    assert (resp.status, got) == (
        200,
        [
            "before:a",
            "before:b",
            "before:c",
            "after:c",
            "after:b",
            "after:a",
        ],
    )


def test_chain_none_base_uses_cloned_default_transport():
    rt = chain(None)
    assert isinstance(rt, UrllibTransport)
    assert rt is not DEFAULT_TRANSPORT
    assert rt == DEFAULT_TRANSPORT


def test_chain_skips_none_middleware():
    def mw(next_rt):
        def round_trip(request):
            resp = next_rt(request)
            resp.status = 201
            return resp

        return round_trip

    rt = chain(_ok_base, None, mw, None)
    resp = rt(Request("GET", "http://example.com"))
    assert resp.status == 201


def test_set_header_sets_header_and_does_not_mutate_original():
    seen = {}

    def base(request):
        seen["value"] = request.header("X-Test")
        return Response(status=200)

    rt = chain(base, set_header("X-Test", "v1"))
    original = Request("GET", "http://example.com", headers={})
    rt(original)

    assert seen["value"] == "v1"
    assert original.header("X-Test") is None
    assert dict(original.headers) == {}


def test_set_header_replaces_existing_value_case_insensitively():
    def base(request):
        payload = json.dumps(dict(request.headers)).encode()
        return Response(status=200, body=io.BytesIO(payload))

    rt = chain(base, set_header("X-Test", "new"))
    resp = rt(Request("GET", "http://example.com", headers={"x-test": "old"}))
    assert json.loads(resp.body.read()) == {"X-Test": "new"}


def test_set_header_empty_key_is_noop():
    rt = chain(_ok_base, set_header("", "v1"))
    assert rt is _ok_base


def test_request_header_lookup_is_case_insensitive():
    request = Request("GET", "http://example.com", headers={"Content-Type": "text/plain"})
    assert request.header("content-type") == "text/plain"


def test_urllib_transport_fetches_body(server_url):
    resp = UrllibTransport(timeout=5)(Request("GET", server_url + "/"))
    try:
        assert resp.status == 200
        assert resp.body.read() == b"ok"
    finally:
        resp.body.close()


def test_urllib_transport_does_not_follow_redirects(server_url):
    resp = UrllibTransport(timeout=5)(Request("GET", server_url + "/redirect"))
    try:
        assert resp.status == 302
        assert resp.headers.get("Location") == "/"
    finally:
        resp.body.close()