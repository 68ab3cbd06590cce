# opskit

Small, default-safe building blocks for WSGI services that carry an
operator-facing admin surface. The package uses only the standard library.

## What is inside

| Module | Purpose |
| --- | --- |
| `opskit.chain` | WSGI middleware chains: `chain(a, b, c).handler(app)` gives `a(b(c(app)))` |
| `opskit.tokenset` | `AtomicTokenSet`, a swappable token set compared in constant time |
| `opskit.ipallow` | `AtomicIPAllowList`, a swappable allowlist of CIDRs or single IPs |
| `opskit.client.transport` | `Request`, `Response`, `UrllibTransport`, round-tripper `chain` and `set_header` |
| `opskit.client.bodyio` | `read_all_and_close_limit` and `drain_and_close` for response bodies |
| `opskit.client.builder` | `new_client(...)` returning a `Client` with its own transport and middlewares |
| `opskit.report` | `report_app`, a plain-text overview page built from other read endpoints |
| `opskit.mounting` | Path validation, `PathRouter`, and `mount_prefix` for serving a subtree under a prefix |
| `opskit.service` | `new_default_service(spec)` returning a `Service` with start, wait, shutdown and run |

## Middleware chains

A middleware is any callable that takes a WSGI application and returns one.

```python
from opskit.chain import chain, wrap

base = chain(recover, request_id)
admin_chain = base.derive(admin_auth)   # base is left untouched
app = admin_chain.handler(my_app)       # recover(request_id(admin_auth(my_app)))

same_app = wrap(my_app, recover, request_id, admin_auth)
```

`None` middlewares are dropped. `handler(None)` and `wrap(None, ...)` raise
`ValueError`. The returned `ChainHandler` exposes `endpoint` and a `middlewares`
tuple snapshot, so later changes to the chain list do not affect it.

## Swappable access sets

```python
from opskit.tokenset import AtomicTokenSet
from opskit.ipallow import AtomicIPAllowList

tokens = AtomicTokenSet()          # starts empty: contains nothing
tokens.update(["token"])
assert tokens.contains("token")

ips = AtomicIPAllowList()
ips.update(["10.0.0.0/8", "192.168.1.1"])
assert "10.1.2.3" in ips
```

Blank and invalid entries are dropped; `update(None)` clears the set.
`is_empty()` is true when the set holds nothing and does not allow all;
`allow_all()` makes it accept everything. Every update replaces an immutable
snapshot as a whole. `parse_cidrs_or_ips` turns single addresses into /32 or
/128 networks, and IPv4-mapped IPv6 addresses match their IPv4 form.
`constant_time_equal(a, b)` is the comparison the token set uses.

## Outgoing HTTP

```python
from opskit.client.builder import new_client
from opskit.client.transport import Request, set_header
from opskit.client.bodyio import read_all_and_close_limit, BodyTooLargeError

client = new_client(
    timeout=2.0,
    middlewares=[set_header("User-Agent", "my-app/1.0")],
)
response = client.do(Request(method="GET", url="http://localhost:8080/"))
data = read_all_and_close_limit(response.body, 1 << 20)
```

- A round-tripper is a callable from `Request` to `Response`.
  `chain(base, a, b, c)` returns `a(b(c(base)))`, skipping `None`; with a `None`
  base it uses a clone of `DEFAULT_TRANSPORT`.
- `UrllibTransport` sends requests with urllib and never follows redirects
  itself; `clone()` gives an independent copy.
- `set_header(key, value)` works on a copy of the request (`Request.with_header`);
  an empty key gives a middleware that returns its input unchanged.
- `new_client` prefers `round_tripper`, then a clone of `transport`, then a clone
  of the default transport. `Client.do` follows up to ten redirects unless
  `check_redirect(next_request, via)` says otherwise: raising aborts, returning
  `False` hands back the redirect response. `timeout` is a total deadline in
  seconds (0 means none); `cookie_jar` is an `http.cookiejar.CookieJar`.
- `read_all_and_close_limit(body, limit)` always closes the body and raises
  `BodyTooLargeError` when it holds more than `limit` bytes (negative counts as
  zero). `drain_and_close(body, max_bytes)` discards up to `max_bytes`, then
  closes; a read error wins over a close error.

## Mounting and routing

`mount_prefix(prefix, subtree, fallback)` sends requests whose path starts with
the prefix to `subtree`, with the prefix stripped from `PATH_INFO` and added to
`SCRIPT_NAME`; everything else goes to `fallback`. A request for the prefix
without its trailing slash, such as `/-`, is redirected with 307 to `/-/`,
keeping the query string. Prefixes must start with `/` and may not contain
whitespace, `?`, `#` or `//` (`normalize_mount_prefix`; `normalize_path` applies
the same checks without adding a slash; `resolve_path` falls back to a default
for blank paths). Bad input raises `ValueError`.

`PathRouter.register(path, app)` mounts one application per path and raises
`ValueError` on duplicates. Exact paths match first, then the longest registered
path ending in `/`; unclean paths are redirected with 301, and unknown paths get
`404 page not found`.

## Report page

`report_app(sections)` takes `ReportSection(name, ReportSource(path, app), limit)`
entries, leaves out sections without an app, and answers GET and HEAD (other
methods get 405). The body starts with `ok` or
`error: one or more sections failed`, a `generated_at` timestamp and the list of
enabled sections, followed by one `=== name ===` block per section with every
line indented by `| `. A section with a non-2xx status shows `error: status N`;
a capped section that was cut ends with `(truncated)`. A section named
`provided` carries a note line; `REPORT_PROVIDED_MAX_BYTES` (256 KiB) is the
cap meant for it. `render_report`, `call_app_captured`, `append_indented` and
`TextCapture` are available on their own.

## Service lifecycle

```python
from opskit.service import HTTPServerSpec, ServiceSpec, new_default_service

service = new_default_service(ServiceSpec(
    primary=HTTPServerSpec(addr="127.0.0.1:8080", app=my_app),
    admin=admin_app,            # mounted under "/-/" by default
))
service.start()
...
service.shutdown(5.0)
service.wait(None)
```

- Servers are threaded `wsgiref` servers bound to `host:port`; port 0 picks a
  free port, shown in `ManagedServer.bound_address` after start.
- `admin` is served either under `admin_mount_prefix` on the primary server or on
  `admin_standalone_server`, never both; a service with admin but no primary
  needs the standalone server. Assembly mistakes raise `ValueError`.
- `start()` runs the `on_start` hooks (each receives an event set when shutdown
  begins) and binds every server; a second call raises `AlreadyStartedError`.
- `wait(timeout)` blocks until the service has stopped and raises its error;
  before start it raises `NotStartedError`.
- `shutdown(timeout)` is idempotent and does nothing before start. Primary and
  extra servers stop first, then `on_shutdown` hooks run (each receives the
  seconds left), and a standalone admin server stops last. Only servers that
  actually bound are stopped. `shutdown_timeout` defaults to 30 seconds.
- A critical server that fails while serving shuts the service down; a
  non-critical one is only reported to `on_serve_error(name, error, critical)`.
- `run(stop_event)` starts, then waits until the service stops, `stop_event` is
  set (recorded as `StopRequestedError`) or a signal from `default_signals()`
  (SIGINT, plus SIGTERM on POSIX) arrives, and then shuts down and waits.
  Signal handlers are only installed on the main thread.

## What the package does not do

It ships no ready-made admin endpoints (health, readiness, runtime, build info,
log level, tunables, tasks), no access-guard or real-IP middleware that applies
`AtomicTokenSet` or `AtomicIPAllowList` to requests, and no command-line
program. The admin application handed to `ServiceSpec.admin` is yours to build,
for example with `PathRouter`, `report_app` and `chain`.

## Running the tests

Install the `test` extra and run pytest from the project root.