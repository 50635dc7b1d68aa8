# Reverse proxy for game-server stats APIs that only speak plain HTTP.
#
# Browsers on an https dashboard cannot call http:// origins directly, so
# requests go through this small aiohttp.web app instead:
#
#     /api/<path>                       -> TARGET_ORIGIN/<path>
#     /api?target=<url>[&host=<host>]   -> <url>, only if its host[:port] is in ALLOWED_HOSTS
#
# A port equal to the scheme default is dropped before the allow-list check,
# so http://example.com:80/ matches an "example.com" entry.
#
# It is stateless and shares nothing with the polling engine.

import asyncio
import logging
from urllib.parse import urlsplit

import aiohttp
from aiohttp import web

from oce_status.config import ALLOWED_HOSTS, PROXY_PORT, REQUEST_TIMEOUT_SECONDS, TARGET_ORIGIN

log = logging.getLogger(__name__)

PROXY_USER_AGENT = "OCEStatus-Proxy"

CORS_HEADERS: dict[str, str] = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET,HEAD,POST,OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization",
}

# never copied onto the upstream request; aiohttp sets its own framing
_DROPPED_REQUEST_HEADERS = {"host", "content-length", "transfer-encoding", "connection"}

SESSION_KEY = web.AppKey("client_session", aiohttp.ClientSession)
ORIGIN_KEY = web.AppKey("target_origin", str)
ALLOWED_KEY = web.AppKey("allowed_hosts", frozenset)

_DEFAULT_PORTS = {"http": 80, "https": 443}


def _host_port(target: str) -> str | None:
    """host[:port] of an absolute http(s) URL, or None if it is malformed."""
    try:
        parts = urlsplit(target)
        port = parts.port
    except ValueError:
        return None
    if parts.scheme not in ("http", "https") or not parts.hostname:
        return None
    if port is None or port == _DEFAULT_PORTS[parts.scheme]:
        return parts.hostname
    return f"{parts.hostname}:{port}"


def _json_error(status: int, **body: str) -> web.Response:
    return web.json_response(body, status=status, headers=CORS_HEADERS)


async def proxy_handler(request: web.Request) -> web.StreamResponse:
    if request.method == "OPTIONS":
        return web.Response(status=204, headers=CORS_HEADERS)

    target = request.query.get("target")
    host_override = request.query.get("host")

    if target:
        host_port = _host_port(target)
        if host_port is None:
            return _json_error(400, error="Invalid target URL")
        if host_port not in request.app[ALLOWED_KEY]:
            log.warning("Rejected proxy target %s", host_port)
            return _json_error(403, error="Target not allowed", host=host_port)
        target_url = target
    else:
        path = request.match_info.get("path", "")
        target_url = f"{request.app[ORIGIN_KEY].rstrip('/')}/{path}"
        if request.query_string:
            target_url += f"?{request.query_string}"

    headers = {
        k: v for k, v in request.headers.items()
        if k.lower() not in _DROPPED_REQUEST_HEADERS
    }
    headers["User-Agent"] = PROXY_USER_AGENT
    if host_override:
        headers["Host"] = host_override

    body = None if request.method in ("GET", "HEAD") else await request.read()

    session = request.app[SESSION_KEY]
    try:
        async with session.request(
            request.method,
            target_url,
            headers=headers,
            data=body,
            allow_redirects=True,
        ) as upstream:
            payload = await upstream.read()
            out_headers = dict(CORS_HEADERS)
            out_headers["Content-Type"] = upstream.headers.get("Content-Type", "application/json")
            cache_control = upstream.headers.get("Cache-Control")
            if cache_control:
                out_headers["Cache-Control"] = cache_control
            return web.Response(status=upstream.status, body=payload, headers=out_headers)

    except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
        log.warning("Proxy error for %s: %r", target_url, exc)
        return _json_error(502, error=str(exc) or type(exc).__name__, target=target_url)


async def _client_session(app: web.Application):
    async with aiohttp.ClientSession(
        timeout=aiohttp.ClientTimeout(total=REQUEST_TIMEOUT_SECONDS),
    ) as session:
        app[SESSION_KEY] = session
        yield


def create_proxy_app(
    target_origin: str = TARGET_ORIGIN,
    allowed_hosts: list[str] | None = None,
) -> web.Application:
    app = web.Application()
    app[ORIGIN_KEY] = target_origin
    app[ALLOWED_KEY] = frozenset(ALLOWED_HOSTS if allowed_hosts is None else allowed_hosts)
    app.cleanup_ctx.append(_client_session)
    app.router.add_route("*", "/api", proxy_handler)
    app.router.add_route("*", "/api/{path:.*}", proxy_handler)
    return app


def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
    )
    web.run_app(create_proxy_app(), port=PROXY_PORT)


if __name__ == "__main__":
    main()
