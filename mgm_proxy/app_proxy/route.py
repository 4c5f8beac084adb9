import asyncio
import logging
from typing import AsyncIterator, Optional

import httpx
from fastapi import HTTPException, Request
from fastapi.responses import PlainTextResponse, Response, StreamingResponse
from opentelemetry import trace
from opentelemetry.trace import Span
from starlette.background import BackgroundTask
from starlette.requests import ClientDisconnect
from starlette.routing import Route
from starlette.types import Receive, Scope, Send

from mgm_proxy.client_ip import format_peer_address, resolve_client_ip
from mgm_proxy.utils import RawHeaders, copy_headers
from mgm_proxy.utils.exception_logging import log_exception_with_details
from mgm_proxy.utils.traced_requests import end_span, traced_request
from mgm_proxy.vars import CLIENT_IP_HEADER, HEALTH_PATH, ProxySettings

tracer = trace.get_tracer(__name__)
logger = logging.getLogger("uvicorn.error")

# nginx's status for a caller that went away before the request was complete
CLIENT_CLOSED_REQUEST = 499

# The HTTP client derives Host from the upstream URL
NOT_FORWARDED = ("host", CLIENT_IP_HEADER)


def get_target_url(request: Request, upstream_url: str) -> str:
    """Append the request's raw path and query string to the upstream base."""
    raw_path = request.scope.get("raw_path")
    if raw_path:
        # Some servers leave the query on raw_path
        path = raw_path.split(b"?", 1)[0].decode("latin-1")
    else:
        path = request.url.path

    query_string = request.scope.get("query_string", b"").decode("latin-1")
    if query_string:
        path = f"{path}?{query_string}"

    return f"{upstream_url}{path}"


def get_peer_address(request: Request) -> str:
    if request.client is None:
        return ""
    return format_peer_address(request.client.host, request.client.port)


def prepare_headers(request: Request, client_ip: str) -> RawHeaders:
    """
    Copy every inbound header, then set the client IP header exactly once.
    """
    headers = copy_headers(request.headers.raw, exclude=NOT_FORWARDED)
    headers.append(
        (CLIENT_IP_HEADER.lower().encode("latin-1"), client_ip.encode("latin-1"))
    )
    return headers


def request_body(request: Request) -> Optional[AsyncIterator[bytes]]:
    """Stream the inbound body, or None when the request declares no body."""
    if "content-length" in request.headers or "transfer-encoding" in request.headers:
        return request.stream()
    return None



async def finish_relay(upstream: httpx.Response, span: Span) -> None:
    """Close the upstream response and end the request span."""
    try:
        await upstream.aclose()
    finally:
        end_span(span)


async def relay_body(
    upstream: httpx.Response, deadline: float, target_url: str, span: Span
) -> AsyncIterator[bytes]:
    """
    Yield the upstream body exactly as received, still content-encoded.

    The status line is already out when this runs, so a transport failure or
    the deadline can only end the body early. The upstream response is closed
    and the request span ended on every exit path, including cancellation
    when the caller goes away.
    """
    if upstream.is_stream_consumed:
        # In-memory transports hand back a body httpx has already read;
        # its stream still replays the undecoded bytes
        chunks = aiter(upstream.stream)
    else:
        chunks = upstream.aiter_raw()
    try:
        while True:
            try:
                async with asyncio.timeout_at(deadline):
                    chunk = await anext(chunks)
            except StopAsyncIteration:
                break
            yield chunk
    except (httpx.HTTPError, TimeoutError) as e:
        log_exception_with_details(
            logger,
            f"[Proxy] Relay from {target_url} cut short:",
            e,
            level=logging.WARNING,
        )
        span.set_attribute("proxy.error", type(e).__name__)
    finally:
        await asyncio.shield(finish_relay(upstream, span))


async def forward_to_target(
    request: Request, settings: ProxySettings, client: httpx.AsyncClient
) -> Response:
    """
    Forward one request to the upstream and stream the answer back.

    Method, raw path, query, headers and body go out unchanged apart from the
    client IP header. Whatever the upstream answers, including its own error
    statuses and redirects, is relayed as is. Only a failure to get an answer
    at all becomes a 502.

    The ``proxy_request`` span covers the whole exchange: it is ended once the
    response body has been relayed, not when this returns.
    """
    target_url = get_target_url(request, settings.upstream_url)
    client_ip = resolve_client_ip(request.headers, get_peer_address(request))

    with traced_request(
        tracer,
        "proxy_request",
        request.method,
        target_url,
        f"Proxying {request.method} {request.url.path} -> {target_url}",
        extra_attrs={"proxy.client_ip": client_ip},
    ) as span:
        try:
            outbound = client.build_request(
                request.method,
                target_url,
                headers=prepare_headers(request, client_ip),
                content=request_body(request),
            )
        except (httpx.InvalidURL, ValueError, TypeError) as e:
            log_exception_with_details(
                logger, f"[Proxy] Failed to create request for {target_url}:", e
            )
            span.set_attribute("proxy.error", "invalid_request")
            raise HTTPException(status_code=500, detail="Failed to create request")

        # One budget for connect, response headers and the whole body
        deadline = asyncio.get_running_loop().time() + settings.proxy_timeout
        try:
            async with asyncio.timeout_at(deadline):
                upstream = await client.send(outbound, stream=True)
        except ClientDisconnect:
            logger.info(f"[Proxy] Client went away while uploading to {target_url}")
            span.set_attribute("proxy.error", "client_disconnect")
            end_span(span)
            return Response(status_code=CLIENT_CLOSED_REQUEST)
        except (httpx.HTTPError, TimeoutError) as e:
            log_exception_with_details(
                logger, f"[Proxy] Failed to reach upstream {target_url}:", e
            )
            span.set_attribute("proxy.error", type(e).__name__)
            raise HTTPException(status_code=502, detail="Failed to reach upstream")

        span.set_attribute("proxy.status_code", upstream.status_code)

        response = StreamingResponse(
            relay_body(upstream, deadline, target_url, span),
            status_code=upstream.status_code,
            background=BackgroundTask(finish_relay, upstream, span),
        )
        # Assigned directly: a headers mapping would collapse repeated keys
        response.raw_headers = copy_headers(upstream.headers.raw)
        return response


# Callable classes, so Starlette runs them as raw ASGI apps with no method check


class _HealthApp:
    """Liveness check for every method; the upstream is never contacted."""

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        await PlainTextResponse("ok")(scope, receive, send)


class _ProxyApp:
    """Forwards any other request, extension methods like PROPFIND included."""

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        request = Request(scope, receive, send)
        response = await forward_to_target(
            request, request.app.state.settings, request.app.state.http_client
        )
        await response(scope, receive, send)


_health_app = _HealthApp()
_proxy_app = _ProxyApp()


def get_proxy_routes() -> list[Route]:
    """Return the health route and the catch-all proxy route, in match order.

    They go on the FastAPI app's route list directly, after any other route.
    """
    return [
        Route(HEALTH_PATH, endpoint=_health_app, include_in_schema=False),
        Route("/{path:path}", endpoint=_proxy_app, include_in_schema=False),
    ]
