from contextlib import asynccontextmanager
from http.cookiejar import CookieJar, DefaultCookiePolicy
from typing import Optional

import httpx
from fastapi import FastAPI

from mgm_proxy.app_proxy.route import get_proxy_routes
from mgm_proxy.telemetry import configure_metrics, configure_tracing
from mgm_proxy.vars import ProxySettings


def build_http_client(
    settings: ProxySettings, transport: Optional[httpx.AsyncBaseTransport] = None
) -> httpx.AsyncClient:
    """
    The one client shared by all requests.

    Redirects are handed back to the caller, and the cookie jar refuses every
    cookie so one caller's session never leaks into another caller's request.
    """
    return httpx.AsyncClient(
        timeout=httpx.Timeout(settings.proxy_timeout),
        follow_redirects=False,
        cookies=CookieJar(policy=DefaultCookiePolicy(allowed_domains=[])),
        transport=transport,
    )


def create_app(
    settings: ProxySettings, transport: Optional[httpx.AsyncBaseTransport] = None
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        async with build_http_client(settings, transport) as client:
            app.state.http_client = client
            yield

    # No docs routes: every path other than /health belongs to the upstream
    app = FastAPI(
        title=settings.service_name,
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.settings = settings

    configure_tracing(app, settings)
    # Must run before the catch-all route is added
    configure_metrics(app, settings)
    app.router.routes.extend(get_proxy_routes())
    return app
