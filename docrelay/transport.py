"""httpx client construction shared by parsers and the image rewriter."""

from __future__ import annotations

import httpx

from docrelay.config.models import HTTPConfig
from docrelay.errors import ParserError


def build_timeout(config: HTTPConfig) -> httpx.Timeout:
    return httpx.Timeout(
        connect=config.connect_timeout,
        read=config.read_timeout,
        write=config.write_timeout,
        pool=config.connect_timeout,
    )


def create_http_client(
    config: HTTPConfig,
    *,
    base_url: str = "",
    token: str | None = None,
) -> httpx.AsyncClient:
    """Return an AsyncClient with bounded timeouts and an optional bearer token."""
    headers = {}
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return httpx.AsyncClient(
        base_url=base_url,
        headers=headers,
        timeout=build_timeout(config),
        follow_redirects=True,
    )


async def send(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    error_cls: type[ParserError],
    backend: str,
    job_id: str | None = None,
    **kwargs,
) -> httpx.Response:
    """Issue one request, wrapping transport and HTTP status failures in *error_cls*.

    Transport failures (timeouts, refused connections) are marked retryable.
    """
    try:
        resp = await client.request(method, url, **kwargs)
        resp.raise_for_status()
    except httpx.HTTPStatusError as e:
        status = e.response.status_code
        raise error_cls(
            f"{method} {e.request.url.path} returned HTTP {status}",
            backend=backend,
            job_id=job_id,
            retryable=status in (429, 502, 503, 504),
        ) from e
    except httpx.TransportError as e:
        raise error_cls(
            f"{method} {url} failed: {e.__class__.__name__}",
            backend=backend,
            job_id=job_id,
            retryable=True,
        ) from e
    return resp


def json_body(resp: httpx.Response, *, error_cls: type[ParserError], backend: str, job_id: str | None = None) -> dict:
    try:
        data = resp.json()
    except ValueError as e:
        raise error_cls("response is not valid JSON", backend=backend, job_id=job_id) from e
    if not isinstance(data, dict):
        raise error_cls("response is not a JSON object", backend=backend, job_id=job_id)
    return data
