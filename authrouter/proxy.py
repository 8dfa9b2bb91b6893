# authrouter/proxy.py
import logging

import httpx
from fastapi import Request
from fastapi.responses import Response, StreamingResponse
from starlette.background import BackgroundTask

from config import settings

logger = logging.getLogger(__name__)

# RFC 9110 hop-by-hop headers, never forwarded in either direction.
_HOP_BY_HOP = {
    "connection", "keep-alive", "proxy-authenticate", "proxy-authorization",
    "te", "trailers", "transfer-encoding", "upgrade",
}
_STRIP_REQUEST_HEADERS = _HOP_BY_HOP | {"host", "content-length"}
# Bodies are streamed decoded, so the upstream encoding and length no longer apply.
_STRIP_RESPONSE_HEADERS = _HOP_BY_HOP | {"content-encoding", "content-length"}


def upstream_url(target_uri: str) -> str:
    if not target_uri.startswith("/"):
        target_uri = "/" + target_uri
    return settings.target_base + target_uri


async def forward(request: Request, target_uri: str, client: httpx.AsyncClient) -> Response:
    """Send the request to the upstream at target_uri and stream the answer back."""
    upstream = upstream_url(target_uri)
    headers = {
        k: v
        for k, v in request.headers.items()
        if k.lower() not in _STRIP_REQUEST_HEADERS
    }
    body = await request.body()

    upstream_req = client.build_request(
        method=request.method,
        url=upstream,
        headers=headers,
        content=body,
    )
    try:
        upstream_resp = await client.send(upstream_req, stream=True)
    except httpx.TransportError as exc:
        logger.error("Upstream unreachable for %s %s: %s", request.method, target_uri, exc)
        return Response(status_code=502)

    if upstream_resp.status_code >= 500:
        logger.error(
            "Upstream error %s for %s %s",
            upstream_resp.status_code, request.method, target_uri,
        )

    response = StreamingResponse(
        upstream_resp.aiter_bytes(),
        status_code=upstream_resp.status_code,
        background=BackgroundTask(upstream_resp.aclose),
    )
    # Raw header pairs keep repeated headers such as Set-Cookie intact.
    response.raw_headers.extend(
        (k.lower(), v)
        for k, v in upstream_resp.headers.raw
        if k.decode("latin-1").lower() not in _STRIP_RESPONSE_HEADERS
    )
    return response
