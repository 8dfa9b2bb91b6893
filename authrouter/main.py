# authrouter/main.py
import logging
import uuid
from contextlib import asynccontextmanager

import httpx
import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import Response

import engine
import proxy
from config import settings
from logs import configure_logging
from policy import PolicyError, load_policy
from responses import deny_response, redirect_response

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.log_level, settings.log_format)
    try:
        settings.validate_startup()
        # Loaded exactly once; every request reads this same object.
        app.state.policy = load_policy(settings.config_file)
    except (ValueError, PolicyError) as exc:
        logger.error("invalid options, exiting: %s", exc)
        raise

    # Reads stay unbounded so /rest/sitemaps/events can stream indefinitely.
    app.state.http_client = httpx.AsyncClient(
        timeout=httpx.Timeout(settings.proxy_timeout, read=None),
        follow_redirects=False,
    )
    logger.info(
        "Serving on %s:%s, forwarding to %s (passthrough=%s, users=%d)",
        settings.host, settings.port, settings.target_base,
        app.state.policy.passthrough_enabled, len(app.state.policy.users),
    )

    yield

    await app.state.http_client.aclose()


app = FastAPI(title="openHAB Auth Router", version="1.0.0", lifespan=lifespan)


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    """Propagate or generate an X-Request-ID header for end-to-end tracing."""
    req_id = request.headers.get("x-request-id") or str(uuid.uuid4())
    request.state.request_id = req_id
    response = await call_next(request)
    response.headers["x-request-id"] = req_id
    return response


def request_uri(request: Request) -> str:
    """Escaped path plus raw query string, as the client sent it."""
    raw_path = request.scope.get("raw_path")
    if raw_path:
        path = raw_path.split(b"?", 1)[0].decode("latin-1")
    else:
        path = request.url.path
    query = request.url.query
    return f"{path}?{query}" if query else path


@app.get("/liveness")
async def liveness() -> Response:
    logger.debug("liveness probe")
    return Response(status_code=200)


@app.get("/readiness")
async def readiness(request: Request) -> Response:
    url = settings.target_base + settings.readiness_path
    client: httpx.AsyncClient = request.app.state.http_client
    try:
        resp = await client.get(url, timeout=settings.readiness_timeout)
    except httpx.HTTPError as exc:
        logger.error("readiness: failed to reach target %s: %s", url, exc)
        return Response(status_code=503)
    if resp.status_code != 200:
        logger.error("readiness: target %s answered %s", url, resp.status_code)
        return Response(status_code=503)
    logger.debug("readiness probe ok")
    return Response(status_code=200)


@app.api_route(
    "/{path:path}",
    methods=["GET", "HEAD", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
)
async def route(path: str, request: Request) -> Response:
    uri = request_uri(request)
    username = request.headers.get(engine.USER_HEADER)
    decision = engine.decide(username, uri, request.app.state.policy)

    if not decision.allowed:
        return deny_response(decision, request.headers.get("content-type"))

    target = uri
    if decision.rewritten:
        if settings.redirect_rewrites:
            return redirect_response(decision.rewritten_uri)
        target = decision.rewritten_uri
    return await proxy.forward(request, target, request.app.state.http_client)


def run() -> None:
    # log_config=None leaves our handlers in charge of uvicorn's loggers too.
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    run()
