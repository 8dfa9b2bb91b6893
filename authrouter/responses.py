# authrouter/responses.py
import logging

from fastapi.responses import JSONResponse, RedirectResponse, Response

from engine import Decision

logger = logging.getLogger(__name__)


def deny_response(decision: Decision, content_type: str | None) -> Response:
    """Render a denial in the flavour the client asked for via Content-Type."""
    message = decision.message
    if not message:
        return Response(status_code=decision.status_code)

    logger.error(message)
    content_type = content_type or ""

    if "text/html" in content_type:
        return Response(
            content=message,
            status_code=decision.status_code,
            media_type="text/html; charset=utf-8",
        )
    if "application/json" in content_type:
        return JSONResponse(
            content={"error": message},
            status_code=decision.status_code,
            media_type="application/json; charset=utf-8",
        )
    return Response(
        content=message,
        status_code=decision.status_code,
        media_type="text/plain; charset=utf-8",
    )


def redirect_response(uri: str) -> Response:
    return RedirectResponse(url=uri, status_code=308)
