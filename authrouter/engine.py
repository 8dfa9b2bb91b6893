# authrouter/engine.py
"""Per-request authorization and rewrite decisions.

Two stages run in order. ``gate`` rejects requests without a known user.
``rewrite`` then decides whether the request target has to change before it
is forwarded. Both are pure: they read the policy and the request URI and
never touch the network.
"""
import logging
from dataclasses import dataclass
from urllib.parse import parse_qs, urlencode

from policy import PolicyModel, SitemapPolicy, UserPolicy

logger = logging.getLogger(__name__)

USER_HEADER = "X-Forwarded-Username"
MISSING_USER_HEADER = f"the header '{USER_HEADER}' is either not set or empty"

BASICUI_PREFIX = "/basicui/app"
REST_PREFIX = "/rest"
SITEMAPS_PREFIX = "/rest/sitemaps/"
SITEMAP_EVENTS_PREFIX = "/rest/sitemaps/events"
DEFAULT_SITEMAP_PREFIX = "/rest/sitemaps/_default"

# Index of the sitemap id in "/rest/sitemaps/<id>/...".split("/")
_SITEMAP_SEGMENT = 3


@dataclass(frozen=True)
class Decision:
    allowed: bool
    status_code: int = 200
    message: str = ""
    rewritten_uri: str | None = None

    @classmethod
    def allow(cls, rewritten_uri: str | None = None) -> "Decision":
        return cls(allowed=True, rewritten_uri=rewritten_uri)

    @classmethod
    def deny(cls, status_code: int, message: str = "") -> "Decision":
        return cls(allowed=False, status_code=status_code, message=message)

    @property
    def rewritten(self) -> bool:
        return self.rewritten_uri is not None


def _split_uri(request_uri: str) -> tuple[str, str]:
    path, _, query = request_uri.partition("?")
    return path, query


def _join_uri(path: str, query: str) -> str:
    return f"{path}?{query}" if query else path


def gate(username: str | None, policy: PolicyModel) -> Decision | UserPolicy:
    """Coarse check: returns a final Decision, or the caller's UserPolicy to continue with."""
    if policy.passthrough_enabled:
        return Decision.allow()
    if not username:
        return Decision.deny(400, MISSING_USER_HEADER)
    user = policy.lookup(username)
    if user is None:
        logger.debug("User '%s' not found in config", username)
        return Decision.deny(403)
    return user


def _rewrite_basicui(request_uri: str, sitemaps: SitemapPolicy) -> str | None:
    path, query = _split_uri(request_uri)
    params = parse_qs(query, keep_blank_values=True)
    requested = params.get("sitemap", [""])[0]

    if requested:
        if requested == sitemaps.default_sitemap or sitemaps.allows_all:
            return None
        if requested in sitemaps.allowed_sitemaps:
            return None
        logger.debug(
            "Denying access to sitemap %s, falling back to default sitemap %s",
            requested, sitemaps.default_sitemap,
        )
    else:
        logger.debug("No sitemap requested, using default sitemap %s", sitemaps.default_sitemap)

    params["sitemap"] = [sitemaps.default_sitemap]
    return _join_uri(path, urlencode(sorted(params.items()), doseq=True))


def _rewrite_rest(request_uri: str, sitemaps: SitemapPolicy) -> str | None:
    # The event stream keeps the UI live; it is never touched.
    if request_uri.startswith(SITEMAP_EVENTS_PREFIX):
        return None

    path, query = _split_uri(request_uri)
    if request_uri.startswith(DEFAULT_SITEMAP_PREFIX):
        return _join_uri(SITEMAPS_PREFIX + sitemaps.default_sitemap, query)

    if not request_uri.startswith(SITEMAPS_PREFIX):
        return None
    if sitemaps.allows_all:
        return None
    # Substring match against the whole URI: "adm" also admits "/rest/sitemaps/admin".
    if any(allowed in request_uri for allowed in sitemaps.allowed_sitemaps):
        return None

    segments = path.split("/")
    if segments[_SITEMAP_SEGMENT] == sitemaps.default_sitemap:
        return None
    logger.debug(
        "Denying REST access to %s, falling back to default sitemap %s",
        request_uri, sitemaps.default_sitemap,
    )
    segments[_SITEMAP_SEGMENT] = sitemaps.default_sitemap
    return _join_uri("/".join(segments), query)


def rewrite(request_uri: str, user: UserPolicy) -> str | None:
    """Return the URI the request must be sent to instead, or None to leave it alone."""
    # Root requests go to the entrypoint and nothing else is checked.
    if request_uri in ("", "/"):
        return user.entrypoint

    for fragment, rule in user.path_rules.items():
        if fragment in request_uri and not rule.allowed:
            logger.debug("Denying access to %s (matched %s)", request_uri, fragment)
            return user.entrypoint

    if request_uri.startswith(BASICUI_PREFIX):
        return _rewrite_basicui(request_uri, user.sitemap_policy)
    if request_uri.startswith(REST_PREFIX):
        return _rewrite_rest(request_uri, user.sitemap_policy)
    return None


def decide(username: str | None, request_uri: str, policy: PolicyModel) -> Decision:
    outcome = gate(username, policy)
    if isinstance(outcome, Decision):
        if outcome.allowed:
            logger.debug("Passthrough request served: %s", request_uri)
        return outcome

    target = rewrite(request_uri, outcome)
    if target is None or target == request_uri:
        return Decision.allow()
    logger.debug("Rewriting %s to %s for user '%s'", request_uri, target, username)
    return Decision.allow(rewritten_uri=target)
