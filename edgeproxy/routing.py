from dataclasses import dataclass
from .config import PROXY_MOUNT, RewriteRule, Settings, WILDCARD

# Segment-based prefix matching, first matching rule wins


@dataclass(frozen=True)
class RouteMatch:
    rule: RewriteRule
    remainder: str     # captured segments, verbatim and possibly empty
    path: str          # rewritten backend path


@dataclass(frozen=True)
class NoMatch:
    path: str


def rewrite_path(rule: RewriteRule, remainder: str) -> str:
    destination = rule.destination
    if destination.endswith("/" + WILDCARD):
        base = destination[:-2]
        destination = f"{base}/{remainder}" if remainder else base
    return destination or "/"


def match_rule(rule: RewriteRule, path: str) -> RouteMatch | NoMatch:
    literal = [s for s in rule.source_segments if s != WILDCARD]
    prefix = "/" + "/".join(literal)

    if not rule.has_wildcard:
        if path != prefix:
            return NoMatch(path)
        return RouteMatch(rule, "", rewrite_path(rule, ""))

    stem = prefix.rstrip("/")
    if path == prefix:
        remainder = ""
    elif path.startswith(stem + "/"):
        remainder = path[len(stem) + 1:]
    else:
        return NoMatch(path)
    return RouteMatch(rule, remainder, rewrite_path(rule, remainder))


def find_route(path: str, settings: Settings) -> RouteMatch | NoMatch:
    """Resolve ``path`` against the rewrite table, then the catch-all rule."""
    for rule in settings.rules:
        result = match_rule(rule, path)
        if isinstance(result, RouteMatch):
            return result
    if settings.fallback is not None:
        return match_rule(settings.fallback, path)
    return NoMatch(path)


# Generic handler: everything under the mount goes to the origin root
MOUNT_RULE = RewriteRule(source=PROXY_MOUNT + "/" + WILDCARD, destination="/" + WILDCARD)


def build_url(origin: str, path: str, query: str = "") -> str:
    """Origin + rewritten path + the raw query string, untouched."""
    url = origin.rstrip("/") + path
    if query:
        url += "?" + query
    return url
