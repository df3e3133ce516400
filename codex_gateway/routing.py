from typing import NamedTuple
from .config import RouteRule


class RouteMatch(NamedTuple):
    rule: RouteRule
    upstream: str
    path: str   # outbound path, after rewrite


def prefix_matches(prefix: str, path: str) -> bool:
    """Prefixes match whole path segments: '/api/core' takes '/api/core/x', not '/api/coreX'."""
    base = prefix.rstrip('/')
    return path == prefix or path == base or path.startswith(base + '/')


class Router:
    """
    Prefix router. Rules are checked in declaration order; first match wins.

    Paths are matched as sent on the wire (still percent-encoded), so an
    encoded '/' or '?' is never mistaken for a separator.
    """

    def __init__(self, rules: tuple[RouteRule, ...] | list[RouteRule]):
        self.rules = tuple(rules)

    def match(self, path: str) -> RouteMatch | None:
        for rule in self.rules:
            if prefix_matches(rule.prefix, path):
                if rule.rewrite is None:
                    outbound = path
                else:
                    outbound = rule.rewrite + path[len(rule.prefix):]
                return RouteMatch(rule, rule.upstream, outbound or '/')
        return None

    def __repr__(self) -> str:
        return f"Router({list(self.rules)!r})"
