import re

import httpx
from fastapi import HTTPException, Request, Response

from .logging import get_logger
from .middleware import REQUEST_ID_HEADER
from .routing import RouteMatch

log = get_logger(__name__)

HOP_BY_HOP_HEADERS = frozenset({
    b'connection',
    b'keep-alive',
    b'proxy-authenticate',
    b'proxy-authorization',
    b'te',
    b'trailers',
    b'transfer-encoding',
    b'upgrade',
    b'host',
})

# httpx hands back a decoded body, so framing headers from upstream no longer apply.
# date and server are set by our own HTTP server.
STRIPPED_RESPONSE_HEADERS = frozenset({
    'content-encoding',
    'content-length',
    'transfer-encoding',
    'connection',
    'date',
    'server',
})

_UNSAFE_BYTES = re.compile(rb'[^\x21-\x7e]')


def raw_request_path(request: Request) -> str:
    """The request path exactly as the client sent it, percent-escapes intact."""
    raw = request.scope.get('raw_path')
    if not raw:
        return request.url.path
    # some servers leave the query on raw_path; a literal '?' can only start it
    return raw.split(b'?', 1)[0].decode('latin-1')


def upstream_url(match: RouteMatch, query_string: bytes) -> httpx.URL:
    """
    Join the upstream base with the outbound path and the untouched query.

    Built from raw bytes so nothing is decoded and re-encoded on the way.
    """
    base = httpx.URL(match.upstream)
    base_path = base.raw_path.split(b'?', 1)[0].rstrip(b'/')
    raw = base_path + match.path.encode('latin-1')
    if query_string:
        raw += b'?' + query_string
    raw = _UNSAFE_BYTES.sub(lambda m: b'%%%02X' % m.group()[0], raw)
    return base.copy_with(raw_path=raw)


def outbound_headers(request: Request) -> list[tuple[bytes, bytes]]:
    """Client headers minus hop-by-hop ones, plus X-Forwarded-* and the request id."""
    headers = [
        (k, v) for k, v in request.headers.raw if k.lower() not in HOP_BY_HOP_HEADERS
    ]
    forwarded = {
        b'x-forwarded-host': request.headers.get('host', ''),
        b'x-forwarded-proto': request.url.scheme,
    }
    if request.client:
        prior = request.headers.get('x-forwarded-for')
        forwarded[b'x-forwarded-for'] = f"{prior}, {request.client.host}" if prior else request.client.host

    request_id = getattr(request.state, 'request_id', None)
    if request_id and REQUEST_ID_HEADER not in request.headers:
        forwarded[REQUEST_ID_HEADER.encode()] = request_id

    headers = [(k, v) for k, v in headers if k.lower() not in forwarded]
    headers.extend((k, v.encode('latin-1')) for k, v in forwarded.items() if v)
    return headers


async def forward_request(request: Request, match: RouteMatch, client: httpx.AsyncClient) -> Response:
    """
    Relay `request` to the matched upstream and relay the answer back.

    Upstream error statuses pass through untouched; only transport failures
    become a 502.
    """
    url = upstream_url(match, request.scope.get('query_string', b''))
    body = await request.body()

    log.debug("proxy_request",
              prefix=match.rule.prefix,
              method=request.method,
              path=raw_request_path(request),
              target=str(url))

    # ---- Proxy Request ----
    try:
        resp = await client.request(
            request.method,
            url,
            headers=outbound_headers(request),
            content=body,
        )
    except httpx.HTTPError as exc:
        log.warning("upstream_unreachable", target=str(url), error=str(exc) or type(exc).__name__)
        raise HTTPException(status_code=502, detail=str(exc) or type(exc).__name__)

    log.debug("proxy_response", target=str(url), status=resp.status_code)

    response = Response(content=resp.content, status_code=resp.status_code)
    for k, v in resp.headers.multi_items():
        if k.lower() not in STRIPPED_RESPONSE_HEADERS:
            response.headers.append(k, v)

    # a HEAD answer has no body to measure; keep what the upstream declared
    if request.method == 'HEAD' and 'content-length' in resp.headers:
        response.headers['content-length'] = resp.headers['content-length']
    return response
