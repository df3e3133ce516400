from httpx import AsyncClient

ORIGIN = 'http://localhost:5173'


async def test_gateway_allows_cross_origin_proxied_calls(gateway_client: AsyncClient):
    resp = await gateway_client.get('/api/auth/login', headers={'origin': ORIGIN})

    assert resp.status_code == 200
    assert resp.headers['access-control-allow-origin'] == '*'


async def test_gateway_cors_on_its_own_errors(gateway_client: AsyncClient):
    resp = await gateway_client.get('/unknown', headers={'origin': ORIGIN})

    assert resp.status_code == 404
    assert resp.headers['access-control-allow-origin'] == '*'


async def test_gateway_answers_preflight_without_upstream(gateway_client: AsyncClient, upstream_requests: list):
    resp = await gateway_client.options(
        '/api/auth/login',
        headers={
            'origin': ORIGIN,
            'access-control-request-method': 'POST',
        },
    )

    assert resp.status_code == 200
    assert resp.headers['access-control-allow-origin'] == '*'
    assert 'POST' in resp.headers['access-control-allow-methods']
    assert upstream_requests == []


async def test_core_allows_cross_origin(core_client: AsyncClient):
    resp = await core_client.get('/api/test', headers={'origin': ORIGIN})

    assert resp.headers['access-control-allow-origin'] == '*'
