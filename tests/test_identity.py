from fastapi import Depends, FastAPI, Request
from fastapi.testclient import TestClient

from fortuny.core.config import settings
from fortuny.domains.identity.device_handler import DeviceIdentity, client_key, resolve_device

app = FastAPI()


@app.get("/whoami")
def whoami(request: Request, identity: DeviceIdentity = Depends(resolve_device)):
    return {"device_id": identity.device_id, "is_new": identity.is_new, "client": client_key(request)}


def test_new_device_gets_long_lived_cookie():
    client = TestClient(app)

    r = client.get("/whoami")

    assert r.json()["is_new"] is True
    set_cookie = r.headers["set-cookie"]
    assert f"{settings.DEVICE_COOKIE_NAME}={r.json()['device_id']}" in set_cookie
    assert f"Max-Age={400 * 24 * 60 * 60}" in set_cookie
    assert "SameSite=lax" in set_cookie
    assert "HttpOnly" not in set_cookie


def test_known_device_is_returned_unchanged():
    client = TestClient(app)
    first = client.get("/whoami").json()

    second = client.get("/whoami")

    assert second.json() == {**first, "is_new": False}
    assert "set-cookie" not in second.headers


def test_each_anonymous_request_mints_distinct_ids():
    a = TestClient(app).get("/whoami").json()["device_id"]
    b = TestClient(app).get("/whoami").json()["device_id"]
    assert a != b


def test_client_key_ignores_forwarded_for_header():
    client = TestClient(app)
    r = client.get("/whoami", headers={"X-Forwarded-For": "203.0.113.7, 10.0.0.1"})
    assert r.json()["client"] == "testclient"

    assert client.get("/whoami").json()["client"] == "testclient"


def test_trusted_proxy_forwarded_for_becomes_client_key():
    from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

    client = TestClient(ProxyHeadersMiddleware(app, trusted_hosts="*"))
    r = client.get("/whoami", headers={"X-Forwarded-For": "203.0.113.7"})
    assert r.json()["client"] == "203.0.113.7"
