from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient

from conftest import GOOD_OUTPUT, ScriptedProvider, exhausted
from fortuny.core.config import settings
from fortuny.domains.fortune.exceptions import StoreUnavailable
from fortuny.domains.fortune.rate_limiter import DailyRateLimiter
from fortuny.domains.fortune.router import get_fortune_gate
from fortuny.domains.fortune.utils import FALLBACK_EN, FALLBACK_TR
from fortuny.main import app


def parse_ts(value):
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


@pytest.fixture
def install_gate(make_gate):
    def _install(provider, **kwargs):
        gate = make_gate(provider, **kwargs)
        app.dependency_overrides[get_fortune_gate] = lambda: gate
        return gate
    yield _install
    app.dependency_overrides.clear()


@pytest.fixture
def client():
    return TestClient(app)


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    body = r.json()
    assert body["ok"] is True
    assert parse_ts(body["time"])


def test_peek_before_crack_is_no_content_and_mints_identity(client, install_gate):
    install_gate(ScriptedProvider())

    r = client.get("/api/fortune")

    assert r.status_code == 204
    assert r.content == b""
    assert settings.DEVICE_COOKIE_NAME in r.cookies


def test_first_crack_returns_full_payload(client, install_gate):
    install_gate(ScriptedProvider(GOOD_OUTPUT))

    r = client.post("/api/fortune")

    assert r.status_code == 200
    body = r.json()
    assert body["ok"] is True
    assert set(body["fortune"]) == {"en", "tr"}
    assert body["source"] == "generated"
    assert body["tries"] == 0
    assert "note" not in body
    assert parse_ts(body["refreshAt"]) - parse_ts(body["createdAt"]) == timedelta(hours=24)
    assert parse_ts(body["serverNow"]) == parse_ts(body["createdAt"])


def test_second_crack_same_device_is_identical(client, install_gate):
    provider = ScriptedProvider(GOOD_OUTPUT, '{"en":"other","tr":"başka"}')
    install_gate(provider)

    first = client.post("/api/fortune").json()
    second = client.post("/api/fortune").json()
    peek = client.get("/api/fortune").json()

    assert second["fortune"] == first["fortune"]
    assert peek["fortune"] == first["fortune"]
    assert len(provider.calls) == 1


def test_new_device_without_cookie_gets_new_fortune(install_gate):
    provider = ScriptedProvider(GOOD_OUTPUT)
    install_gate(provider)

    TestClient(app).post("/api/fortune")
    TestClient(app).post("/api/fortune")

    assert len(provider.calls) == 2


def test_failing_provider_returns_tagged_fallback(client, install_gate):
    install_gate(ScriptedProvider(exhausted()))

    body = client.post("/api/fortune").json()

    assert body["ok"] is True
    assert body["source"] == "fallback"
    assert body["tries"] == 1
    assert body["fortune"] == {"en": FALLBACK_EN, "tr": FALLBACK_TR}


def test_tries_sequence_over_http(client, install_gate):
    install_gate(ScriptedProvider(exhausted(), exhausted(), GOOD_OUTPUT))

    tries = [client.post("/api/fortune").json()["tries"] for _ in range(3)]

    assert tries == [1, 2, 0]


def test_force_query_ignored_by_default(client, install_gate):
    provider = ScriptedProvider(GOOD_OUTPUT)
    install_gate(provider)

    client.post("/api/fortune")
    client.post("/api/fortune", params={"force": "1"})

    assert len(provider.calls) == 1


def test_force_query_honoured_when_enabled(client, install_gate):
    provider = ScriptedProvider(GOOD_OUTPUT)
    install_gate(provider, allow_force=True)

    client.post("/api/fortune")
    client.post("/api/fortune", params={"force": "1"})

    assert len(provider.calls) == 2


def test_rate_limited_response_shape(install_gate):
    install_gate(ScriptedProvider(GOOD_OUTPUT), rate_limiter=DailyRateLimiter(limit=1, enabled=True))

    assert TestClient(app).post("/api/fortune").status_code == 200
    r = TestClient(app).post("/api/fortune")

    assert r.status_code == 429
    assert r.json()["ok"] is False
    assert r.json()["error"] == "rate_limited"
    assert r.json()["message"]


def test_catastrophic_failure_without_cache_is_rate_limited(client, install_gate, repo):
    async def broken_write(device_id, record):
        raise StoreUnavailable("nope")

    repo.write = broken_write
    install_gate(ScriptedProvider(GOOD_OUTPUT))

    r = client.post("/api/fortune")

    assert r.status_code == 429
    assert r.json() == {
        "ok": False,
        "error": "rate_limited",
        "message": "Too many requests today. Try again later.",
    }


def test_store_down_with_nothing_known_is_503(client, install_gate, repo):
    async def broken_read(device_id):
        raise StoreUnavailable("nope")

    repo.read = broken_read
    install_gate(ScriptedProvider(GOOD_OUTPUT))

    r = client.post("/api/fortune")

    assert r.status_code == 503
    assert r.json()["error"] == "store_unavailable"


def test_cached_due_error_note_is_exposed(client, install_gate, repo):
    install_gate(ScriptedProvider(exhausted()))
    client.post("/api/fortune")

    async def broken_write(device_id, record):
        raise StoreUnavailable("nope")

    repo.write = broken_write
    body = client.post("/api/fortune").json()

    assert body["note"] == "returned_cached_due_error"
    assert body["tries"] == 1


def test_diag_requires_admin(client, install_gate):
    install_gate(ScriptedProvider())
    r = client.get("/api/diag", auth=("fortuny_admin", "whatever"))
    assert r.status_code == 401
    assert r.json()["ok"] is False


def test_diag_with_admin_credentials(client, install_gate, monkeypatch):
    monkeypatch.setattr(settings, "ADMIN_PASSWORD", "s3cret")
    install_gate(ScriptedProvider())

    r = client.get("/api/diag", auth=(settings.ADMIN_USER, "s3cret"))

    assert r.status_code == 200
    assert r.json() == {"ok": True, "modelPrimary": "m1", "modelFallback": "m2", "raw": '{"ok":true}'}


def test_diag_reports_exhausted_chain(client, install_gate, monkeypatch):
    monkeypatch.setattr(settings, "ADMIN_PASSWORD", "s3cret")

    class DeadProvider(ScriptedProvider):
        async def probe(self):
            raise exhausted()

    install_gate(DeadProvider())
    r = client.get("/api/diag", auth=(settings.ADMIN_USER, "s3cret"))

    assert r.status_code == 500
    assert r.json()["ok"] is False


def test_docs_are_guarded(client):
    assert client.get("/docs").status_code == 401
    assert client.get("/openapi.json").status_code == 401


def test_peek_with_store_down_and_nothing_known_is_503(client, install_gate, repo):
    async def broken_read(device_id):
        raise StoreUnavailable("nope")

    repo.read = broken_read
    install_gate(ScriptedProvider(GOOD_OUTPUT))

    r = client.get("/api/fortune")

    assert r.status_code == 503
    assert r.json()["error"] == "store_unavailable"


def test_spoofed_forwarded_for_shares_one_budget(client, install_gate):
    provider = ScriptedProvider(GOOD_OUTPUT)
    install_gate(provider, rate_limiter=DailyRateLimiter(limit=1))

    codes = []
    for i in range(5):
        client.cookies.clear()
        r = client.post("/api/fortune", headers={"X-Forwarded-For": f"10.0.0.{i}"})
        codes.append(r.status_code)

    assert codes == [200, 429, 429, 429, 429]
    assert len(provider.calls) == 1


def test_unknown_route_uses_error_shape(client):
    r = client.get("/api/nope")

    assert r.status_code == 404
    assert r.json() == {"ok": False, "error": "http_error", "message": "Not Found"}


def test_wrong_method_uses_error_shape(client):
    r = client.delete("/api/fortune")

    assert r.status_code == 405
    assert r.json()["ok"] is False
    assert r.json()["error"] == "http_error"
