import pytest
from asyncpg.exceptions import UndefinedTableError
from fastapi.testclient import TestClient

from archive import repository, service
from conftest import make_rows
from core.context import ActorContext
from core.errors import FeatureDisabled
from main import app


@pytest.fixture
def client():
    # No context manager: the lifespan (real pool) is not started.
    return TestClient(app)


def test_listing_is_a_configuration_error_when_archive_disabled(client, monkeypatch, fake_session):
    monkeypatch.delenv("ARCHIVE_ENABLED", raising=False)

    resp = client.get("/versions")

    assert resp.status_code == 501
    assert resp.json()["feature"] == "archive"
    assert "not configured" in resp.json()["detail"]
    assert fake_session.queries == []


def test_availability_check_raises_feature_disabled(monkeypatch):
    monkeypatch.setenv("ARCHIVE_ENABLED", "false")

    with pytest.raises(FeatureDisabled) as excinfo:
        service.ensure_available()

    assert excinfo.value.feature == "archive"


def test_availability_is_checked_once_per_request(client, monkeypatch, fake_session):
    monkeypatch.setenv("ARCHIVE_ENABLED", "true")
    calls = []
    check = service.ensure_available
    monkeypatch.setattr(service, "ensure_available", lambda: calls.append(1) or check())

    assert client.get("/versions").status_code == 200
    assert calls == [1]


def test_ip_filter_compares_host_without_mask():
    plan = repository.VERSIONS.plan({"updater_ip_addr": "127.0.0.1"}, ActorContext())

    assert plan.where_sql() == " WHERE (host(updater_ip_addr) = $1)"
    assert plan.args == ["127.0.0.1"]


def test_listing_paginates_with_overfetch(client, monkeypatch, fake_session):
    monkeypatch.setenv("ARCHIVE_ENABLED", "true")
    fake_session.rows = make_rows(5, post_id=1)

    resp = client.get("/versions", params={"limit": "2", "page": "2"})

    assert resp.status_code == 200
    body = resp.json()
    assert [row["id"] for row in body["items"]] == [3, 4]
    assert body["current_page"] == 2
    assert body["limit"] == 2
    assert body["has_next"] is True
    assert body["total_count"] is None
    sql, _ = fake_session.page_queries()[0]
    assert "FROM post_versions" in sql
    assert "ORDER BY id DESC" in sql


def test_listing_with_search_counts_pages(client, monkeypatch, fake_session):
    monkeypatch.setenv("ARCHIVE_ENABLED", "1")
    fake_session.rows = make_rows(3)

    resp = client.get("/versions", params={"search[post_id]": "7", "search[rating][]": ["s", "q"]})

    assert resp.status_code == 200
    assert resp.json()["total_count"] == 3
    sql, args = fake_session.count_queries()[0]
    assert "(post_id = $1)" in sql
    assert "(rating = ANY($2))" in sql
    assert args == (7, ["s", "q"])


def test_actor_headers_set_session_timeout(client, monkeypatch, fake_session):
    monkeypatch.setenv("ARCHIVE_ENABLED", "true")
    fake_session.rows = make_rows(1)

    resp = client.get("/versions", headers={"X-Actor-Id": "12", "X-Statement-Timeout": "750"})

    assert resp.status_code == 200
    # Session starts at the actor's timeout; each guarded query restores to it.
    assert fake_session.timeout_history == ["750", "750", "750"]


def test_shape_mismatch_is_unprocessable(client, monkeypatch, fake_session):
    monkeypatch.setenv("ARCHIVE_ENABLED", "true")

    resp = client.get("/versions", params={"search[updater_ip_addr][]": "1.2.3.4"})

    assert resp.status_code == 422
    assert resp.json()["param"] == "updater_ip_addr"


def test_unexpected_database_error_is_a_server_error(client, monkeypatch, fake_session):
    monkeypatch.setenv("ARCHIVE_ENABLED", "true")
    fake_session.fail_on["post_versions"] = UndefinedTableError('relation "post_versions" does not exist')

    resp = client.get("/versions")

    assert resp.status_code == 500
    assert resp.json() == {"detail": "Database error."}


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}
