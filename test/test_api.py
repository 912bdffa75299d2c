# test_api.py
import pytest
from fastapi.testclient import TestClient

from libs.contracts.article import Article
from libs.storage.config import PipelineSettings
from apps.api.main import create_app


@pytest.fixture
def client(pipeline):
    settings = PipelineSettings(STORE_URL="memory://", BROKER_URL="memory://", READY_TIMEOUT_SEC=2)
    app = create_app(settings, pipeline=pipeline)
    with TestClient(app) as c:
        yield c


def test_healthz(client):
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_readyz_reports_both_subsystems(client):
    response = client.get("/readyz")
    assert response.status_code == 200
    assert response.json() == {"store": True, "broker": True, "ok": True}


def test_submit_article_is_queued_not_processed(client, pipeline):
    response = client.post("/articles", json={"user_id": "u1", "url": "http://x"})

    assert response.status_code == 202
    assert response.json()["job_id"]
    # the API never consumes: the job is still pending
    assert not pipeline.is_consuming
    purged = client.post("/_dev/purge/scrape")
    assert purged.json() == {"queue": "jobs.scrape", "purged": 1}


def test_submit_upvote(client):
    response = client.post("/articles/a1/upvotes", json={"user_id": "u1"})
    assert response.status_code == 202
    assert response.json() == {"article_id": "a1"}
    assert client.post("/_dev/purge/vote").json()["purged"] == 1


def test_submit_article_validates_body(client):
    response = client.post("/articles", json={"user_id": "u1"})
    assert response.status_code == 422


def test_article_reads(client, repo):
    repo._by_id["a1"] = Article(id="a1", url="http://x", title="X", submitted_by="u1", voters={"u2"})

    one = client.get("/articles/a1").json()
    assert one["title"] == "X" and one["score"] == 1
    assert "voters" not in one

    rows = client.get("/articles", params={"user_id": "u2"}).json()
    assert [(r["id"], r["voted"]) for r in rows] == [("a1", True)]

    assert client.get("/articles/missing").status_code == 404
    assert client.delete("/articles").json() == {"deleted": 1}
    assert client.get("/articles").json() == []


def test_loss_makes_api_unavailable(client, broker):
    broker.drop()

    assert client.get("/readyz").status_code == 503
    response = client.post("/articles", json={"user_id": "u1", "url": "http://x"})
    assert response.status_code == 503
