#!/usr/bin/env python3
"""
Integration tests for the HTTP surface
"""
import time
from unittest.mock import patch

import httpx

from ioc_feeds.models import Indicator


def test_health_endpoint(client):
    """Test health endpoint"""
    response = client.get("/v1/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["scheduler_running"] is False
    assert response.headers["X-API-Version"] == "v1"


def test_create_indicator(client):
    response = client.post("/v1/indicators", json={"value": "45.33.32.156", "notes": "scanner"})
    assert response.status_code == 201
    data = response.json()
    assert data["type"] == "ip"
    assert data["source"] == "manual"
    assert data["is_active"] is True


def test_create_indicator_rejected(client):
    response = client.post("/v1/indicators", json={"value": "10.0.0.1"})
    assert response.status_code == 400
    assert "private" in response.json()["detail"]


def test_create_indicator_duplicate(client):
    assert client.post("/v1/indicators", json={"value": "evil-site.com"}).status_code == 201
    response = client.post("/v1/indicators", json={"value": "EVIL-SITE.com"})
    assert response.status_code == 409


def test_create_indicator_whitelisted(client):
    client.post("/v1/whitelist", json={"value": "good-corp.com", "type": "domain"})
    response = client.post("/v1/indicators", json={"value": "www.good-corp.com"})
    assert response.status_code == 400
    assert "whitelisted" in response.json()["detail"]


def test_temp_activate(client):
    created = client.post("/v1/indicators", json={"value": "8.8.4.4"}).json()
    response = client.post(f"/v1/indicators/{created['id']}/temp-activate", json={"duration_hours": 4})
    assert response.status_code == 200
    assert response.json()["temp_active_until"] is not None


def test_temp_activate_missing(client):
    response = client.post("/v1/indicators/404/temp-activate", json={"duration_hours": 4})
    assert response.status_code == 404


def test_temp_activate_validation(client):
    response = client.post("/v1/indicators/1/temp-activate", json={"duration_hours": 0})
    assert response.status_code == 422


def test_whitelist_removes_existing(client, db):
    client.post("/v1/indicators", json={"value": "45.33.32.156"})
    response = client.post("/v1/whitelist", json={"value": "45.33.0.0/16", "type": "ip", "reason": "scanner range"})
    assert response.status_code == 201
    assert response.json()["affected_indicators"] == 1
    assert db.query(Indicator).count() == 0


def test_whitelist_invalid(client):
    response = client.post("/v1/whitelist", json={"value": "not a domain", "type": "domain"})
    assert response.status_code == 400


def test_whitelist_duplicate(client):
    client.post("/v1/whitelist", json={"value": "8.8.8.8", "type": "ip"})
    response = client.post("/v1/whitelist", json={"value": "8.8.8.8", "type": "ip"})
    assert response.status_code == 409


def test_sources_lifecycle(client):
    created = client.post("/v1/sources", json={
        "name": "Scanner feed",
        "url": "https://feeds.test-intel.net/scanners.txt",
        "indicator_types": ["ip"],
        "fetch_interval": 600,
    })
    assert created.status_code == 201
    source_id = created.json()["id"]
    assert created.json()["last_fetch_status"] == "pending"

    paused = client.post(f"/v1/sources/{source_id}/pause")
    assert paused.json()["is_paused"] is True
    resumed = client.post(f"/v1/sources/{source_id}/resume")
    assert resumed.json()["is_paused"] is False

    listed = client.get("/v1/sources").json()
    assert [s["id"] for s in listed] == [source_id]


def test_source_rejects_bad_url(client):
    response = client.post("/v1/sources", json={
        "name": "bad", "url": "ftp://feeds.test-intel.net/x", "indicator_types": ["ip"],
    })
    assert response.status_code == 422


def test_fetch_source_missing(client):
    assert client.post("/v1/sources/999/fetch").status_code == 404


def test_fetch_source_dispatches(client):
    created = client.post("/v1/sources", json={
        "name": "Scanner feed",
        "url": "https://feeds.test-intel.net/scanners.txt",
        "indicator_types": ["ip"],
    }).json()

    with patch("ioc_feeds.api.sources.dispatch_ingest") as dispatch:
        response = client.post(f"/v1/sources/{created['id']}/fetch")

    assert response.status_code == 202
    assert response.json() == {"status": "started", "source_id": created["id"]}
    assert dispatch.call_args.args[0].id == created["id"]


def test_fetch_source_runs_ingestion(client, db):
    created = client.post("/v1/sources", json={
        "name": "Scanner feed",
        "url": "https://feeds.test-intel.net/scanners.txt",
        "indicator_types": ["ip"],
    }).json()
    client.app.state.feed_transport = httpx.MockTransport(lambda request: httpx.Response(200, text="45.33.32.156\n"))
    try:
        assert client.post(f"/v1/sources/{created['id']}/fetch").status_code == 202
        # The portal loop keeps running the background task between requests
        for _ in range(50):
            status = client.get("/v1/sources").json()[0]["last_fetch_status"]
            if status == "success":
                break
            time.sleep(0.05)
    finally:
        client.app.state.feed_transport = None

    assert status == "success"
    assert db.query(Indicator).one().value == "45.33.32.156"


def test_blacklist_regenerate_and_stats(client):
    client.post("/v1/indicators", json={"value": "45.33.32.156"})
    client.post("/v1/indicators", json={"value": "evil-site.com"})

    response = client.post("/v1/blacklist/regenerate")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["lines"]["ip"] == 1
    assert data["lines"]["domain"] == 2

    stats = client.get("/v1/blacklist/stats").json()
    assert stats["ip"]["files"] == 1
    assert stats["domain"]["lines"] == 2
    assert stats["proxy"]["files"] == 1


def test_prometheus_endpoint(client):
    response = client.get("/v1/metrics/prometheus")
    assert response.status_code == 200
    assert "ioc_feeds_build_info" in response.text
