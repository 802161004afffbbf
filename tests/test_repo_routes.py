"""Tests for repository configuration endpoints."""

from conftest import WEBHOOK_SECRET


def test_get_config(client, admin_headers):
    resp = client.get("/api/repos/repo_docs/config", headers=admin_headers)
    assert resp.status_code == 200
    assert resp.json()["target_languages"] == ["en", "ja"]


def test_enabling_auto_translate_registers_webhook(
    client, admin_headers, repository, github
):
    repository["config"]["auto_translate"] = False
    resp = client.put(
        "/api/repos/repo_docs/config",
        json={"auto_translate": True, "target_languages": ["fr", "fr", "de"]},
        headers=admin_headers,
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["auto_translate"] is True
    assert data["target_languages"] == ["fr", "de"]
    assert data["webhook_id"] == 500
    hook = github.webhooks[500]
    assert hook["url"].endswith("/api/webhooks/github")
    assert hook["secret"] == WEBHOOK_SECRET
    assert hook["events"] == ["push"]


def test_disabling_auto_translate_removes_webhook(
    client, admin_headers, repository, github
):
    repository["config"]["webhook_id"] = 77
    resp = client.put(
        "/api/repos/repo_docs/config",
        json={"auto_translate": False},
        headers=admin_headers,
    )
    assert resp.json()["webhook_id"] is None
    assert github.deleted_webhooks == [77]


def test_unsupported_language_rejected(client, admin_headers):
    resp = client.put(
        "/api/repos/repo_docs/config",
        json={"base_language": "xx"},
        headers=admin_headers,
    )
    assert resp.status_code == 400


def test_unknown_repository(client, admin_headers):
    resp = client.get("/api/repos/nope/config", headers=admin_headers)
    assert resp.status_code == 404
