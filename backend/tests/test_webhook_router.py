# backend/tests/test_webhook_router.py
from datetime import datetime, timezone

from fastapi.testclient import TestClient

from jobhooks.main import create_app
from jobhooks.notifications.schemas import DeliveryFailure, DeliveryOrigin, DeliveryStage
from jobhooks.notifications.service import RecentDeliveryFailures
from jobhooks.webhooks.registry import WebhookRegistry
from jobhooks.webhooks.schemas import WebhookDefinition


def _registry() -> WebhookRegistry:
    return WebhookRegistry(
        [
            WebhookDefinition.model_validate(
                {
                    "name": "slack",
                    "type": "error",
                    "active": True,
                    "priority": 5,
                    "url": "https://hooks.slack.com/{{.JobName}}",
                    "headers": {"Authorization": "Bearer secret", "Content-Type": "application/json"},
                    "body": {"text": "{{.JobName}}"},
                    "retry": {"count": 2, "backoff": "500ms"},
                }
            ),
            WebhookDefinition.model_validate(
                {"name": "audit", "type": "all", "priority": 1, "url": "https://audit.example.com"}
            ),
        ]
    )


def _client(recent: RecentDeliveryFailures = None) -> TestClient:
    return TestClient(create_app(registry=_registry(), recent_failures=recent))


def test_health() -> None:
    response = _client().get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "webhooks": 2}


def test_list_webhooks_sorted_by_priority() -> None:
    response = _client().get("/webhooks")

    assert response.status_code == 200
    data = response.json()
    assert [item["name"] for item in data] == ["audit", "slack"]
    assert data[0]["method"] == "POST"
    assert data[0]["body_kind"] is None
    assert data[0]["retry_backoff"] == "1s"


def test_get_webhook_hides_header_values() -> None:
    response = _client().get("/webhooks/slack")

    assert response.status_code == 200
    data = response.json()
    assert data["header_names"] == ["Authorization", "Content-Type"]
    assert "secret" not in response.text
    assert data["body_kind"] == "structured"
    assert data["retry_count"] == 2
    assert data["retry_backoff"] == "500ms"


def test_get_unknown_webhook_returns_404() -> None:
    response = _client().get("/webhooks/unknown")

    assert response.status_code == 404
    assert response.json()["detail"] == "Webhook 'unknown' is not registered."


def test_failures_are_listed_newest_first() -> None:
    recent = RecentDeliveryFailures()
    for name in ("first", "second"):
        recent.record(
            DeliveryFailure(
                webhook_name=name,
                origin=DeliveryOrigin.GLOBAL,
                stage=DeliveryStage.DELIVER,
                error="non-2xx status code: 500",
                attempts=1,
                occurred_at=datetime(2025, 1, 2, tzinfo=timezone.utc),
            )
        )

    response = _client(recent).get("/webhooks/failures")

    assert response.status_code == 200
    assert [item["webhook_name"] for item in response.json()] == ["second", "first"]
    assert response.json()[0]["stage"] == "deliver"
