# backend/jobhooks/webhooks/router.py
from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, HTTPException, Request, status

from jobhooks.notifications.schemas import DeliveryFailure
from jobhooks.notifications.service import RecentDeliveryFailures

from .registry import WebhookRegistry
from .schemas import WebhookSummary

router = APIRouter(tags=["webhooks"])


# Dependency providers
# - テスト時に FastAPI dependency_overrides で差し替え可能にする
def get_webhook_registry(request: Request) -> WebhookRegistry:
    registry = getattr(request.app.state, "webhook_registry", None)
    if registry is None:
        return WebhookRegistry()
    return registry


def get_recent_failures(request: Request) -> RecentDeliveryFailures:
    recent = getattr(request.app.state, "recent_failures", None)
    if recent is None:
        return RecentDeliveryFailures()
    return recent


@router.get(
    "/webhooks",
    response_model=List[WebhookSummary],
    summary="List registered webhook definitions",
)
def list_webhooks(
    registry: WebhookRegistry = Depends(get_webhook_registry),
) -> List[WebhookSummary]:
    """
    レジストリに登録された定義を priority 昇順で返す。
    """
    return [WebhookSummary.from_definition(d) for d in registry.get_all()]


@router.get(
    "/webhooks/failures",
    response_model=List[DeliveryFailure],
    summary="List recent webhook delivery failures",
)
def list_delivery_failures(
    recent: RecentDeliveryFailures = Depends(get_recent_failures),
) -> List[DeliveryFailure]:
    """
    直近の配信失敗を新しい順に返す。
    """
    return list(reversed(recent.list_failures()))


@router.get(
    "/webhooks/{name}",
    response_model=WebhookSummary,
    summary="Get a registered webhook definition",
)
def get_webhook(
    name: str,
    registry: WebhookRegistry = Depends(get_webhook_registry),
) -> WebhookSummary:
    """
    名前で定義を 1件返す。未登録なら 404。
    """
    definition = registry.get(name)
    if definition is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Webhook {name!r} is not registered.",
        )
    return WebhookSummary.from_definition(definition)
