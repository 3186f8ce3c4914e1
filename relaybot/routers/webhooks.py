"""
Webhook routes for inbound chat platform updates.

Platforms POST raw updates here; the channel plugin dispatches them and we return 200.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request

from relaybot.core.app_state import AppState
from relaybot.infra.logging_config import get_logger
from relaybot.routers.utils import get_app_state

logger = get_logger("webhooks")

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/telegram")
async def telegram_webhook(
    request: Request,
    state: AppState = Depends(get_app_state),
) -> dict[str, str]:
    """
    Receive Telegram webhook updates and hand them to the Telegram channel.
    Validate X-Telegram-Bot-Api-Secret-Token if TELEGRAM_WEBHOOK_SECRET is set.
    """
    plugin = state.registry.get_channel("telegram")
    if plugin is None or not getattr(plugin, "webhook_mode", False):
        raise HTTPException(
            status_code=503,
            detail="Telegram webhook integration is not configured or disabled",
        )
    headers = dict(request.headers) if request.headers else {}
    if not plugin.verify_webhook(headers):
        raise HTTPException(status_code=403, detail="Invalid webhook secret")
    try:
        body: Any = await request.json()
    except ValueError as e:
        logger.warning("Telegram webhook invalid JSON: %s", e)
        raise HTTPException(status_code=400, detail="Invalid JSON body") from e
    if not isinstance(body, dict):
        raise HTTPException(status_code=400, detail="Body must be a JSON object")
    try:
        await plugin.process_webhook_update(body)
    except (ValueError, KeyError, TypeError) as e:
        logger.warning("Telegram webhook parse error: %s", e)
        raise HTTPException(status_code=400, detail="Invalid Telegram update") from e
    return {"status": "ok"}
