"""
Telegram Webhook API - receives updates pushed by Telegram.

Updates are handed to the dispatcher and acknowledged immediately; the reply
is sent later from the update's own task.
"""

import logging
from collections import OrderedDict
from typing import Optional

from fastapi import APIRouter, Header, HTTPException, Request

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/telegram", tags=["telegram"])

# Telegram retries deliveries it considers failed; remember recent update ids
_MAX_PROCESSED_UPDATES = 1000
_processed_updates: "OrderedDict[int, None]" = OrderedDict()


def _seen_before(update_id: Optional[int]) -> bool:
    if update_id is None:
        return False
    if update_id in _processed_updates:
        return True
    _processed_updates[update_id] = None
    while len(_processed_updates) > _MAX_PROCESSED_UPDATES:
        _processed_updates.popitem(last=False)
    return False


@router.post("/webhook")
async def telegram_webhook(
    request: Request,
    x_telegram_bot_api_secret_token: Optional[str] = Header(default=None),
):
    """Accept one Telegram update."""
    bot = getattr(request.app.state, "telegram_bot", None)
    dispatcher = getattr(request.app.state, "dispatcher", None)
    if bot is None or dispatcher is None:
        raise HTTPException(status_code=503, detail="Telegram bot not configured")

    if not bot.verify_secret_token(x_telegram_bot_api_secret_token):
        logger.warning("Rejected webhook call with invalid secret token")
        raise HTTPException(status_code=403, detail="Invalid secret token")

    update = await request.json()
    if _seen_before(update.get("update_id")):
        logger.info(f"Skipping duplicate update {update.get('update_id')}")
        return {"ok": True}

    dispatcher.submit(bot.parse_update(update))
    return {"ok": True}
