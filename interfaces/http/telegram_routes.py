from __future__ import annotations

import asyncio
import hmac
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request

from application import templates
from application.linking import AccountLinker
from application.messaging import MessageDispatcher
from application.notifications import NotificationRouter
from domain.errors import TransportError
from interfaces.http.telegram_models import (
    LinkResponse,
    MessageResponse,
    StatusResponse,
    WebhookResponse,
)
from interfaces.telegram.updates import WebhookUpdateSource

logger = logging.getLogger(__name__)

SECRET_HEADER = "X-Telegram-Bot-Api-Secret-Token"

router = APIRouter(prefix="/api/telegram", tags=["telegram"])


@dataclass
class TelegramServices:
    """Everything the Telegram endpoints need, stored on `app.state.telegram`."""

    linker: AccountLinker
    dispatcher: MessageDispatcher
    notifications: NotificationRouter
    deep_link: Callable[[str], str]
    webhook: Optional[WebhookUpdateSource] = None
    webhook_secret: Optional[str] = None


def get_services(request: Request) -> TelegramServices:
    services = getattr(request.app.state, "telegram", None)
    if services is None:
        raise RuntimeError("Telegram services are not configured on app.state")
    return services


async def get_current_user_id(x_user_id: Optional[str] = Header(default=None)) -> str:
    """
    Identify the calling application user.

    Authentication belongs to the host application, which is expected to
    override this dependency; the header fallback serves local setups.
    """

    if not x_user_id:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return x_user_id


def verify_webhook_secret(received: Optional[str], expected: Optional[str]) -> bool:
    if not expected:
        return True
    if not received:
        return False
    return hmac.compare_digest(received.encode(), expected.encode())


@router.post("/webhook", response_model=WebhookResponse)
async def telegram_webhook(
    request: Request,
    services: TelegramServices = Depends(get_services),
) -> WebhookResponse:
    """
    Receive one update from Telegram.

    Always answers `{"ok": true}` once the caller is authenticated; any
    internal failure is logged instead, otherwise Telegram would retry and
    duplicate processing.
    """

    if not verify_webhook_secret(request.headers.get(SECRET_HEADER), services.webhook_secret):
        logger.warning("Webhook call with invalid secret token")
        raise HTTPException(status_code=403, detail="Invalid secret token")

    if services.webhook is None:
        logger.warning("Webhook called while the bot is in polling mode; ignoring")
        return WebhookResponse()

    try:
        payload = await request.json()
    except ValueError as exc:
        logger.warning("Webhook body is not JSON: %s", exc)
        return WebhookResponse()

    try:
        await services.webhook.accept(payload)
    except Exception:
        logger.exception("Telegram webhook error")
    return WebhookResponse()


@router.get("/link", response_model=LinkResponse, response_model_exclude_none=True)
async def get_link(
    user_id: str = Depends(get_current_user_id),
    services: TelegramServices = Depends(get_services),
) -> LinkResponse:
    try:
        offer = await asyncio.to_thread(services.linker.request_link, user_id, services.deep_link)
    except TransportError as exc:
        logger.error("Cannot build link for user %s: %s", user_id, exc)
        raise HTTPException(status_code=503, detail="Telegram bot is not available")

    return LinkResponse(
        linked=offer.linked,
        display_name=offer.display_name,
        link_url=offer.link_url,
        code=offer.code,
    )


@router.get("/status", response_model=StatusResponse)
async def get_status(
    user_id: str = Depends(get_current_user_id),
    services: TelegramServices = Depends(get_services),
) -> StatusResponse:
    status = await asyncio.to_thread(services.linker.status_for, user_id)
    return StatusResponse(linked=status.linked, display_name=status.display_name)


@router.delete("/unlink", response_model=MessageResponse)
async def unlink(
    user_id: str = Depends(get_current_user_id),
    services: TelegramServices = Depends(get_services),
) -> MessageResponse:
    removed = await asyncio.to_thread(services.linker.unbind, user_id)
    if removed is not None:
        await services.dispatcher.send(removed.chat_id, templates.unlinked_from_web())
    return MessageResponse(message="Telegram unlinked")


@router.post("/test", response_model=MessageResponse)
async def send_test_notification(
    user_id: str = Depends(get_current_user_id),
    services: TelegramServices = Depends(get_services),
) -> MessageResponse:
    status = await asyncio.to_thread(services.linker.status_for, user_id)
    text = templates.sample_notification(status.user_name or "there")
    attempt = await services.notifications.notify_user(user_id, text)
    if attempt is None:
        raise HTTPException(status_code=400, detail="Telegram is not linked")
    if not attempt.delivered:
        raise HTTPException(status_code=502, detail="Could not deliver the notification")
    return MessageResponse(message="Test notification sent")
