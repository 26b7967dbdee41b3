from __future__ import annotations

from typing import Optional

from pydantic import BaseModel


class WebhookResponse(BaseModel):
    ok: bool = True


class LinkResponse(BaseModel):
    """Either `{linked, display_name}` or `{linked, link_url, code}`."""

    linked: bool
    display_name: Optional[str] = None
    link_url: Optional[str] = None
    code: Optional[str] = None


class StatusResponse(BaseModel):
    linked: bool
    display_name: Optional[str] = None


class MessageResponse(BaseModel):
    message: str
