"""Delivery results returned by channel senders."""

from typing import Optional
from pydantic import BaseModel


class DeliveryResult(BaseModel):
    """Outcome of one outbound message."""

    channel_id: str
    success: bool
    error: Optional[str] = None
    transient: bool = True
    external_id: Optional[str] = None
