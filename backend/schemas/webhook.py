from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict


class ProviderCall(BaseModel):
    # providers add fields over time; keep whatever they send
    model_config = ConfigDict(extra="allow")

    call_id: Optional[str] = None
    start_timestamp: Optional[float] = None  # ms
    end_timestamp: Optional[float] = None  # ms
    transcript: Optional[str] = None
    analysis: Optional[Dict[str, Any]] = None


class ProviderWebhookIn(BaseModel):
    """Envelope only. `call` stays raw until the event is known to be one we handle."""
    model_config = ConfigDict(extra="allow")

    event: Any = None
    call: Any = None


class WebhookAck(BaseModel):
    received: bool = True
