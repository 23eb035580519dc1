# backend/services/provider_client.py
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from core.config import settings
from core.errors import ProviderCallFailed

log = logging.getLogger(__name__)

CREATE_WEB_CALL_PATH = "/v2/create-web-call"
GET_CALL_PATH = "/v2/get-call/{call_id}"


@dataclass
class WebCall:
    call_id: str
    access_token: Optional[str]
    agent_id: Optional[str]


@dataclass
class CallDetails:
    call_id: str
    start_timestamp: Optional[float] = None  # ms
    end_timestamp: Optional[float] = None  # ms
    call_status: Optional[str] = None


class ProviderClient:
    """
    Voice-call provider API. Without an API key it runs offline and hands out
    placeholder call ids, so local development needs no provider account.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        agent_id: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.Client] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.provider_api_key
        self.agent_id = agent_id if agent_id is not None else settings.provider_agent_id
        self.base_url = (base_url or settings.provider_base_url).rstrip("/")
        self.timeout = timeout or settings.provider_timeout_seconds
        self._client = client

    @property
    def offline(self) -> bool:
        return not self.api_key

    def create_web_call(self, user_id: str, metadata: Optional[Dict[str, Any]] = None) -> WebCall:
        if self.offline:
            call_id = f"local_{uuid.uuid4().hex}"
            log.info("provider offline; assigned placeholder call id", extra={"call_id": call_id, "user_id": user_id})
            return WebCall(call_id=call_id, access_token=None, agent_id=self.agent_id)

        payload = {
            "agent_id": self.agent_id,
            "metadata": {"user_id": user_id, **(metadata or {})},
        }
        headers = {"Authorization": f"Bearer {self.api_key}"}
        try:
            if self._client is not None:
                r = self._client.post(f"{self.base_url}{CREATE_WEB_CALL_PATH}", json=payload, headers=headers, timeout=self.timeout)
            else:
                with httpx.Client(timeout=self.timeout) as client:
                    r = client.post(f"{self.base_url}{CREATE_WEB_CALL_PATH}", json=payload, headers=headers)
            r.raise_for_status()
            body = r.json()
        except (httpx.HTTPError, ValueError) as e:
            log.error("create-web-call failed: %s", e, extra={"user_id": user_id})
            raise ProviderCallFailed(f"Failed to create interview call: {e}") from e

        call_id = body.get("call_id")
        if not call_id:
            raise ProviderCallFailed("Provider response did not include a call_id")
        return WebCall(
            call_id=call_id,
            access_token=body.get("access_token"),
            agent_id=body.get("agent_id") or self.agent_id,
        )

    def retrieve_call(self, call_id: str) -> Optional[CallDetails]:
        """Provider-side view of a call (timestamps, status). None when running offline."""
        if self.offline:
            log.info("provider offline; no call details", extra={"call_id": call_id})
            return None

        url = f"{self.base_url}{GET_CALL_PATH.format(call_id=call_id)}"
        headers = {"Authorization": f"Bearer {self.api_key}"}
        try:
            if self._client is not None:
                r = self._client.get(url, headers=headers, timeout=self.timeout)
            else:
                with httpx.Client(timeout=self.timeout) as client:
                    r = client.get(url, headers=headers)
            r.raise_for_status()
            body = r.json()
        except (httpx.HTTPError, ValueError) as e:
            log.error("get-call failed: %s", e, extra={"call_id": call_id})
            raise ProviderCallFailed(f"Failed to retrieve call details: {e}") from e
        if not isinstance(body, dict):
            raise ProviderCallFailed("Provider returned an unexpected call payload")

        return CallDetails(
            call_id=body.get("call_id") or call_id,
            start_timestamp=body.get("start_timestamp"),
            end_timestamp=body.get("end_timestamp"),
            call_status=body.get("call_status"),
        )
