import asyncio
import json
import logging
from typing import Any, Dict, Optional, Set

import httpx

from merchant_pipeline.core.config import Settings

# Outcomes of fire-and-forget webhook calls go to their own log sink
logger = logging.getLogger("merchant_pipeline.webhooks")


def flatten_payload(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Collapse nested values so the endpoint only receives scalars.

    Lists become comma-joined strings, dicts become JSON strings.
    """
    flat: Dict[str, Any] = {}
    for key, value in payload.items():
        if isinstance(value, (list, tuple, set)):
            flat[key] = ", ".join(
                json.dumps(item, default=str) if isinstance(item, (dict, list)) else str(item) for item in value
            )
        elif isinstance(value, dict):
            flat[key] = json.dumps(value, default=str)
        else:
            flat[key] = value
    return flat


class WebhookNotifier:
    """Posts flattened event payloads to the automation webhook.

    ``notify`` schedules a background task and returns immediately; the
    caller never awaits the outbound call and never sees its failure. There is
    no retry and no ordering guarantee.
    """

    def __init__(self, url: Optional[str], timeout: float = 30.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.url = url
        self.timeout = timeout
        self._transport = transport
        self._tasks: Set[asyncio.Task] = set()

        if not self.url:
            logger.warning("WEBHOOK_URL not configured; webhook events will be dropped")

    @classmethod
    def from_settings(cls, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> "WebhookNotifier":
        return cls(settings.WEBHOOK_URL, timeout=settings.HTTP_TIMEOUT_SECONDS, transport=transport)

    def notify(self, event_name: str, payload: Dict[str, Any]) -> Optional[asyncio.Task]:
        if not self.url:
            logger.warning(f"Dropping webhook event {event_name}: no endpoint configured")
            return None
        task = asyncio.create_task(self._post(event_name, flatten_payload(payload)))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _post(self, event_name: str, payload: Dict[str, Any]) -> bool:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self.url, json=payload)
            if response.status_code >= 400:
                logger.error(f"Webhook {event_name} rejected: {response.status_code} {response.text}")
                return False
            logger.info(f"Webhook {event_name} delivered ({response.status_code})")
            return True
        except Exception as e:
            logger.error(f"Webhook {event_name} failed: {str(e)}")
            return False

    @property
    def pending(self) -> int:
        return len(self._tasks)

    # Waits for in-flight webhook calls; used at shutdown and in tests
    async def drain(self, timeout: Optional[float] = None) -> None:
        if not self._tasks:
            return
        done, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        if pending:
            logger.warning(f"{len(pending)} webhook calls still pending at drain timeout")
