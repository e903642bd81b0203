"""
CRM mirror synchronization against the Airtable REST API.

The mirror is an open-pipeline view for the operations team: records are
created or patched while an application moves through invite and pre-fill,
and removed once the merchant submits.
"""

import asyncio
import logging
import weakref
from datetime import datetime
from typing import Any, Dict, Optional

import httpx

from merchant_pipeline.core.config import Settings
from merchant_pipeline.schemas.merchant_schema import EventAction, MerchantApplicationData
from merchant_pipeline.utils.crm_field_utils import MIRROR_ID_FIELD, map_mirror_fields

logger = logging.getLogger(__name__)


def _formula_literal(value: str) -> str:
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'


class CrmMirrorSync:
    """Service keeping one Airtable record per open application."""

    def __init__(
        self,
        api_key: str,
        base_id: str,
        table_id: str,
        api_root: str = "https://api.airtable.com/v0",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.table_url = f"{api_root.rstrip('/')}/{base_id}/{table_id}"
        self.timeout = timeout
        self._transport = transport
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

        if self.api_key:
            logger.info("Airtable mirror sync initialized")
        else:
            logger.warning("AIRTABLE_API_KEY not configured; mirror sync calls will fail")

    @classmethod
    def from_settings(cls, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> "CrmMirrorSync":
        return cls(
            api_key=settings.AIRTABLE_API_KEY,
            base_id=settings.AIRTABLE_BASE_ID,
            table_id=settings.AIRTABLE_TABLE_ID,
            api_root=settings.AIRTABLE_API_ROOT,
            timeout=settings.HTTP_TIMEOUT_SECONDS,
            transport=transport,
        )

    @property
    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    def _lock_for(self, application_id: str) -> asyncio.Lock:
        lock = self._locks.get(application_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[application_id] = lock
        return lock

    async def sync(
        self,
        application_id: str,
        action: EventAction,
        data: MerchantApplicationData,
        agent_email: Optional[str] = None,
        merchant_email: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> bool:
        """Reconcile the mirror record for ``application_id``.

        Submission retires the record; every other action patches the existing
        record or creates one. Returns False on any failure and never raises.
        """
        action = EventAction(action)
        logger.info(f"Syncing to Airtable: {action.value} for application {application_id}")

        # Search-then-write must not interleave for one application
        async with self._lock_for(application_id):
            try:
                async with self._client() as client:
                    record_id = await self._find_record(client, application_id)

                    if action == EventAction.application_submitted:
                        if record_id is None:
                            logger.info(f"No Airtable record found to delete for application: {application_id}")
                            return True
                        return await self._delete_record(client, record_id)

                    fields = map_mirror_fields(data, application_id, action, agent_email, merchant_email, now)
                    return await self._write_record(client, record_id, fields)
            except Exception as e:
                logger.error(f"Error syncing application {application_id} to Airtable: {str(e)}")
                return False

    # Linear formula search; one round trip, no caching
    async def _find_record(self, client: httpx.AsyncClient, application_id: str) -> Optional[str]:
        formula = f"{{{MIRROR_ID_FIELD}}}={_formula_literal(application_id)}"
        response = await client.get(
            self.table_url,
            headers=self._headers,
            params={"filterByFormula": formula, "maxRecords": 1},
        )
        if response.status_code >= 400:
            raise RuntimeError(f"Airtable search failed: {response.status_code} {response.text}")
        records = response.json().get("records") or []
        return records[0].get("id") if records else None

    async def _write_record(self, client: httpx.AsyncClient, record_id: Optional[str], fields: Dict[str, Any]) -> bool:
        if record_id:
            logger.info(f"Updating existing Airtable record: {record_id}")
            response = await client.patch(f"{self.table_url}/{record_id}", headers=self._headers, json={"fields": fields})
        else:
            logger.info(f"Creating new Airtable record for application: {fields.get(MIRROR_ID_FIELD)}")
            response = await client.post(self.table_url, headers=self._headers, json={"fields": fields})

        if response.status_code >= 400:
            logger.error(f"Airtable API error: {response.status_code} {response.text}")
            return False
        logger.info(f"Airtable sync successful: {response.json().get('id')}")
        return True

    async def _delete_record(self, client: httpx.AsyncClient, record_id: str) -> bool:
        logger.info(f"Deleting Airtable record: {record_id}")
        response = await client.delete(f"{self.table_url}/{record_id}", headers=self._headers)
        if response.status_code >= 400:
            logger.error(f"Airtable delete error: {response.status_code} {response.text}")
            return False
        logger.info(f"Airtable record deleted successfully: {record_id}")
        return True
