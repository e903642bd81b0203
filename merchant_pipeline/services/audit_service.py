import logging
from typing import Optional, Dict, Any, List

from merchant_pipeline.database.models.audit_log_model import AuditLog

logger = logging.getLogger(__name__)


class AuditService:
    """Records privileged actions (resends, status changes, deletes, batch invites)."""

    async def record(
        self,
        *,
        action: str,
        actor: Optional[str] = None,
        application_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        status: str = "successful",
    ) -> Optional[AuditLog]:
        # Audit rows are best effort; the audited action has already happened
        try:
            audit = AuditLog(
                action=action,
                actor=actor,
                application_id=application_id,
                details=details or {},
                status=status,
            )
            await audit.insert()
            return audit
        except Exception as e:
            logger.error(f"Failed to create audit log for {action} on {application_id}: {e}")
            return None

    async def get_audits(self, skip: int = 0, limit: int = 50, filters: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        query = {}
        for key in ("action", "actor", "application_id", "status"):
            if filters and filters.get(key):
                query[key] = filters[key]

        total = await AuditLog.find(query).count()
        docs = await AuditLog.find(query).sort("-timestamp").skip(skip).limit(limit).to_list()

        results: List[Dict[str, Any]] = []
        for d in docs:
            results.append({
                "id": str(d.id),
                "action": d.action,
                "actor": d.actor,
                "application_id": d.application_id,
                "details": d.details,
                "timestamp": d.timestamp.isoformat() if d.timestamp else None,
                "status": d.status,
            })

        return {"data": results, "total": total, "skip": skip, "limit": limit}
