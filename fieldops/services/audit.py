"""
Audit trail for scheduling changes.
Entries are staged on the caller's session and land in the same commit as the
change they describe, so a rolled-back transition leaves no audit row.
"""
import hashlib
import json
import uuid
from typing import Dict, Optional

from sqlalchemy.orm import Session

from ..config import settings
from ..models.models import AuditLog, Worker
from .time_windows import utc_now


def _json_safe(value: Optional[Dict]) -> Optional[Dict]:
    # UUIDs and datetimes become strings
    return json.loads(json.dumps(value, default=str)) if value else None


def _integrity_hash(entry: Dict) -> str:
    canonical = json.dumps({k: v for k, v in entry.items() if v is not None}, sort_keys=True)
    return hashlib.sha256(f"{canonical}:{settings.jwt_secret}".encode()).hexdigest()


def create_audit_log(
    db: Session,
    entity_type: str,
    entity_id,
    action: str,
    actor: Worker,
    changes_json: Optional[Dict] = None,
    context: Optional[Dict] = None,
    source: str = "api",
) -> AuditLog:
    """
    Stage an audit entry for a job or worker change.

    Args:
        db: Database session; the caller commits
        entity_type: job|worker
        entity_id: ID of the changed entity
        action: ASSIGN_CREW|ASSIGN_USERS|UNASSIGN|OVERRIDE|CLEAR_OVERRIDE|STATUS_CHANGE
        actor: Worker who made the change
        changes_json: Before/after diff from compute_diff
        context: Extra facts (crew ids, override reason, ...)
        source: api|cron

    Returns:
        The staged AuditLog
    """
    timestamp_utc = utc_now()
    changes = _json_safe(changes_json)
    extra = _json_safe(context)

    entry = AuditLog(
        entity_type=entity_type,
        entity_id=uuid.UUID(str(entity_id)),
        action=action,
        actor_id=actor.id,
        actor_role=actor.role,
        source=source,
        changes_json=changes,
        timestamp_utc=timestamp_utc,
        context=extra,
        integrity_hash=_integrity_hash({
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "action": action,
            "actor_id": str(actor.id),
            "actor_role": actor.role,
            "source": source,
            "timestamp_utc": timestamp_utc.isoformat(),
            "changes": changes,
            "context": extra,
        }),
    )
    db.add(entry)
    return entry


def compute_diff(before: Dict, after: Dict) -> Dict:
    """Changed keys only, as {key: {"before": ..., "after": ...}}."""
    return {
        key: {"before": before.get(key), "after": after.get(key)}
        for key in sorted(set(before) | set(after))
        if before.get(key) != after.get(key)
    }
