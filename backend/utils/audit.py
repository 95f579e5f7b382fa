"""Audit trail for state-changing operations.

Entries are append-only. Secrets are stripped from before/after snapshots
and, when both snapshots are present, a field-level diff is stored in the
entry metadata.
"""
from database import database
from models import AuditLog, AuditAction, UserRole, to_document
from typing import Optional, Dict, Any, List
import logging

logger = logging.getLogger(__name__)

# Never persisted into audit states
SENSITIVE_FIELDS = {"password", "password_hash", "encrypted_credentials", "credentials"}


def state_diff(before: Dict[str, Any], after: Dict[str, Any]) -> Dict[str, Any]:
    """Field-level diff grouped into ``added``, ``removed`` and ``changed``; empty groups are omitted."""
    added = {k: after[k] for k in after.keys() - before.keys()}
    removed = {k: before[k] for k in before.keys() - after.keys()}
    changed = {
        k: {"from": before[k], "to": after[k]}
        for k in before.keys() & after.keys()
        if before[k] != after[k]
    }
    return {name: group for name, group in (("added", added), ("removed", removed), ("changed", changed)) if group}


def _scrub(state: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not state:
        return state
    return {k: v for k, v in state.items() if k not in SENSITIVE_FIELDS}


async def create_audit_log(
    action: AuditAction,
    actor: Optional[Dict[str, Any]] = None,
    client_id: Optional[str] = None,
    resource_type: Optional[str] = None,
    resource_id: Optional[str] = None,
    before_state: Optional[Dict[str, Any]] = None,
    after_state: Optional[Dict[str, Any]] = None,
    metadata: Optional[Dict[str, Any]] = None,
    ip_address: Optional[str] = None,
) -> str:
    """Record an audit entry and return its id.

    ``actor`` is the token payload (or user document) of whoever acted.
    Failures are logged and reported as an empty id so the audited
    operation itself still succeeds.
    """
    try:
        db = database.get_db()
        before_state = _scrub(before_state)
        after_state = _scrub(after_state)

        details = dict(metadata or {})
        if before_state and after_state:
            diff = state_diff(before_state, after_state)
            if diff:
                details["diff"] = diff
                details["changes_count"] = sum(len(group) for group in diff.values())

        actor = actor or {}
        entry = AuditLog(
            action=action,
            actor_role=UserRole(actor["role"]) if actor.get("role") else None,
            actor_id=actor.get("user_id"),
            client_id=client_id,
            resource_type=resource_type,
            resource_id=resource_id,
            before_state=before_state,
            after_state=after_state,
            metadata=details or None,
            ip_address=ip_address,
        )
        await db.audit_logs.insert_one(to_document(entry))
        logger.info(f"Audit: {action.value} by {entry.actor_id or 'system'} on {resource_type or '-'}:{resource_id or '-'}")
        return entry.audit_id
    except Exception as e:
        logger.error(f"Failed to create audit log for {action.value}: {e}")
        return ""


async def get_audit_logs_for_client(client_id: str, limit: int = 50) -> List[Dict[str, Any]]:
    """Most recent audit entries for a client."""
    db = database.get_db()
    return await db.audit_logs.find({"client_id": client_id}, {"_id": 0}).sort("timestamp", -1).to_list(limit)
