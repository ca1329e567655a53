from models import AuditLog, AuditAction
from typing import Optional, Dict, Any, List
import logging

logger = logging.getLogger(__name__)

def calculate_diff(before: Dict[str, Any], after: Dict[str, Any]) -> Dict[str, Any]:
    """Calculate the differences between before and after states.

    Returns a dict with:
    - added: fields that exist in after but not in before
    - removed: fields that exist in before but not in after
    - changed: fields that exist in both but have different values
    """
    if not before and not after:
        return {}

    if not before:
        return {"added": after, "removed": {}, "changed": {}}

    if not after:
        return {"added": {}, "removed": before, "changed": {}}

    diff = {"added": {}, "removed": {}, "changed": {}}

    for key in set(before.keys()) | set(after.keys()):
        before_val = before.get(key)
        after_val = after.get(key)

        if key not in before:
            diff["added"][key] = after_val
        elif key not in after:
            diff["removed"][key] = before_val
        elif before_val != after_val:
            diff["changed"][key] = {"from": before_val, "to": after_val}

    # Remove empty categories
    return {k: v for k, v in diff.items() if v}

async def create_audit_log(
    db,
    action: AuditAction,
    actor_id: Optional[str] = None,
    corretor_id: Optional[str] = None,
    resource_type: Optional[str] = None,
    resource_id: Optional[str] = None,
    before_state: Optional[Dict[str, Any]] = None,
    after_state: Optional[Dict[str, Any]] = None,
    metadata: Optional[Dict[str, Any]] = None,
    auto_diff: bool = True
) -> str:
    """Write an audit entry, with a field diff when both states are given.

    Args:
        db: Motor database handle (audit_logs collection)
        action: The audit action type
        actor_id: Account performing the action (None for system writes)
        corretor_id: Broker whose data is affected
        resource_type: e.g. 'landing_config', 'user_role'
        resource_id: ID of the specific resource
        before_state / after_state: snapshots used for the diff
        metadata: Additional metadata

    Audit failures are logged and never fail the main operation.
    """
    if db is None:
        return ""
    try:
        diff = None
        if auto_diff and before_state is not None and after_state is not None:
            diff = calculate_diff(before_state, after_state)

        enriched_metadata = metadata.copy() if metadata else {}
        if diff:
            enriched_metadata["diff"] = diff
            enriched_metadata["changes_count"] = sum(len(v) for v in diff.values())

        audit_log = AuditLog(
            action=action,
            actor_id=actor_id,
            corretor_id=corretor_id,
            resource_type=resource_type,
            resource_id=resource_id,
            before_state=before_state,
            after_state=after_state,
            metadata=enriched_metadata or None,
        )

        doc = audit_log.model_dump(mode="json")
        await db.audit_logs.insert_one(doc)
        logger.info(
            "Audit log created: %s%s", action.value,
            f" with {enriched_metadata['changes_count']} changes" if diff else ""
        )
        return audit_log.audit_id
    except Exception as e:
        logger.error("Failed to create audit log: %s", e)
        return ""

async def get_audit_logs_for_resource(
    db,
    resource_type: str,
    resource_id: str,
    limit: int = 50
) -> List[Dict[str, Any]]:
    """Get audit logs for a specific resource, newest first."""
    if db is None:
        return []
    cursor = db.audit_logs.find(
        {"resource_type": resource_type, "resource_id": resource_id},
        {"_id": 0}
    ).sort("timestamp", -1).limit(limit)
    return await cursor.to_list(length=limit)
