from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from lendbook.models.audit import AuditLog


def record_audit(
    db: AsyncSession,
    entity_type: str,
    entity_id: int,
    action: str,
    user_id: int | None,
    *,
    old_values: dict[str, Any] | None = None,
    new_values: dict[str, Any] | None = None,
    details: str | None = None,
) -> AuditLog:
    """Stage an audit row in the caller's transaction."""
    entry = AuditLog(
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        user_id=user_id,
        old_values=old_values,
        new_values=new_values,
        details=details,
    )
    db.add(entry)
    return entry
