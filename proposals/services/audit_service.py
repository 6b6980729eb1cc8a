"""
Audit logging service for tracking state-changing actions.
"""
import logging
from typing import Optional, Union

from sqlalchemy.orm import Session

from proposals.models.audit_log import AuditLog, AuditAction
from proposals.utils.timeutils import utcnow

logger = logging.getLogger(__name__)


def log_action(
    session: Session,
    action: Union[AuditAction, str],
    entity_type: str,
    entity_id: Optional[int] = None,
    user_id: Optional[str] = None,
    detail: Optional[str] = None,
    commit: bool = True
) -> AuditLog:
    """
    Append an audit entry.

    Args:
        session: Database session
        action: AuditAction enum value (or its string name)
        entity_type: Type of entity affected (e.g., 'Quote', 'Product')
        entity_id: ID of the affected entity
        user_id: Acting user
        detail: Free text detail
        commit: Commit immediately. Pass False when the caller commits the
            entry together with its own changes.

    Returns:
        The persisted AuditLog entry.
    """
    action_name = action.value if isinstance(action, AuditAction) else str(action)

    entry = AuditLog(
        action=action_name,
        entity_type=entity_type,
        entity_id=entity_id,
        user_id=user_id,
        detail=detail,
        created_at=utcnow()
    )
    session.add(entry)

    if commit:
        session.commit()
    else:
        session.flush()

    logger.info(f"[AUDIT] {action_name} on {entity_type} {entity_id} by {user_id}")
    return entry


def get_audit_logs(
    session: Session,
    entity_type: str = None,
    entity_id: int = None,
    action: Union[AuditAction, str] = None,
    limit: int = 100,
    offset: int = 0
):
    """
    Retrieve audit entries, newest first, with optional filters.

    Returns:
        List of AuditLog objects
    """
    query = session.query(AuditLog)

    if entity_type:
        query = query.filter(AuditLog.entity_type == entity_type)

    if entity_id is not None:
        query = query.filter(AuditLog.entity_id == entity_id)

    if action:
        action_name = action.value if isinstance(action, AuditAction) else str(action)
        query = query.filter(AuditLog.action == action_name)

    query = query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
    return query.limit(limit).offset(offset).all()
