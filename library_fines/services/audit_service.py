"""Audit trail for billing, payment and transaction state changes."""

from typing import Any

from sqlalchemy.orm import Session

from library_fines.models import Base
from library_fines.models.audit_log import AuditLog


class AuditService:
    """Writes audit entries inside the caller's unit of work.

    Entries are added to the session but never committed here; they land
    or roll back together with the change they describe.
    """

    @staticmethod
    def record(
        db: Session,
        entity: Base,
        action: str,
        actor_id: int | None = None,
        changes: dict[str, Any] | None = None,
    ) -> AuditLog:
        """Record an action against an ORM entity.

        Args:
            db: Database session
            entity: Flushed ORM object; its table name becomes the entity type
            action: "void", "adjust", "close", "reopen", "bill"
            actor_id: Acting user, None for system actions
            changes: JSON-serializable snapshot of changed fields

        Returns:
            Pending AuditLog object
        """
        audit = AuditLog(
            entity_type=entity.__tablename__,
            entity_id=entity.id,
            action=action,
            actor_id=actor_id,
            changes={key: _jsonable(value) for key, value in (changes or {}).items()} or None,
        )
        db.add(audit)
        return audit


def _jsonable(value: Any) -> Any:
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)


__all__ = ["AuditService"]
