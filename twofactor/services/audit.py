from sqlalchemy.orm import Session

from twofactor.models.audit import AuditLog


def audit(session: Session, action: str, user_id: int | None = None, detail: str | None = None) -> None:
    entry = AuditLog(action=action, user_id=user_id, detail=detail)
    session.add(entry)
    session.commit()
