from uuid import UUID
from sqlalchemy.orm import Session
from fastapi import APIRouter, Depends
from ..database import get_db
from ..actors import get_current_actor
from ..timezones import as_utc
from .. import schemas, audit

router = APIRouter(prefix="/api/audit", tags=["audit"])


@router.get("", response_model=list[schemas.AuditEventOut], dependencies=[Depends(get_current_actor)])
async def list_events(
    organization_id: UUID | None = None,
    subject_id: UUID | None = None,
    action: str | None = None,
    limit: int = 200,
    db: Session = Depends(get_db),
):
    rows = audit.list_events(
        db,
        organization_id=organization_id,
        subject_id=subject_id,
        action=action,
        limit=min(max(limit, 1), 1000),
    )
    return [
        schemas.AuditEventOut(
            id=row.id,
            action=row.action,
            actor_id=row.actor_id,
            subject_type=row.subject_type,
            subject_id=row.subject_id,
            organization_id=row.organization_id,
            meta=row.meta or {},
            created_at=as_utc(row.created_at),
        )
        for row in rows
    ]
