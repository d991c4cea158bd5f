import io
from datetime import date
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session
from typing import Literal, Optional

from app.core.config import settings
from app.core.schemas import Pagination
from app.database import get_db
from app.models.audit_log import AuditLog
from app.models.user import User
from app.routers.auth_deps import require_admin
from app.schemas.audit import AuditLogResponse
from app.services import export_service
from app.services.audit import AuditService

admin_user = require_admin()

router = APIRouter(
    prefix="/audit",
    tags=["audit"],
    dependencies=[Depends(admin_user)]
)


def _page_response(total: int, rows, page: int, limit: int) -> dict:
    return {
        "logs": [AuditLogResponse.model_validate(r) for r in rows],
        "pagination": Pagination.build(page, limit, total),
    }


@router.get("/logs")
def list_logs(
    user_id: Optional[int] = None,
    action: Optional[str] = None,
    entity_type: Optional[str] = None,
    category: Optional[str] = None,
    severity: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    search: Optional[str] = Query(default=None, max_length=100),
    sort_by: Literal["timestamp", "action", "category", "severity", "user_id"] = "timestamp",
    sort_order: Literal["asc", "desc"] = "desc",
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=200),
    db: Session = Depends(get_db)
):
    total, rows = AuditService(db).query_logs(
        user_id=user_id,
        action=action,
        entity_type=entity_type,
        category=category,
        severity=severity,
        start_date=start_date,
        end_date=end_date,
        search=search,
        sort_by=sort_by,
        sort_order=sort_order,
        limit=limit,
        offset=(page - 1) * limit,
    )
    return _page_response(total, rows, page, limit)


@router.get("/logs/{log_id}", response_model=AuditLogResponse)
def get_log(log_id: int, db: Session = Depends(get_db)):
    log = db.query(AuditLog).filter(AuditLog.id == log_id).first()
    if not log:
        raise HTTPException(status_code=404, detail="Audit log not found")
    return log


@router.get("/stats")
def audit_stats(
    days: int = Query(default=30, ge=1, le=365),
    db: Session = Depends(get_db)
):
    return AuditService(db).statistics(days)


@router.get("/alerts")
def security_alerts(
    request: Request,
    severity: Optional[Literal["high", "critical"]] = None,
    limit: int = Query(default=50, ge=1, le=100),
    db: Session = Depends(get_db),
    admin: User = Depends(admin_user)
):
    service = AuditService(db)
    alerts = service.security_alerts(severity=severity, limit=limit)
    service.log_data_access(admin, "audit_alerts", request=request)
    db.commit()
    return {"alerts": [AuditLogResponse.model_validate(a) for a in alerts], "count": len(alerts)}


@router.get("/users/{user_id}")
def user_activity(
    user_id: int,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=200),
    db: Session = Depends(get_db)
):
    total, rows = AuditService(db).query_logs(user_id=user_id, limit=limit, offset=(page - 1) * limit)
    return _page_response(total, rows, page, limit)


@router.get("/entities/{entity_type}/{entity_id}")
def entity_history(
    entity_type: str,
    entity_id: int,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=200),
    db: Session = Depends(get_db)
):
    total, rows = AuditService(db).query_logs(
        entity_type=entity_type, entity_id=entity_id, limit=limit, offset=(page - 1) * limit
    )
    return _page_response(total, rows, page, limit)


@router.delete("/clean")
def clean_logs(
    request: Request,
    older_than_days: int = Query(default=settings.audit_retention_days, ge=1),
    db: Session = Depends(get_db),
    admin: User = Depends(admin_user)
):
    service = AuditService(db)
    deleted = service.clean_old_logs(older_than_days)
    # The clean-up itself is recorded after the purge
    service.log_action(
        action="audit_logs_cleaned",
        entity_type="audit_log",
        user_id=admin.id,
        user_role=admin.role,
        details={"older_than_days": older_than_days, "deleted": deleted},
        category="system",
        severity="medium",
        request=request,
    )
    db.commit()
    return {"success": True, "deleted": deleted, "message": f"Deleted {deleted} audit log entries"}


@router.get("/export")
def export_logs(
    request: Request,
    format: Literal["json", "csv", "excel"] = "json",
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    category: Optional[str] = None,
    limit: int = Query(default=10000, ge=1, le=50000),
    db: Session = Depends(get_db),
    admin: User = Depends(admin_user)
):
    service = AuditService(db)
    _, rows = service.query_logs(
        category=category, start_date=start_date, end_date=end_date, limit=limit
    )
    service.log_data_access(admin, "audit_log", action=f"audit_export_{format}", request=request)
    db.commit()
    if format == "json":
        return {
            "exported_at": date.today(),
            "count": len(rows),
            "logs": [AuditLogResponse.model_validate(r) for r in rows],
        }

    content, media_type, extension = export_service.render(
        [export_service.audit_log_to_row(r) for r in rows],
        export_service.AUDIT_COLUMNS,
        "csv" if format == "csv" else "xlsx",
        "Audit Logs",
    )
    filename = export_service.export_filename("audit-logs", extension)
    return StreamingResponse(
        io.BytesIO(content),
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
