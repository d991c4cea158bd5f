from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, or_

from app.core.security import redact_sensitive
from app.models.audit_log import AuditLog, AuditCategory, AuditSeverity
from app.services.base import BaseService

ALERT_SEVERITIES = (AuditSeverity.HIGH.value, AuditSeverity.CRITICAL.value)
SECURITY_ACTIONS = ("login", "logout", "password_reset", "failed_login")


def _to_json_safe(obj):
    if hasattr(obj, "model_dump"):
        return obj.model_dump(mode="json")
    if isinstance(obj, dict):
        return {k: _to_json_safe(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_to_json_safe(i) for i in obj]
    if isinstance(obj, Decimal):
        return float(obj)
    if isinstance(obj, (date, datetime)):
        return obj.isoformat()
    if hasattr(obj, "value") and not isinstance(obj, (str, int, float, bool)):
        return obj.value
    return obj


def request_metadata(request) -> Dict[str, Optional[str]]:
    """Client address and user agent of a Starlette request, if there is one."""
    if request is None:
        return {"ip_address": None, "user_agent": None}
    return {
        "ip_address": request.client.host[:45] if request.client else None,
        "user_agent": (request.headers.get("user-agent") or "")[:500] or None,
    }


class AuditService(BaseService):
    def log_action(
        self,
        action: str,
        entity_type: str,
        entity_id: Optional[int] = None,
        user_id: Optional[int] = None,
        user_role: Optional[str] = None,
        details: Optional[dict] = None,
        before_state: Optional[dict] = None,
        after_state: Optional[dict] = None,
        category: str = AuditCategory.DATA_MODIFICATION.value,
        severity: str = AuditSeverity.LOW.value,
        description: Optional[str] = None,
        is_successful: bool = True,
        error_message: Optional[str] = None,
        request=None,
    ):
        """
        Create a centralized audit log entry.
        Strictly append-only.
        The entry is flushed, not committed, so it lands in the same commit as the action it describes.
        """
        try:
            db_log = AuditLog(
                action=action.strip(),
                entity_type=entity_type.strip(),
                entity_id=entity_id,
                user_id=user_id,
                user_role=user_role.value if hasattr(user_role, "value") else user_role,
                details=redact_sensitive(_to_json_safe(details)),
                before_state=redact_sensitive(_to_json_safe(before_state)),
                after_state=redact_sensitive(_to_json_safe(after_state)),
                category=category,
                severity=severity,
                description=description,
                is_successful=is_successful,
                error_message=error_message[:1000] if error_message else None,
                **request_metadata(request),
            )
            self.db.add(db_log)
            self.db.flush()
            return db_log
        except Exception as e:
            self._logger.error(f"FAILED TO AUDIT LOG: {e}", exc_info=True)
            return None  # Never break the main app flow because of a logging failure

    def log_authentication(self, action: str, user=None, email: Optional[str] = None,
                           is_successful: bool = True, error_message: Optional[str] = None, request=None):
        return self.log_action(
            action=action,
            entity_type="user",
            entity_id=user.id if user else None,
            user_id=user.id if user else None,
            user_role=user.role if user else None,
            details={"email": email or (user.email if user else None)},
            category=AuditCategory.AUTHENTICATION.value,
            severity=AuditSeverity.LOW.value if is_successful else AuditSeverity.MEDIUM.value,
            is_successful=is_successful,
            error_message=error_message,
            request=request,
        )

    def log_data_modification(self, actor, entity_type: str, entity_id: Optional[int], action: str,
                              before_state: Optional[dict], after_state: Optional[dict],
                              details: Optional[dict] = None, request=None):
        return self.log_action(
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            user_id=actor.id if actor else None,
            user_role=actor.role if actor else "system",
            details=details or {},
            before_state=before_state,
            after_state=after_state,
            category=AuditCategory.DATA_MODIFICATION.value,
            severity=AuditSeverity.MEDIUM.value if entity_type == "leave_balance" else AuditSeverity.LOW.value,
            request=request,
        )

    def log_data_access(self, actor, entity_type: str, action: str = "read", request=None):
        return self.log_action(
            action=action,
            entity_type=entity_type,
            user_id=actor.id,
            user_role=actor.role,
            category=AuditCategory.DATA_ACCESS.value,
            request=request,
        )

    def log_operational_event(self, event_type: str, status: str, details: dict):
        """
        Specialized logger for batch/system events (rollover, bootstrap).
        """
        return self.log_action(
            action=f"ops_{event_type}",
            entity_type="system",
            user_role="system",
            details={**details, "ops_status": status},
            category=AuditCategory.SYSTEM.value,
            severity=AuditSeverity.HIGH.value if status == "failed" else AuditSeverity.LOW.value,
        )

    # --- Queries ---

    def query_logs(
        self,
        user_id: Optional[int] = None,
        action: Optional[str] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[int] = None,
        category: Optional[str] = None,
        severity: Optional[str] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        search: Optional[str] = None,
        sort_by: str = "timestamp",
        sort_order: str = "desc",
        limit: int = 100,
        offset: int = 0,
    ) -> Tuple[int, List[AuditLog]]:
        query = self.db.query(AuditLog)
        if user_id is not None:
            query = query.filter(AuditLog.user_id == user_id)
        if action:
            query = query.filter(AuditLog.action == action)
        if entity_type:
            query = query.filter(AuditLog.entity_type == entity_type)
        if entity_id is not None:
            query = query.filter(AuditLog.entity_id == entity_id)
        if category:
            query = query.filter(AuditLog.category == category)
        if severity:
            query = query.filter(AuditLog.severity == severity)
        if start_date:
            query = query.filter(AuditLog.timestamp >= datetime.combine(start_date, datetime.min.time()))
        if end_date:
            query = query.filter(AuditLog.timestamp < datetime.combine(end_date + timedelta(days=1), datetime.min.time()))
        if search:
            pattern = f"%{search}%"
            query = query.filter(
                AuditLog.action.ilike(pattern)
                | AuditLog.entity_type.ilike(pattern)
                | AuditLog.description.ilike(pattern)
            )

        total = query.count()
        sort_column = getattr(AuditLog, sort_by, AuditLog.timestamp)
        ordering = sort_column.asc() if sort_order == "asc" else sort_column.desc()
        rows = query.order_by(ordering, AuditLog.id.desc()).offset(offset).limit(limit).all()
        return total, rows

    def statistics(self, days: int = 30) -> Dict[str, Any]:
        since = datetime.now(timezone.utc) - timedelta(days=days)
        base = self.db.query(AuditLog).filter(AuditLog.timestamp >= since)

        def grouped(column):
            rows = (
                self.db.query(column, func.count(AuditLog.id))
                .filter(AuditLog.timestamp >= since)
                .group_by(column)
                .all()
            )
            return {key: count for key, count in rows}

        return {
            "period_days": days,
            "total": base.count(),
            "failed": base.filter(AuditLog.is_successful.is_(False)).count(),
            "by_category": grouped(AuditLog.category),
            "by_severity": grouped(AuditLog.severity),
            "by_action": grouped(AuditLog.action),
        }

    def security_alerts(self, severity: Optional[str] = None, limit: int = 50) -> List[AuditLog]:
        """
        High or critical entries that are security relevant: authentication
        and security events, session actions, and anything that failed.
        """
        severities = [severity] if severity else list(ALERT_SEVERITIES)
        return (
            self.db.query(AuditLog)
            .filter(
                AuditLog.severity.in_(severities),
                or_(
                    AuditLog.category.in_([AuditCategory.SECURITY.value, AuditCategory.AUTHENTICATION.value]),
                    AuditLog.action.in_(SECURITY_ACTIONS),
                    AuditLog.is_successful.is_(False),
                ),
            )
            .order_by(AuditLog.timestamp.desc(), AuditLog.id.desc())
            .limit(limit)
            .all()
        )

    def clean_old_logs(self, older_than_days: int) -> int:
        cutoff = datetime.now(timezone.utc) - timedelta(days=older_than_days)
        deleted = (
            self.db.query(AuditLog)
            .filter(AuditLog.timestamp < cutoff)
            .delete(synchronize_session="fetch")
        )
        self.commit()
        return deleted

