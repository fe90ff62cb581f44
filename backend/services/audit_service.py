from db.models.audit_log import AuditLog
from db.models.user import User as UserModel
from fastapi import Request
from fastapi.encoders import jsonable_encoder
from sqlalchemy import select, func, delete, desc
from sqlalchemy.ext.asyncio import AsyncSession
from datetime import datetime, timedelta
from typing import Any, Optional
from core.config import settings
from utils.masking import mask_sensitive_data
from utils.helpers import paginate, mask_email
from utils.logging_config import client_ip_var
import logging

logger = logging.getLogger(__name__)


class AuditEventType:
    LOGIN_SUCCESS = "LOGIN_SUCCESS"
    LOGIN_FAILED = "LOGIN_FAILED"
    LOGOUT = "LOGOUT"
    PASSWORD_CHANGED = "PASSWORD_CHANGED"
    PASSWORD_RESET_REQUESTED = "PASSWORD_RESET_REQUESTED"
    PASSWORD_RESET_COMPLETED = "PASSWORD_RESET_COMPLETED"
    EMAIL_VERIFIED = "EMAIL_VERIFIED"
    USER_REGISTERED = "USER_REGISTERED"
    USER_UPDATED = "USER_UPDATED"
    USER_DEACTIVATED = "USER_DEACTIVATED"
    USER_REACTIVATED = "USER_REACTIVATED"
    BANK_DATA_ADDED = "BANK_DATA_ADDED"
    BANK_DATA_UPDATED = "BANK_DATA_UPDATED"
    BANK_DATA_VIEWED = "BANK_DATA_VIEWED"
    SUBSCRIPTION_CREATED = "SUBSCRIPTION_CREATED"
    SUBSCRIPTION_CANCELED = "SUBSCRIPTION_CANCELED"
    PAYMENT_PROCESSED = "PAYMENT_PROCESSED"
    COMMISSION_EARNED = "COMMISSION_EARNED"
    COMMISSION_RELEASED = "COMMISSION_RELEASED"
    COMMISSION_PAID = "COMMISSION_PAID"
    WITHDRAWAL_REQUESTED = "WITHDRAWAL_REQUESTED"
    WITHDRAWAL_APPROVED = "WITHDRAWAL_APPROVED"
    WITHDRAWAL_PROCESSING = "WITHDRAWAL_PROCESSING"
    WITHDRAWAL_REJECTED = "WITHDRAWAL_REJECTED"
    WITHDRAWAL_PAID = "WITHDRAWAL_PAID"
    WITHDRAWAL_CANCELED = "WITHDRAWAL_CANCELED"
    ORDER_CREATED = "ORDER_CREATED"
    ADMIN_ACTION = "ADMIN_ACTION"
    DATA_EXPORTED = "DATA_EXPORTED"
    DATA_RECTIFIED = "DATA_RECTIFIED"
    DATA_ANONYMIZED = "DATA_ANONYMIZED"
    CONSENT_UPDATED = "CONSENT_UPDATED"
    SUSPICIOUS_ACTIVITY = "SUSPICIOUS_ACTIVITY"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    UNAUTHORIZED_ACCESS = "UNAUTHORIZED_ACCESS"
    DATA_BREACH_ATTEMPT = "DATA_BREACH_ATTEMPT"
    BACKUP_CREATED = "BACKUP_CREATED"


SECURITY_EVENTS = [
    AuditEventType.LOGIN_FAILED,
    AuditEventType.SUSPICIOUS_ACTIVITY,
    AuditEventType.UNAUTHORIZED_ACCESS,
    AuditEventType.RATE_LIMIT_EXCEEDED,
    AuditEventType.DATA_BREACH_ATTEMPT,
]


def request_meta(request: Optional[Request]) -> tuple[Optional[str], Optional[str]]:
    """Client IP and user agent for an incoming request"""
    if request is None:
        ip = client_ip_var.get()
        return (None if ip == "-" else ip), None
    forwarded = request.headers.get("x-forwarded-for")
    ip = forwarded.split(",")[0].strip() if forwarded else (request.client.host if request.client else None)
    return ip, request.headers.get("user-agent")


def _prepare(data: Any) -> Any:
    if data is None:
        return None
    return mask_sensitive_data(jsonable_encoder(data))


def log_event(
    db: AsyncSession,
    event_type: str,
    user_id: Optional[int] = None,
    admin_email: Optional[str] = None,
    entity: Optional[str] = None,
    entity_id: Any = None,
    old_data: Any = None,
    new_data: Any = None,
    metadata: Any = None,
    request: Optional[Request] = None,
    success: bool = True,
    error_message: Optional[str] = None,
) -> Optional[AuditLog]:
    """Stage an audit row in the caller's transaction.

    The row is committed together with the change it describes. Serialization
    problems are logged and never fail the main operation.
    """
    try:
        ip, user_agent = request_meta(request)
        entry = AuditLog(
            user_id=user_id,
            admin_email=admin_email,
            event_type=event_type,
            entity=entity,
            entity_id=str(entity_id) if entity_id is not None else None,
            old_data=_prepare(old_data),
            new_data=_prepare(new_data),
            details=_prepare(metadata) or {},
            ip_address=ip,
            user_agent=(user_agent or "")[:512] or None,
            success=success,
            error_message=error_message,
        )
        db.add(entry)
    except Exception as e:
        logger.error(f"Failed to record audit event {event_type}: {e}")
        return None

    if event_type in SECURITY_EVENTS:
        logger.warning(f"Security event {event_type} user={user_id} ip={ip} error={error_message}")
    return entry


def log_admin_action(db: AsyncSession, admin_email: str, action: str, target_user_id: Optional[int] = None, entity: Optional[str] = None, entity_id: Any = None, old_data: Any = None, new_data: Any = None, request: Optional[Request] = None):
    return log_event(
        db,
        AuditEventType.ADMIN_ACTION,
        user_id=target_user_id,
        admin_email=admin_email,
        entity=entity,
        entity_id=entity_id,
        old_data=old_data,
        new_data=new_data,
        metadata={"action": action},
        request=request,
    )


def log_login_failed(db: AsyncSession, email: str, reason: str, request: Optional[Request] = None):
    return log_event(
        db,
        AuditEventType.LOGIN_FAILED,
        metadata={"email": mask_email(email)},
        request=request,
        success=False,
        error_message=reason,
    )


def serialize_log(entry: AuditLog, user: Optional[UserModel] = None) -> dict:
    data = {
        "id": entry.id,
        "user_id": entry.user_id,
        "admin_email": entry.admin_email,
        "event_type": entry.event_type,
        "entity": entry.entity,
        "entity_id": entry.entity_id,
        "old_data": entry.old_data,
        "new_data": entry.new_data,
        "metadata": entry.details or {},
        "ip_address": entry.ip_address,
        "user_agent": entry.user_agent,
        "success": entry.success,
        "error_message": entry.error_message,
        "created_at": entry.created_at,
    }
    if user is not None:
        data["user"] = {"first_name": user.first_name, "last_name": user.last_name, "email": user.email}
    return data


async def get_logs(db: AsyncSession, user_id: Optional[int] = None, event_type: Optional[str] = None, start_date: Optional[datetime] = None, end_date: Optional[datetime] = None, page: int = 1, limit: int = 50) -> dict:
    filters = []
    if user_id is not None:
        filters.append(AuditLog.user_id == user_id)
    if event_type:
        filters.append(AuditLog.event_type == event_type)
    if start_date:
        filters.append(AuditLog.created_at >= start_date)
    if end_date:
        filters.append(AuditLog.created_at <= end_date)

    total = (await db.execute(select(func.count(AuditLog.id)).where(*filters))).scalar_one()
    rows = (await db.execute(
        select(AuditLog, UserModel)
        .outerjoin(UserModel, UserModel.id == AuditLog.user_id)
        .where(*filters)
        .order_by(desc(AuditLog.created_at), desc(AuditLog.id))
        .offset((page - 1) * limit)
        .limit(limit)
    )).all()
    return {
        "logs": [serialize_log(entry, user) for entry, user in rows],
        "pagination": paginate(page, limit, total),
    }


async def generate_security_report(db: AsyncSession, start_date: datetime, end_date: datetime) -> dict:
    events = (await db.execute(
        select(AuditLog)
        .where(AuditLog.event_type.in_(SECURITY_EVENTS), AuditLog.created_at >= start_date, AuditLog.created_at <= end_date)
        .order_by(desc(AuditLog.created_at))
    )).scalars().all()

    by_type: dict[str, int] = {}
    by_ip: dict[str, int] = {}
    for event in events:
        by_type[event.event_type] = by_type.get(event.event_type, 0) + 1
        ip = event.ip_address or "unknown"
        by_ip[ip] = by_ip.get(ip, 0) + 1

    top_ips = sorted(by_ip.items(), key=lambda item: item[1], reverse=True)[:10]
    return {
        "summary": {
            "total_events": len(events),
            "period": {"start_date": start_date, "end_date": end_date},
            "event_types": len(by_type),
            "unique_ips": len(by_ip),
        },
        "events_by_type": by_type,
        "top_suspicious_ips": [{"ip": ip, "count": count} for ip, count in top_ips],
        "recent_events": [serialize_log(e) for e in events[:20]],
    }


async def cleanup_old_logs(db: AsyncSession, retention_days: Optional[int] = None) -> int:
    """Delete audit rows older than the retention window; returns rows removed"""
    days = retention_days if retention_days is not None else settings.AUDIT_LOG_RETENTION_DAYS
    cutoff = datetime.utcnow() - timedelta(days=days)
    result = await db.execute(delete(AuditLog).where(AuditLog.created_at < cutoff))
    await db.commit()
    removed = result.rowcount or 0
    logger.info(f"Removed {removed} audit log(s) older than {days} days")
    return removed
