from db.models.user import User as UserModel, Address, BankData
from db.models.subscription import Subscription, BillingHistory
from db.models.commission import WithdrawalRequest
from db.models.lgpd import UserConsent, DataSubjectRequest
from db.models.audit_log import AuditLog
from schemas.lgpd_schema import Consent, DataRequest, RectificationRequest
from core.config import settings
from config import config
from fastapi import HTTPException, Request
from sqlalchemy import select, func, delete, desc
from sqlalchemy.ext.asyncio import AsyncSession
from datetime import datetime, timedelta
from typing import Optional
from services.state_machine import OPEN_WITHDRAWAL_STATUSES
from services.backup_service import collect_user_data, export_user_data
from services.audit_service import log_event, log_admin_action, request_meta, AuditEventType
from utils.masking import mask_sensitive_data
from utils.email import send_data_export_email
from utils.helpers import paginate
from utils.timing import timeit
from utils.db import safe_commit
import logging

logger = logging.getLogger(__name__)

CONSENT_TYPES = ("MARKETING", "ANALYTICS", "PERSONALIZATION", "THIRD_PARTY_SHARING")
ANONYMIZED_NAME = "ANONIMIZADO"
ANONYMIZED_CPF = "00000000000"


class RequestStatus:
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    REJECTED = "REJECTED"


def serialize_request(data_request: DataSubjectRequest) -> dict:
    return DataRequest.model_validate(data_request).model_dump()


# Consents

async def record_consent(user: UserModel, consent_type: str, granted: bool, purpose: Optional[str], db: AsyncSession, request: Request = None) -> dict:
    if consent_type not in CONSENT_TYPES:
        raise HTTPException(status_code=400, detail="Tipo de consentimento inválido")

    ip, user_agent = request_meta(request)
    now = datetime.utcnow()
    consent = (await db.execute(
        select(UserConsent).where(UserConsent.user_id == user.id, UserConsent.consent_type == consent_type)
    )).scalars().first()
    if consent is None:
        consent = UserConsent(user_id=user.id, consent_type=consent_type)
        db.add(consent)

    consent.granted = granted
    consent.purpose = purpose
    consent.granted_at = now if granted else None
    consent.revoked_at = None if granted else now
    consent.ip_address = ip
    consent.user_agent = (user_agent or "")[:512] or None

    log_event(db, AuditEventType.CONSENT_UPDATED, user_id=user.id, entity="consent",
              metadata={"consent_type": consent_type, "granted": granted, "purpose": purpose}, request=request)
    await safe_commit(db)
    return {"consent": Consent.model_validate(consent).model_dump()}


async def revoke_consent(user: UserModel, consent_type: str, db: AsyncSession, request: Request = None) -> dict:
    return await record_consent(user, consent_type, False, "Revogação pelo usuário", db, request)


async def list_consents(user: UserModel, db: AsyncSession) -> dict:
    consents = (await db.execute(
        select(UserConsent).where(UserConsent.user_id == user.id).order_by(UserConsent.consent_type)
    )).scalars().all()
    return {"consents": [Consent.model_validate(c).model_dump() for c in consents]}


# Data subject requests

def _new_request(user_id: int, type: str, db: AsyncSession, reason: Optional[str] = None) -> DataSubjectRequest:
    data_request = DataSubjectRequest(user_id=user_id, type=type, status=RequestStatus.PENDING,
                                      reason=reason, requested_at=datetime.utcnow())
    db.add(data_request)
    return data_request


def _complete(data_request: DataSubjectRequest, admin_email: Optional[str] = None, notes: Optional[str] = None) -> None:
    data_request.status = RequestStatus.COMPLETED
    data_request.processed_at = datetime.utcnow()
    data_request.admin_email = admin_email
    if notes is not None:
        data_request.admin_notes = notes


@timeit("process_access_request")
async def process_access_request(user: UserModel, db: AsyncSession, request: Request = None) -> dict:
    """Right of access: return everything stored about the user, sensitive fields masked"""
    data_request = _new_request(user.id, "ACCESS", db)
    user_data = await collect_user_data(user.id, db)
    _complete(data_request)
    await db.flush()
    log_event(db, AuditEventType.DATA_EXPORTED, user_id=user.id, entity="user_data", entity_id=user.id,
              metadata={"request_type": "ACCESS", "data_types": sorted(user_data.keys())}, request=request)
    await safe_commit(db)
    return {"request_id": data_request.id, "data": mask_sensitive_data(user_data)}


@timeit("process_portability_request")
async def process_portability_request(user_id: int, db: AsyncSession, admin_email: Optional[str] = None, request: Request = None) -> dict:
    data_request = _new_request(user_id, "PORTABILITY", db)
    export_path = await export_user_data(user_id, db)
    _complete(data_request, admin_email)
    await db.flush()
    log_event(db, AuditEventType.DATA_EXPORTED, user_id=user_id, admin_email=admin_email, entity="user_data",
              entity_id=user_id, metadata={"request_type": "PORTABILITY", "export_path": export_path}, request=request)
    await safe_commit(db)

    if admin_email is None:
        user = await db.get(UserModel, user_id)
        try:
            send_data_export_email(user.email, user.first_name)
        except Exception as e:
            logger.error(f"Data export email failed for user {user_id}: {e}")

    return {"request_id": data_request.id, "export_path": export_path}


async def process_rectification_request(user: UserModel, updates: RectificationRequest, db: AsyncSession, request: Request = None) -> dict:
    changes = updates.model_dump(exclude_unset=True)
    if not changes:
        raise HTTPException(status_code=400, detail="Nenhum dado para retificar")

    data_request = _new_request(user.id, "RECTIFICATION", db)
    old_data = {field: getattr(user, field) for field in changes}
    for field, value in changes.items():
        if isinstance(value, str):
            value = value.strip()
        setattr(user, field, value)
    _complete(data_request)
    await db.flush()
    log_event(db, AuditEventType.DATA_RECTIFIED, user_id=user.id, entity="user", entity_id=user.id,
              old_data=old_data, new_data=changes, metadata={"request_type": "RECTIFICATION"}, request=request)
    await safe_commit(db)
    return {"request_id": data_request.id, "updated_fields": sorted(changes.keys())}


async def create_erasure_request(user: UserModel, reason: Optional[str], db: AsyncSession, request: Request = None) -> dict:
    existing = (await db.execute(
        select(DataSubjectRequest.id).where(
            DataSubjectRequest.user_id == user.id,
            DataSubjectRequest.type == "ERASURE",
            DataSubjectRequest.status == RequestStatus.PENDING,
        )
    )).first()
    if existing is not None:
        raise HTTPException(status_code=400, detail="Já existe uma solicitação de exclusão pendente")

    data_request = _new_request(user.id, "ERASURE", db, reason=reason)
    await db.flush()
    log_event(db, AuditEventType.USER_UPDATED, user_id=user.id, entity="data_subject_request",
              entity_id=data_request.id, metadata={"request_type": "ERASURE", "reason": reason}, request=request)
    await safe_commit(db)
    return {"request_id": data_request.id}


async def list_user_requests(user: UserModel, db: AsyncSession) -> dict:
    rows = (await db.execute(
        select(DataSubjectRequest).where(DataSubjectRequest.user_id == user.id)
        .order_by(desc(DataSubjectRequest.requested_at), desc(DataSubjectRequest.id))
    )).scalars().all()
    return {"requests": [serialize_request(r) for r in rows]}


# Erasure

async def check_erasure_exclusions(user_id: int, db: AsyncSession, now: Optional[datetime] = None) -> Optional[str]:
    """Reason the user's data must be kept, or None when erasure is allowed"""
    now = now or datetime.utcnow()
    active = (await db.execute(
        select(Subscription.id).where(Subscription.user_id == user_id, Subscription.status == "ACTIVE")
    )).first()
    if active is not None:
        return "Usuário possui assinatura ativa. Cancele a assinatura antes de solicitar exclusão."

    open_withdrawal = (await db.execute(
        select(WithdrawalRequest.id).where(
            WithdrawalRequest.user_id == user_id, WithdrawalRequest.status.in_(OPEN_WITHDRAWAL_STATUSES)
        )
    )).first()
    if open_withdrawal is not None:
        return "Usuário possui solicitações de saque pendentes."

    years = config.get_tax_retention_years()
    recent_billing = (await db.execute(
        select(BillingHistory.id)
        .join(Subscription, Subscription.id == BillingHistory.subscription_id)
        .where(Subscription.user_id == user_id, BillingHistory.created_at >= now - timedelta(days=365 * years))
    )).first()
    if recent_billing is not None:
        return f"Dados devem ser mantidos por {years} anos para fins fiscais conforme legislação brasileira."
    return None


async def anonymize_user(user: UserModel, db: AsyncSession) -> None:
    """Replace PII with sentinels and drop address, bank data and consents; the caller commits"""
    user.first_name = ANONYMIZED_NAME
    user.last_name = ANONYMIZED_NAME
    user.email = f"anonimizado_{user.id}@example.com"
    user.cpf = ANONYMIZED_CPF
    user.phone = None
    user.birth_date = None
    user.is_active = False
    user.email_verified = False
    user.email_verification_token = None
    user.email_verification_token_expires = None
    await db.execute(delete(Address).where(Address.user_id == user.id))
    await db.execute(delete(BankData).where(BankData.user_id == user.id))
    await db.execute(delete(UserConsent).where(UserConsent.user_id == user.id))


@timeit("process_data_request")
async def process_request(admin: UserModel, request_id: int, action: str, db: AsyncSession, admin_notes: Optional[str] = None, request: Request = None) -> dict:
    """Admin decision on a pending request. Only ERASURE requests can be approved."""
    data_request = (await db.execute(
        select(DataSubjectRequest).where(DataSubjectRequest.id == request_id).with_for_update()
    )).scalars().first()
    if not data_request:
        raise HTTPException(status_code=404, detail="Solicitação não encontrada")
    if data_request.status != RequestStatus.PENDING:
        raise HTTPException(status_code=400, detail="Solicitação já foi processada")

    if action == "reject":
        data_request.status = RequestStatus.REJECTED
        data_request.processed_at = datetime.utcnow()
        data_request.admin_email = admin.email
        data_request.admin_notes = admin_notes
        log_admin_action(db, admin.email, "data_request_rejected", target_user_id=data_request.user_id,
                         entity="data_subject_request", entity_id=data_request.id,
                         new_data={"admin_notes": admin_notes}, request=request)
        await safe_commit(db)
        return {"request": serialize_request(data_request)}

    if action != "approve" or data_request.type != "ERASURE":
        raise HTTPException(status_code=400, detail="Ação inválida")

    reason = await check_erasure_exclusions(data_request.user_id, db)
    if reason:
        data_request.status = RequestStatus.REJECTED
        data_request.processed_at = datetime.utcnow()
        data_request.admin_email = admin.email
        data_request.admin_notes = reason
        log_admin_action(db, admin.email, "data_request_rejected", target_user_id=data_request.user_id,
                         entity="data_subject_request", entity_id=data_request.id,
                         new_data={"admin_notes": reason}, request=request)
        await safe_commit(db)
        logger.info(f"Erasure request {data_request.id} refused: {reason}")
        raise HTTPException(status_code=400, detail=reason)

    user = await db.get(UserModel, data_request.user_id)
    if not user:
        raise HTTPException(status_code=404, detail="Usuário não encontrado")

    backup_path = await export_user_data(user.id, db, directory=settings.BACKUP_DIR)
    await anonymize_user(user, db)
    _complete(data_request, admin.email, admin_notes)
    log_event(db, AuditEventType.DATA_ANONYMIZED, user_id=user.id, admin_email=admin.email, entity="user",
              entity_id=user.id, metadata={"request_type": "ERASURE", "reason": data_request.reason,
                                           "backup_path": backup_path}, request=request)
    await safe_commit(db)
    logger.info(f"User {user.id} anonymized by {admin.email} (request {data_request.id})")
    return {"request": serialize_request(data_request)}


# Admin reporting

async def list_requests_admin(db: AsyncSession, page: int = 1, limit: int = 20, status: Optional[str] = None, type: Optional[str] = None) -> dict:
    filters = []
    if status:
        filters.append(DataSubjectRequest.status == status)
    if type:
        filters.append(DataSubjectRequest.type == type)
    total = (await db.execute(select(func.count(DataSubjectRequest.id)).where(*filters))).scalar_one()
    rows = (await db.execute(
        select(DataSubjectRequest, UserModel)
        .join(UserModel, UserModel.id == DataSubjectRequest.user_id)
        .where(*filters)
        .order_by(desc(DataSubjectRequest.requested_at), desc(DataSubjectRequest.id))
        .offset((page - 1) * limit)
        .limit(limit)
    )).all()
    requests = []
    for data_request, user in rows:
        item = serialize_request(data_request)
        item["user"] = {"first_name": user.first_name, "last_name": user.last_name, "email": user.email}
        requests.append(item)
    return {"requests": requests, "pagination": paginate(page, limit, total)}


async def get_consent_stats(db: AsyncSession) -> dict:
    rows = (await db.execute(
        select(UserConsent.consent_type, UserConsent.granted, func.count(UserConsent.id))
        .group_by(UserConsent.consent_type, UserConsent.granted)
    )).all()
    stats: dict[str, dict] = {}
    for consent_type, granted, count in rows:
        entry = stats.setdefault(consent_type, {"granted": 0, "revoked": 0})
        entry["granted" if granted else "revoked"] = int(count)
    return {"stats": stats}


async def generate_compliance_report(db: AsyncSession, start_date: datetime, end_date: datetime) -> dict:
    if end_date < start_date:
        raise HTTPException(status_code=400, detail="Data final deve ser posterior à data inicial")

    total_users = (await db.execute(select(func.count(UserModel.id)))).scalar_one()
    requests = (await db.execute(
        select(DataSubjectRequest, UserModel)
        .outerjoin(UserModel, UserModel.id == DataSubjectRequest.user_id)
        .where(DataSubjectRequest.requested_at >= start_date, DataSubjectRequest.requested_at <= end_date)
        .order_by(DataSubjectRequest.requested_at)
    )).all()
    incidents = (await db.execute(
        select(AuditLog).where(
            AuditLog.event_type.in_([
                AuditEventType.SUSPICIOUS_ACTIVITY,
                AuditEventType.DATA_BREACH_ATTEMPT,
                AuditEventType.UNAUTHORIZED_ACCESS,
            ]),
            AuditLog.created_at >= start_date,
            AuditLog.created_at <= end_date,
        ).order_by(AuditLog.created_at)
    )).scalars().all()

    by_type: dict[str, dict[str, int]] = {}
    for data_request, _ in requests:
        bucket = by_type.setdefault(data_request.type, {})
        bucket[data_request.status] = bucket.get(data_request.status, 0) + 1

    consent_stats = (await get_consent_stats(db))["stats"]
    return {
        "period": {"start_date": start_date, "end_date": end_date},
        "summary": {
            "total_users": int(total_users or 0),
            "total_requests": len(requests),
            "breach_incidents": len(incidents),
        },
        "data_subject_requests": {
            "by_type": by_type,
            "details": [
                {
                    "id": r.id,
                    "type": r.type,
                    "status": r.status,
                    "requested_at": r.requested_at,
                    "processed_at": r.processed_at,
                    "user": user.full_name if user else "Usuário removido",
                }
                for r, user in requests
            ],
        },
        "consent_management": {
            "stats": consent_stats,
            "total_consents": sum(s["granted"] + s["revoked"] for s in consent_stats.values()),
        },
        "security_incidents": [
            {
                "id": i.id,
                "type": i.event_type,
                "timestamp": i.created_at,
                "ip_address": i.ip_address,
                "description": i.error_message,
            }
            for i in incidents
        ],
        "generated_at": datetime.utcnow(),
    }
