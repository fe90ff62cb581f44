from db.models.user import User as UserModel
from db.models.commission import WithdrawalRequest
from fastapi import HTTPException, Request
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
from datetime import datetime
from typing import Optional
from services.state_machine import WithdrawalStatus, withdrawal_state_machine
from services.commission_service import settle_reserved_commissions, serialize_withdrawal
from services.audit_service import log_event, AuditEventType
from utils.email import send_withdrawal_status_email
from utils.helpers import paginate
from utils.timing import timeit
from utils.db import safe_commit
import logging

logger = logging.getLogger(__name__)

STATUS_EVENTS = {
    WithdrawalStatus.APPROVED: AuditEventType.WITHDRAWAL_APPROVED,
    WithdrawalStatus.PROCESSING: AuditEventType.WITHDRAWAL_PROCESSING,
    WithdrawalStatus.PAID: AuditEventType.WITHDRAWAL_PAID,
    WithdrawalStatus.REJECTED: AuditEventType.WITHDRAWAL_REJECTED,
    WithdrawalStatus.CANCELED: AuditEventType.WITHDRAWAL_CANCELED,
}


async def list_withdrawals_admin(db: AsyncSession, page: int = 1, limit: int = 20, status: Optional[str] = None) -> dict:
    filters = []
    if status:
        filters.append(WithdrawalRequest.status == status)
    total = (await db.execute(select(func.count(WithdrawalRequest.id)).where(*filters))).scalar_one()
    rows = (await db.execute(
        select(WithdrawalRequest, UserModel)
        .join(UserModel, UserModel.id == WithdrawalRequest.user_id)
        .where(*filters)
        .order_by(WithdrawalRequest.created_at.desc(), WithdrawalRequest.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )).all()
    withdrawals = []
    for withdrawal, user in rows:
        item = serialize_withdrawal(withdrawal)
        item["user"] = {"id": user.id, "first_name": user.first_name, "last_name": user.last_name, "email": user.email}
        withdrawals.append(item)
    return {"withdrawals": withdrawals, "pagination": paginate(page, limit, total)}


@timeit("process_withdrawal")
async def process_withdrawal(admin: UserModel, withdrawal_id: int, new_status: str, db: AsyncSession, admin_notes: Optional[str] = None, request: Request = None) -> dict:
    """Move a withdrawal request along its lifecycle.

    PAID settles the reserved commissions; REJECTED and CANCELED return them to
    AVAILABLE and cancel the carry row. The user is emailed after commit.
    """
    withdrawal = (await db.execute(
        select(WithdrawalRequest).where(WithdrawalRequest.id == withdrawal_id).with_for_update()
    )).scalars().first()
    if not withdrawal:
        raise HTTPException(status_code=404, detail="Solicitação de saque não encontrada")

    old_status = withdrawal.status
    withdrawal_state_machine.ensure_transition(old_status, new_status)

    now = datetime.utcnow()
    if new_status == WithdrawalStatus.APPROVED:
        withdrawal.processed_at = now
    elif new_status == WithdrawalStatus.PAID:
        withdrawal.paid_at = now
        withdrawal.processed_at = withdrawal.processed_at or now
        await settle_reserved_commissions(withdrawal, new_status, db)
    elif new_status in (WithdrawalStatus.REJECTED, WithdrawalStatus.CANCELED):
        withdrawal.processed_at = now
        await settle_reserved_commissions(withdrawal, new_status, db)

    withdrawal.status = new_status
    if admin_notes is not None:
        withdrawal.admin_notes = admin_notes

    log_event(
        db,
        STATUS_EVENTS.get(new_status, AuditEventType.ADMIN_ACTION),
        user_id=withdrawal.user_id,
        admin_email=admin.email,
        entity="withdrawal_request",
        entity_id=withdrawal.id,
        old_data={"status": old_status},
        new_data={"status": new_status, "admin_notes": admin_notes},
        request=request,
    )
    await safe_commit(db)
    logger.info(f"Withdrawal {withdrawal.id}: {old_status} -> {new_status} by {admin.email}")

    owner = await db.get(UserModel, withdrawal.user_id)
    if owner is not None:
        try:
            send_withdrawal_status_email(owner.email, owner.first_name, withdrawal.amount, new_status, admin_notes)
        except Exception as e:
            logger.error(f"Withdrawal status email failed for request {withdrawal.id}: {e}")

    return {"withdrawal_request": serialize_withdrawal(withdrawal)}
