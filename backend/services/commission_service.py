from db.models.user import User as UserModel, BankData as BankDataModel
from db.models.commission import Commission, WithdrawalRequest
from schemas.commission_schema import Commission as CommissionSchema, Withdrawal as WithdrawalSchema
from config import config
from fastapi import HTTPException, Request
from sqlalchemy import select, func, update
from sqlalchemy.ext.asyncio import AsyncSession
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Optional
from services.state_machine import (
    CommissionStatus, CommissionType, WithdrawalStatus, OPEN_WITHDRAWAL_STATUSES,
    commission_state_machine,
)
from services.referral_service import count_referrals
from services.audit_service import log_event, log_admin_action, AuditEventType
from utils.helpers import to_money, paginate
from utils.timing import timeit
from utils.db import safe_commit
import logging

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


def _format_amount(value: Decimal) -> str:
    return str(value.to_integral_value()) if value == value.to_integral_value() else f"{value:.2f}"


def serialize_withdrawal(withdrawal: WithdrawalRequest) -> dict:
    return WithdrawalSchema.model_validate(withdrawal).model_dump()


async def _sum(db: AsyncSession, column, *filters) -> Decimal:
    value = (await db.execute(select(func.coalesce(func.sum(column), 0)).where(*filters))).scalar_one()
    return to_money(value or 0)


async def available_balance(user_id: int, db: AsyncSession) -> Decimal:
    return await _sum(db, Commission.amount, Commission.earner_id == user_id, Commission.status == CommissionStatus.AVAILABLE)


@timeit("commission_summary")
async def get_summary(user: UserModel, db: AsyncSession) -> dict:
    """Balances recomputed from the ledger on every call.

    Carry rows only move balance around, so earnings count SUBSCRIPTION rows
    and requested/paid amounts come from the withdrawal requests themselves.
    """
    total_earned = await _sum(
        db, Commission.amount,
        Commission.earner_id == user.id,
        Commission.type == CommissionType.SUBSCRIPTION,
        Commission.status != CommissionStatus.CANCELED,
    )
    pending = await _sum(db, Commission.amount, Commission.earner_id == user.id, Commission.status == CommissionStatus.PENDING)
    available = await available_balance(user.id, db)
    requested = await _sum(
        db, WithdrawalRequest.amount,
        WithdrawalRequest.user_id == user.id,
        WithdrawalRequest.status.in_(OPEN_WITHDRAWAL_STATUSES),
    )
    paid = await _sum(db, WithdrawalRequest.amount, WithdrawalRequest.user_id == user.id, WithdrawalRequest.status == WithdrawalStatus.PAID)
    total_referrals, active_referrals = await count_referrals(user.id, db)
    return {
        "summary": {
            "total_earned": total_earned,
            "available_balance": available,
            "pending_balance": pending,
            "requested_balance": requested,
            "paid_balance": paid,
            "total_referrals": total_referrals,
            "active_referrals": active_referrals,
        }
    }


async def list_commissions(user: UserModel, db: AsyncSession, page: int = 1, limit: int = 10, status: Optional[str] = None, type: Optional[str] = None) -> dict:
    filters = [Commission.earner_id == user.id]
    if status:
        filters.append(Commission.status == status)
    if type:
        filters.append(Commission.type == type)
    return await _paginated_commissions(db, filters, page, limit)


async def _paginated_commissions(db: AsyncSession, filters: list, page: int, limit: int) -> dict:
    total = (await db.execute(select(func.count(Commission.id)).where(*filters))).scalar_one()
    rows = (await db.execute(
        select(Commission, UserModel.first_name, UserModel.last_name)
        .join(UserModel, UserModel.id == Commission.source_id)
        .where(*filters)
        .order_by(Commission.created_at.desc(), Commission.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )).all()
    commissions = []
    for commission, first_name, last_name in rows:
        item = CommissionSchema.model_validate(commission).model_dump()
        item["source"] = {"first_name": first_name, "last_name": last_name}
        commissions.append(item)
    return {"commissions": commissions, "pagination": paginate(page, limit, total)}


@timeit("request_withdrawal")
async def request_withdrawal(user: UserModel, amount, db: AsyncSession, request: Request = None) -> dict:
    """Create a PENDING withdrawal and reserve the matching AVAILABLE balance.

    All checks and writes happen in one transaction holding a row lock on the
    user, so two concurrent requests for the same user run one after the other.
    AVAILABLE commissions are moved to REQUESTED oldest first; when the last one
    overshoots, the difference goes back to the ledger as a BALANCE_CARRY row.
    """
    try:
        amount = to_money(amount) if amount is not None else None
    except (InvalidOperation, ValueError):
        amount = None
    if amount is None or amount <= 0:
        raise HTTPException(status_code=400, detail="Valor inválido para saque")

    minimum = config.get_min_withdrawal_amount()
    if amount < minimum:
        raise HTTPException(status_code=400, detail=f"Valor mínimo para saque é R$ {_format_amount(minimum)}")

    await db.execute(select(UserModel.id).where(UserModel.id == user.id).with_for_update())

    available_rows = (await db.execute(
        select(Commission)
        .where(Commission.earner_id == user.id, Commission.status == CommissionStatus.AVAILABLE)
        .order_by(Commission.created_at.asc(), Commission.id.asc())
        .with_for_update()
    )).scalars().all()
    balance = to_money(sum((c.amount for c in available_rows), ZERO))
    if amount > balance:
        raise HTTPException(status_code=400, detail="Saldo insuficiente")

    bank_data = (await db.execute(select(BankDataModel).where(BankDataModel.user_id == user.id))).scalars().first()
    if not bank_data:
        raise HTTPException(status_code=400, detail="Dados bancários não cadastrados")

    open_request = (await db.execute(
        select(WithdrawalRequest.id).where(
            WithdrawalRequest.user_id == user.id,
            WithdrawalRequest.status.in_(OPEN_WITHDRAWAL_STATUSES),
        )
    )).first()
    if open_request is not None:
        raise HTTPException(status_code=400, detail="Você já possui uma solicitação de saque pendente")

    withdrawal = WithdrawalRequest(
        user_id=user.id,
        amount=amount,
        status=WithdrawalStatus.PENDING,
        bank_data=bank_data.snapshot(),
    )
    db.add(withdrawal)
    await db.flush()

    remaining = amount
    now = datetime.utcnow()
    for commission in available_rows:
        if remaining <= 0:
            break
        commission_state_machine.ensure_transition(commission.status, CommissionStatus.REQUESTED)
        commission.status = CommissionStatus.REQUESTED
        commission.withdrawal_request_id = withdrawal.id
        if commission.amount > remaining:
            carry = Commission(
                earner_id=commission.earner_id,
                source_id=commission.source_id,
                type=CommissionType.BALANCE_CARRY,
                amount=to_money(commission.amount - remaining),
                percentage=commission.percentage,
                status=CommissionStatus.AVAILABLE,
                available_at=now,
                created_at=now,
            )
            db.add(carry)
            await db.flush()
            withdrawal.carry_commission_id = carry.id
            remaining = ZERO
        else:
            remaining -= commission.amount

    log_event(db, AuditEventType.WITHDRAWAL_REQUESTED, user_id=user.id, entity="withdrawal_request",
              entity_id=withdrawal.id, new_data={"amount": amount, "bank_data": withdrawal.bank_data}, request=request)
    await safe_commit(db, client_error_message="Você já possui uma solicitação de saque pendente")
    logger.info(f"Withdrawal {withdrawal.id} of {amount} requested by user {user.id}")
    return {"withdrawal_request": serialize_withdrawal(withdrawal)}


async def list_withdrawals(user: UserModel, db: AsyncSession, page: int = 1, limit: int = 10) -> dict:
    filters = [WithdrawalRequest.user_id == user.id]
    total = (await db.execute(select(func.count(WithdrawalRequest.id)).where(*filters))).scalar_one()
    rows = (await db.execute(
        select(WithdrawalRequest)
        .where(*filters)
        .order_by(WithdrawalRequest.created_at.desc(), WithdrawalRequest.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )).scalars().all()
    return {"withdrawals": [serialize_withdrawal(w) for w in rows], "pagination": paginate(page, limit, total)}


async def settle_reserved_commissions(withdrawal: WithdrawalRequest, new_status: str, db: AsyncSession) -> None:
    """Apply a withdrawal's final outcome to the commissions it reserved"""
    reserved = (await db.execute(
        select(Commission)
        .where(Commission.withdrawal_request_id == withdrawal.id, Commission.status == CommissionStatus.REQUESTED)
        .with_for_update()
    )).scalars().all()
    now = datetime.utcnow()

    if new_status == WithdrawalStatus.PAID:
        for commission in reserved:
            commission_state_machine.ensure_transition(commission.status, CommissionStatus.PAID)
            commission.status = CommissionStatus.PAID
            commission.paid_at = now
        return

    # REJECTED or CANCELED: hand the balance back
    for commission in reserved:
        commission_state_machine.ensure_transition(commission.status, CommissionStatus.AVAILABLE)
        commission.status = CommissionStatus.AVAILABLE
        commission.withdrawal_request_id = None
    if withdrawal.carry_commission_id:
        carry = await db.get(Commission, withdrawal.carry_commission_id, with_for_update=True)
        if carry is not None and carry.status == CommissionStatus.AVAILABLE:
            carry.status = CommissionStatus.CANCELED
        elif carry is not None:
            logger.warning(f"Carry commission {carry.id} is {carry.status}; left unchanged for withdrawal {withdrawal.id}")


async def cancel_withdrawal(user: UserModel, withdrawal_id: int, db: AsyncSession, request: Request = None) -> dict:
    """Owner cancels their own PENDING request"""
    withdrawal = (await db.execute(
        select(WithdrawalRequest)
        .where(WithdrawalRequest.id == withdrawal_id, WithdrawalRequest.user_id == user.id)
        .with_for_update()
    )).scalars().first()
    if not withdrawal:
        raise HTTPException(status_code=404, detail="Solicitação de saque não encontrada")
    if withdrawal.status != WithdrawalStatus.PENDING:
        raise HTTPException(status_code=400, detail="Solicitação já foi processada")

    await settle_reserved_commissions(withdrawal, WithdrawalStatus.CANCELED, db)
    withdrawal.status = WithdrawalStatus.CANCELED
    withdrawal.processed_at = datetime.utcnow()
    log_event(db, AuditEventType.WITHDRAWAL_CANCELED, user_id=user.id, entity="withdrawal_request",
              entity_id=withdrawal.id, old_data={"status": WithdrawalStatus.PENDING},
              new_data={"status": WithdrawalStatus.CANCELED}, request=request)
    await safe_commit(db)
    return {"withdrawal_request": serialize_withdrawal(withdrawal)}


@timeit("release_pending_commissions")
async def release_pending_commissions(db: AsyncSession, now: Optional[datetime] = None) -> int:
    """Move PENDING commissions older than the release window to AVAILABLE"""
    now = now or datetime.utcnow()
    days = config.get_commission_release_days()
    cutoff = now - timedelta(days=days)
    result = await db.execute(
        update(Commission)
        .where(Commission.status == CommissionStatus.PENDING, Commission.created_at <= cutoff)
        .values(status=CommissionStatus.AVAILABLE, available_at=now, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    released = result.rowcount or 0
    if released:
        log_event(db, AuditEventType.COMMISSION_RELEASED, entity="commission",
                  metadata={"released": released, "cutoff": cutoff, "release_days": days})
    await safe_commit(db)
    logger.info(f"Released {released} pending commission(s) created before {cutoff.isoformat()}")
    return released


async def list_all_commissions(db: AsyncSession, page: int = 1, limit: int = 20, status: Optional[str] = None, earner_id: Optional[int] = None) -> dict:
    filters = []
    if status:
        filters.append(Commission.status == status)
    if earner_id:
        filters.append(Commission.earner_id == earner_id)
    return await _paginated_commissions(db, filters, page, limit)


# Admin may release or cancel by hand; REQUESTED rows only move with their withdrawal
ADMIN_COMMISSION_TRANSITIONS = {
    (CommissionStatus.PENDING, CommissionStatus.AVAILABLE),
    (CommissionStatus.PENDING, CommissionStatus.CANCELED),
    (CommissionStatus.AVAILABLE, CommissionStatus.CANCELED),
}


async def transition_commission(admin: UserModel, commission_id: int, new_status: str, db: AsyncSession, request: Request = None) -> dict:
    commission = await db.get(Commission, commission_id, with_for_update=True)
    if not commission:
        raise HTTPException(status_code=404, detail="Comissão não encontrada")
    old_status = commission.status
    commission_state_machine.ensure_transition(old_status, new_status)
    if (old_status, new_status) not in ADMIN_COMMISSION_TRANSITIONS:
        raise HTTPException(status_code=400, detail="Ação inválida")
    if commission.type == CommissionType.BALANCE_CARRY:
        # The carry row is undone together with its withdrawal while that request is open
        holder = (await db.execute(
            select(WithdrawalRequest.id).where(
                WithdrawalRequest.carry_commission_id == commission.id,
                WithdrawalRequest.status.in_(OPEN_WITHDRAWAL_STATUSES),
            )
        )).first()
        if holder is not None:
            raise HTTPException(status_code=400, detail="Ação inválida")

    commission.status = new_status
    if new_status == CommissionStatus.AVAILABLE:
        commission.available_at = datetime.utcnow()
    log_admin_action(db, admin.email, f"commission_{new_status.lower()}", target_user_id=commission.earner_id,
                     entity="commission", entity_id=commission.id,
                     old_data={"status": old_status}, new_data={"status": new_status}, request=request)
    await safe_commit(db)
    return {"commission": CommissionSchema.model_validate(commission).model_dump()}
