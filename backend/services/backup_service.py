from db.models.user import User as UserModel, Address, BankData, UserPreferences
from db.models.subscription import Subscription, BillingHistory
from db.models.commission import Commission, WithdrawalRequest
from db.models.order import Order
from db.models.lgpd import UserConsent
from db.models.audit_log import AuditLog
from core.config import settings
from db.session import ASYNC_DATABASE_URL
from fastapi import HTTPException
from fastapi.encoders import jsonable_encoder
from sqlalchemy import select, desc, inspect
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncSession
from datetime import datetime
from typing import Any, Optional
from services.audit_service import log_event, AuditEventType
from utils.masking import mask_sensitive_data
import asyncio
import json
import logging
import os
import shutil
import time

logger = logging.getLogger(__name__)

# Never leave the database, not even in an export
EXCLUDED_COLUMNS = {"hashed_password", "email_verification_token", "email_verification_token_expires"}


def row_to_dict(row: Any) -> Optional[dict]:
    if row is None:
        return None
    data = {}
    for attr in inspect(row).mapper.column_attrs:
        if attr.key in EXCLUDED_COLUMNS:
            continue
        data[attr.key] = getattr(row, attr.key)
    return data


def _timestamp() -> str:
    return datetime.utcnow().strftime("%Y%m%dT%H%M%S%f")


async def collect_user_data(user_id: int, db: AsyncSession, audit_limit: int = 100) -> dict:
    """Everything stored about one user, as plain JSON-ready dicts"""
    user = await db.get(UserModel, user_id)
    if not user:
        raise HTTPException(status_code=404, detail="Usuário não encontrado")

    async def one(model, column):
        return (await db.execute(select(model).where(column == user_id))).scalars().first()

    async def many(query):
        return [row_to_dict(r) for r in (await db.execute(query)).scalars().all()]

    subscription = await one(Subscription, Subscription.user_id)
    billing = []
    if subscription is not None:
        billing = await many(
            select(BillingHistory).where(BillingHistory.subscription_id == subscription.id).order_by(BillingHistory.id)
        )

    data = {
        "user": row_to_dict(user),
        "address": row_to_dict(await one(Address, Address.user_id)),
        "bank_data": row_to_dict(await one(BankData, BankData.user_id)),
        "preferences": row_to_dict(await one(UserPreferences, UserPreferences.user_id)),
        "subscription": row_to_dict(subscription),
        "billing_history": billing,
        "orders": [
            {**row_to_dict(o), "items": [row_to_dict(i) for i in o.items]}
            for o in (await db.execute(select(Order).where(Order.user_id == user_id).order_by(Order.id))).scalars().all()
        ],
        "commissions": await many(select(Commission).where(Commission.earner_id == user_id).order_by(Commission.id)),
        "withdrawals": await many(select(WithdrawalRequest).where(WithdrawalRequest.user_id == user_id).order_by(WithdrawalRequest.id)),
        "consents": await many(select(UserConsent).where(UserConsent.user_id == user_id)),
        "audit_logs": await many(
            select(AuditLog).where(AuditLog.user_id == user_id).order_by(desc(AuditLog.created_at)).limit(audit_limit)
        ),
        "collected_at": datetime.utcnow(),
    }
    return jsonable_encoder(data)


def _write_json(path: str, payload: dict) -> None:
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(payload, f, ensure_ascii=False, indent=2)


async def export_user_data(user_id: int, db: AsyncSession, directory: Optional[str] = None, masked: bool = False) -> str:
    """Write a user's data to a JSON file and return its path"""
    data = await collect_user_data(user_id, db)
    if masked:
        data = mask_sensitive_data(data)
    path = os.path.join(directory or settings.EXPORT_DIR, f"user-data-export-{user_id}-{_timestamp()}.json")
    await asyncio.to_thread(_write_json, path, data)
    logger.info(f"User {user_id} data exported to {path}")
    return path


async def _dump_mysql(url, target: str) -> None:
    env = dict(os.environ)
    if url.password:
        env["MYSQL_PWD"] = url.password
    args = ["mysqldump", "--single-transaction", "--routines", f"--host={url.host or 'localhost'}",
            f"--port={url.port or 3306}", f"--user={url.username}", f"--result-file={target}", url.database]
    process = await asyncio.create_subprocess_exec(
        *args, env=env, stdout=asyncio.subprocess.PIPE, stderr=asyncio.subprocess.PIPE
    )
    _, stderr = await process.communicate()
    if process.returncode != 0:
        raise RuntimeError(f"mysqldump exited with {process.returncode}: {stderr.decode(errors='replace').strip()}")


async def create_database_backup(db: AsyncSession, directory: Optional[str] = None) -> str:
    """Full database backup: mysqldump for MySQL, a file copy for SQLite"""
    directory = directory or settings.BACKUP_DIR
    os.makedirs(directory, exist_ok=True)
    url = make_url(ASYNC_DATABASE_URL)

    if url.get_backend_name() == "sqlite":
        if not url.database or url.database == ":memory:":
            raise RuntimeError("In-memory SQLite databases cannot be backed up")
        target = os.path.join(directory, f"backup-full-{_timestamp()}.db")
        await asyncio.to_thread(shutil.copy2, url.database, target)
    elif url.get_backend_name() == "mysql":
        target = os.path.join(directory, f"backup-full-{_timestamp()}.sql")
        await _dump_mysql(url, target)
    else:
        raise RuntimeError(f"Backups are not supported for {url.get_backend_name()}")

    size = os.path.getsize(target)
    log_event(db, AuditEventType.BACKUP_CREATED, entity="backup",
              metadata={"type": "full", "filename": os.path.basename(target), "size": size})
    await db.commit()
    logger.info(f"Database backup created: {target} ({size} bytes)")
    return target


def cleanup_old_backups(directory: Optional[str] = None, retention_days: Optional[int] = None, now: Optional[float] = None) -> list[str]:
    """Remove backup files older than the retention window; returns removed names"""
    directory = directory or settings.BACKUP_DIR
    days = retention_days if retention_days is not None else settings.BACKUP_RETENTION_DAYS
    if not os.path.isdir(directory):
        return []
    cutoff = (now if now is not None else time.time()) - days * 86400
    removed = []
    for name in sorted(os.listdir(directory)):
        path = os.path.join(directory, name)
        if not name.startswith("backup-") or not os.path.isfile(path):
            continue
        if os.path.getmtime(path) < cutoff:
            os.remove(path)
            removed.append(name)
    if removed:
        logger.info(f"Removed {len(removed)} old backup(s) from {directory}")
    return removed
