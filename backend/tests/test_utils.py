"""
Helpers, masking, caching and maintenance jobs.
"""
import os
import time
import pytest
from datetime import date, datetime, timedelta
from decimal import Decimal
from unittest.mock import patch
from sqlalchemy import select

import run_jobs
from core.config import Settings
from db.models.audit_log import AuditLog
from services.audit_service import cleanup_old_logs
from services.backup_service import cleanup_old_backups, row_to_dict
from utils.cache import TTLCache
from utils.helpers import (
    calculate_age,
    calculate_commission,
    generate_order_number,
    generate_slug,
    is_strong_password,
    is_valid_cpf,
    mask_cpf,
    mask_email,
    paginate,
    to_money,
)
from utils.email import send_email
from utils.masking import mask_sensitive_data


class TestHelpers:

    @pytest.mark.parametrize("cpf, valid", [
        ("529.982.247-25", True),
        ("52998224725", True),
        ("529.982.247-26", False),
        ("111.111.111-11", False),
        ("1234", False),
        ("", False),
    ])
    def test_cpf_validation(self, cpf, valid):
        assert is_valid_cpf(cpf) is valid

    def test_cpf_masking(self):
        assert mask_cpf("529.982.247-25") == "529.***.247-25"
        assert mask_cpf("123") == "123"

    def test_mask_email(self):
        assert mask_email("joana@example.com") == "j***a@example.com"
        assert mask_email("jo@example.com") == "**@example.com"

    def test_money_rounds_half_up(self):
        assert to_money("10.005") == Decimal("10.01")
        assert to_money(3) == Decimal("3.00")
        assert calculate_commission("99.90", "0.10") == Decimal("9.99")

    def test_order_number_format(self):
        number = generate_order_number()

        assert len(number) == 14
        assert number.startswith("BC")
        assert number[2:8].isdigit()
        assert number[8:].isalnum() and number[8:].upper() == number[8:]

    def test_slug_strips_accents(self):
        assert generate_slug("Ômega 3  Ação Rápida!") == "omega-3-acao-rapida"

    def test_password_strength(self):
        assert is_strong_password("Senha@123")
        assert not is_strong_password("senha123")

    def test_age(self):
        assert calculate_age(date(2000, 6, 15), today=date(2018, 6, 14)) == 17
        assert calculate_age(date(2000, 6, 15), today=date(2018, 6, 15)) == 18

    def test_paginate(self):
        assert paginate(2, 20, 41) == {"page": 2, "limit": 20, "total": 41, "pages": 3}


class TestMasking:

    def test_masks_nested_sensitive_keys(self):
        data = {"user": {"cpf": "52998224725", "name": "Ana"}, "bank": [{"Account": "123456-7", "pix_key": None}]}

        masked = mask_sensitive_data(data)

        assert masked["user"] == {"cpf": "52*******25", "name": "Ana"}
        assert masked["bank"][0] == {"Account": "12****-7", "pix_key": None}

    def test_short_values_fully_masked(self):
        assert mask_sensitive_data({"cvv": "123"}) == {"cvv": "***"}


class TestTTLCache:

    def test_expiry_and_invalidation(self):
        cache = TTLCache()
        cache.set("products:1", "a", ttl_seconds=60)
        cache.set("products:2", "b", ttl_seconds=60)
        cache.set("plans", "c", ttl_seconds=60)

        with patch("utils.cache.time.monotonic", return_value=time.monotonic() + 120):
            assert cache.get("products:1") is None

        cache.invalidate("products:")
        assert cache.get("products:2") is None
        assert cache.get("plans") == "c"

        cache.invalidate()
        assert cache.get("plans") is None

    def test_expired_entries_are_dropped_on_write(self):
        cache = TTLCache()
        for term in ("whey", "creatina", "omega"):
            cache.set(f"products:1:20:{term}", term, ttl_seconds=60)

        with patch("utils.cache.time.monotonic", return_value=time.monotonic() + 120):
            cache.set("products:1:20:colageno", "colageno", ttl_seconds=60)

        assert len(cache) == 1

    def test_oldest_entry_evicted_at_capacity(self):
        cache = TTLCache(max_entries=2)
        cache.set("a", 1, ttl_seconds=60)
        cache.set("b", 2, ttl_seconds=60)
        cache.set("c", 3, ttl_seconds=60)

        assert len(cache) == 2
        assert cache.get("a") is None
        assert cache.get("c") == 3


class TestSettings:

    def test_smtp_is_optional(self, monkeypatch):
        for name in ("SMTP_HOST", "SMTP_USERNAME", "SMTP_PASSWORD", "SMTP_FROM_EMAIL"):
            monkeypatch.delenv(name, raising=False)

        loaded = Settings(_env_file=None)

        assert loaded.SMTP_HOST is None
        assert loaded.SMTP_FROM_EMAIL is None
        assert send_email("Assunto", "ana@example.com", "<p>oi</p>") is False


class TestMaintenance:

    def test_cleanup_old_backups(self, tmp_path):
        now = time.time()
        for name, age_days in (("backup-full-old.sql", 40), ("backup-full-new.sql", 5), ("notes.txt", 90)):
            path = tmp_path / name
            path.write_text("x")
            os.utime(path, (now - age_days * 86400, now - age_days * 86400))

        removed = cleanup_old_backups(str(tmp_path), retention_days=30, now=now)

        assert removed == ["backup-full-old.sql"]
        assert sorted(os.listdir(tmp_path)) == ["backup-full-new.sql", "notes.txt"]

    def test_cleanup_missing_directory(self, tmp_path):
        assert cleanup_old_backups(str(tmp_path / "nope"), retention_days=1) == []

    async def test_cleanup_old_audit_logs(self, db_session, user):
        db_session.add_all([
            AuditLog(user_id=user.id, event_type="LOGIN_SUCCESS", created_at=datetime.utcnow() - timedelta(days=400)),
            AuditLog(user_id=user.id, event_type="LOGIN_SUCCESS", created_at=datetime.utcnow()),
        ])
        await db_session.commit()

        removed = await cleanup_old_logs(db_session, retention_days=365)

        assert removed == 1
        assert len((await db_session.execute(select(AuditLog.id))).scalars().all()) == 1

    async def test_export_rows_exclude_password_hash(self, user):
        data = row_to_dict(user)

        assert "hashed_password" not in data
        assert data["email"] == user.email

    def test_job_runner_rejects_unknown_job(self):
        with pytest.raises(SystemExit):
            run_jobs.main(["drop-everything"])

    def test_job_runner_reports_failures(self):
        with patch.object(run_jobs, "run", side_effect=RuntimeError("boom")):
            assert run_jobs.main(["backup"]) == 1
