import random
import re
import secrets
import string
import time
import unicodedata
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

CENTS = Decimal("0.01")
MINIMUM_AGE = 18

# 1 lowercase, 1 uppercase, 1 digit, 1 special, 8+ chars
STRONG_PASSWORD_RE = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*[0-9])(?=.*[!@#$%^&*]).{8,}$")


def only_digits(value: Optional[str]) -> str:
    return re.sub(r"\D", "", value or "")


def clean_cpf(cpf: str) -> str:
    return only_digits(cpf)


def is_valid_cpf(cpf: str) -> bool:
    """Check the two CPF verifier digits"""
    digits = clean_cpf(cpf)
    if len(digits) != 11 or digits == digits[0] * 11:
        return False
    for position in (9, 10):
        total = sum(int(digits[i]) * (position + 1 - i) for i in range(position))
        check = 11 - (total % 11)
        if check >= 10:
            check = 0
        if check != int(digits[position]):
            return False
    return True


def mask_cpf(cpf: str) -> str:
    d = clean_cpf(cpf)
    if len(d) != 11:
        return cpf
    return f"{d[:3]}.***.{d[6:9]}-{d[9:]}"


def mask_email(email: str) -> str:
    if not email or "@" not in email:
        return email
    local, domain = email.split("@", 1)
    if len(local) <= 2:
        return f"{'*' * len(local)}@{domain}"
    return f"{local[0]}{'*' * (len(local) - 2)}{local[-1]}@{domain}"


def calculate_age(birth_date: date, today: Optional[date] = None) -> int:
    today = today or date.today()
    age = today.year - birth_date.year
    if (today.month, today.day) < (birth_date.month, birth_date.day):
        age -= 1
    return age


def is_minimum_age(birth_date: date, minimum_age: int = MINIMUM_AGE) -> bool:
    return calculate_age(birth_date) >= minimum_age


def is_strong_password(password: str) -> bool:
    return bool(password) and STRONG_PASSWORD_RE.match(password) is not None


def generate_referral_code() -> str:
    """Generate an 8-character uppercase alphanumeric referral code"""
    chars = string.ascii_uppercase + string.digits
    return ''.join(random.choice(chars) for _ in range(8))


def generate_order_number() -> str:
    """BC + last 6 digits of the millisecond clock + 6 random uppercase chars"""
    timestamp = str(int(time.time() * 1000))
    chars = string.ascii_uppercase + string.digits
    suffix = ''.join(secrets.choice(chars) for _ in range(6))
    return f"BC{timestamp[-6:]}{suffix}"


def generate_verification_token() -> str:
    return secrets.token_urlsafe(32)


def generate_otp_code() -> str:
    return f"{secrets.randbelow(1000000):06d}"


def generate_slug(text: str) -> str:
    normalized = unicodedata.normalize("NFD", text.lower())
    normalized = "".join(c for c in normalized if unicodedata.category(c) != "Mn")
    normalized = re.sub(r"[^a-z0-9\s-]", "", normalized)
    normalized = re.sub(r"\s+", "-", normalized.strip())
    return re.sub(r"-+", "-", normalized)


def to_money(value) -> Decimal:
    """Round to cents, half-up"""
    return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)


def calculate_commission(amount, percentage) -> Decimal:
    return to_money(Decimal(str(amount)) * Decimal(str(percentage)))


def paginate(page: int, limit: int, total: int) -> dict:
    pages = (total + limit - 1) // limit if limit else 0
    return {"page": page, "limit": limit, "total": total, "pages": pages}
