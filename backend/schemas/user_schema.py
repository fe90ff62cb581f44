from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator
from typing import List, Optional, Literal
from datetime import date, datetime
from utils.helpers import clean_cpf, is_valid_cpf, is_minimum_age, is_strong_password, only_digits

PASSWORD_RULE_MESSAGE = "Senha deve conter pelo menos: 1 letra minúscula, 1 maiúscula, 1 número e 1 caractere especial"


def _check_password(value: str) -> str:
    if not is_strong_password(value):
        raise ValueError(PASSWORD_RULE_MESSAGE)
    return value


class RegisterRequest(BaseModel):
    email: EmailStr
    cpf: str
    first_name: str = Field(min_length=2, max_length=50)
    last_name: str = Field(min_length=2, max_length=50)
    phone: Optional[str] = None
    birth_date: date
    password: str
    confirm_password: str
    referral_code: Optional[str] = None

    @field_validator("cpf")
    @classmethod
    def validate_cpf(cls, v: str) -> str:
        if not is_valid_cpf(v):
            raise ValueError("CPF inválido")
        return clean_cpf(v)

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        digits = only_digits(v)
        if len(digits) not in (10, 11, 12, 13):
            raise ValueError("Telefone inválido")
        return digits

    @field_validator("birth_date")
    @classmethod
    def validate_birth_date(cls, v: date) -> date:
        if not is_minimum_age(v):
            raise ValueError("Você deve ter pelo menos 18 anos")
        return v

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        return _check_password(v)

    @field_validator("referral_code")
    @classmethod
    def normalize_referral_code(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return None
        return v.strip().upper()

    @model_validator(mode="after")
    def passwords_match(self):
        if self.password != self.confirm_password:
            raise ValueError("Senhas não coincidem")
        return self


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class RefreshRequest(BaseModel):
    refresh_token: str


class VerifyEmailRequest(BaseModel):
    token: str


class EmailRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    email: EmailStr
    otp: str
    new_password: str

    @field_validator("new_password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        return _check_password(v)


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str

    @field_validator("new_password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        return _check_password(v)


class UserUpdate(BaseModel):
    first_name: Optional[str] = Field(default=None, min_length=2, max_length=50)
    last_name: Optional[str] = Field(default=None, min_length=2, max_length=50)
    phone: Optional[str] = None
    birth_date: Optional[date] = None

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v: Optional[str]) -> Optional[str]:
        return only_digits(v) if v is not None else v


class User(BaseModel):
    id: int
    email: EmailStr
    first_name: str
    last_name: str
    cpf: str
    phone: Optional[str] = None
    birth_date: Optional[date] = None
    referral_code: str
    referred_by_id: Optional[int] = None
    is_active: bool
    email_verified: bool
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
        extra = "ignore"


class AddressIn(BaseModel):
    street: str = Field(min_length=5, max_length=100)
    number: str = Field(min_length=1, max_length=10)
    complement: Optional[str] = Field(default=None, max_length=50)
    neighborhood: str = Field(min_length=2, max_length=50)
    city: str = Field(min_length=2, max_length=50)
    state: str = Field(min_length=2, max_length=2)
    zip_code: str

    @field_validator("state")
    @classmethod
    def upper_state(cls, v: str) -> str:
        return v.upper()

    @field_validator("zip_code")
    @classmethod
    def validate_zip_code(cls, v: str) -> str:
        digits = only_digits(v)
        if len(digits) != 8:
            raise ValueError("CEP inválido")
        return digits


class Address(AddressIn):
    id: int

    class Config:
        from_attributes = True


class BankDataIn(BaseModel):
    bank_code: str = Field(min_length=3, max_length=10)
    bank_name: str = Field(min_length=2, max_length=50)
    agency: str = Field(min_length=4, max_length=6)
    account: str = Field(min_length=5, max_length=15)
    account_type: Literal["corrente", "poupanca"]
    holder_name: str = Field(min_length=5, max_length=100)
    holder_cpf: str
    pix_key: Optional[str] = None
    pix_key_type: Optional[Literal["cpf", "email", "phone", "random"]] = None

    @field_validator("holder_cpf")
    @classmethod
    def validate_holder_cpf(cls, v: str) -> str:
        if not is_valid_cpf(v):
            raise ValueError("CPF do titular inválido")
        return clean_cpf(v)


class BankData(BankDataIn):
    id: int

    class Config:
        from_attributes = True


class PreferencesIn(BaseModel):
    email_notifications: Optional[bool] = None
    push_notifications: Optional[bool] = None
    marketing_emails: Optional[bool] = None
    preferred_categories: Optional[List[str]] = None


class Preferences(BaseModel):
    email_notifications: bool
    push_notifications: bool
    marketing_emails: bool
    preferred_categories: List[str] = []

    class Config:
        from_attributes = True
