import smtplib
from email.message import EmailMessage
from decimal import Decimal
from typing import Optional
from core.config import settings
import logging

logger = logging.getLogger(__name__)


def _build_message(subject: str, to_email: str, html_body: str, text_body: Optional[str] = None) -> EmailMessage:
    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = f"{settings.SMTP_FROM_NAME} <{settings.SMTP_FROM_EMAIL}>" if settings.SMTP_FROM_NAME and settings.SMTP_FROM_EMAIL else (settings.SMTP_FROM_EMAIL or "no-reply@example.com")
    msg["To"] = to_email
    if text_body:
        msg.set_content(text_body)
    msg.add_alternative(html_body, subtype="html")
    return msg


def send_email(subject: str, to_email: str, html_body: str, text_body: Optional[str] = None) -> bool:
    """Send an email; never raises, returns False when delivery failed."""
    if not settings.SMTP_HOST or not settings.SMTP_FROM_EMAIL:
        logger.warning("SMTP not configured; skipping email send")
        return False
    try:
        msg = _build_message(subject, to_email, html_body, text_body)
        timeout = settings.SMTP_TIMEOUT or 15
        debug = 1 if settings.SMTP_DEBUG else 0
        if settings.SMTP_USE_SSL:
            with smtplib.SMTP_SSL(settings.SMTP_HOST, settings.SMTP_PORT, timeout=timeout) as server:
                server.set_debuglevel(debug)
                if settings.SMTP_USERNAME and settings.SMTP_PASSWORD:
                    server.login(settings.SMTP_USERNAME, settings.SMTP_PASSWORD)
                server.send_message(msg)
        else:
            with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=timeout) as server:
                server.set_debuglevel(debug)
                if settings.SMTP_USE_TLS:
                    server.starttls()
                if settings.SMTP_USERNAME and settings.SMTP_PASSWORD:
                    server.login(settings.SMTP_USERNAME, settings.SMTP_PASSWORD)
                server.send_message(msg)
        logger.info(f"Sent email to {to_email} with subject '{subject}'")
        return True
    except Exception as exc:
        logger.error(f"Failed to send email to {to_email}: {exc}")
        return False


def _wrap(title: str, body: str) -> str:
    return f"""
    <div style='font-family: Arial, sans-serif; line-height: 1.5;'>
      <h2>{title}</h2>
      {body}
      <p>Equipe {settings.SMTP_FROM_NAME or 'VitaClube'}</p>
    </div>
    """


def send_welcome_email(to_email: str, first_name: str, verification_token: Optional[str] = None) -> bool:
    subject = f"Bem-vindo(a) ao {settings.SMTP_FROM_NAME or 'VitaClube'}!"
    text = f"Olá {first_name}, sua conta foi criada com sucesso."
    body = f"<p>Olá {first_name}, sua conta foi criada com sucesso.</p>"
    if verification_token:
        url = f"{settings.FRONTEND_URL}/verify-email?token={verification_token}"
        text += f" Confirme seu email: {url}"
        body += f"<p>Confirme seu email: <a href=\"{url}\">{url}</a></p>"
    return send_email(subject, to_email, _wrap("Bem-vindo(a)!", body), text)


def send_verification_email(to_email: str, verification_token: str, base_url: Optional[str] = None) -> bool:
    """Send email verification link to user"""
    base_url = base_url or settings.FRONTEND_URL
    verification_url = f"{base_url}/verify-email?token={verification_token}"
    subject = "Confirme seu endereço de email"
    text = f"Confirme seu email acessando: {verification_url}"
    html = _wrap(
        "Confirme seu email",
        f"""
        <p><a href="{verification_url}">Confirmar email</a></p>
        <p style='word-break: break-all; color: #666;'>{verification_url}</p>
        <p>Este link expira em <strong>{settings.EMAIL_VERIFICATION_EXPIRE_HOURS} horas</strong>.</p>
        """,
    )
    return send_email(subject, to_email, html, text)


def send_otp_email(to_email: str, otp_code: str) -> bool:
    minutes = settings.PASSWORD_RESET_OTP_EXPIRE_MINUTES
    subject = "Código para redefinir sua senha"
    text = f"Seu código é {otp_code}. Ele expira em {minutes} minutos."
    html = _wrap(
        "Redefinição de senha",
        f"""
        <p>Use o código abaixo para redefinir sua senha. Ele expira em <strong>{minutes} minutos</strong>.</p>
        <p style='font-size: 24px; font-weight: bold; letter-spacing: 4px;'>{otp_code}</p>
        <p>Se você não solicitou a redefinição, ignore este email.</p>
        """,
    )
    return send_email(subject, to_email, html, text)


WITHDRAWAL_STATUS_LABELS = {
    "APPROVED": "aprovada",
    "PROCESSING": "em processamento",
    "PAID": "paga",
    "REJECTED": "rejeitada",
    "CANCELED": "cancelada",
}


def send_withdrawal_status_email(to_email: str, first_name: str, amount: Decimal, status: str, notes: Optional[str] = None) -> bool:
    label = WITHDRAWAL_STATUS_LABELS.get(status, status.lower())
    subject = f"Sua solicitação de saque foi {label}"
    text = f"Olá {first_name}, sua solicitação de saque de R$ {amount:.2f} foi {label}."
    body = f"<p>{text}</p>"
    if notes:
        text += f" Observações: {notes}"
        body += f"<p>Observações: {notes}</p>"
    return send_email(subject, to_email, _wrap("Atualização do saque", body), text)


def send_data_export_email(to_email: str, first_name: str) -> bool:
    subject = "Seus dados pessoais foram exportados"
    text = f"Olá {first_name}, sua solicitação de portabilidade foi concluída."
    return send_email(subject, to_email, _wrap("Portabilidade de dados", f"<p>{text}</p>"), text)
