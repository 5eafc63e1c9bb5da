"""
Service d'envoi d'emails SMTP.
Utilisé pour les liens de vérification d'adresse et de réinitialisation de mot de passe.
"""

import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from app.config import settings

logger = logging.getLogger(__name__)


def _send_html_email(to_email: str, subject: str, html_content: str) -> None:
    """
    Envoie un email HTML.
    Le timeout SMTP borne la durée de la requête appelante.
    Lève une exception en cas d'échec SMTP.
    """
    msg = MIMEMultipart("alternative")
    msg["From"] = settings.SMTP_FROM
    msg["To"] = to_email
    msg["Subject"] = subject
    msg.attach(MIMEText(html_content, "html", "utf-8"))

    with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=settings.SMTP_TIMEOUT_SECONDS) as server:
        if settings.SMTP_USE_TLS:
            server.starttls()
        if settings.SMTP_USERNAME:
            server.login(settings.SMTP_USERNAME, settings.SMTP_PASSWORD)
        server.send_message(msg)


def _layout(title: str, body: str, link: str, button: str, note: str) -> str:
    return f"""
    <html>
      <body style="font-family: Arial, sans-serif; color: #333; max-width: 600px; margin: auto;">
        <h2 style="color: #1a73e8;">SecureShare: {title}</h2>
        <p>Hello,</p>
        <p>{body}</p>
        <div style="text-align: center; margin: 24px 0;">
          <a href="{link}" style="background: #1a73e8; color: #fff; padding: 12px 24px;
             text-decoration: none; border-radius: 4px;">{button}</a>
        </div>
        <p style="font-size: 12px; color: #888;">{note}</p>
        <hr style="border: none; border-top: 1px solid #eee;" />
        <p style="font-size: 12px; color: #888;">
          This message was generated automatically by SecureShare. Please do not reply.
        </p>
      </body>
    </html>
    """


def send_verification_email(to_email: str, verification_link: str) -> None:
    html = _layout(
        title="Verify your email address",
        body="Please confirm your email address to finish setting up your account.",
        link=verification_link,
        button="Verify email",
        note=f"This link expires in {settings.EMAIL_VERIFICATION_EXPIRE_HOURS} hours and can only be used once.",
    )
    _send_html_email(to_email, "SecureShare: Verify your email address", html)
    logger.info("Email de vérification envoyé à %s", to_email)


def send_password_reset_email(to_email: str, reset_link: str) -> None:
    html = _layout(
        title="Reset your password",
        body="We received a request to reset your password. If it was not you, ignore this email.",
        link=reset_link,
        button="Reset password",
        note=f"This link expires in {settings.PASSWORD_RESET_EXPIRE_MINUTES} minutes and can only be used once.",
    )
    _send_html_email(to_email, "SecureShare: Reset your password", html)
    logger.info("Email de réinitialisation envoyé à %s", to_email)
