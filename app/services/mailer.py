"""
Outbound mail.

Without an SMTP host the message is only logged, which is what dev and test
environments run with.
"""
from __future__ import annotations

import logging
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Iterable, Optional

from app.core.config import Settings

logger = logging.getLogger("worker.mail")


@dataclass(frozen=True)
class MailIdentity:
    address: str
    username: Optional[str] = None
    password: Optional[str] = None
    display_name: Optional[str] = None

    @property
    def header(self) -> str:
        return f"{self.display_name} <{self.address}>" if self.display_name else self.address


def system_identity(settings: Settings) -> MailIdentity:
    return MailIdentity(
        address=settings.mail_from,
        username=settings.smtp_username,
        password=settings.smtp_password,
        display_name="Helpdesk",
    )


def build_message(
    *,
    sender: MailIdentity,
    to: str,
    subject: str,
    body: str,
    cc: Iterable[str] = (),
) -> EmailMessage:
    msg = EmailMessage()
    msg["From"] = sender.header
    msg["To"] = to
    cc = [c for c in cc if c and c != to]
    if cc:
        msg["Cc"] = ", ".join(cc)
    msg["Subject"] = subject
    msg.set_content(body)
    return msg


def send_mail(
    settings: Settings,
    *,
    to: str,
    subject: str,
    body: str,
    cc: Iterable[str] = (),
    sender: Optional[MailIdentity] = None,
) -> None:
    sender = sender or system_identity(settings)
    msg = build_message(sender=sender, to=to, subject=subject, body=body, cc=cc)

    if not settings.smtp_host:
        logger.info("SEND_MAIL", extra={"to": to, "subject": subject, "sender": sender.address, "body_len": len(body)})
        return

    with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=settings.smtp_timeout) as smtp:
        if settings.smtp_use_tls:
            smtp.starttls()
        if sender.username and sender.password:
            smtp.login(sender.username, sender.password)
        smtp.send_message(msg)
    logger.info("mail_sent", extra={"to": to, "subject": subject, "sender": sender.address})
