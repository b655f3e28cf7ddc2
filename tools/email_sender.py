"""
Email Sender Tool
Delivers reminder and test messages through a user's own SMTP account
"""

import asyncio
import logging
import smtplib
import socket
import ssl
from typing import Dict, Optional
from dataclasses import dataclass
from datetime import datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr, make_msgid

from config import settings
from tools.recurrence import as_utc, operating_timezone


logger = logging.getLogger(__name__)


class DeliveryFailure(Exception):
    """Sending failed; reason is a human-readable diagnostic"""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


@dataclass
class SMTPConfig:
    """Outbound SMTP account"""
    host: str
    port: int
    user: str
    password: str
    secure: bool = False

    @property
    def from_address(self) -> str:
        return self.user


# Email templates
EMAIL_TEMPLATES: Dict[str, Dict[str, str]] = {
    "medication_reminder": {
        "subject": "💊 Time for your medication: {medication}",
        "text": """
{app_name} - Medication Reminder

Hi {user_name},

It's time to take your medication:

Medication: {medication}
Dosage: {dosage}
Scheduled for: {scheduled_time}
Frequency: {frequency}
{description}

Stay healthy!
- {app_name}
""",
        "html": """
<html>
  <body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
    <div style="max-width: 600px; margin: 0 auto; padding: 20px;">
      <h2 style="color: #2563eb;">💊 {medication}</h2>
      <p>Hi {user_name},</p>
      <p>It's time to take your medication.</p>
      <table>
        <tr><td><strong>Dosage</strong></td><td>{dosage}</td></tr>
        <tr><td><strong>Scheduled for</strong></td><td>{scheduled_time}</td></tr>
        <tr><td><strong>Frequency</strong></td><td>{frequency}</td></tr>
      </table>
      <p>{description}</p>
      <p style="color: #6b7280; font-size: 12px;">{app_name}</p>
    </div>
  </body>
</html>
""",
    },
    "test": {
        "subject": "🧪 Configuration test - {app_name}",
        "text": """
{app_name} - Configuration Test

Hi {user_name},

Your email settings are working. Medication reminders will be
delivered to this address.

Sent at: {sent_at}
""",
        "html": """
<html>
  <body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
    <div style="max-width: 600px; margin: 0 auto; padding: 20px;">
      <h2 style="color: #16a34a;">✅ Configuration test</h2>
      <p>Hi {user_name},</p>
      <p>Your email settings are working. Medication reminders will be delivered to this address.</p>
      <p style="color: #6b7280; font-size: 12px;">Sent at {sent_at}</p>
    </div>
  </body>
</html>
""",
    },
}


def describe_error(error: BaseException) -> str:
    """Translate a transport exception into a message a user can act on"""
    if isinstance(error, smtplib.SMTPAuthenticationError):
        return "Authentication failed: check the SMTP user and password"
    if isinstance(error, (TimeoutError, socket.timeout, asyncio.TimeoutError)):
        return "Connection to the SMTP server timed out"
    if isinstance(error, ConnectionRefusedError):
        return "Connection refused: check the SMTP host and port"
    if isinstance(error, socket.gaierror):
        return "SMTP server not found: check the host name"
    if isinstance(error, smtplib.SMTPRecipientsRefused):
        return "Recipient address was rejected by the SMTP server"
    if isinstance(error, smtplib.SMTPException):
        return f"SMTP error: {error}"
    if isinstance(error, OSError):
        return f"Connection error: {error}"
    return str(error) or error.__class__.__name__


def format_frequency(frequency_hours: float) -> str:
    if frequency_hours == 24:
        return "once a day"
    if frequency_hours == 1:
        return "every hour"
    return f"every {frequency_hours:g} hours"


class EmailSender:
    """
    SMTP delivery capability.

    smtplib is blocking, so every network exchange runs in a worker
    thread with a socket timeout and an overall deadline.
    """

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout or settings.SMTP_TIMEOUT_SECONDS
        self.templates = EMAIL_TEMPLATES

    # ==================== TRANSPORT ====================

    def _open(self, config: SMTPConfig) -> smtplib.SMTP:
        if config.secure:
            return smtplib.SMTP_SSL(
                config.host, config.port, timeout=self.timeout, context=ssl.create_default_context()
            )
        return smtplib.SMTP(config.host, config.port, timeout=self.timeout)

    def _authenticate(self, server: smtplib.SMTP, config: SMTPConfig) -> None:
        if not config.secure:
            server.ehlo()
            if server.has_extn("starttls"):
                server.starttls(context=ssl.create_default_context())
                server.ehlo()
        server.login(config.user, config.password)

    def _verify_blocking(self, config: SMTPConfig) -> None:
        # Leaving the block sends QUIT and closes the socket, even on failure
        with self._open(config) as server:
            self._authenticate(server, config)

    def _deliver_blocking(self, config: SMTPConfig, message: MIMEMultipart, to: str) -> None:
        with self._open(config) as server:
            self._authenticate(server, config)
            server.send_message(message, from_addr=config.from_address, to_addrs=[to])

    async def _run(self, func, *args):
        try:
            return await asyncio.wait_for(asyncio.to_thread(func, *args), timeout=self.timeout * 2)
        except DeliveryFailure:
            raise
        except Exception as e:
            raise DeliveryFailure(describe_error(e)) from e

    def build_message(self, config: SMTPConfig, to: str, subject: str,
                      text: str, html: Optional[str] = None) -> MIMEMultipart:
        message = MIMEMultipart("alternative")
        message["Subject"] = subject
        message["From"] = formataddr((settings.EMAIL_FROM_NAME, config.from_address))
        message["To"] = to
        message["Message-ID"] = make_msgid()

        message.attach(MIMEText(text, "plain", "utf-8"))
        if html:
            message.attach(MIMEText(html, "html", "utf-8"))
        return message

    # ==================== PUBLIC API ====================

    async def verify(self, config: SMTPConfig) -> bool:
        """Connect and authenticate without sending; raises DeliveryFailure"""
        await self._run(self._verify_blocking, config)
        logger.info(f"SMTP configuration verified for {config.host}:{config.port}")
        return True

    async def send(self, config: SMTPConfig, to: str, subject: str,
                   text: str, html: Optional[str] = None) -> str:
        """
        Send one message.

        Returns:
            The Message-ID of the sent message

        Raises:
            DeliveryFailure: On connection, authentication or SMTP errors
        """
        message = self.build_message(config, to, subject, text, html)
        await self._run(self._deliver_blocking, config, message, to)
        logger.info(f"Email sent to {to} via {config.host}")
        return message["Message-ID"]

    async def send_medication_reminder(
        self,
        config: SMTPConfig,
        to: str,
        medication_name: str,
        frequency_hours: float,
        scheduled_time: datetime,
        dosage: Optional[str] = None,
        description: Optional[str] = None,
        user_name: Optional[str] = None
    ) -> str:
        """Render and send the reminder for one due dose"""
        template = self.templates["medication_reminder"]
        local_time = as_utc(scheduled_time).astimezone(operating_timezone())
        values = {
            "app_name": settings.APP_NAME,
            "user_name": user_name or "there",
            "medication": medication_name,
            "dosage": dosage or "as prescribed",
            "scheduled_time": local_time.strftime("%d/%m/%Y %H:%M"),
            "frequency": format_frequency(frequency_hours),
            "description": description or "",
        }
        return await self.send(
            config,
            to,
            template["subject"].format(**values),
            template["text"].format(**values).strip(),
            template["html"].format(**values),
        )

    async def send_test_email(self, config: SMTPConfig, to: str,
                              user_name: Optional[str] = None) -> str:
        """Verify the account, then send a configuration test message"""
        await self.verify(config)

        template = self.templates["test"]
        values = {
            "app_name": settings.APP_NAME,
            "user_name": user_name or "there",
            "sent_at": datetime.now(operating_timezone()).strftime("%d/%m/%Y %H:%M"),
        }
        return await self.send(
            config,
            to,
            template["subject"].format(**values),
            template["text"].format(**values).strip(),
            template["html"].format(**values),
        )


# Singleton instance
email_sender = EmailSender()
