"""
Email Verification Codes
========================

Short-lived, single-use 6-digit codes for signup and password reset.

The store lives in process memory, so a code issued by one worker is not
visible to another. Run a single worker, or replace OTPStore with a shared
store that supports expiry.

Author: EduGenie Team
"""

import asyncio
import re
import secrets
import smtplib
import time
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Callable, Dict, Optional

from config import config

PURPOSES = {"signup", "forgot-password"}
EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


@dataclass
class OTPEntry:
    code: str
    expires_at: float
    purpose: str


class OTPError(ValueError):
    """Verification failed; the message is safe to show to the user"""


class OTPStore:
    """Codes keyed by lower-cased email, swept of expired entries on access"""

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.time):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, OTPEntry] = {}

    def __len__(self):
        return len(self._entries)

    def sweep(self):
        now = self._clock()
        for email in [e for e, entry in self._entries.items() if entry.expires_at < now]:
            del self._entries[email]

    def issue(self, email: str, purpose: str) -> str:
        """Create (or replace) the code for an email address"""
        self.sweep()
        code = generate_code()
        self._entries[email.lower()] = OTPEntry(code, self._clock() + self.ttl_seconds, purpose)
        return code

    def discard(self, email: str):
        self._entries.pop(email.lower(), None)

    def verify(self, email: str, code: str, purpose: str):
        """
        Check and consume a code

        Raises:
            OTPError: Missing, expired, wrong purpose or wrong code
        """
        self.sweep()
        key = email.lower()
        entry = self._entries.get(key)

        if entry is None:
            raise OTPError("OTP expired or not found. Please request a new one.")
        if entry.purpose != purpose:
            raise OTPError("Invalid OTP purpose")
        if entry.expires_at < self._clock():
            del self._entries[key]
            raise OTPError("OTP has expired. Please request a new one.")
        if not secrets.compare_digest(entry.code, str(code).strip()):
            raise OTPError("Invalid OTP. Please try again.")

        del self._entries[key]


def generate_code() -> str:
    return str(100000 + secrets.randbelow(900000))


def is_valid_email(email: str) -> bool:
    return bool(EMAIL_RE.match(email or ""))


def build_email(to: str, code: str, purpose: str) -> EmailMessage:
    signup = purpose == "signup"
    msg = EmailMessage()
    msg["Subject"] = "Verify Your Email - EduGenie" if signup else "Reset Your Password - EduGenie"
    msg["From"] = config.SMTP_FROM
    msg["To"] = to

    intro = (
        "Thank you for signing up! To complete your registration, please verify your email address."
        if signup
        else "We received a request to reset your password. Use the code below to proceed."
    )
    ttl = config.OTP_TTL_MINUTES
    msg.set_content(f"{intro}\n\nYour verification code is: {code}\nValid for {ttl} minutes.\n\n"
                    "Do not share this code with anyone.")
    msg.add_alternative(f"""<html><body style="font-family: Arial, sans-serif; color: #333;">
  <h1>EduGenie</h1>
  <h2>{'Email Verification' if signup else 'Password Reset'}</h2>
  <p>{intro}</p>
  <p style="font-size: 32px; font-weight: bold; letter-spacing: 8px; font-family: monospace;">{code}</p>
  <p style="font-size: 12px; color: #999;">Valid for {ttl} minutes</p>
  <p><strong>Important:</strong> Do not share this code with anyone.</p>
</body></html>""", subtype="html")
    return msg


def _send_smtp(msg: EmailMessage):
    if config.SMTP_SECURE:
        with smtplib.SMTP_SSL(config.SMTP_HOST, config.SMTP_PORT) as server:
            server.login(config.SMTP_USER, config.SMTP_PASS)
            server.send_message(msg)
    else:
        with smtplib.SMTP(config.SMTP_HOST, config.SMTP_PORT) as server:
            server.starttls()
            server.login(config.SMTP_USER, config.SMTP_PASS)
            server.send_message(msg)


async def send_code_email(email: str, code: str, purpose: str):
    """
    Deliver a code by email

    Without SMTP settings the code is printed instead, for local development.

    Raises:
        smtplib.SMTPException | OSError: Delivery failed
    """
    if not config.smtp_configured():
        print(f"[otp] SMTP not configured; code for {email} ({purpose}): {code}")
        return

    msg = build_email(email, code, purpose)
    loop = asyncio.get_event_loop()
    await loop.run_in_executor(None, _send_smtp, msg)
    print(f"[otp] Sent {purpose} code to {email}")


otp_store = OTPStore(ttl_seconds=config.OTP_TTL_MINUTES * 60)
