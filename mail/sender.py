"""
mail/sender.py -- Delivery of email sign-in links.

The flow layer depends only on the Mailer protocol: send(to_email, link).
Two implementations exist:

  SESMailer     -- Amazon SES via boto3. Production backend.
  MemoryMailer  -- keeps every message in an in-process outbox. Used by the
                   test suite and for local development (MAIL_BACKEND=memory).

build_mailer(settings) picks one. It is the only function here that reads
Settings; both mailers take plain constructor values.

Link format:
    https://{SERVICE_URL}{EMAIL_AUTH_PATH}?token=<hex>&email=<urlenc>[&redirect=<urlenc>]

Security:
  The link carries the plaintext secret. It is never logged, and MemoryMailer
  holds it only in memory for the life of the process.

  Templates are rendered with autoescape on. The link is the only variable
  interpolated into the message body.

Layer rule: may import from core/. No imports from api/, web/, auth/, or
directory/.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol
from urllib.parse import quote_plus

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from jinja2 import Environment, FileSystemLoader, select_autoescape

from core.config import Settings
from core.errors import ConfigurationError, MailDeliveryError

logger = logging.getLogger("airlock.mail")

AUTH_EMAIL_SUBJECT = "Airlock Authentication Request"

_TEMPLATE_DIR = Path(__file__).parent / "templates"

_env = Environment(
    loader=FileSystemLoader(str(_TEMPLATE_DIR)),
    autoescape=select_autoescape(["html"]),
)


# ---------------------------------------------------------------------------
# Message construction
# ---------------------------------------------------------------------------


def build_verification_link(
    service_url: str,
    path: str,
    token: str,
    email: str,
    redirect: str | None = None,
) -> str:
    """Build the https verification link mailed to the user.

    service_url is host[:port] with no scheme. token is already hex, so it
    needs no escaping; email and redirect are query-escaped.
    """
    link = f"https://{service_url}{path}?token={token}&email={quote_plus(email)}"
    if redirect:
        link += f"&redirect={quote_plus(redirect)}"
    return link


def render_auth_email(link: str, expiry_seconds: int = 900) -> str:
    """Render the HTML body of the sign-in email."""
    template = _env.get_template("email_auth.html")
    return template.render(link=link, expiry_minutes=max(1, expiry_seconds // 60))


# ---------------------------------------------------------------------------
# Mailers
# ---------------------------------------------------------------------------


class Mailer(Protocol):
    def send(self, to_email: str, link: str) -> None: ...


class SESMailer:
    """Sends the sign-in email through Amazon SES.

    Credentials come from the standard boto3 chain (env vars, shared config,
    instance role). Any boto3/botocore failure becomes MailDeliveryError.
    """

    def __init__(self, region: str, sender: str, expiry_seconds: int = 900) -> None:
        if not sender:
            raise ConfigurationError("EMAIL_AUTH_SENDER is required for the SES mail backend.")
        self.sender = sender
        self.expiry_seconds = expiry_seconds
        self.client = boto3.client("ses", region_name=region)

    def send(self, to_email: str, link: str) -> None:
        body = render_auth_email(link, self.expiry_seconds)
        try:
            response = self.client.send_email(
                Source=self.sender,
                Destination={"ToAddresses": [to_email]},
                Message={
                    "Subject": {"Data": AUTH_EMAIL_SUBJECT, "Charset": "UTF-8"},
                    "Body": {"Html": {"Data": body, "Charset": "UTF-8"}},
                },
            )
        except (ClientError, BotoCoreError) as exc:
            logger.error("SES send_email failed: %s", exc)
            raise MailDeliveryError(f"SES send_email failed: {exc}") from exc
        logger.info("Sent sign-in email (message id %s)", response.get("MessageId", "?"))


@dataclass
class SentMessage:
    to_email: str
    subject: str
    link: str
    body: str


class MemoryMailer:
    """Collects messages instead of sending them.

    Usage:
        mailer = MemoryMailer()
        ...
        mailer.outbox[-1].link
    """

    def __init__(self, expiry_seconds: int = 900) -> None:
        self.expiry_seconds = expiry_seconds
        self.outbox: list[SentMessage] = []

    def send(self, to_email: str, link: str) -> None:
        self.outbox.append(
            SentMessage(
                to_email=to_email,
                subject=AUTH_EMAIL_SUBJECT,
                link=link,
                body=render_auth_email(link, self.expiry_seconds),
            )
        )
        logger.info("Queued sign-in email in memory outbox (%d messages)", len(self.outbox))


def build_mailer(settings: Settings) -> Mailer:
    """Return the mailer selected by MAIL_BACKEND."""
    if settings.mail_backend == "memory":
        logger.warning("MAIL_BACKEND=memory -- sign-in emails are not delivered")
        return MemoryMailer(expiry_seconds=settings.email_auth_expiry)
    return SESMailer(
        region=settings.aws_region,
        sender=settings.email_auth_sender,
        expiry_seconds=settings.email_auth_expiry,
    )
