"""
auth/notifier.py -- Templated transactional email.

Two implementations share one method, send_mail(to, subject, template, context):

  ResendNotifier -- renders the template and POSTs it to the Resend HTTP API.
      Raises NotificationError on any transport or API failure. It never
      retries; the caller decides whether a failure matters.

  LogNotifier -- renders the template and logs the recipient and subject
      only. Used when RESEND_API_KEY is not configured so local development
      works without a mail provider (the API can return the action URL in
      the response body instead, see EXPOSE_ACTION_URLS).

Templates live in auth/templates/email/ and are rendered with Jinja2 with
autoescaping on, since context values (names) come from user input.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import requests
from jinja2 import Environment, FileSystemLoader, select_autoescape

from auth.errors import NotificationError

logger = logging.getLogger("pronunciation.notifier")

RESEND_API = "https://api.resend.com/emails"

_TEMPLATE_DIR = Path(__file__).parent / "templates" / "email"

_env = Environment(
    loader=FileSystemLoader(str(_TEMPLATE_DIR)),
    autoescape=select_autoescape(["html"]),
)


def render_template(template: str, context: dict[str, Any] | None = None) -> str:
    """Render auth/templates/email/<template>.html with the given context."""
    return _env.get_template(f"{template}.html").render(**(context or {}))


class LogNotifier:
    """Stand-in delivery for environments without a mail provider."""

    def send_mail(self, to: str, subject: str, template: str, context: dict[str, Any] | None = None) -> None:
        render_template(template, context)
        logger.info("Email not sent (no mail provider configured): to=%s subject=%r", to, subject)


class ResendNotifier:
    """Send mail through the Resend REST API."""

    def __init__(self, api_key: str, sender: str, timeout: float = 10.0) -> None:
        self._sender = sender
        self._timeout = timeout
        # One session per notifier for connection pooling. max_redirects=3 --
        # this is a single known API, a long redirect chain is never legitimate.
        self._session = requests.Session()
        self._session.max_redirects = 3
        self._session.headers["Authorization"] = f"Bearer {api_key}"

    def send_mail(self, to: str, subject: str, template: str, context: dict[str, Any] | None = None) -> None:
        html = render_template(template, context)
        try:
            resp = self._session.post(
                RESEND_API,
                json={"from": self._sender, "to": [to], "subject": subject, "html": html},
                timeout=self._timeout,
            )
            resp.raise_for_status()
        except requests.RequestException as exc:
            raise NotificationError(f"Failed to send email to {to}: {exc}") from exc
        logger.info("Email sent to %s (status=%d)", to, resp.status_code)

    def close(self) -> None:
        self._session.close()


def build_notifier(api_key: str, sender: str) -> LogNotifier | ResendNotifier:
    """Return a ResendNotifier when an API key is configured, else a LogNotifier."""
    if not api_key:
        logger.warning("RESEND_API_KEY is not set -- emails will be logged, not sent.")
        return LogNotifier()
    return ResendNotifier(api_key, sender)
