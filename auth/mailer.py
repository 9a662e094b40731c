"""
auth/mailer.py -- Outbound mail capability used by the auth flow engine.

Delivery itself (SMTP, provider APIs, templating) lives outside AccountFlow.
The engine only calls Mailer.send() after the corresponding write succeeded,
so a mail is never sent for a token that was not stored.

Templates the engine sends:
  confirm_email  -- after signup when email confirmation is enabled
  password_reset -- after trigger_password_reset for a known email
  invite_user    -- after invite_user

Context keys: name, email, token, link.
"""

from __future__ import annotations

import logging
from typing import Protocol

logger = logging.getLogger("accountflow.mail")


class Mailer(Protocol):
    def send(self, template: str, to: str, context: dict) -> None: ...


class LogMailer:
    """Default mailer: records that a message would be sent, without its secrets.

    Suitable for development. Production deployments inject a real Mailer.
    """

    def send(self, template: str, to: str, context: dict) -> None:
        logger.info("Mail %s queued for %s", template, to)
