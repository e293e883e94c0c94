"""
auth/mailer.py -- Outbound mail port for verification and reset links.

AuthService only depends on the Mailer protocol. LogMailer is the default
delivery: it writes the message to the log, which is enough for local
development. A real transport (SMTP relay, provider API) plugs in by
implementing send() and being passed to build_auth_service().
"""

from __future__ import annotations

import logging
from typing import Protocol

logger = logging.getLogger("bennu.mail")


class Mailer(Protocol):
    def send(self, to: str, subject: str, body: str) -> None: ...


class LogMailer:
    def send(self, to: str, subject: str, body: str) -> None:
        logger.info("Mail to %s: %s", to, subject)
        # Body holds a live token; keep it out of INFO logs.
        logger.debug("Mail body for %s:\n%s", to, body)
