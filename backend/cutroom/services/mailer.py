from __future__ import annotations

import logging
import os
import smtplib
import socket
from email.message import EmailMessage
from typing import Iterable, Optional, Union

logger = logging.getLogger(__name__)


class Mailer:
    def __init__(self) -> None:
        self.host = os.getenv("SMTP_HOST")
        if self.host:
            logger.info("[MAILER] SMTP_HOST configured: %s", self.host)
        else:
            logger.info("[MAILER] SMTP_HOST not configured; emails will be logged to stdout")

        self.port = int(os.getenv("SMTP_PORT", "587"))
        self.user = os.getenv("SMTP_USER")
        # Support both SMTP_PASS (documented) and alternate SMTP_PASSWORD
        self.password = os.getenv("SMTP_PASS") or os.getenv("SMTP_PASSWORD")
        self.sender = os.getenv("SMTP_FROM", "no-reply@cutroom.local")
        self.sender_name = os.getenv("SMTP_FROM_NAME", "Cutroom")
        self._probed = False

    def _startup_probe(self) -> None:
        """Validate once that the configured SMTP host resolves and is reachable.

        Only warns: operators can fix the env vars without a redeploy, and a
        failing probe must not block editorial transitions.
        """
        self._probed = True
        try:
            info = socket.getaddrinfo(self.host, self.port)
        except socket.gaierror as dns_err:
            logger.error("Unable to resolve SMTP host '%s': %s", self.host, dns_err)
            return

        addresses = sorted({result[4][0] for result in info if result[4]})
        if addresses:
            logger.info("SMTP host '%s' resolved to %s", self.host, ", ".join(addresses))

        try:
            with socket.create_connection((self.host, self.port), timeout=5):
                logger.info("SMTP connectivity probe succeeded to %s:%s", self.host, self.port)
        except OSError as conn_err:
            logger.warning(
                "SMTP connectivity probe failed to %s:%s: %s. Check outbound firewall rules.",
                self.host,
                self.port,
                conn_err,
            )

    def send(self, to: Union[str, Iterable[str]], subject: str, text: str, html: Optional[str] = None) -> bool:
        """Send one message to every address in ``to``.

        Returns True if the remote SMTP server accepted it. Never raises for
        delivery problems; they are logged and reported as False.
        """
        recipients = [to] if isinstance(to, str) else list(to)
        to_header = ", ".join(recipients)

        if not self.host:
            # Dev fallback: log to stdout so tests and dev still see the message
            print(f"[DEV-MAIL] To: {to_header}\nSubject: {subject}\n\n{text}")
            return True

        if not self._probed:
            self._startup_probe()

        msg = EmailMessage()
        if self.sender_name and "<" not in self.sender:
            msg["From"] = f"{self.sender_name} <{self.sender}>"
        else:
            msg["From"] = self.sender
        msg["To"] = to_header
        msg["Subject"] = subject
        msg.set_content(text)
        if html:
            msg.add_alternative(html, subtype="html")

        if not (self.user and self.password):
            logger.warning(
                "SMTP credentials not fully configured (user=%s, pass_present=%s); attempting unauthenticated send",
                bool(self.user),
                bool(self.password),
            )

        try:
            with smtplib.SMTP(self.host, self.port, timeout=20) as server:
                server.ehlo()
                try:
                    server.starttls()
                    server.ehlo()
                except smtplib.SMTPException as tls_err:
                    logger.warning("SMTP STARTTLS failed (%s); continuing without TLS", tls_err)

                if self.user and self.password:
                    server.login(self.user, self.password)

                server.send_message(msg)
                logger.info(
                    "SMTP mail accepted: recipients=%d from=%s host=%s:%s", len(recipients), self.sender, self.host, self.port
                )
            return True
        except smtplib.SMTPAuthenticationError as auth_err:
            logger.error(
                "SMTP auth failed: code=%s msg=%s",
                getattr(auth_err, "smtp_code", "?"),
                getattr(auth_err, "smtp_error", auth_err),
            )
            return False
        except smtplib.SMTPRecipientsRefused as refused:
            detail = {}
            for rcpt, (code, errmsg) in refused.recipients.items():
                detail[rcpt] = {"code": code, "error": (errmsg.decode() if isinstance(errmsg, bytes) else str(errmsg))}
            logger.error("SMTPRecipientsRefused: %s", detail)
            return False
        except (smtplib.SMTPException, OSError) as e:
            logger.exception("General SMTP failure sending to %d recipient(s): %s", len(recipients), e)
            return False


mailer = Mailer()
