# gateways.py - outbound delivery: SMTP email and the in-process notification hub

import queue
import smtplib
import threading
from email.message import EmailMessage

import structlog

from bookhaven.errors import DeliveryError

logger = structlog.get_logger(__name__)


class SmtpMailer:
    """Sends HTML mail over SMTP with a bounded socket timeout."""

    def __init__(self, server, port, username=None, password=None, sender=None,
                 use_ssl=True, timeout=10):
        self.server = server
        self.port = port
        self.username = username
        self.password = password
        self.sender = sender or username
        self.use_ssl = use_ssl
        self.timeout = timeout

    @classmethod
    def from_config(cls, config):
        return cls(
            server=config.get("MAIL_SERVER"),
            port=config.get("MAIL_PORT", 465),
            username=config.get("MAIL_USERNAME"),
            password=config.get("MAIL_PASSWORD"),
            sender=config.get("MAIL_SENDER"),
            use_ssl=config.get("MAIL_USE_SSL", True),
            timeout=config.get("MAIL_TIMEOUT_SECONDS", 10),
        )

    def send(self, to, subject, html_body):
        if not to:
            raise DeliveryError("Recipient email cannot be empty.")
        if not self.server:
            raise DeliveryError("Email is not configured.", internal_details="MAIL_SERVER is unset")

        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = to
        message["Subject"] = subject
        message.set_content("This message requires an HTML capable mail client.")
        message.add_alternative(html_body, subtype="html")

        logger.debug("email_sending", to=to, subject=subject, server=self.server)
        try:
            if self.use_ssl:
                client = smtplib.SMTP_SSL(self.server, self.port, timeout=self.timeout)
            else:
                client = smtplib.SMTP(self.server, self.port, timeout=self.timeout)
            with client:
                if not self.use_ssl:
                    client.starttls()
                if self.username:
                    client.login(self.username, self.password or "")
                client.send_message(message)
        except (smtplib.SMTPException, OSError) as exc:
            raise DeliveryError(
                "Email could not be sent.",
                internal_details=f"{type(exc).__name__}: {exc}",
            ) from exc
        logger.info("email_sent", to=to, subject=subject)


class NotificationHub:
    """Publish-only fan-out of notification payloads to connected users.

    Each subscriber owns a bounded queue. Publishing never blocks: a
    subscriber that falls behind loses messages, the persisted
    Notification rows remain the source of truth.
    """

    def __init__(self, max_queue_size=100):
        self.max_queue_size = max_queue_size
        self._subscribers = {}
        self._lock = threading.Lock()

    def subscribe(self, user_id):
        q = queue.Queue(maxsize=self.max_queue_size)
        with self._lock:
            self._subscribers.setdefault(user_id, []).append(q)
        return q

    def unsubscribe(self, user_id, q):
        with self._lock:
            queues = self._subscribers.get(user_id, [])
            if q in queues:
                queues.remove(q)
            if not queues:
                self._subscribers.pop(user_id, None)

    def subscriber_count(self, user_id):
        with self._lock:
            return len(self._subscribers.get(user_id, []))

    def publish(self, user_id, payload):
        """Returns the number of subscribers the payload reached."""
        with self._lock:
            queues = list(self._subscribers.get(user_id, []))
        delivered = 0
        for q in queues:
            try:
                q.put_nowait(payload)
                delivered += 1
            except queue.Full:
                logger.warning("notification_dropped", user_id=user_id, reason="queue_full")
        logger.info("notification_published", user_id=user_id, subscribers=delivered)
        return delivered
