"""Dispatch transports: push (FCM), email (SMTP) and SMS (Twilio).

Every transport answers with a DispatchResult instead of raising, so the
caller can tell a permanent failure (never retried for that instant) from a
transient one (retried a bounded number of times).
"""
import json
import logging
import os
import smtplib
import ssl
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from enum import Enum
from typing import Callable, Dict, Optional

from firebase_admin import credentials, initialize_app, messaging, _apps  # type: ignore
from firebase_admin import exceptions as firebase_exceptions  # type: ignore
from twilio.base.exceptions import TwilioException, TwilioRestException
from twilio.rest import Client as TwilioClient

from .config import ReminderSettings

logger = logging.getLogger(__name__)


class DispatchOutcome(str, Enum):
    SUCCESS = "success"
    PERMANENT_FAILURE = "permanent-failure"
    TRANSIENT_FAILURE = "transient-failure"


@dataclass
class DispatchResult:
    outcome: DispatchOutcome
    detail: str = ""

    @classmethod
    def ok(cls, detail: str = "") -> "DispatchResult":
        return cls(DispatchOutcome.SUCCESS, detail)

    @classmethod
    def permanent(cls, detail: str) -> "DispatchResult":
        return cls(DispatchOutcome.PERMANENT_FAILURE, detail)

    @classmethod
    def transient(cls, detail: str) -> "DispatchResult":
        return cls(DispatchOutcome.TRANSIENT_FAILURE, detail)


@dataclass
class NotificationMessage:
    title: str
    body: str
    data: Dict[str, str] = field(default_factory=dict)


class DispatchTransport(ABC):
    """Boundary to whatever actually delivers a notification"""

    @abstractmethod
    def send(self, channel: str, user_id: str, message: NotificationMessage, fire_at: datetime) -> DispatchResult:
        ...


class ChannelSender(ABC):
    @abstractmethod
    def send(self, address: str, message: NotificationMessage) -> DispatchResult:
        ...


class FcmPushSender(ChannelSender):
    def __init__(self, settings: ReminderSettings):
        self.settings = settings

    def _ensure_firebase_initialized(self) -> bool:
        if _apps:
            return True

        proj = self.settings.FCM_PROJECT_ID
        creds_json = self.settings.FCM_CREDENTIALS_JSON or os.getenv("GOOGLE_APPLICATION_CREDENTIALS_JSON")
        options = {"projectId": proj} if proj else None
        try:
            if creds_json and creds_json.strip().startswith("{"):
                initialize_app(credentials.Certificate(json.loads(creds_json)), options=options)
                logger.info("[FCM] Firebase app initialized (inline JSON)")
            elif creds_json and os.path.exists(creds_json):
                initialize_app(credentials.Certificate(creds_json), options=options)
                logger.info("[FCM] Firebase app initialized (file)")
            elif proj:
                initialize_app(options=options)
                logger.info("[FCM] Firebase app initialized (projectId only)")
            else:
                logger.warning("[FCM] No credentials provided - push notifications are disabled")
                return False
        except (ValueError, OSError) as exc:
            logger.error(f"[FCM] Failed to initialize Firebase: {exc!r}")
            return False
        return True

    def send(self, address: str, message: NotificationMessage) -> DispatchResult:
        if not self._ensure_firebase_initialized():
            return DispatchResult.permanent("push transport not configured")

        notification_id = str(uuid.uuid4())
        fcm_message = messaging.Message(
            token=address,
            notification=messaging.Notification(title=message.title, body=message.body),
            data={**message.data, "notification_id": notification_id},
            apns=messaging.APNSConfig(
                headers={
                    "apns-push-type": "alert",
                    "apns-priority": "10",
                    "apns-collapse-id": notification_id,
                }
            ),
        )
        try:
            result = messaging.send(fcm_message, dry_run=False)
        except (messaging.UnregisteredError, messaging.SenderIdMismatchError, firebase_exceptions.InvalidArgumentError) as exc:
            return DispatchResult.permanent(f"FCM rejected token: {exc}")
        except firebase_exceptions.FirebaseError as exc:
            return DispatchResult.transient(f"FCM error: {exc}")
        return DispatchResult.ok(str(result))


class SmtpEmailSender(ChannelSender):
    def __init__(self, settings: ReminderSettings):
        self.settings = settings

    def send(self, address: str, message: NotificationMessage) -> DispatchResult:
        s = self.settings
        if not (s.SMTP_SERVER and s.FROM_EMAIL):
            return DispatchResult.permanent("email transport not configured")

        msg = MIMEMultipart("alternative")
        msg["Subject"] = message.title
        msg["From"] = s.FROM_EMAIL
        msg["To"] = address
        msg.attach(MIMEText(message.body, "plain"))

        try:
            context = ssl.create_default_context()
            with smtplib.SMTP(s.SMTP_SERVER, s.SMTP_PORT, timeout=30) as server:
                server.starttls(context=context)
                if s.SMTP_USERNAME and s.SMTP_PASSWORD:
                    server.login(s.SMTP_USERNAME, s.SMTP_PASSWORD)
                server.sendmail(s.FROM_EMAIL, [address], msg.as_string())
        except (smtplib.SMTPRecipientsRefused, smtplib.SMTPAuthenticationError) as exc:
            return DispatchResult.permanent(f"SMTP refused: {exc}")
        except (smtplib.SMTPException, OSError) as exc:
            return DispatchResult.transient(f"SMTP error: {exc}")
        return DispatchResult.ok()


class TwilioSmsSender(ChannelSender):
    def __init__(self, settings: ReminderSettings):
        self.settings = settings
        self._client: Optional[TwilioClient] = None

    def _get_client(self) -> Optional[TwilioClient]:
        s = self.settings
        if not (s.TWILIO_ACCOUNT_SID and s.TWILIO_AUTH_TOKEN and s.TWILIO_FROM_NUMBER):
            return None
        if self._client is None:
            self._client = TwilioClient(s.TWILIO_ACCOUNT_SID, s.TWILIO_AUTH_TOKEN)
        return self._client

    def send(self, address: str, message: NotificationMessage) -> DispatchResult:
        client = self._get_client()
        if client is None:
            return DispatchResult.permanent("sms transport not configured")
        try:
            sent = client.messages.create(
                body=f"{message.title}\n{message.body}",
                from_=self.settings.TWILIO_FROM_NUMBER,
                to=address,
            )
        except TwilioRestException as exc:
            if exc.status == 429 or exc.status >= 500:
                return DispatchResult.transient(f"Twilio {exc.status}: {exc.msg}")
            return DispatchResult.permanent(f"Twilio {exc.status}: {exc.msg}")
        except (TwilioException, OSError) as exc:
            return DispatchResult.transient(f"Twilio error: {exc}")
        return DispatchResult.ok(sent.sid)


class ChannelRouter(DispatchTransport):
    """Resolves the user's address for a channel and hands off to its sender."""

    def __init__(
        self,
        senders: Dict[str, ChannelSender],
        address_lookup: Callable[[str, str], Optional[str]],
        dry_run: bool = False,
    ):
        self.senders = senders
        self.address_lookup = address_lookup
        self.dry_run = dry_run

    def send(self, channel: str, user_id: str, message: NotificationMessage, fire_at: datetime) -> DispatchResult:
        sender = self.senders.get(channel)
        if sender is None:
            return DispatchResult.permanent(f"unknown channel {channel!r}")
        address = self.address_lookup(user_id, channel)
        if not address:
            return DispatchResult.permanent(f"no {channel} address registered for user {user_id}")
        if self.dry_run:
            logger.info(f"[Dispatch] DRY RUN {channel} -> {address}: {message.title} | {message.body}")
            return DispatchResult.ok("dry-run")
        return sender.send(address, message)


def default_senders(settings: ReminderSettings) -> Dict[str, ChannelSender]:
    return {
        "push": FcmPushSender(settings),
        "email": SmtpEmailSender(settings),
        "sms": TwilioSmsSender(settings),
    }
