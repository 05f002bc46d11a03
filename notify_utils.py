# notify_utils.py

import logging
from datetime import datetime, timezone
from typing import Optional, Dict, Any, NamedTuple

import boto3
import requests

from errors import DispatchError

logger = logging.getLogger(__name__)

TELEGRAM_API_BASE = "https://api.telegram.org"
REQUEST_TIMEOUT = 30

EMAIL = "email"
SMS = "sms"
TELEGRAM = "telegram"

# record field -> destination kind, in order of preference
CONTACT_KINDS = (
    ("email", EMAIL),
    ("phoneNumber", SMS),
    ("telegramChatId", TELEGRAM),
)


class Destination(NamedTuple):
    kind: str
    address: str


def destination_for(record: Dict[str, Any]) -> Optional[Destination]:
    for field, kind in CONTACT_KINDS:
        value = record.get(field)
        if value not in (None, ""):
            return Destination(kind, str(value))
    return None


def expiry_message(order_id: str, warranty_expiry_ms: Optional[int] = None) -> str:
    text = f"Your warranty for order {order_id} has expired"
    if warranty_expiry_ms:
        expired_on = datetime.fromtimestamp(warranty_expiry_ms / 1000, tz=timezone.utc)
        text += f" on {expired_on.strftime('%a %b %d %Y')}"
    return text + "."


# ---------- Channels ----------

class SesChannel:
    def __init__(self, client, sender: str, subject: str = "Your warranty has expired"):
        self.client = client
        self.sender = sender
        self.subject = subject

    def send(self, address: str, text: str) -> None:
        self.client.send_email(
            Source=self.sender,
            Destination={"ToAddresses": [address]},
            Message={
                "Subject": {"Data": self.subject},
                "Body": {"Text": {"Data": text}},
            },
        )


class SnsChannel:
    def __init__(self, client):
        self.client = client

    def send(self, address: str, text: str) -> None:
        self.client.publish(PhoneNumber=address, Message=text)


class TelegramChannel:
    def __init__(self, token: str, *, session=None, timeout: int = REQUEST_TIMEOUT):
        self.send_url = f"{TELEGRAM_API_BASE}/bot{token}/sendMessage"
        self.session = session or requests
        self.timeout = timeout

    def send(self, address: str, text: str) -> None:
        r = self.session.post(self.send_url, json={"chat_id": address, "text": text}, timeout=self.timeout)
        r.raise_for_status()


class ChannelRouter:
    """Sends through the channel registered for the destination kind; any failure is a DispatchError."""

    def __init__(self, channels: Optional[Dict[str, Any]] = None):
        self.channels = dict(channels or {})

    def register(self, kind: str, channel) -> None:
        self.channels[kind] = channel

    def send(self, destination: Destination, text: str) -> None:
        channel = self.channels.get(destination.kind)
        if channel is None:
            raise DispatchError(f"No channel configured for {destination.kind}")
        try:
            channel.send(destination.address, text)
        except Exception as e:
            raise DispatchError(f"{destination.kind} send to {destination.address} failed: {e}") from e
        logger.info("Sent %s notification to %s", destination.kind, destination.address)


def build_router(config, *, ses_client=None, sns_client=None) -> ChannelRouter:
    """Registers the channels enabled in the config. boto3 clients are created on demand."""
    router = ChannelRouter()
    if config.ses_sender:
        router.register(EMAIL, SesChannel(ses_client or boto3.client("ses"), config.ses_sender))
    if config.sns_enabled:
        router.register(SMS, SnsChannel(sns_client or boto3.client("sns")))
    if config.telegram_token:
        router.register(TELEGRAM, TelegramChannel(config.telegram_token))
    if not router.channels:
        logger.error("No notification channel configured (SES_SENDER / SNS_ENABLED / TELEGRAM_TOKEN)")
    return router
