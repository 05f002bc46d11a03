# order_utils.py

import math
import time
import uuid
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any, Callable, Iterator

from config import Config
from dynamo_utils import OrderTable
from errors import ValidationError, NotFound

logger = logging.getLogger(__name__)

# Stored attribute names, as declared on the deployed table
ID = "id"
OWNER = "pk"
SORT_KEY = "sk"
TTL = "TTL"
WARRANTY_EXPIRY = "warrantyExpiry"
EXPIRED = "expired"

OWNER_FIELD = "userId"
CONTACT_FIELDS = ("email", "phoneNumber", "telegramChatId")
MANAGED_FIELDS = (ID, OWNER, SORT_KEY, TTL, WARRANTY_EXPIRY, EXPIRED)

SORT_KEY_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def sort_key_at(epoch_seconds: float) -> str:
    return datetime.fromtimestamp(epoch_seconds, tz=timezone.utc).strftime(SORT_KEY_FORMAT)


def next_sort_key(previous: Optional[str], now: float) -> str:
    """Sort key for a state written at `now`, always ordered after `previous`."""
    candidate = sort_key_at(now)
    if not previous or candidate > previous:
        return candidate
    try:
        prev_dt = datetime.strptime(previous, SORT_KEY_FORMAT)
    except ValueError:
        # legacy free-form sk: a suffix still sorts after its prefix
        return f"{previous}#{candidate}"
    return (prev_dt + timedelta(microseconds=1)).strftime(SORT_KEY_FORMAT)


def renewal_message(record: Dict[str, Any]) -> str:
    expiry = datetime.fromtimestamp(record[WARRANTY_EXPIRY] / 1000, tz=timezone.utc)
    return f"Your order is renewed. The warranty will expire on {expiry.strftime('%a %b %d %Y')}"


class OrderListing:
    """Owner-scoped orders, ascending by sk. Every iteration re-reads the index."""

    def __init__(self, table: OrderTable, owner_id: str):
        self._table = table
        self.owner_id = owner_id

    def __iter__(self) -> Iterator[Dict[str, Any]]:
        return self._table.query_by_owner(self.owner_id)


class OrderService:

    def __init__(self, table: OrderTable, config: Config, *, clock: Callable[[], float] = time.time):
        self.table = table
        self.warranty_period = config.warranty_period_seconds
        self.clock = clock

    def _expiry_fields(self, now: float) -> Dict[str, Any]:
        expires_at = now + self.warranty_period
        return {
            TTL: math.ceil(expires_at),  # TTL granularity is whole seconds
            WARRANTY_EXPIRY: int(expires_at * 1000),
        }

    def create(self, payload: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        if not isinstance(payload, dict):
            raise ValidationError("Order payload must be a JSON object")
        owner_id = payload.get(OWNER_FIELD)
        if not owner_id:
            raise ValidationError(f"Missing {OWNER_FIELD} in order payload")
        if not any(payload.get(f) for f in CONTACT_FIELDS):
            raise ValidationError("Order needs one of: " + ", ".join(CONTACT_FIELDS))

        now = self.clock()
        record = {k: v for k, v in payload.items() if k not in MANAGED_FIELDS}
        record.update({
            ID: str(uuid.uuid4()),
            OWNER: str(owner_id),
            SORT_KEY: sort_key_at(now),
            EXPIRED: None,
        })
        record.update(self._expiry_fields(now))

        self.table.put_new(record)
        logger.info("Created order %s for owner %s, TTL=%s", record[ID], owner_id, record[TTL])
        return record

    def get(self, order_id: Optional[str]) -> Dict[str, Any]:
        if not order_id:
            raise ValidationError("Missing order id")
        record = self.table.get(order_id)
        if record is None:
            raise NotFound(order_id)
        return record

    def list_by_owner(self, owner_id: Optional[str]) -> OrderListing:
        if not owner_id:
            raise ValidationError("Missing owner id")
        return OrderListing(self.table, owner_id)

    def renew(self, order_id: Optional[str]) -> Dict[str, Any]:
        """Pushes TTL and warranty expiry out by a full period, clears `expired`, moves sk forward."""
        if not order_id:
            raise ValidationError("Missing id for renewal")
        current = self.get(order_id)

        now = self.clock()
        fields = self._expiry_fields(now)
        fields[SORT_KEY] = next_sort_key(current.get(SORT_KEY), now)
        fields[EXPIRED] = None

        updated = self.table.update_if_exists(order_id, fields)
        if updated is None:
            # reaped between the read and the write
            raise NotFound(order_id)
        logger.info("Renewed order %s, TTL %s -> %s", order_id, current.get(TTL), updated.get(TTL))
        return updated
