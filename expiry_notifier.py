# expiry_notifier.py
#
# Consumes the orders table stream. Only REMOVE records matter: the table has no
# delete path of its own, so a REMOVE is the TTL sweeper reaping an expired
# warranty. Delivery is at-least-once, hence the dedup claim before dispatch.

import logging
from dataclasses import dataclass, field
from typing import Optional, List, Dict, Any, Iterable, NamedTuple

from dedup_utils import CLAIMED, NOTIFIED
from dynamo_utils import deserialize_image
from errors import MalformedEventError, DispatchError, IdempotencyStoreUnavailable
from notify_utils import Destination, destination_for, expiry_message

logger = logging.getLogger(__name__)

REMOVE = "REMOVE"
TTL_PRINCIPAL = "dynamodb.amazonaws.com"

FILTERED = "filtered"
DROPPED = "dropped"
DUPLICATE = "duplicate"
DISPATCHED = "dispatched"
FAILED = "failed"


class ExpiryNotice(NamedTuple):
    order_id: str
    owner_id: Optional[str]
    destination: Destination
    warranty_expiry: Optional[int]
    sort_key: Optional[str]
    ttl: Optional[int]
    event_id: Optional[str]
    sequence_number: Optional[str]


def is_remove_event(record: Dict[str, Any]) -> bool:
    return isinstance(record, dict) and record.get("eventName") == REMOVE


def is_ttl_removal(record: Dict[str, Any]) -> bool:
    """TTL deletions are attributed to the DynamoDB service principal."""
    identity = record.get("userIdentity") or {}
    return identity.get("type") == "Service" and identity.get("principalId") == TTL_PRINCIPAL


def sequence_number(record: Dict[str, Any]) -> Optional[str]:
    return ((record.get("dynamodb") or {}).get("SequenceNumber")) or record.get("eventID")


def decode_event(record: Dict[str, Any]) -> ExpiryNotice:
    stream = record.get("dynamodb") or {}
    try:
        image = deserialize_image(stream.get("OldImage")) or deserialize_image(stream.get("Keys"))
    except (TypeError, ValueError, AttributeError, ArithmeticError) as e:
        raise MalformedEventError(f"undecodable image: {e}") from e

    order_id = image.get("id")
    if not isinstance(order_id, str) or not order_id:
        raise MalformedEventError(f"no order id in event {record.get('eventID')}")

    destination = destination_for(image)
    if destination is None:
        raise MalformedEventError(f"order {order_id} has no contact to notify")

    return ExpiryNotice(
        order_id=order_id,
        owner_id=image.get("pk"),
        destination=destination,
        warranty_expiry=image.get("warrantyExpiry"),
        sort_key=image.get("sk"),
        ttl=image.get("TTL"),
        event_id=record.get("eventID"),
        sequence_number=sequence_number(record),
    )


def dedup_key(notice: ExpiryNotice) -> str:
    # TTL and sk both move forward on renewal, so each expiry cycle gets its own key
    if notice.ttl is None and notice.sort_key is None:
        return f"expiry:{notice.order_id}:event:{notice.event_id}"
    return f"expiry:{notice.order_id}:{notice.ttl}:{notice.sort_key}"


@dataclass
class BatchReport:
    outcomes: Dict[str, int] = field(default_factory=dict)
    failures: List[str] = field(default_factory=list)

    def add(self, outcome: str) -> None:
        self.outcomes[outcome] = self.outcomes.get(outcome, 0) + 1

    def batch_item_failures(self) -> List[Dict[str, str]]:
        return [{"itemIdentifier": seq} for seq in self.failures]


class ExpiryNotifier:

    def __init__(self, dedup, channel, *, ttl_removals_only: bool = False):
        self.dedup = dedup
        self.channel = channel
        self.ttl_removals_only = ttl_removals_only

    def handle(self, record: Dict[str, Any]) -> str:
        if not is_remove_event(record):
            if isinstance(record, dict):
                logger.debug("Skip %s event %s", record.get("eventName"), record.get("eventID"))
            return FILTERED
        if self.ttl_removals_only and not is_ttl_removal(record):
            logger.info("Skip non-TTL REMOVE %s", record.get("eventID"))
            return FILTERED

        try:
            notice = decode_event(record)
        except MalformedEventError as e:
            logger.warning("Dropping malformed REMOVE %s: %s", record.get("eventID"), e)
            return DROPPED

        key = dedup_key(notice)
        claim = self.dedup.claim(key)
        if claim == NOTIFIED:
            logger.info("Already notified order=%s key=%s", notice.order_id, key)
            return DUPLICATE
        if claim != CLAIMED:
            # an earlier delivery holds the lease and has not committed; it may have died
            logger.warning("Lease held for order=%s key=%s; reporting for retry", notice.order_id, key)
            return FAILED

        try:
            self.channel.send(notice.destination, expiry_message(notice.order_id, notice.warranty_expiry))
        except DispatchError as e:
            logger.error("Dispatch failed order=%s key=%s: %s", notice.order_id, key, e)
            self.dedup.release(key)
            return FAILED

        self.dedup.commit(key)
        logger.info("Notified expiry order=%s owner=%s key=%s", notice.order_id, notice.owner_id, key)
        return DISPATCHED

    def process_batch(self, records: Iterable[Dict[str, Any]]) -> BatchReport:
        """Handles every record; IdempotencyStoreUnavailable aborts the batch."""
        report = BatchReport()
        for record in records:
            try:
                outcome = self.handle(record)
            except IdempotencyStoreUnavailable:
                logger.exception("Idempotency store unavailable at %s; failing batch", record.get("eventID"))
                raise
            report.add(outcome)
            if outcome == FAILED:
                report.failures.append(sequence_number(record))
        logger.info("Batch done: %s", report.outcomes)
        return report
