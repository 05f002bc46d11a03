# dedup_utils.py
#
# Bookkeeping for "this expiry was already notified". A key is claimed with a
# short pending lease before dispatch, committed with a long retention after a
# successful dispatch and released after a failed one, so a redelivered event
# sees a committed key (skip), a live lease (report for retry) or a free key
# (dispatch).

import time
import logging
from typing import Dict, Tuple, Callable

from botocore.exceptions import BotoCoreError, ClientError

from dynamo_utils import is_conditional_failure
from errors import IdempotencyStoreUnavailable

logger = logging.getLogger(__name__)

PENDING = "pending"
NOTIFIED = "notified"
CLAIMED = "claimed"


class DynamoDedupStore:
    """One item per dedup key, hash key `dedupKey`, TTL attribute `expireAt`.

    `claim` returns CLAIMED when the caller may dispatch, NOTIFIED when the key was
    already committed and PENDING when another delivery holds a live lease.
    Items past `expireAt` count as free even before the TTL sweeper removes them.
    """

    def __init__(self, table, *, lease_seconds: int, retention_seconds: int,
                 clock: Callable[[], float] = time.time):
        self.table = table
        self.lease_seconds = lease_seconds
        self.retention_seconds = retention_seconds
        self.clock = clock

    def claim(self, key: str) -> str:
        now = int(self.clock())
        try:
            self.table.put_item(
                Item={
                    "dedupKey": key,
                    "status": PENDING,
                    "claimedAt": now,
                    "expireAt": now + self.lease_seconds,
                },
                # free, or past its lease/retention but not yet reaped
                ConditionExpression="attribute_not_exists(dedupKey) OR expireAt < :now",
                ExpressionAttributeValues={":now": now},
            )
            return CLAIMED
        except ClientError as e:
            if is_conditional_failure(e):
                return self._status(key)
            raise IdempotencyStoreUnavailable(f"claim({key}) failed: {e}") from e
        except BotoCoreError as e:
            raise IdempotencyStoreUnavailable(f"claim({key}) failed: {e}") from e

    def _status(self, key: str) -> str:
        try:
            r = self.table.get_item(Key={"dedupKey": key}, ConsistentRead=True)
        except (ClientError, BotoCoreError) as e:
            raise IdempotencyStoreUnavailable(f"status({key}) failed: {e}") from e
        item = r.get("Item")
        if item is None:
            # reaped after the failed put; let redelivery claim it
            return PENDING
        return NOTIFIED if item.get("status") == NOTIFIED else PENDING

    def commit(self, key: str) -> None:
        now = int(self.clock())
        try:
            self.table.update_item(
                Key={"dedupKey": key},
                UpdateExpression="SET #s = :notified, notifiedAt = :now, expireAt = :exp",
                ExpressionAttributeNames={"#s": "status"},
                ExpressionAttributeValues={
                    ":notified": NOTIFIED,
                    ":now": now,
                    ":exp": now + self.retention_seconds,
                },
            )
        except (ClientError, BotoCoreError) as e:
            raise IdempotencyStoreUnavailable(f"commit({key}) failed: {e}") from e

    def release(self, key: str) -> None:
        try:
            self.table.delete_item(
                Key={"dedupKey": key},
                ConditionExpression="#s = :pending",
                ExpressionAttributeNames={"#s": "status"},
                ExpressionAttributeValues={":pending": PENDING},
            )
        except ClientError as e:
            if is_conditional_failure(e):
                return
            # the lease runs out on its own
            logger.warning(f"release({key}) failed, lease will expire: {e}")
        except BotoCoreError as e:
            logger.warning(f"release({key}) failed, lease will expire: {e}")


class MemoryDedupStore:
    """In-process equivalent of DynamoDedupStore, same claim results.

    Only dedups within one warm container. Expired entries are swept on every claim.
    """

    def __init__(self, *, lease_seconds: int, retention_seconds: int,
                 clock: Callable[[], float] = time.time):
        self.lease_seconds = lease_seconds
        self.retention_seconds = retention_seconds
        self.clock = clock
        self._entries: Dict[str, Tuple[str, float]] = {}

    def claim(self, key: str) -> str:
        self.sweep()
        now = self.clock()
        entry = self._entries.get(key)
        if entry is not None:
            return entry[0]
        self._entries[key] = (PENDING, now + self.lease_seconds)
        return CLAIMED

    def commit(self, key: str) -> None:
        self._entries[key] = (NOTIFIED, self.clock() + self.retention_seconds)

    def release(self, key: str) -> None:
        entry = self._entries.get(key)
        if entry is not None and entry[0] == PENDING:
            del self._entries[key]

    def sweep(self) -> int:
        now = self.clock()
        stale = [k for k, (_, expires_at) in self._entries.items() if expires_at < now]
        for k in stale:
            del self._entries[k]
        return len(stale)

    def __len__(self) -> int:
        return len(self._entries)
