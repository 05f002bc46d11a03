# stream_lambda.py
#
# DynamoDB stream consumer for the orders table. Deploy with
# FunctionResponseTypes=["ReportBatchItemFailures"] so failed dispatches are
# redelivered instead of the whole batch.

import logging
from typing import Optional

from config import load_config
from dedup_utils import DynamoDedupStore, MemoryDedupStore
from dynamo_utils import dynamodb_resource
from expiry_notifier import ExpiryNotifier
from notify_utils import build_router

logger = logging.getLogger()
logger.setLevel(logging.INFO)

_notifier: Optional[ExpiryNotifier] = None


def build_notifier(config) -> ExpiryNotifier:
    if config.dedup_table:
        dedup = DynamoDedupStore(
            dynamodb_resource(config.ddb_endpoint_url).Table(config.dedup_table),
            lease_seconds=config.dedup_lease_seconds,
            retention_seconds=config.dedup_retention_seconds,
        )
    else:
        logger.warning("DEDUP_TABLE is not set; dedup only holds within this container")
        dedup = MemoryDedupStore(
            lease_seconds=config.dedup_lease_seconds,
            retention_seconds=config.dedup_retention_seconds,
        )
    return ExpiryNotifier(dedup, build_router(config), ttl_removals_only=config.ttl_removals_only)


def _get_notifier() -> ExpiryNotifier:
    global _notifier
    if _notifier is None:
        config = load_config()
        logger.setLevel(config.log_level)
        _notifier = build_notifier(config)
    return _notifier


def lambda_handler(event, context):
    records = (event or {}).get("Records") or []
    if not records:
        logger.info("No stream records")
        return {"batchItemFailures": []}

    # IdempotencyStoreUnavailable propagates: the whole batch is retried
    report = _get_notifier().process_batch(records)
    if report.failures:
        logger.warning("Reporting %d failed records for redelivery", len(report.failures))
    return {"batchItemFailures": report.batch_item_failures()}
