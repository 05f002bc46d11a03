# ttl_lambda.py

import logging

import boto3

from config import load_config
from dynamo_utils import enable_ttl
from order_utils import TTL

logger = logging.getLogger()
logger.setLevel(logging.INFO)


def lambda_handler(event, context):
    # Expiry relies on DynamoDB TTL; make sure it is on for the orders table.
    config = load_config()
    client = boto3.client("dynamodb", endpoint_url=config.ddb_endpoint_url) if config.ddb_endpoint_url else boto3.client("dynamodb")
    changed = enable_ttl(client, config.orders_table, TTL)
    return {"statusCode": 200, "body": "enabled" if changed else "already enabled"}
