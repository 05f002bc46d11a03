# dynamo_utils.py

import logging
from decimal import Decimal
from typing import Optional, Dict, Any, Iterator

import boto3
from boto3.dynamodb.conditions import Key
from boto3.dynamodb.types import TypeDeserializer
from botocore.exceptions import ClientError

logger = logging.getLogger(__name__)

CONDITIONAL_CHECK_FAILED = "ConditionalCheckFailedException"

_deserializer = TypeDeserializer()


def dynamodb_resource(endpoint_url: Optional[str] = None):
    # endpoint_url allows local testing (dynamodb-local, localstack)
    return boto3.resource("dynamodb", endpoint_url=endpoint_url) if endpoint_url else boto3.resource("dynamodb")


def is_conditional_failure(e: ClientError) -> bool:
    return e.response.get("Error", {}).get("Code") == CONDITIONAL_CHECK_FAILED


# ---------- Number conversion ----------

def to_plain(value: Any) -> Any:
    """Decimal -> int/float, recursively. boto3 hands every number back as Decimal."""
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, dict):
        return {k: to_plain(v) for k, v in value.items()}
    if isinstance(value, list):
        return [to_plain(v) for v in value]
    if isinstance(value, set):
        # string/number/binary sets come back as sets; JSON has no set type
        return sorted(to_plain(v) for v in value)
    return value


def to_dynamo(value: Any) -> Any:
    """float -> Decimal, recursively. The resource API refuses floats."""
    if isinstance(value, bool):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, dict):
        return {k: to_dynamo(v) for k, v in value.items()}
    if isinstance(value, list):
        return [to_dynamo(v) for v in value]
    return value


def deserialize_image(image: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Converts a stream OldImage/NewImage/Keys map ({"id": {"S": "..."}}) to a plain dict."""
    if not image:
        return {}
    return {k: to_plain(_deserializer.deserialize(v)) for k, v in image.items()}


# ---------- Orders table ----------

class OrderTable:
    """Thin wrapper over the orders table and its owner index (pk/sk)."""

    def __init__(self, table, owner_index: str = "index1"):
        self.table = table
        self.owner_index = owner_index

    def put_new(self, item: Dict[str, Any]) -> None:
        self.table.put_item(
            Item=to_dynamo(item),
            ConditionExpression="attribute_not_exists(id)",
        )

    def get(self, order_id: str) -> Optional[Dict[str, Any]]:
        r = self.table.get_item(Key={"id": order_id}, ConsistentRead=True)
        item = r.get("Item")
        return to_plain(item) if item else None

    def query_by_owner(self, owner_id: str, *, page_size: Optional[int] = None) -> Iterator[Dict[str, Any]]:
        kwargs: Dict[str, Any] = {
            "IndexName": self.owner_index,
            "KeyConditionExpression": Key("pk").eq(owner_id),
            "ScanIndexForward": True,  # oldest sk first
        }
        if page_size:
            kwargs["Limit"] = page_size
        while True:
            r = self.table.query(**kwargs)
            for item in r.get("Items", []):
                yield to_plain(item)
            last_key = r.get("LastEvaluatedKey")
            if not last_key:
                return
            kwargs["ExclusiveStartKey"] = last_key

    def update_if_exists(self, order_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """SETs the given fields on an existing item; returns the new item or None if it is gone."""
        names: Dict[str, str] = {}
        vals: Dict[str, Any] = {}
        parts = []
        for i, (name, value) in enumerate(fields.items()):
            names[f"#f{i}"] = name
            vals[f":v{i}"] = to_dynamo(value)
            parts.append(f"#f{i} = :v{i}")
        try:
            r = self.table.update_item(
                Key={"id": order_id},
                UpdateExpression="SET " + ", ".join(parts),
                ConditionExpression="attribute_exists(id)",
                ExpressionAttributeNames=names,
                ExpressionAttributeValues=vals,
                ReturnValues="ALL_NEW",
            )
        except ClientError as e:
            if is_conditional_failure(e):
                return None
            raise
        return to_plain(r.get("Attributes", {}))


def enable_ttl(client, table_name: str, attribute: str = "TTL") -> bool:
    """Turns on TTL for the table. Returns False when it was already enabled."""
    try:
        client.update_time_to_live(
            TableName=table_name,
            TimeToLiveSpecification={"Enabled": True, "AttributeName": attribute},
        )
    except ClientError as e:
        msg = e.response.get("Error", {}).get("Message", "")
        if e.response.get("Error", {}).get("Code") == "ValidationException" and "already enabled" in msg:
            logger.info("TTL already enabled on %s", table_name)
            return False
        raise
    logger.info("TTL enabled on %s (attribute=%s)", table_name, attribute)
    return True
