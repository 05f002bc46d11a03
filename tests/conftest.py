"""Pytest configuration and fixtures."""

import copy
from decimal import Decimal

import pytest
from boto3.dynamodb.types import TypeSerializer
from botocore.exceptions import ClientError

from config import Config
from dynamo_utils import OrderTable
from errors import DispatchError
from order_utils import OrderService

_serializer = TypeSerializer()


def conditional_failure(operation: str = "PutItem") -> ClientError:
    return ClientError(
        {"Error": {"Code": "ConditionalCheckFailedException", "Message": "The conditional request failed"}},
        operation,
    )


def _as_stored(value):
    # boto3 hands numbers back as Decimal
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return Decimal(str(value))
    if isinstance(value, dict):
        return {k: _as_stored(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_as_stored(v) for v in value]
    return value


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeOrdersTable:
    """In-memory stand-in for the boto3 Table calls OrderTable makes."""

    def __init__(self):
        self.items = {}

    def put_item(self, Item, ConditionExpression=None):
        if ConditionExpression == "attribute_not_exists(id)" and Item["id"] in self.items:
            raise conditional_failure("PutItem")
        self.items[Item["id"]] = _as_stored(copy.deepcopy(Item))

    def get_item(self, Key, ConsistentRead=False):
        item = self.items.get(Key["id"])
        return {"Item": copy.deepcopy(item)} if item is not None else {}

    def query(self, IndexName, KeyConditionExpression, ScanIndexForward=True, Limit=None, ExclusiveStartKey=None):
        owner = KeyConditionExpression.get_expression()["values"][1]
        rows = sorted(
            (i for i in self.items.values() if i.get("pk") == owner),
            key=lambda i: i["sk"],
            reverse=not ScanIndexForward,
        )
        start = 0
        if ExclusiveStartKey:
            start = [i["id"] for i in rows].index(ExclusiveStartKey["id"]) + 1
        page = rows[start:start + Limit] if Limit else rows[start:]
        r = {"Items": copy.deepcopy(page)}
        if Limit and start + Limit < len(rows):
            last = page[-1]
            r["LastEvaluatedKey"] = {"id": last["id"], "pk": last["pk"], "sk": last["sk"]}
        return r

    def update_item(self, Key, UpdateExpression, ConditionExpression=None,
                    ExpressionAttributeNames=None, ExpressionAttributeValues=None, ReturnValues=None):
        if ConditionExpression == "attribute_exists(id)" and Key["id"] not in self.items:
            raise conditional_failure("UpdateItem")
        item = self.items.setdefault(Key["id"], dict(Key))
        names = ExpressionAttributeNames or {}
        for part in UpdateExpression[len("SET "):].split(", "):
            name, value = part.split(" = ")
            item[names.get(name, name)] = _as_stored(ExpressionAttributeValues[value])
        return {"Attributes": copy.deepcopy(item)}


class RecordingChannel:
    """Notification channel double; set `fail` to make sends raise DispatchError."""

    def __init__(self):
        self.sent = []
        self.fail = False

    def send(self, destination, text):
        if self.fail:
            raise DispatchError("channel down")
        self.sent.append((destination, text))


def stream_record(event_name, *, old=None, new=None, keys=None, event_id="evt-1", seq="100",
                  ttl_principal=True):
    """Builds a DynamoDB stream record the way Lambda delivers it."""
    ddb = {"SequenceNumber": seq, "StreamViewType": "NEW_AND_OLD_IMAGES"}
    image = old or new or {}
    if keys is None and "id" in image:
        keys = {"id": image["id"]}
    if keys is not None:
        ddb["Keys"] = {k: _serializer.serialize(v) for k, v in keys.items()}
    if old is not None:
        ddb["OldImage"] = {k: _serializer.serialize(v) for k, v in old.items()}
    if new is not None:
        ddb["NewImage"] = {k: _serializer.serialize(v) for k, v in new.items()}
    record = {
        "eventID": event_id,
        "eventName": event_name,
        "eventSource": "aws:dynamodb",
        "awsRegion": "us-east-1",
        "dynamodb": ddb,
    }
    if event_name == "REMOVE" and ttl_principal:
        record["userIdentity"] = {"type": "Service", "principalId": "dynamodb.amazonaws.com"}
    return record


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config():
    return Config(warranty_period_seconds=2 * 365 * 24 * 3600)


@pytest.fixture
def orders_table():
    return FakeOrdersTable()


@pytest.fixture
def service(orders_table, config, clock):
    return OrderService(OrderTable(orders_table, config.owner_index), config, clock=clock)


@pytest.fixture
def channel():
    return RecordingChannel()


@pytest.fixture
def expired_order():
    """Old image of an order the TTL sweeper just removed."""
    return {
        "id": "X",
        "pk": "user-1",
        "sk": "2024-10-18T12:00:00.000000Z",
        "TTL": 1_729_252_800,
        "warrantyExpiry": 1_729_252_800_000,
        "expired": None,
        "email": "owner@example.com",
        "product": "kettle",
    }
