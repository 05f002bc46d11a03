# api_lambda.py
#
# HTTP API handlers for orders:
#   POST /               create_order_handler
#   GET  /order/{id}     get_order_handler
#   GET  /user/{userId}  get_orders_handler
#   PUT  /renew?id=...   renew_order_handler

import base64
import json
import logging
from typing import Any, Dict, Optional

from config import load_config
from dynamo_utils import OrderTable, dynamodb_resource, to_plain
from errors import ValidationError, NotFound
from order_utils import OrderService, renewal_message

logger = logging.getLogger()
logger.setLevel(logging.INFO)

_service: Optional[OrderService] = None


def _get_service() -> OrderService:
    global _service
    if _service is None:
        config = load_config()
        logger.setLevel(config.log_level)
        table = dynamodb_resource(config.ddb_endpoint_url).Table(config.orders_table)
        _service = OrderService(OrderTable(table, config.owner_index), config)
    return _service


def _response(data: Any, status_code: int = 200) -> Dict[str, Any]:
    return {
        "statusCode": status_code,
        "headers": {"Content-Type": "application/json"},
        "body": json.dumps(to_plain(data), ensure_ascii=False),
    }


def _error(e: Exception) -> Dict[str, Any]:
    if isinstance(e, ValidationError):
        return _response({"message": str(e)}, 400)
    if isinstance(e, NotFound):
        return _response({"message": str(e)}, 404)
    logger.exception("Request failed: %r", e)
    return _response({"message": str(e)}, 502)


def _body(event: Dict[str, Any]) -> Any:
    body = event.get("body")
    if body is None:
        return None
    if event.get("isBase64Encoded"):
        body = base64.b64decode(body).decode("utf-8")
    try:
        return json.loads(body) if isinstance(body, str) else body
    except json.JSONDecodeError as e:
        raise ValidationError(f"Body is not valid JSON: {e}")


def create_order_handler(event, context):
    try:
        record = _get_service().create(_body(event or {}))
        return _response(record, 201)
    except Exception as e:
        return _error(e)


def get_order_handler(event, context):
    try:
        order_id = ((event or {}).get("pathParameters") or {}).get("id")
        if not order_id:
            raise ValidationError("Missing id in path of URL")
        return _response(_get_service().get(order_id))
    except Exception as e:
        return _error(e)


def get_orders_handler(event, context):
    try:
        user_id = ((event or {}).get("pathParameters") or {}).get("userId")
        return _response(list(_get_service().list_by_owner(user_id)))
    except Exception as e:
        return _error(e)


def renew_order_handler(event, context):
    try:
        order_id = ((event or {}).get("queryStringParameters") or {}).get("id")
        if not order_id:
            raise ValidationError("Missing id query parameter in url")
        record = _get_service().renew(order_id)
        return _response({"id": order_id, "message": renewal_message(record), "order": record})
    except Exception as e:
        return _error(e)
