# errors.py


class OrderError(Exception):
    """Base class for record service errors returned to callers as-is."""


class ValidationError(OrderError):
    pass


class NotFound(OrderError):
    def __init__(self, order_id: str):
        super().__init__(f"Order {order_id} not found")
        self.order_id = order_id


class NotifierError(Exception):
    """Base class for expiry notifier errors."""


class MalformedEventError(NotifierError):
    """Stream record cannot be decoded; dropped after being logged."""


class DispatchError(NotifierError):
    """Notification channel failed; the dedup key stays uncommitted so redelivery retries it."""


class IdempotencyStoreUnavailable(NotifierError):
    """No dedup decision could be made; the batch must not dispatch and is retried."""
