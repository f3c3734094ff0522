from prometheus_client import Counter

from .transport.models import origin_of

REQUESTS_NEW_COUNTER = Counter(
    "relay_request_new",
    "Number of support requests opened",
)

REQUESTS_DONE_COUNTER = Counter(
    "relay_request_done",
    "Number of support requests closed",
)

MESSAGES_COUNTER = Counter(
    "relay_messages",
    "Number of customer messages forwarded into threads",
    labelnames=["origin"],
)

OPERATOR_MESSAGES_COUNTER = Counter(
    "relay_messages_operator",
    "Number of operator messages forwarded to customers",
)


def request_new() -> None:
    REQUESTS_NEW_COUNTER.inc()


def request_done() -> None:
    REQUESTS_DONE_COUNTER.inc()


def message_customer(user_id: str) -> None:
    MESSAGES_COUNTER.labels(origin=origin_of(user_id) or "unknown").inc()


def message_operator() -> None:
    OPERATOR_MESSAGES_COUNTER.inc()
