import os
import json
import logging
from typing import Any, Dict

logger = logging.getLogger(__name__)

EXCHANGE = os.getenv("EVENT_EXCHANGE", "shop.events")

# Reuse AWS client across calls
_sqs_client = None


def _backend() -> str:
    return os.getenv("EVENT_BACKEND", "none").strip().lower()  # none | rabbitmq | sqs


def _encode(event_type: str, payload: Dict[str, Any]) -> str:
    return json.dumps({"type": event_type, "payload": payload}, default=str)


def publish(event_type: str, payload: Dict[str, Any], *, safe: bool = False) -> None:
    """
    Publish a domain event to the configured backend.

    safe=True: log and swallow failures. Used after a commit, where the
    state change already happened and must not be reported as failed.
    """
    backend = _backend()

    try:
        if backend in ("", "none"):
            logger.debug("event publish skipped (EVENT_BACKEND=none) type=%s", event_type)
            return

        if backend == "rabbitmq":
            _publish_rabbitmq(event_type, payload)
            return

        if backend == "sqs":
            _publish_sqs(event_type, payload)
            return

        raise RuntimeError(f"Unsupported EVENT_BACKEND={backend}")

    except Exception as e:
        if safe:
            logger.warning("event publish failed type=%s error=%r", event_type, e)
            return
        raise


def _publish_rabbitmq(event_type: str, payload: Dict[str, Any]) -> None:
    # Imported lazily so deployments using SQS can omit pika
    import pika

    rabbitmq_url = os.getenv("RABBITMQ_URL")
    if not rabbitmq_url:
        raise RuntimeError("RABBITMQ_URL is not set")

    params = pika.URLParameters(rabbitmq_url)
    params.heartbeat = int(os.getenv("RABBITMQ_HEARTBEAT", "30"))
    params.blocked_connection_timeout = float(os.getenv("RABBITMQ_BLOCKED_TIMEOUT", "5"))

    conn = pika.BlockingConnection(params)
    try:
        ch = conn.channel()
        ch.exchange_declare(exchange=EXCHANGE, exchange_type="topic", durable=True)
        ch.basic_publish(
            exchange=EXCHANGE,
            routing_key=event_type,
            body=_encode(event_type, payload).encode("utf-8"),
            properties=pika.BasicProperties(delivery_mode=2),
        )
    finally:
        if conn.is_open:
            conn.close()


def _publish_sqs(event_type: str, payload: Dict[str, Any]) -> None:
    global _sqs_client

    queue_url = os.getenv("SQS_QUEUE_URL")
    if not queue_url:
        raise RuntimeError("SQS_QUEUE_URL is not set")

    if _sqs_client is None:
        import boto3

        _sqs_client = boto3.client("sqs")

    _sqs_client.send_message(
        QueueUrl=queue_url,
        MessageBody=_encode(event_type, payload),
        MessageAttributes={
            "type": {"DataType": "String", "StringValue": event_type}
        },
    )
