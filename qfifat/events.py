import os
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict

logger = logging.getLogger(__name__)

EXCHANGE = os.getenv("EVENT_EXCHANGE", "qfifat.events")

# Reused across requests
_sqs_client = None


def publish(event_type: str, payload: Dict[str, Any], *, safe: bool = False) -> None:
    """
    Publish a domain event to the configured backend.

    Events go out after the owning transaction commits, so consumers (the
    realtime tracking channel, mailers) never see uncommitted state.

    safe=True: swallow exceptions (log only). Used on request paths where the
    write already succeeded and must not be reported as failed.
    """
    backend = os.getenv("EVENT_BACKEND", "rabbitmq").strip().lower()  # rabbitmq | sqs | none

    try:
        if backend == "none":
            logger.debug("event %s dropped (EVENT_BACKEND=none): %s", event_type, payload)
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


def envelope(event_type: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "type": event_type,
        "source": "qfifat",
        "occurred_at": datetime.now(timezone.utc).isoformat(),
        "payload": payload,
    }


def _encode(event_type: str, payload: Dict[str, Any]) -> str:
    # Decimal and datetime values are stringified
    return json.dumps(envelope(event_type, payload), default=str)


def _publish_rabbitmq(event_type: str, payload: Dict[str, Any]) -> None:
    # Imported lazily so SQS-only deployments can omit pika
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
    import boto3

    queue_url = os.getenv("SQS_QUEUE_URL")
    if not queue_url:
        raise RuntimeError("SQS_QUEUE_URL is not set")

    if _sqs_client is None:
        _sqs_client = boto3.client("sqs")

    _sqs_client.send_message(
        QueueUrl=queue_url,
        MessageBody=_encode(event_type, payload),
        MessageAttributes={
            "type": {"DataType": "String", "StringValue": event_type}
        },
    )
