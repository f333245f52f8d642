from __future__ import annotations

import json
import logging
import threading
import time
from typing import Callable, Iterable, List, Tuple, Type

import pika
import pika.exceptions

from .config import EVENTS_EXCHANGE, RABBITMQ_URL

logger = logging.getLogger(__name__)


def _connect() -> pika.BlockingConnection:
    params = pika.URLParameters(RABBITMQ_URL)
    # a few sane defaults
    params.heartbeat = 30
    params.blocked_connection_timeout = 30
    return pika.BlockingConnection(params)


def publish_event(routing_key: str, payload: dict) -> None:
    connection = _connect()
    try:
        ch = connection.channel()
        ch.exchange_declare(exchange=EVENTS_EXCHANGE, exchange_type="topic", durable=True)
        body = json.dumps(payload, ensure_ascii=False, default=str).encode("utf-8")
        ch.basic_publish(
            exchange=EVENTS_EXCHANGE,
            routing_key=routing_key,
            body=body,
            properties=pika.BasicProperties(
                content_type="application/json",
                delivery_mode=2,  # persistent
            ),
        )
    finally:
        connection.close()


def _message_callback(
    queue_name: str,
    handler: Callable[[dict], None],
    requeue_on: Tuple[Type[BaseException], ...] = (),
):
    def _on_message(ch_, method, properties, body: bytes):
        try:
            payload = json.loads(body.decode("utf-8"))
            handler(payload)
            ch_.basic_ack(delivery_tag=method.delivery_tag)
        except requeue_on:
            logger.warning("consumer handler hit a temporary failure, requeueing. queue=%s", queue_name)
            ch_.basic_nack(delivery_tag=method.delivery_tag, requeue=True)
        except Exception:
            logger.exception("consumer handler failed. queue=%s", queue_name)
            # no requeue: a poison message would loop forever
            ch_.basic_nack(delivery_tag=method.delivery_tag, requeue=False)

    return _on_message


def _consume_forever(
    queue_name: str,
    binding_keys: List[str],
    on_message,
    prefetch_count: int,
) -> None:
    while True:
        connection = None
        try:
            connection = _connect()
            ch = connection.channel()
            ch.exchange_declare(exchange=EVENTS_EXCHANGE, exchange_type="topic", durable=True)

            ch.queue_declare(queue=queue_name, durable=True)
            for key in binding_keys:
                ch.queue_bind(exchange=EVENTS_EXCHANGE, queue=queue_name, routing_key=key)

            ch.basic_qos(prefetch_count=prefetch_count)
            ch.basic_consume(queue=queue_name, on_message_callback=on_message, auto_ack=False)
            ch.start_consuming()
        except pika.exceptions.AMQPError:
            # broker down, network issues, etc.
            logger.warning("consumer %s lost its broker connection, reconnecting", queue_name)
            time.sleep(3)
        except Exception:
            logger.exception("consumer %s crashed, reconnecting", queue_name)
            time.sleep(3)
        finally:
            if connection is not None and connection.is_open:
                try:
                    connection.close()
                except Exception:
                    logger.debug("closing consumer connection failed", exc_info=True)


def start_consumer_in_thread(
    *,
    queue_name: str,
    binding_keys: Iterable[str],
    handler: Callable[[dict], None],
    requeue_on: Tuple[Type[BaseException], ...] = (),
    prefetch_count: int = 10,
    daemon: bool = True,
) -> threading.Thread:
    """Consume ``queue_name`` on a background thread, reconnecting forever.

    Messages whose handler raises one of ``requeue_on`` go back on the queue;
    any other handler failure drops the message.
    """
    on_message = _message_callback(queue_name, handler, requeue_on)
    t = threading.Thread(
        target=_consume_forever,
        args=(queue_name, list(binding_keys), on_message, prefetch_count),
        name=f"consumer:{queue_name}",
        daemon=daemon,
    )
    t.start()
    return t
