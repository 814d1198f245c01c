"""Relays NEW rows of ``event_outbox`` to the events exchange.

Run with ``python -m marketplace.outbox_publisher``.
"""
import json
import logging
import time

import pika
from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from . import config, models
from .database import SessionLocal, is_postgres
from .models import utcnow

logger = logging.getLogger(__name__)


def connect_rabbitmq_with_retry(max_wait_sec: int = 60):
    attempt = 0
    while True:
        try:
            params = pika.URLParameters(config.RABBITMQ_URL)
            params.heartbeat = 30
            params.blocked_connection_timeout = 300
            params.connection_attempts = 5
            params.retry_delay = 2

            conn = pika.BlockingConnection(params)
            ch = conn.channel()
            ch.exchange_declare(exchange=config.EVENTS_EXCHANGE, exchange_type="direct", durable=True)
            return conn, ch
        except Exception as e:
            attempt += 1
            sleep = min(2 ** attempt, max_wait_sec)
            logger.warning("[publisher] RabbitMQ connect failed (%s); retrying in %ss", e, sleep)
            time.sleep(sleep)


def wait_for_db(max_wait_sec: int = 60):
    attempt = 0
    while True:
        try:
            with SessionLocal() as db:
                db.execute(text("select 1"))
            return
        except OperationalError as e:
            attempt += 1
            sleep = min(2 ** attempt, max_wait_sec)
            logger.warning("[publisher] DB connect failed (%s); retrying in %ss", e, sleep)
            time.sleep(sleep)


def fetch_batch(db, limit: int = None):
    q = (
        db.query(models.EventOutbox)
        .filter(models.EventOutbox.status == "NEW")
        .order_by(models.EventOutbox.id)
        .limit(limit or config.OUTBOX_BATCH_SIZE)
    )
    if is_postgres(db):
        # several publishers can run side by side
        q = q.with_for_update(skip_locked=True)
    return q.all()


def publish_batch(channel, rows) -> int:
    """Publish rows in order; stops at the first failure and returns how many went out.

    Published rows are flagged on the row objects; the caller commits.
    """
    sent = 0
    for r in rows:
        body = json.dumps({
            "event_id": r.event_id,
            "event_type": r.event_type,
            "occurred_at": r.occurred_at.isoformat() if r.occurred_at else None,
            "version": r.version,
            "payload": r.payload,
        }).encode("utf-8")
        try:
            channel.basic_publish(
                exchange=config.EVENTS_EXCHANGE,
                routing_key=r.event_type,
                body=body,
                properties=pika.BasicProperties(
                    content_type="application/json",
                    delivery_mode=2,  # persistent
                    message_id=r.event_id,
                ),
            )
        except Exception as e:
            # row stays NEW; the next loop retries after reconnecting
            logger.warning("[publisher] publish failed id=%s: %s", r.id, e)
            raise
        r.status = "PUBLISHED"
        r.published_at = utcnow()
        sent += 1
    return sent


def _close_quietly(conn):
    try:
        if conn is not None and conn.is_open:
            conn.close()
    except Exception as e:
        logger.debug("[publisher] close failed: %s", e)


def loop():
    conn, channel = connect_rabbitmq_with_retry()
    logger.info("[publisher] connected to RabbitMQ")
    wait_for_db()
    logger.info("[publisher] connected to DB")

    while True:
        try:
            with SessionLocal() as db:
                rows = fetch_batch(db)
                if rows:
                    try:
                        sent = publish_batch(channel, rows)
                    finally:
                        # keep whatever made it out before a failure
                        db.commit()
                    logger.info("[publisher] published %d event(s)", sent)
        except Exception as e:
            logger.error("[publisher] loop error: %s", e)
            _close_quietly(conn)
            conn, channel = connect_rabbitmq_with_retry()
        time.sleep(config.OUTBOX_POLL_SEC)


if __name__ == "__main__":
    logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s %(message)s")
    loop()
