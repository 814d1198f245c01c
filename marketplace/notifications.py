import json
import logging
import threading

import pika
from sqlalchemy.orm import Session

from . import config, models
from .errors import NotFound
from .schemas import notification_to_dict

logger = logging.getLogger(__name__)

ADMIN_ROOM = "admin-room"
EVENT_NAME = "notification"


def room_for(user_id) -> str:
    return f"user-{user_id}" if user_id else ADMIN_ROOM


class Notifier:
    """Live push channel. Implementations must never raise from emit()."""

    def emit(self, room: str, event: str, payload: dict):
        raise NotImplementedError

    def close(self):
        pass


class LoggingNotifier(Notifier):
    def emit(self, room: str, event: str, payload: dict):
        logger.info("[notify] room=%s event=%s id=%s", room, event, payload.get("id"))


class RabbitNotifier(Notifier):
    """Publishes to a direct exchange; the routing key is the room name."""

    def __init__(self, url: str, exchange: str = config.NOTIFY_EXCHANGE):
        self.url = url
        self.exchange = exchange
        self._conn = None
        self._ch = None
        # BlockingConnection is not thread safe and routes run in a threadpool
        self._lock = threading.Lock()

    def _channel(self):
        if self._conn is None or self._conn.is_closed:
            params = pika.URLParameters(self.url)
            params.heartbeat = 30
            params.blocked_connection_timeout = 30
            self._conn = pika.BlockingConnection(params)
            self._ch = self._conn.channel()
            self._ch.exchange_declare(exchange=self.exchange, exchange_type="direct", durable=True)
        return self._ch

    def emit(self, room: str, event: str, payload: dict):
        body = json.dumps({"event": event, "data": payload}, default=str).encode("utf-8")
        with self._lock:
            try:
                self._channel().basic_publish(
                    exchange=self.exchange,
                    routing_key=room,
                    body=body,
                    properties=pika.BasicProperties(content_type="application/json"),
                )
            except Exception as e:
                # live push is best effort; clients can still poll the persisted row
                logger.warning("[notify] publish to %s failed: %s", room, e)
                self._reset()

    def _reset(self):
        try:
            if self._conn is not None and self._conn.is_open:
                self._conn.close()
        except Exception as e:
            logger.debug("[notify] close failed: %s", e)
        self._conn = None
        self._ch = None

    def close(self):
        with self._lock:
            self._reset()


def build_notifier() -> Notifier:
    if config.NOTIFIER == "rabbitmq" and config.RABBITMQ_URL:
        return RabbitNotifier(config.RABBITMQ_URL)
    return LoggingNotifier()


def create_notification(db: Session, *, user_id, type: str, title: str, message: str, data: dict = None) -> models.Notification:
    """Persist a notification in the caller's transaction. Pushing is done by dispatch()."""
    n = models.Notification(user_id=user_id, type=type, title=title, message=message, data=data or {})
    db.add(n)
    db.flush()
    return n


def dispatch(notifier: Notifier, notifications):
    for n in notifications:
        try:
            notifier.emit(room_for(n.user_id), EVENT_NAME, notification_to_dict(n))
        except Exception as e:
            logger.warning("[notify] dispatch of %s failed: %s", n.id, e)


def notify(db: Session, notifier: Notifier, **kwargs) -> models.Notification:
    n = create_notification(db, **kwargs)
    db.commit()
    dispatch(notifier, [n])
    return n


def list_notifications(db: Session, user: models.User, limit: int = 50):
    q = db.query(models.Notification)
    if user.role == "admin":
        q = q.filter(models.Notification.user_id.is_(None))
    else:
        q = q.filter(models.Notification.user_id == user.id)
    return q.order_by(models.Notification.created_at.desc()).limit(limit).all()


def _owned(db: Session, user: models.User, notification_id: str) -> models.Notification:
    n = db.get(models.Notification, notification_id)
    if n is None:
        raise NotFound("Notification not found")
    if n.user_id != user.id and not (n.user_id is None and user.role == "admin"):
        raise NotFound("Notification not found")
    return n


def mark_read(db: Session, user: models.User, notification_id: str):
    n = _owned(db, user, notification_id)
    n.is_read = True
    db.commit()
    return n


def delete_notification(db: Session, user: models.User, notification_id: str):
    n = _owned(db, user, notification_id)
    db.delete(n)
    db.commit()

