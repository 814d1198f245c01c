"""Transactional outbox and processed-event dedupe helpers.

Outbox rows are written in the same transaction as the state change they
describe; ``outbox_publisher`` relays them to RabbitMQ afterwards.
"""
import logging

from sqlalchemy.orm import Session

from . import models

logger = logging.getLogger(__name__)


def record_event(db: Session, event_type: str, payload: dict) -> models.EventOutbox:
    row = models.EventOutbox(event_type=event_type, payload=payload)
    db.add(row)
    return row


def already_processed(db: Session, service_name: str, key: str) -> bool:
    row = (
        db.query(models.ProcessedEvent.id)
        .filter(models.ProcessedEvent.service_name == service_name, models.ProcessedEvent.event_id == key)
        .first()
    )
    return row is not None


def mark_processed(db: Session, service_name: str, key: str):
    db.add(models.ProcessedEvent(service_name=service_name, event_id=key))
    logger.debug("[events] marked processed service=%s key=%s", service_name, key)
