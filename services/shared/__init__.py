"""Shared utilities used by the reservation service and its workers."""

from .config import ReservationSettings, ServiceConfig, load_reservation_settings, load_service_config
from .messaging import EventPublisher, NotificationDispatcher
from .event_consumer import EventConsumer, cleanup_consumer

__all__ = [
    "ServiceConfig",
    "ReservationSettings",
    "load_service_config",
    "load_reservation_settings",
    "EventPublisher",
    "NotificationDispatcher",
    "EventConsumer",
    "cleanup_consumer",
]
