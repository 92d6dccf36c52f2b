"""Producer-side helpers: build events, queue them, ship them to the gateway."""

from telemetry_gateway.producer.batch_queue import BatchQueue, QueueFull
from telemetry_gateway.producer.builder import EventBuilder
from telemetry_gateway.producer.transport import TransportClient

__all__ = ["BatchQueue", "EventBuilder", "QueueFull", "TransportClient"]
