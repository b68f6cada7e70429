# quantumbets/services/__init__.py
"""
Services layer for the delivery pipeline.
"""

from quantumbets.services.content_service import ContentService, ContentView, content_service
from quantumbets.services.delivery_service import DeliveryService, delivery_service

__all__ = [
    "ContentService",
    "ContentView",
    "content_service",
    "DeliveryService",
    "delivery_service",
]
