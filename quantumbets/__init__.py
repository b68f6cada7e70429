# Import all models to ensure they are registered with SQLModel
from quantumbets.models import content, subscriber, delivery

__all__ = [
    "content",
    "subscriber",
    "delivery",
]
