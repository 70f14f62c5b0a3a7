"""API routes package"""

from tracker.api import tracking, webhooks

__all__ = ["tracking", "webhooks"]
