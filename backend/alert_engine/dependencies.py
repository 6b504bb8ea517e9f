"""Shared FastAPI dependencies."""

from fastapi import Request

from .providers.client import SmsDeliveryClient
from .schedules.runner import ScheduleRunner


def get_runner(request: Request) -> ScheduleRunner:
    """Get the schedule runner from app state."""
    return request.app.state.runner


def get_delivery_client(request: Request) -> SmsDeliveryClient:
    """Get the SMS delivery client from app state."""
    return request.app.state.delivery_client
