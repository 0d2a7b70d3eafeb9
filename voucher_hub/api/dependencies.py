"""FastAPI dependencies."""
from fastapi import Request

from voucher_hub.services import Services


def get_services(request: Request) -> Services:
    """The service graph attached to the application at startup."""
    return request.app.state.services
