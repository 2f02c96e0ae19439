from fastapi import Request

from prism.services.prism_client import PrismClient


def get_prism_client(request: Request) -> PrismClient:
    """The PrismClient created by the application lifespan."""
    return request.app.state.prism
