from fastapi import Request

from chatrelay.services.gateway import Gateway


def get_gateway(request: Request) -> Gateway:
    """Return the gateway stored on app state during lifespan."""
    return request.app.state.gateway
