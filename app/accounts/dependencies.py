from fastapi import Request

from app.validators import ValidatorRegistry


def get_validators(request: Request) -> ValidatorRegistry:
    """The per-process validator registry built in the app lifespan."""
    return request.app.state.validators
