from fastapi import Request

from codelens_core.service import ReviewService


def get_service(request: Request) -> ReviewService:
    """Return the ReviewService created during the app lifespan."""
    return request.app.state.service
