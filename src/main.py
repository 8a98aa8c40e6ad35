"""Package-level entry point so ``uvicorn src.main:app`` serves the billing API."""
from main import app, create_application, lifespan  # noqa: F401

__all__ = ["app", "create_application", "lifespan"]
