"""Package alias exposing the FastAPI app and the precompute entrypoint."""

from __future__ import annotations

from app.main import app, create_app
from app.precompute import main as precompute

__all__ = ["app", "create_app", "precompute"]
