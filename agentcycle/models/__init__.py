"""Model collaborators."""

from .client import ModelClient

__all__ = ["ModelClient"]
