"""Resilient access to external JSON APIs."""

from .client import ApiRequest, ResilientClient

__all__ = ["ApiRequest", "ResilientClient"]
