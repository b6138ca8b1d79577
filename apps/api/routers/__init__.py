"""Routers package."""

from . import (
    health,
    credits,
    analysis,
    admin,
)
