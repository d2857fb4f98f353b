"""Routers package."""

from . import (
    health,
    search,
    catalog,
    taxonomy,
    analytics,
    admin,
)
