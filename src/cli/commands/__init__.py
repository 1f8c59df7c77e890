"""CLI command modules."""

from .learn import learn
from .sync import sync_group

__all__ = [
    "learn",
    "sync_group",
]
