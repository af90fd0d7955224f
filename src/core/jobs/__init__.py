"""Job orchestration: the single-worker store coordinator."""

from .coordinator import StoreCoordinator

__all__ = ["StoreCoordinator"]
