"""Route group exports."""

from . import compliance, custody, health, routes, vehicles

__all__ = ["health", "vehicles", "routes", "custody", "compliance"]
