"""Pipeline health checks."""
from circuitwatch.health.checks import HealthStatus, check_health

__all__ = ["HealthStatus", "check_health"]
