"""Circuit-limit change detection."""
from circuitwatch.analytics.circuit_detector import CircuitChangeDetector, DetectionResult

__all__ = ["CircuitChangeDetector", "DetectionResult"]
