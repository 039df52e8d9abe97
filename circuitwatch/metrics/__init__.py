"""Prometheus metrics for the pipeline."""
from circuitwatch.metrics.registry import PipelineMetrics, start_metrics_server

__all__ = ["PipelineMetrics", "start_metrics_server"]
