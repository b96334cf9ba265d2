"""
Monitoring package: Prometheus metrics for the quote service.
"""

from fpc_services.monitoring.quote_metrics import QuoteMetrics

__all__ = ["QuoteMetrics"]
