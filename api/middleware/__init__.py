"""
API Middleware.
"""

from .auth import require_operator_key
from .metrics import MetricsMiddleware, metrics_endpoint

__all__ = ["MetricsMiddleware", "metrics_endpoint", "require_operator_key"]
