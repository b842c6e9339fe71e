"""Error taxonomy, classification and retry handling.

This package provides:
- The closed error taxonomy (ErrorCode, ErrorSeverity, ClassifiedError)
- ErrorClassifier with bounded diagnostics statistics
- RetryExecutor with exponential backoff
"""

from ldims_mcp.errors.classifier import ClassifierConfig, ErrorClassifier, ErrorStats
from ldims_mcp.errors.retry import RetryExecutor, RetryPolicy
from ldims_mcp.errors.types import ClassifiedError, ErrorCode, ErrorSeverity

__all__ = [
    "ClassifiedError",
    "ClassifierConfig",
    "ErrorClassifier",
    "ErrorCode",
    "ErrorSeverity",
    "ErrorStats",
    "RetryExecutor",
    "RetryPolicy",
]
