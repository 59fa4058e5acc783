"""
Custom exceptions for the cache optimization subsystem.
Every failure mode here has a defined fallback; these types exist so the fallback
paths can log and classify what went wrong.
"""
import uuid
from typing import Optional, Dict, Any
from datetime import datetime, timezone
from enum import Enum


class ErrorSeverity(Enum):
    """Error severity levels for monitoring and alerting."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Error categorization for better handling and monitoring."""
    STORE = "store"
    SERIALIZATION = "serialization"
    COMPRESSION = "compression"
    VALIDATION = "validation"
    CONFIGURATION = "configuration"
    WARMING = "warming"
    SYSTEM = "system"


class CacheOptimizationError(Exception):
    """Base exception for all cache optimization errors with context."""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        category: ErrorCategory = ErrorCategory.SYSTEM,
        correlation_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc)
        self.error_code = error_code or self._generate_error_code()
        self.severity = severity
        self.category = category
        self.correlation_id = correlation_id or str(uuid.uuid4())
        self.context = context or {}

    def _generate_error_code(self) -> str:
        """Generate a unique error code for tracking."""
        class_name = self.__class__.__name__
        return f"{class_name.upper()}_{int(self.timestamp.timestamp() * 1000)}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for logging and monitoring payloads."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "severity": self.severity.value,
            "category": self.category.value,
            "details": self.details,
            "correlation_id": self.correlation_id,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "exception_type": self.__class__.__name__
        }


# ============================================================================
# STORE EXCEPTIONS
# ============================================================================

class StoreUnavailableError(CacheOptimizationError):
    """The key-value store cannot be reached or is not configured."""

    def __init__(self, message: str = "Redis client not available", operation: Optional[str] = None, **kwargs):
        kwargs.setdefault('category', ErrorCategory.STORE)
        kwargs.setdefault('severity', ErrorSeverity.HIGH)
        super().__init__(message, **kwargs)
        self.operation = operation
        self.context.update({'operation': operation})


# ============================================================================
# PAYLOAD EXCEPTIONS
# ============================================================================

class CacheSerializationError(CacheOptimizationError):
    """A cached payload could not be decoded."""

    def __init__(self, message: str, cache_key: Optional[str] = None,
                 content_type: Optional[str] = None, **kwargs):
        kwargs.setdefault('category', ErrorCategory.SERIALIZATION)
        super().__init__(message, **kwargs)
        self.cache_key = cache_key
        self.content_type = content_type
        self.context.update({'cache_key': cache_key, 'content_type': content_type})


class CacheCompressionError(CacheOptimizationError):
    """Compressing a payload failed."""

    def __init__(self, message: str, content_type: Optional[str] = None, **kwargs):
        kwargs.setdefault('category', ErrorCategory.COMPRESSION)
        kwargs.setdefault('severity', ErrorSeverity.LOW)
        super().__init__(message, **kwargs)
        self.content_type = content_type
        self.context.update({'content_type': content_type})


# ============================================================================
# CONFIGURATION AND WARMING EXCEPTIONS
# ============================================================================

class UnknownCacheTypeError(CacheOptimizationError):
    """No cache configuration exists for the requested content type."""

    def __init__(self, cache_type: str, **kwargs):
        kwargs.setdefault('category', ErrorCategory.CONFIGURATION)
        super().__init__(f"Unknown cache type: {cache_type}", **kwargs)
        self.cache_type = cache_type


class WarmingValidationError(CacheOptimizationError):
    """A warming query or strategy configuration failed validation."""

    def __init__(self, message: str, errors: Optional[list] = None, **kwargs):
        kwargs.setdefault('category', ErrorCategory.VALIDATION)
        kwargs.setdefault('severity', ErrorSeverity.LOW)
        super().__init__(message, **kwargs)
        self.errors = errors or []
        self.details.setdefault('errors', self.errors)


class StrategyNotFoundError(CacheOptimizationError):
    """A warming strategy name is not registered."""

    def __init__(self, strategy_name: str, **kwargs):
        kwargs.setdefault('category', ErrorCategory.WARMING)
        super().__init__(f"Unknown strategy: {strategy_name}", **kwargs)
        self.strategy_name = strategy_name
