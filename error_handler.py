"""
Error taxonomy and error reporting for the autocorrelation system.

The synthesizer and the engine raise the typed errors defined here. The
pipeline reports anything it catches to an ErrorHandlingSystem, which keeps
a bounded history and a health score per component.
"""
import logging
import threading
import time
import traceback
from collections import Counter, deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Deque, Dict, List, Optional, Tuple


class AutocorrelationError(Exception):
    """Base class for errors raised by the synthesizer and the engine."""


class InvalidInputError(AutocorrelationError, ValueError):
    """Non-positive sample rate, negative duration, or an unusable sample buffer."""


class UnsupportedWindowSizeError(AutocorrelationError, ValueError):
    """Window cannot be reduced to a power of two >= 2, or no transform setup exists for it."""


class ErrorSeverity(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    DATA = "data"
    CONFIGURATION = "configuration"
    SOFTWARE = "software"
    RESOURCE = "resource"
    UNKNOWN = "unknown"


# First matching entry wins, so subclasses come before their bases
CLASSIFICATION: List[Tuple[tuple, ErrorSeverity, ErrorCategory]] = [
    ((InvalidInputError,), ErrorSeverity.LOW, ErrorCategory.DATA),
    ((UnsupportedWindowSizeError,), ErrorSeverity.MEDIUM, ErrorCategory.CONFIGURATION),
    ((MemoryError,), ErrorSeverity.CRITICAL, ErrorCategory.RESOURCE),
    ((ValueError, TypeError), ErrorSeverity.MEDIUM, ErrorCategory.DATA),
]

HEALTH_RECOVERY_STEP = 0.1
HEALTH_PENALTY_STEP = 0.2
HEALTHY_THRESHOLD = 0.5
MAX_CONSECUTIVE_ERRORS = 3


@dataclass
class ErrorEvent:
    """One reported error."""
    timestamp: float
    error_type: str
    error_message: str
    component: str
    severity: ErrorSeverity
    category: ErrorCategory
    context: Dict[str, Any]
    exception: Optional[Exception] = None
    stack_trace: Optional[str] = None


@dataclass
class ComponentHealth:
    """Running health of one component; health_score stays within [0, 1]."""
    component_name: str
    is_healthy: bool = True
    last_error_time: Optional[float] = None
    error_count: int = 0
    consecutive_errors: int = 0
    success_count: int = 0
    last_successful_operation: Optional[float] = None
    health_score: float = 1.0

    def mark_success(self, now: float) -> None:
        self.success_count += 1
        self.consecutive_errors = 0
        self.last_successful_operation = now
        self.health_score = min(1.0, self.health_score + HEALTH_RECOVERY_STEP)
        self._refresh()

    def mark_error(self, now: float) -> None:
        self.error_count += 1
        self.consecutive_errors += 1
        self.last_error_time = now
        self.health_score = max(0.0, self.health_score - HEALTH_PENALTY_STEP)
        self._refresh()

    def restore(self) -> None:
        self.error_count = 0
        self.consecutive_errors = 0
        self.health_score = 1.0
        self._refresh()

    def _refresh(self) -> None:
        self.is_healthy = (self.health_score >= HEALTHY_THRESHOLD and
                           self.consecutive_errors < MAX_CONSECUTIVE_ERRORS)

    def summary(self) -> Dict[str, Any]:
        return {
            'is_healthy': self.is_healthy,
            'health_score': self.health_score,
            'error_count': self.error_count,
            'success_count': self.success_count,
            'consecutive_errors': self.consecutive_errors
        }


class ErrorHandlingSystem:
    """
    Thread-safe error history and component health tracking.

    Components that report without registering first are tracked from their
    first report onwards.
    """

    def __init__(self, max_error_history: int = 1000):
        self.max_error_history = max_error_history
        self.error_history: Deque[ErrorEvent] = deque(maxlen=max_error_history)
        self.component_health: Dict[str, ComponentHealth] = {}
        self.lock = threading.Lock()
        self.logger = logging.getLogger(__name__)

    def _health_for(self, component: str) -> ComponentHealth:
        # Caller holds the lock
        return self.component_health.setdefault(component, ComponentHealth(component))

    def register_component(self, component_name: str) -> None:
        with self.lock:
            self._health_for(component_name)
        self.logger.debug(f"Tracking health of {component_name}")

    def report_error(self, component: str, error: Exception,
                     context: Optional[Dict[str, Any]] = None,
                     severity: ErrorSeverity = ErrorSeverity.MEDIUM,
                     category: ErrorCategory = ErrorCategory.UNKNOWN) -> ErrorEvent:
        """
        Record an error raised by a component.

        The stack trace is captured only for exceptions that were raised.

        Returns:
            The recorded ErrorEvent
        """
        trace = None
        if error.__traceback__ is not None:
            trace = "".join(traceback.format_exception(type(error), error, error.__traceback__))

        event = ErrorEvent(
            timestamp=time.time(),
            error_type=type(error).__name__,
            error_message=str(error),
            component=component,
            severity=severity,
            category=category,
            context=context or {},
            exception=error,
            stack_trace=trace
        )

        with self.lock:
            self.error_history.append(event)
            self._health_for(component).mark_error(event.timestamp)

        message = f"{component}: {event.error_message}"
        if severity in (ErrorSeverity.CRITICAL, ErrorSeverity.HIGH):
            level = logging.CRITICAL if severity == ErrorSeverity.CRITICAL else logging.ERROR
            self.logger.log(level, message, exc_info=error)
        elif severity == ErrorSeverity.MEDIUM:
            self.logger.warning(message)
        else:
            self.logger.info(message)

        return event

    def record_success(self, component: str) -> None:
        with self.lock:
            self._health_for(component).mark_success(time.time())

    def get_system_health(self) -> Dict[str, Any]:
        """Mean health score plus a per-component summary."""
        with self.lock:
            scores = [health.health_score for health in self.component_health.values()]
            return {
                'overall_health_score': sum(scores) / len(scores) if scores else 1.0,
                'total_errors': len(self.error_history),
                'component_health': {name: health.summary()
                                     for name, health in self.component_health.items()}
            }

    def get_error_statistics(self) -> Dict[str, Any]:
        with self.lock:
            events = list(self.error_history)

        by_component = Counter(event.component for event in events)
        return {
            'total_errors': len(events),
            'errors_by_category': dict(Counter(event.category.value for event in events)),
            'errors_by_severity': dict(Counter(event.severity.value for event in events)),
            'errors_by_component': dict(by_component),
            'errors_by_type': dict(Counter(event.error_type for event in events)),
            'most_problematic_component': by_component.most_common(1)[0][0] if by_component else None
        }

    def get_recent_errors(self, limit: int = 10) -> List[ErrorEvent]:
        """Newest events last."""
        with self.lock:
            return list(self.error_history)[-limit:]

    def reset_error_history(self) -> None:
        with self.lock:
            self.error_history.clear()
            for health in self.component_health.values():
                health.restore()
        self.logger.info("Error history cleared")

    def shutdown(self) -> None:
        health = self.get_system_health()
        self.logger.info(f"Error handling stopped after {health['total_errors']} errors, "
                         f"overall health {health['overall_health_score']:.2f}")


def create_error_handler() -> ErrorHandlingSystem:
    return ErrorHandlingSystem()


def classify_error(error: Exception) -> Tuple[ErrorSeverity, ErrorCategory]:
    """Map an exception to its (severity, category) pair."""
    for error_types, severity, category in CLASSIFICATION:
        if isinstance(error, error_types):
            return severity, category
    return ErrorSeverity.HIGH, ErrorCategory.SOFTWARE


def handle_component_error(error_handler: ErrorHandlingSystem,
                           component: str, error: Exception,
                           context: Optional[Dict[str, Any]] = None) -> ErrorEvent:
    """
    Classify an exception and report it for a component.

    Args:
        error_handler: Error handling system instance
        component: Component name
        error: Exception that occurred
        context: Additional context

    Returns:
        The recorded ErrorEvent
    """
    severity, category = classify_error(error)
    return error_handler.report_error(component, error, context, severity, category)
