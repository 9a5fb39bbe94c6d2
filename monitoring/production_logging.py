"""
Structured business-event logging and lightweight metrics
Everything is emitted through the standard logging module so the JSON
formatter installed at startup renders it
"""

import logging
from typing import Dict, Optional
from enum import Enum


class LogLevel(Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class MetricType(Enum):
    COUNTER = "counter"
    GAUGE = "gauge"
    HISTOGRAM = "histogram"


class ProductionLogger:
    """Structured logger; metrics are DEBUG records under the `metrics.` logger tree"""

    def log_structured(
        self,
        level: LogLevel,
        component: str,
        message: str,
        context: Optional[Dict] = None,
        user_id: Optional[str] = None,
        order_id: Optional[str] = None
    ):
        """Log structured message"""
        logger = logging.getLogger(component)
        extra = {
            'component': component,
            'user_id': user_id,
            'order_id': order_id,
            'context': context or {}
        }
        logger.log(getattr(logging, level.value), message, extra=extra)

    def record_metric(
        self,
        name: str,
        value: float,
        metric_type: MetricType,
        component: str,
        tags: Optional[Dict[str, str]] = None
    ):
        """Emit one metric sample as a structured DEBUG record"""
        logging.getLogger(f"metrics.{component}").debug(
            f"Metric {name}={value}",
            extra={
                'component': component,
                'context': {
                    'metric': name,
                    'value': value,
                    'type': metric_type.value,
                    'tags': tags or {},
                },
            },
        )


_production_logger: Optional[ProductionLogger] = None


def get_production_logger() -> ProductionLogger:
    """Get global production logger instance"""
    global _production_logger
    if _production_logger is None:
        _production_logger = ProductionLogger()
    return _production_logger


def log_business_event(component: str, event: str, details: Dict, user_id: Optional[str] = None, order_id: Optional[str] = None):
    """Log business event with structured context"""
    get_production_logger().log_structured(
        LogLevel.INFO,
        component,
        f"Business event: {event}",
        context=details,
        user_id=user_id,
        order_id=order_id
    )


def log_performance_metric(component: str, operation: str, duration_ms: float, success: bool = True):
    """Record operation latency and outcome"""
    logger = get_production_logger()
    logger.record_metric(
        f"{operation}_duration_ms",
        duration_ms,
        MetricType.HISTOGRAM,
        component,
        {'operation': operation, 'success': str(success)}
    )
    logger.record_metric(
        f"{operation}_success_rate",
        1.0 if success else 0.0,
        MetricType.GAUGE,
        component,
        {'operation': operation}
    )


def log_error_with_context(component: str, error: Exception, context: Dict, user_id: Optional[str] = None, order_id: Optional[str] = None):
    """Log error with full context"""
    logger = get_production_logger()
    error_context = {
        'error_type': type(error).__name__,
        'error_message': str(error),
        **context
    }

    logger.log_structured(
        LogLevel.ERROR,
        component,
        f"Error occurred: {error}",
        context=error_context,
        user_id=user_id,
        order_id=order_id
    )

    logger.record_metric(
        'error_count',
        1.0,
        MetricType.COUNTER,
        component,
        {'error_type': type(error).__name__}
    )
