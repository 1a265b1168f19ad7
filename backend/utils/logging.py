"""
Logging configuration and utilities
"""

import logging
import logging.config
import structlog

from config.settings import settings


def setup_logging():
    """Set up application logging configuration."""

    # Configure standard library logging
    logging_config = settings.get_log_config()
    logging.config.dictConfig(logging_config)

    # Configure structlog
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="ISO"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer() if settings.is_development()
            else structlog.processors.JSONRenderer()
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = None) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


class ScrapingLogger:
    """Logger bound to one catalog source and, optionally, one job."""

    def __init__(self, source_id: str, job_id: str = None):
        self.source_id = source_id
        self.job_id = job_id
        self.logger = get_logger(f"scraper.{source_id}")

    def info(self, message: str, **kwargs):
        self.logger.info(message, source=self.source_id, job_id=self.job_id, **kwargs)

    def warning(self, message: str, **kwargs):
        self.logger.warning(message, source=self.source_id, job_id=self.job_id, **kwargs)

    def error(self, message: str, **kwargs):
        self.logger.error(message, source=self.source_id, job_id=self.job_id, **kwargs)

    def debug(self, message: str, **kwargs):
        self.logger.debug(message, source=self.source_id, job_id=self.job_id, **kwargs)


class PerformanceLogger:
    """Logger for performance monitoring."""

    def __init__(self):
        self.logger = get_logger("performance")

    def log_scraping_performance(self, source: str, products_saved: int,
                                 duration: float, errors: int = 0):
        """Log scraping performance metrics."""
        rate = products_saved / duration if duration > 0 else 0

        self.logger.info(
            "Scraping performance",
            source=source,
            products_saved=products_saved,
            duration_seconds=round(duration, 2),
            products_per_second=round(rate, 2),
            errors=errors,
        )

    def log_database_operation(self, operation: str, table: str,
                               duration: float, rows_affected: int = None):
        """Log database operation performance."""
        self.logger.info(
            "Database operation",
            operation=operation,
            table=table,
            duration_ms=round(duration * 1000, 2),
            rows_affected=rows_affected
        )


performance_logger = PerformanceLogger()
