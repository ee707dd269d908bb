"""
Logging and monitoring service for the X.509 toolkit.

Sets up JSON file logs, a console log and an errors-only log, keeps
private keys and passwords out of every record, and collects per-operation
timings and error counts for the monitoring endpoint.
"""
import json
import logging
import logging.handlers
import re
import sys
import time
import traceback
from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict, Any, Optional, List
from dataclasses import dataclass, asdict
from contextlib import contextmanager
import threading


REDACTED = "[REDACTED]"

_PEM_PRIVATE_KEY = re.compile(
    r"-----BEGIN [A-Z0-9 ]*PRIVATE KEY-----.*?-----END [A-Z0-9 ]*PRIVATE KEY-----",
    re.DOTALL,
)
_JSON_SECRET = re.compile(
    r'"(password|pkcs12_password|key_password|issuer_key_password|private_key|private_key_pem|d|x)"'
    r'\s*:\s*"[^"]*"'
)
_SECRET_KEYS = {
    "password", "pkcs12_password", "key_password", "issuer_key_password",
    "private_key", "private_key_pem", "key_text", "issuer_key",
}


def redact(text: str) -> str:
    """Replace PEM private keys and JSON secret fields in ``text``."""
    text = _PEM_PRIVATE_KEY.sub("[PRIVATE KEY REDACTED]", text)
    return _JSON_SECRET.sub(lambda m: f'"{m.group(1)}": "{REDACTED}"', text)


def redact_mapping(data: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not data:
        return data
    return {
        k: (REDACTED if k in _SECRET_KEYS and v else redact(v) if isinstance(v, str) else v)
        for k, v in data.items()
    }


class SensitiveDataFilter(logging.Filter):
    """Redacts private keys and passwords from log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        if record.args:
            record.msg = record.getMessage()
            record.args = None
        if isinstance(record.msg, str):
            record.msg = redact(record.msg)
        extra_data = getattr(record, 'extra_data', None)
        if isinstance(extra_data, dict):
            record.extra_data = redact_mapping(extra_data)
        return True


@dataclass
class LogEntry:
    """Structured log entry for JSON logging."""
    timestamp: str
    level: str
    logger_name: str
    message: str
    module: str
    function: str
    line_number: int
    thread_id: int
    extra_data: Optional[Dict[str, Any]] = None
    exception_info: Optional[Dict[str, Any]] = None


@dataclass
class PerformanceMetric:
    operation: str
    duration_ms: float
    timestamp: str
    success: bool
    error_type: Optional[str] = None
    extra_data: Optional[Dict[str, Any]] = None


@dataclass
class ErrorMetric:
    error_type: str
    error_message: str
    operation: Optional[str]
    timestamp: str
    stack_trace: Optional[str] = None


class JSONFormatter(logging.Formatter):
    """One JSON object per log line."""

    def format(self, record: logging.LogRecord) -> str:
        entry = LogEntry(
            timestamp=datetime.fromtimestamp(record.created).isoformat(),
            level=record.levelname,
            logger_name=record.name,
            message=record.getMessage(),
            module=record.module,
            function=record.funcName,
            line_number=record.lineno,
            thread_id=record.thread,
            extra_data=getattr(record, 'extra_data', None)
        )

        # Exception text can echo user input, so only the type and chain go out
        if record.exc_info and record.exc_info[0]:
            entry.exception_info = {
                'type': record.exc_info[0].__name__,
                'message': redact(str(record.exc_info[1])),
                'traceback': [redact(line) for line in traceback.format_exception(*record.exc_info)]
            }

        return json.dumps(asdict(entry), default=str)


class PerformanceMonitor:
    """Timing of engine operations."""

    def __init__(self, max_metrics: int = 10000):
        self.metrics: List[PerformanceMetric] = []
        self.max_metrics = max_metrics
        self.lock = threading.Lock()
        self.logger = logging.getLogger(__name__)

    @contextmanager
    def measure_operation(self, operation: str, extra_data: Optional[Dict[str, Any]] = None):
        """Context manager timing the wrapped block."""
        start_time = time.perf_counter()
        error_type = None

        try:
            yield
        except Exception as e:
            error_type = type(e).__name__
            raise
        finally:
            duration_ms = (time.perf_counter() - start_time) * 1000
            metric = PerformanceMetric(
                operation=operation,
                duration_ms=duration_ms,
                timestamp=datetime.now().isoformat(),
                success=error_type is None,
                error_type=error_type,
                extra_data=redact_mapping(extra_data)
            )

            with self.lock:
                self.metrics.append(metric)
                if len(self.metrics) > self.max_metrics:
                    del self.metrics[:len(self.metrics) - self.max_metrics]

            self.logger.debug(
                f"{operation} took {duration_ms:.1f} ms",
                extra={'extra_data': {'operation': operation, 'duration_ms': duration_ms,
                                      'success': metric.success, 'error_type': error_type}}
            )

    def get_metrics(self, operation: Optional[str] = None,
                    since: Optional[datetime] = None) -> List[PerformanceMetric]:
        with self.lock:
            metrics = list(self.metrics)
        if operation:
            metrics = [m for m in metrics if m.operation == operation]
        if since:
            since_iso = since.isoformat()
            metrics = [m for m in metrics if m.timestamp >= since_iso]
        return metrics

    def get_operation_stats(self, operation: str) -> Dict[str, Any]:
        """Call count, success rate and duration range for one operation."""
        metrics = self.get_metrics(operation=operation)
        if not metrics:
            return {}

        durations = [m.duration_ms for m in metrics]
        success_count = sum(1 for m in metrics if m.success)
        return {
            'operation': operation,
            'total_calls': len(metrics),
            'success_count': success_count,
            'failure_count': len(metrics) - success_count,
            'success_rate': success_count / len(metrics),
            'avg_duration_ms': sum(durations) / len(durations),
            'min_duration_ms': min(durations),
            'max_duration_ms': max(durations)
        }


class ErrorTracker:
    """Counts errors by type; messages are redacted before storage."""

    def __init__(self, max_errors: int = 1000):
        self.errors: List[ErrorMetric] = []
        self.max_errors = max_errors
        self.lock = threading.Lock()
        self.logger = logging.getLogger(__name__)

    def track_error(self, error: Exception, operation: Optional[str] = None, expected: bool = False):
        """
        Record an error.

        Expected errors (bad user input) are logged at warning level without
        a traceback; anything else is logged at error level with one.
        """
        metric = ErrorMetric(
            error_type=type(error).__name__,
            error_message=redact(str(error)),
            operation=operation,
            timestamp=datetime.now().isoformat(),
            stack_trace=None if expected else redact(traceback.format_exc())
        )

        with self.lock:
            self.errors.append(metric)
            if len(self.errors) > self.max_errors:
                del self.errors[:len(self.errors) - self.max_errors]

        extra = {'extra_data': {'error_type': metric.error_type, 'operation': operation}}
        if expected:
            self.logger.warning(f"{operation or 'request'} rejected: {metric.error_type}", extra=extra)
        else:
            self.logger.error(f"{operation or 'request'} failed: {metric.error_type}", extra=extra,
                              exc_info=error)

    def get_errors(self, error_type: Optional[str] = None,
                   since: Optional[datetime] = None) -> List[ErrorMetric]:
        with self.lock:
            errors = list(self.errors)
        if error_type:
            errors = [e for e in errors if e.error_type == error_type]
        if since:
            since_iso = since.isoformat()
            errors = [e for e in errors if e.timestamp >= since_iso]
        return errors

    def get_error_summary(self, since: Optional[datetime] = None) -> Dict[str, Any]:
        errors = self.get_errors(since=since)
        if not errors:
            return {'total_errors': 0, 'error_types': {}}

        error_types = {}
        for error in errors:
            error_types[error.error_type] = error_types.get(error.error_type, 0) + 1

        return {
            'total_errors': len(errors),
            'error_types': error_types,
            'most_common_error': max(error_types.items(), key=lambda x: x[1])[0]
        }


class LoggingService:
    """Configures the root logger and owns the monitoring collectors."""

    def __init__(self, config, console: bool = True):
        self.config = config
        self.console = console
        self.logger = logging.getLogger(__name__)
        self.performance_monitor = PerformanceMonitor()
        self.error_tracker = ErrorTracker()
        self.sensitive_filter = SensitiveDataFilter()
        self._setup_logging()
        self.logger.info("Logging service initialized")

    def _setup_logging(self):
        log_path = Path(self.config.log_file_path)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        root_logger = logging.getLogger()
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)
            handler.close()

        log_level = getattr(logging, self.config.log_level.upper(), logging.INFO)
        root_logger.setLevel(log_level)

        json_formatter = JSONFormatter()

        file_handler = logging.handlers.RotatingFileHandler(
            filename=str(log_path),
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=5,
            encoding='utf-8'
        )
        file_handler.setFormatter(json_formatter)
        file_handler.setLevel(log_level)

        error_handler = logging.handlers.RotatingFileHandler(
            filename=str(log_path.with_suffix('.errors.log')),
            maxBytes=5 * 1024 * 1024,  # 5MB
            backupCount=3,
            encoding='utf-8'
        )
        error_handler.setFormatter(json_formatter)
        error_handler.setLevel(logging.ERROR)

        handlers = [file_handler, error_handler]
        if self.console:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setFormatter(logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            ))
            console_handler.setLevel(log_level)
            handlers.append(console_handler)

        for handler in handlers:
            handler.addFilter(self.sensitive_filter)
            root_logger.addHandler(handler)

        # Werkzeug access lines would otherwise carry request paths at INFO
        logging.getLogger('werkzeug').setLevel(max(log_level, logging.WARNING))

        self._cleanup_old_logs(log_path.parent)

    def _cleanup_old_logs(self, log_dir: Path, max_age_days: int = 30):
        cutoff = (datetime.now() - timedelta(days=max_age_days)).timestamp()
        for log_file in log_dir.glob("*.log*"):
            try:
                if log_file.stat().st_mtime < cutoff:
                    log_file.unlink()
                    self.logger.info(f"Removed old log file: {log_file}")
            except OSError as e:
                self.logger.warning(f"Failed to remove log file {log_file}: {e}")

    def measure_performance(self, operation: str, extra_data: Optional[Dict[str, Any]] = None):
        return self.performance_monitor.measure_operation(operation, extra_data)

    def track_error(self, error: Exception, operation: Optional[str] = None, expected: bool = False):
        self.error_tracker.track_error(error, operation, expected)

    def get_performance_stats(self, operation: Optional[str] = None) -> Dict[str, Any]:
        if operation:
            return self.performance_monitor.get_operation_stats(operation)
        operations = {m.operation for m in self.performance_monitor.get_metrics()}
        return {op: self.performance_monitor.get_operation_stats(op) for op in operations}

    def get_error_summary(self, since_hours: int = 24) -> Dict[str, Any]:
        since = datetime.now() - timedelta(hours=since_hours)
        return self.error_tracker.get_error_summary(since=since)

    def get_health_status(self) -> Dict[str, Any]:
        """Overall status of the logging system."""
        try:
            logging.getLogger('health_check').debug("Health check")
            recent_metrics = self.performance_monitor.get_metrics(
                since=datetime.now() - timedelta(hours=1)
            )
            return {
                'status': 'healthy',
                'log_file': self.config.log_file_path,
                'recent_errors': self.get_error_summary(since_hours=1).get('total_errors', 0),
                'recent_operations': len(recent_metrics),
                'timestamp': datetime.now().isoformat()
            }
        except OSError as e:
            return {
                'status': 'unhealthy',
                'error': str(e),
                'timestamp': datetime.now().isoformat()
            }
