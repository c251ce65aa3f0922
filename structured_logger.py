"""
Structured session logging for the autocorrelation system.

Each session writes three files into the log directory:

    autocorrelation_<session>.jsonl   every event, one JSON object per line
    errors_<session>.log              warnings and errors, JSON lines
    performance_<session>.log         one human-readable line per analysis
"""
import logging
import logging.handlers
import json
import time
import os
import threading
import uuid
from contextlib import contextmanager
from typing import Dict, Any, Iterator, Optional
from datetime import datetime
from enum import Enum
from pathlib import Path

import psutil

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def new_session_id() -> str:
    """Session identifier from the start time plus a random suffix."""
    return f"session_{int(time.time())}_{uuid.uuid4().hex[:8]}"


class LogEventType(Enum):
    """Event types written to the session log."""
    SYSTEM_START = "system_start"
    SYSTEM_STOP = "system_stop"
    SYNTHESIS = "synthesis"
    AUTOCORRELATION = "autocorrelation"
    PERFORMANCE = "performance"
    ERROR = "error"
    WARNING = "warning"
    CONFIGURATION = "configuration"


class JSONLogFormatter(logging.Formatter):
    """Renders a record and its event payload as a single JSON line."""

    def __init__(self, session_id: Optional[str] = None):
        super().__init__()
        self.session_id = session_id or new_session_id()

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            'timestamp': datetime.fromtimestamp(record.created).isoformat(),
            'session_id': self.session_id,
            'event_type': getattr(record, 'event_type', None),
            'level': record.levelname,
            'component': getattr(record, 'component', record.name),
            'message': record.getMessage(),
            'data': getattr(record, 'event_data', {}),
            'pid': os.getpid(),
            'thread': threading.current_thread().name
        }
        if record.exc_info:
            entry['exception'] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class PerformanceLogFormatter(logging.Formatter):
    """One line per analysis: latency, transform size and memory."""

    def format(self, record: logging.LogRecord) -> str:
        data = getattr(record, 'event_data', {})
        clock = datetime.fromtimestamp(record.created).strftime("%H:%M:%S.%f")[:-3]
        memory_mb = data.get('resource_usage', {}).get('memory_mb', 0.0)
        return (f"{clock} | PERF | Latency: {data.get('latency_ms', 0.0):.2f}ms"
                f" | N: {data.get('transform_size', 0)} | Memory: {memory_mb:.1f}MB")


class StructuredLogger:
    """JSON-lines session logger with separate error and performance channels."""

    def __init__(self, name: str, log_dir: str = "logs",
                 session_id: Optional[str] = None,
                 enable_console: bool = True,
                 enable_file: bool = True,
                 enable_performance_log: bool = True,
                 max_file_size: int = 10 * 1024 * 1024,
                 backup_count: int = 5):
        """
        Initialize structured logger.

        Args:
            name: Prefix for the underlying logger names
            log_dir: Directory for log files (created when file logging is on)
            session_id: Session identifier used in file names and entries
            enable_console: Echo session events to stderr
            enable_file: Write the session and error files
            enable_performance_log: Write the performance file
            max_file_size: Rotation size for each file in bytes
            backup_count: Rotated files kept per log
        """
        self.name = name
        self.log_dir = Path(log_dir)
        self.session_id = session_id or new_session_id()
        self.enable_console = enable_console
        self.enable_file = enable_file
        self.enable_performance_log = enable_performance_log and enable_file
        self.max_file_size = max_file_size
        self.backup_count = backup_count

        # Channels are owned by this session and kept out of the logging registry,
        # so concurrent sessions keep their own handlers and closed ones are collected
        self.channels: Dict[str, logging.Logger] = {}
        for channel, level in (('main', logging.DEBUG),
                               ('performance', logging.INFO),
                               ('error', logging.WARNING)):
            logger = logging.Logger(f"{name}.{channel}")
            logger.setLevel(level)
            logger.propagate = False
            self.channels[channel] = logger

        self._attach_handlers()

        self.event_count = 0
        self.start_time = time.time()
        self.last_event_time = self.start_time

        self.log_system_start()

    def _rotating_handler(self, filename: str, level: int,
                          formatter: logging.Formatter) -> logging.Handler:
        handler = logging.handlers.RotatingFileHandler(
            self.log_dir / filename, maxBytes=self.max_file_size, backupCount=self.backup_count
        )
        handler.setLevel(level)
        handler.setFormatter(formatter)
        return handler

    def _attach_handlers(self) -> None:
        self._close_handlers()

        if self.enable_console:
            console = logging.StreamHandler()
            console.setLevel(logging.INFO)
            console.setFormatter(logging.Formatter(LOG_FORMAT))
            self.channels['main'].addHandler(console)

        if self.enable_file:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            json_formatter = JSONLogFormatter(self.session_id)
            self.channels['main'].addHandler(self._rotating_handler(
                f"autocorrelation_{self.session_id}.jsonl", logging.DEBUG, json_formatter))
            self.channels['error'].addHandler(self._rotating_handler(
                f"errors_{self.session_id}.log", logging.WARNING, json_formatter))

        if self.enable_performance_log:
            self.channels['performance'].addHandler(self._rotating_handler(
                f"performance_{self.session_id}.log", logging.INFO, PerformanceLogFormatter()))

        # A channel without handlers would fall back to logging.lastResort
        for logger in self.channels.values():
            if not logger.handlers:
                logger.addHandler(logging.NullHandler())

    def _close_handlers(self) -> None:
        for logger in self.channels.values():
            for handler in list(logger.handlers):
                handler.flush()
                handler.close()
                logger.removeHandler(handler)

    def _emit(self, event_type: LogEventType, message: str, component: str,
              level: int = logging.INFO, channel: str = 'main', **data: Any) -> None:
        """Write one event to a channel with its payload attached to the record."""
        logger = self.channels[channel]
        record = logger.makeRecord(logger.name, level, "", 0, message, (), None)
        record.event_type = event_type.value
        record.component = component
        record.event_data = data
        logger.handle(record)

        self.event_count += 1
        self.last_event_time = time.time()

    def log_system_start(self, config: Optional[Dict[str, Any]] = None) -> None:
        self._emit(LogEventType.SYSTEM_START, "Autocorrelation session started", "system",
                   session_id=self.session_id, configuration=config or {})

    def log_system_stop(self) -> None:
        self._emit(LogEventType.SYSTEM_STOP, "Autocorrelation session stopped", "system",
                   uptime_seconds=time.time() - self.start_time,
                   total_events=self.event_count)

    def log_synthesis(self, frequency: float, sample_rate: float, duration: float,
                      num_samples: int, noise_magnitude: float) -> None:
        """Record a synthesized test signal."""
        self._emit(LogEventType.SYNTHESIS,
                   f"Synthesized {num_samples} samples at {frequency} Hz", "synthesizer",
                   frequency_hz=frequency, sample_rate=sample_rate,
                   duration_seconds=duration, num_samples=num_samples,
                   noise_magnitude=noise_magnitude)

    def log_autocorrelation(self, input_length: int, transform_size: int, num_lags: int,
                            lag_zero: float, processing_time: float, method: str,
                            metadata: Optional[Dict[str, Any]] = None) -> None:
        """Record one autocorrelation; processing_time is in seconds."""
        self._emit(LogEventType.AUTOCORRELATION,
                   f"Autocorrelation computed: N={transform_size}, {num_lags} lags", "engine",
                   input_length=input_length, transform_size=transform_size,
                   num_lags=num_lags, lag_zero=lag_zero,
                   processing_time_ms=processing_time * 1000, method=method,
                   metadata=metadata or {})

    def log_performance(self, latency_ms: float, transform_size: int,
                        resource_usage: Dict[str, Any], stage_times_ms: Dict[str, float]) -> None:
        self._emit(LogEventType.PERFORMANCE,
                   f"Latency {latency_ms:.2f}ms at N={transform_size}", "performance",
                   channel='performance', latency_ms=latency_ms,
                   transform_size=transform_size, resource_usage=resource_usage,
                   stage_times_ms=stage_times_ms)

    def log_error(self, error: str, context: str, component: str,
                  exception: Optional[Exception] = None,
                  additional_data: Optional[Dict[str, Any]] = None) -> None:
        """Record an error in the error log."""
        details = {}
        if exception is not None:
            details = {'exception_type': type(exception).__name__,
                       'exception_details': str(exception)}
        self._emit(LogEventType.ERROR, f"{component}: {error}", component,
                   level=logging.ERROR, channel='error',
                   error_message=error, context=context,
                   additional_data=additional_data or {}, **details)

    def log_warning(self, warning: str, component: str,
                    additional_data: Optional[Dict[str, Any]] = None) -> None:
        self._emit(LogEventType.WARNING, f"{component}: {warning}", component,
                   level=logging.WARNING, warning_message=warning,
                   additional_data=additional_data or {})

    def log_configuration(self, config: Dict[str, Any], component: str) -> None:
        self._emit(LogEventType.CONFIGURATION, f"Configuration applied for {component}",
                   component, configuration=config)

    def get_log_statistics(self) -> Dict[str, Any]:
        uptime = time.time() - self.start_time
        return {
            'session_id': self.session_id,
            'total_events': self.event_count,
            'uptime_seconds': uptime,
            'last_event_time': self.last_event_time,
            'log_directory': str(self.log_dir),
            'files_enabled': self.enable_file,
            'performance_log_enabled': self.enable_performance_log
        }

    def flush_logs(self) -> None:
        for logger in self.channels.values():
            for handler in logger.handlers:
                handler.flush()

    def close(self) -> None:
        """Write the stop event and close every handler."""
        self.log_system_stop()
        self._close_handlers()


class PerformanceTracker:
    """Times pipeline stages and logs them with process resource usage."""

    def __init__(self, logger: StructuredLogger):
        self.logger = logger
        self.stage_times: Dict[str, float] = {}
        self.lock = threading.Lock()

    @contextmanager
    def timed(self, stage: str) -> Iterator[None]:
        """Time the enclosed block, recording the duration even if it raises."""
        start = time.perf_counter()
        try:
            yield
        finally:
            with self.lock:
                self.stage_times[stage] = time.perf_counter() - start

    def log_performance_summary(self, transform_size: int) -> None:
        """Log total stage latency and resource usage, then start a fresh set of timings."""
        process = psutil.Process()
        resource_usage = {
            'cpu_percent': process.cpu_percent(),
            'memory_mb': process.memory_info().rss / (1024 * 1024),
            'threads': process.num_threads()
        }

        with self.lock:
            stage_times_ms = {stage: seconds * 1000 for stage, seconds in self.stage_times.items()}
            self.stage_times.clear()

        self.logger.log_performance(
            latency_ms=sum(stage_times_ms.values()),
            transform_size=transform_size,
            resource_usage=resource_usage,
            stage_times_ms=stage_times_ms
        )

    def reset(self) -> None:
        with self.lock:
            self.stage_times.clear()


def create_structured_logger(name: str = "autocorrelation",
                             log_dir: str = "logs") -> StructuredLogger:
    """File-only structured logger."""
    return StructuredLogger(name=name, log_dir=log_dir, enable_console=False)
