"""
Output formatting for autocorrelation results.
"""
import json
import logging
import math
import os
import sys
import time
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from autocorrelation_engine import normalize_to_lag_zero
from error_handler import InvalidInputError
from utils import format_seconds


class OutputFormat(Enum):
    """Result formats accepted by --output-format."""
    CONSOLE = "console"
    JSON = "json"
    CSV = "csv"


def to_plot_points(values, sample_rate: float, normalize: bool = False,
                   count: Optional[int] = None) -> List[Tuple[float, float]]:
    """
    Convert a lag series to (seconds, value) points for plotting.

    Args:
        values: Autocorrelation values, index 0 = zero lag
        sample_rate: Samples per second used to convert lags to seconds
        normalize: Divide by the lag-0 value first
        count: Maximum number of points (defaults to all)

    Returns:
        List of (lag_seconds, value) tuples
    """
    if not math.isfinite(sample_rate) or sample_rate <= 0:
        raise InvalidInputError(f"Sample rate must be positive, got {sample_rate}")

    series = normalize_to_lag_zero(values) if normalize else np.asarray(values, dtype=np.float32)
    if count is not None:
        series = series[:max(count, 0)]

    return [(index / sample_rate, float(value)) for index, value in enumerate(series)]


def find_period_estimate(normalized, sample_rate: float) -> Optional[Tuple[int, float, float]]:
    """
    Locate the first secondary peak of a normalized autocorrelation.

    Skips the main lobe up to its first zero crossing, then returns the
    highest point of the next positive lobe.

    Returns:
        (lag, lag_seconds, value), or None when there is no such peak
    """
    values = np.asarray(normalized, dtype=np.float64)
    if values.size < 3 or sample_rate <= 0:
        return None

    non_positive = np.flatnonzero(values <= 0)
    if non_positive.size == 0:
        return None

    after_crossing = non_positive[0]
    positive = np.flatnonzero(values[after_crossing:] > 0)
    if positive.size == 0:
        return None

    lobe_start = after_crossing + positive[0]
    lobe_end_offsets = np.flatnonzero(values[lobe_start:] <= 0)
    lobe_end = lobe_start + lobe_end_offsets[0] if lobe_end_offsets.size else values.size

    lag = int(lobe_start + np.argmax(values[lobe_start:lobe_end]))
    return lag, lag / sample_rate, float(values[lag])


def _terminal_has_color() -> bool:
    stdout = sys.stdout
    return bool(getattr(stdout, 'isatty', None) and stdout.isatty()) and os.environ.get('TERM') != 'dumb'


class ConsoleFormatter:
    """Short human-readable summary, colored when stdout is a terminal."""

    ANSI = {
        'red': '\033[91m',
        'green': '\033[92m',
        'yellow': '\033[93m',
        'cyan': '\033[96m',
        'white': '\033[97m',
        'bold': '\033[1m',
    }
    RESET = '\033[0m'

    def __init__(self, use_colors: bool = True):
        self.use_colors = use_colors and _terminal_has_color()

    def paint(self, text: str, color: str) -> str:
        if not self.use_colors or color not in self.ANSI:
            return text
        return f"{self.ANSI[color]}{text}{self.RESET}"

    @staticmethod
    def _grade(value: float, good: float, fair: float, ascending: bool = True) -> str:
        """Traffic-light color for value against two thresholds."""
        if ascending:
            return 'green' if value > good else 'yellow' if value > fair else 'red'
        return 'green' if value < good else 'yellow' if value < fair else 'red'

    def format_result(self, timestamp: str, result) -> str:
        """Summarize an AutocorrelationResult; failed results render as errors."""
        if not result.succeeded:
            return self.format_error(timestamp, result.error or "no result", "autocorrelation")

        elapsed_color = self._grade(result.processing_time, 0.01, 0.1, ascending=False)
        lag_zero = float(result.autocorrelation[0])
        lines = [
            f"{self.paint('[AUTOCORRELATION]', 'cyan')} {timestamp}",
            f"  Samples:        {len(result.signal)} at {result.sample_rate:g} Hz",
            f"  Transform size: N={result.transform_size}",
            f"  Lags:           {len(result.autocorrelation)}",
            f"  Lag-0 energy:   {self.paint(f'{lag_zero:.4f}', 'white')}",
        ]

        peak = find_period_estimate(result.values(normalized=True), result.sample_rate)
        if peak is None:
            lines.append(f"  First peak:     {self.paint('none', 'yellow')}")
        else:
            lag, seconds, value = peak
            # lag >= 1: the peak always lies past the first non-positive value
            shown = self.paint(f'{value:.3f}', self._grade(value, 0.5, 0.2))
            lines.append(f"  First peak:     lag {lag} ({format_seconds(seconds)}, "
                         f"{1.0 / seconds:.2f} Hz) value {shown}")

        lines.append(f"  Time:           {self.paint(f'{result.processing_time * 1000:.2f}ms', elapsed_color)}")
        return "\n".join(lines)

    def format_system_info(self, timestamp: str, info: Dict[str, Any]) -> str:
        header = f"{self.paint('[SYSTEM]', 'bold')} {timestamp}"
        return "\n".join([header] + [f"  {key}: {value}" for key, value in info.items()])

    def format_error(self, timestamp: str, error: str, context: str) -> str:
        return (f"{self.paint('[ERROR]', 'red')} {timestamp} | Context: {context} | "
                f"Error: {self.paint(error, 'red')}")


class JSONFormatter:
    """One JSON document per event, carrying the full series."""

    def __init__(self, pretty_print: bool = False):
        self.indent = 2 if pretty_print else None

    def dumps(self, data: Dict[str, Any]) -> str:
        return json.dumps(data, indent=self.indent, default=str)

    def format_result(self, timestamp: str, result) -> str:
        peak = None
        if result.succeeded:
            peak = find_period_estimate(result.values(normalized=True), result.sample_rate)

        return self.dumps({
            "event_type": "autocorrelation",
            "timestamp": timestamp,
            "succeeded": result.succeeded,
            "error": result.error,
            "error_type": result.error_type,
            "sample_rate": result.sample_rate,
            "transform_size": result.transform_size,
            "processing_time_ms": result.processing_time * 1000,
            "first_peak": None if peak is None else dict(zip(("lag", "lag_seconds", "value"), peak)),
            "signal": result.signal.tolist(),
            "autocorrelation": result.autocorrelation.tolist(),
            "normalized": result.normalized.tolist()
        })

    def format_system_info(self, timestamp: str, info: Dict[str, Any]) -> str:
        return self.dumps({"event_type": "system_info", "timestamp": timestamp, "info": info})

    def format_error(self, timestamp: str, error: str, context: str) -> str:
        return self.dumps({"event_type": "error", "timestamp": timestamp,
                           "error": error, "context": context})


class CSVFormatter:
    """Lag table: lag time in seconds, input sample, autocorrelation value."""

    HEADER = "time_s,signal,autocorrelation"

    def get_header(self) -> str:
        return self.HEADER

    def format_result(self, result) -> List[str]:
        """Rows use normalized values when present, raw values otherwise."""
        if not result.succeeded:
            return []

        return [f"{lag / result.sample_rate:.6f},{float(result.signal[lag]):.6f},{float(value):.6f}"
                for lag, value in enumerate(result.values(normalized=True))]

    def format_table(self, result) -> str:
        return "\n".join([self.HEADER] + self.format_result(result))

    @staticmethod
    def format_comment(error: str, context: str) -> str:
        return f"# ERROR: {context}: {error}"


class ResultOutputManager:
    """Routes formatted events to stdout, a file, or both."""

    def __init__(self, output_format: OutputFormat = OutputFormat.CONSOLE,
                 output_file: Optional[str] = None, echo_stdout: bool = True,
                 use_colors: bool = True):
        """
        Args:
            output_format: Format for every event written
            output_file: File to write (truncated on open), or None for stdout only
            echo_stdout: Print to stdout as well when writing a file
            use_colors: Allow ANSI colors in console output
        """
        self.output_format = output_format
        self.output_file = output_file
        self.echo_stdout = echo_stdout or output_file is None

        self.console_formatter = ConsoleFormatter(use_colors=use_colors)
        self.json_formatter = JSONFormatter(pretty_print=output_file is not None)
        self.csv_formatter = CSVFormatter()

        self.output_count = 0
        self.last_output_time = time.time()
        self.logger = logging.getLogger(__name__)

        self.file_handle = None
        if output_file:
            self.file_handle = open(output_file, 'w', encoding='utf-8')
            self.logger.debug(f"Writing {output_format.value} output to {output_file}")

    @staticmethod
    def _now() -> str:
        return datetime.now().strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]

    def _emit(self, text: str) -> None:
        if self.echo_stdout:
            print(text, flush=True)
        if self.file_handle:
            self.file_handle.write(text + '\n')
            self.file_handle.flush()

        self.output_count += 1
        self.last_output_time = time.time()

    def output_result(self, result) -> None:
        renderers = {
            OutputFormat.JSON: lambda: self.json_formatter.format_result(self._now(), result),
            OutputFormat.CSV: lambda: self.csv_formatter.format_table(result),
            OutputFormat.CONSOLE: lambda: self.console_formatter.format_result(self._now(), result),
        }
        self._emit(renderers[self.output_format]())

    def output_system_info(self, info: Dict[str, Any]) -> None:
        """System info is JSON in JSON mode and plain text otherwise."""
        if self.output_format == OutputFormat.JSON:
            self._emit(self.json_formatter.format_system_info(self._now(), info))
        else:
            self._emit(self.console_formatter.format_system_info(self._now(), info))

    def output_error(self, error: str, context: str) -> None:
        renderers = {
            OutputFormat.JSON: lambda: self.json_formatter.format_error(self._now(), error, context),
            OutputFormat.CSV: lambda: self.csv_formatter.format_comment(error, context),
            OutputFormat.CONSOLE: lambda: self.console_formatter.format_error(self._now(), error, context),
        }
        self._emit(renderers[self.output_format]())

    def get_output_stats(self) -> Dict[str, Any]:
        return {
            'total_outputs': self.output_count,
            'last_output_time': self.last_output_time,
            'output_format': self.output_format.value,
            'output_file': self.output_file
        }

    def close(self) -> None:
        if self.file_handle:
            self.file_handle.close()
            self.file_handle = None
        self.logger.debug(f"Output closed after {self.output_count} event(s)")


def create_output_manager(format_type: str = "console",
                          output_file: Optional[str] = None) -> ResultOutputManager:
    """
    Build an output manager from a format name.

    JSON and CSV written to a file are not echoed to stdout; console
    output always is.

    Raises:
        ValueError: format_type is not console, json or csv
    """
    try:
        output_format = OutputFormat(format_type.lower())
    except ValueError:
        raise ValueError(f"Unknown output format '{format_type}', expected one of "
                         f"{[fmt.value for fmt in OutputFormat]}") from None

    return ResultOutputManager(
        output_format=output_format,
        output_file=output_file,
        echo_stdout=output_file is None or output_format == OutputFormat.CONSOLE
    )
