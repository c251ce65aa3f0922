"""
Processing pipeline: synthesize, zero-pad, autocorrelate, normalize.
"""
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from autocorrelation_engine import create_autocorrelation_engine, normalize_to_lag_zero
from config_manager import ConfigurationManager
from error_handler import AutocorrelationError, ErrorHandlingSystem, handle_component_error
from output_formatter import to_plot_points
from signal_synthesizer import NoiseSource, SquareWaveSynthesizer, UniformNoiseSource, zero_pad
from structured_logger import StructuredLogger, PerformanceTracker
from utils import is_power_of_two, require_finite, transform_size


class PipelineState(Enum):
    """Pipeline execution states."""
    STOPPED = "stopped"
    READY = "ready"
    RUNNING = "running"
    ERROR = "error"


@dataclass
class PipelineMetrics:
    """Performance metrics for the pipeline."""
    total_runs: int = 0
    successful_runs: int = 0
    failed_runs: int = 0
    average_processing_time: float = 0.0
    last_transform_size: int = 0
    uptime: float = 0.0
    last_reset_time: float = field(default_factory=time.time)


@dataclass
class AutocorrelationResult:
    """
    Container for one analysis.

    An empty autocorrelation means the analysis failed; error and
    error_type then say why.
    """
    signal: np.ndarray
    autocorrelation: np.ndarray
    normalized: np.ndarray
    sample_rate: float
    transform_size: int = 0
    processing_time: float = 0.0
    error: Optional[str] = None
    error_type: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None and self.autocorrelation.size > 0

    def values(self, normalized: bool = True) -> np.ndarray:
        """Normalized series when requested and available, else the raw one."""
        if normalized and self.normalized.size:
            return self.normalized
        return self.autocorrelation

    def lag_times(self) -> np.ndarray:
        """Lag of each value in seconds."""
        return np.arange(self.autocorrelation.size) / self.sample_rate

    def plot_points(self, normalized: bool = True,
                    count: Optional[int] = None) -> List[Tuple[float, float]]:
        """(lag_seconds, value) pairs for a line chart."""
        return to_plot_points(self.values(normalized), self.sample_rate, count=count)

    @classmethod
    def failed(cls, signal: np.ndarray, sample_rate: float, error: Exception,
               processing_time: float = 0.0) -> "AutocorrelationResult":
        empty = np.array([], dtype=np.float32)
        return cls(signal=signal, autocorrelation=empty, normalized=empty.copy(),
                   sample_rate=sample_rate, processing_time=processing_time,
                   error=str(error), error_type=type(error).__name__)


class AutocorrelationPipeline:
    """Runs the test-signal autocorrelation analysis described by a configuration."""

    COMPONENTS = ['config_manager', 'synthesizer', 'engine', 'structured_logger']

    def __init__(self, config_path: Optional[str] = None, log_dir: str = "logs",
                 enable_structured_logging: bool = True,
                 noise_source: Optional[NoiseSource] = None):
        """
        Initialize the pipeline.

        Args:
            config_path: Path to a JSON configuration file (None for defaults)
            log_dir: Directory for structured log files
            enable_structured_logging: Write JSON-lines session logs
            noise_source: Noise source for synthesis (defaults to a
                UniformNoiseSource seeded from the configuration)
        """
        self.logger = logging.getLogger(__name__)
        self.config_path = config_path
        self.noise_source = noise_source

        self.state = PipelineState.STOPPED
        self.config_manager = ConfigurationManager()
        self.synthesizer = None
        self.engine = None

        self.metrics = PipelineMetrics()

        self.structured_logger = StructuredLogger(
            name="autocorrelation_pipeline",
            log_dir=log_dir,
            enable_console=False,
            enable_file=enable_structured_logging,
            enable_performance_log=enable_structured_logging
        )
        self.performance_tracker = PerformanceTracker(self.structured_logger)

        self.error_handler = ErrorHandlingSystem()
        for component in self.COMPONENTS:
            self.error_handler.register_component(component)

        self.logger.info(f"Pipeline initialized with config: {config_path or 'defaults'}")

    def setup(self, overrides: Optional[Dict[str, Any]] = None) -> bool:
        """
        Load and validate configuration, then build the synthesizer and engine.

        Args:
            overrides: Configuration field overrides applied after loading

        Returns:
            True if setup successful, False otherwise
        """
        if self.config_path:
            if not self.config_manager.load_config(self.config_path):
                self.logger.warning("Failed to load configuration, using defaults")

        try:
            if overrides:
                self.config_manager.apply_overrides(**overrides)
        except (KeyError, TypeError) as e:
            self._handle_component_error('config_manager', e, {'overrides': overrides})
            self.state = PipelineState.ERROR
            return False

        is_valid, errors = self.config_manager.validate_config()
        if not is_valid:
            for error in errors:
                self.logger.error(f"Configuration error: {error}")
            self._handle_component_error('config_manager', ValueError("; ".join(errors)),
                                         {'config_path': self.config_path})
            self.state = PipelineState.ERROR
            return False

        signal_config = self.config_manager.get_signal_config()
        analysis_config = self.config_manager.get_analysis_config()

        try:
            noise_source = self.noise_source or UniformNoiseSource(seed=signal_config.seed)
            self.synthesizer = SquareWaveSynthesizer(
                noise_magnitude=signal_config.noise_magnitude,
                noise_source=noise_source
            )
            self.engine = create_autocorrelation_engine(
                method=analysis_config.method,
                backend=analysis_config.fft_backend,
                cache_setups=analysis_config.cache_setups
            )
        except (AutocorrelationError, ValueError) as e:
            self._handle_component_error('engine', e, self.config_manager.to_dict())
            self.state = PipelineState.ERROR
            return False

        self.structured_logger.log_configuration(self.config_manager.to_dict(), "pipeline")
        self.error_handler.record_success('config_manager')
        self.state = PipelineState.READY
        self.logger.info("Pipeline setup completed successfully")
        return True

    def run(self) -> AutocorrelationResult:
        """Synthesize the configured test signal and analyze it."""
        self._require_ready()
        signal_config = self.config_manager.get_signal_config()

        try:
            with self.performance_tracker.timed('synthesis'):
                signal = self.synthesizer.synthesize(
                    signal_config.frequency, signal_config.sample_rate, signal_config.duration
                )
        except AutocorrelationError as e:
            self.performance_tracker.reset()
            self._handle_component_error('synthesizer', e, {'signal': self.config_manager.to_dict()['signal']})
            self._record_run(False, 0.0, 0)
            return AutocorrelationResult.failed(np.array([], dtype=np.float32),
                                                signal_config.sample_rate, e)
        self.error_handler.record_success('synthesizer')

        self.structured_logger.log_synthesis(
            frequency=signal_config.frequency,
            sample_rate=signal_config.sample_rate,
            duration=signal_config.duration,
            num_samples=int(signal.shape[0]),
            noise_magnitude=self.synthesizer.noise_magnitude
        )

        return self.analyze(signal, signal_config.sample_rate)

    def analyze(self, samples, sample_rate: float) -> AutocorrelationResult:
        """
        Zero-pad, autocorrelate and normalize an arbitrary signal.

        Failures are recorded on the returned result rather than raised.

        Args:
            samples: Real signal samples (not yet padded)
            sample_rate: Samples per second, used for lag times

        Returns:
            AutocorrelationResult trimmed to the unpadded signal length
        """
        self._require_ready()
        analysis_config = self.config_manager.get_analysis_config()

        self.state = PipelineState.RUNNING
        start_time = time.perf_counter()

        signal = np.array([], dtype=np.float32)
        try:
            with self.performance_tracker.timed('autocorrelation'):
                signal = np.asarray(samples, dtype=np.float32)
                sample_rate = require_finite("sample_rate", sample_rate)
                padded = zero_pad(signal, analysis_config.padding_factor,
                                  analysis_config.pad_to_power_of_two)

                count = int(padded.shape[0])
                if count and not is_power_of_two(count):
                    message = (f"Padded length {count} is not a power of two; only the first "
                               f"{transform_size(count)[1]} samples are transformed and "
                               f"long lags may wrap around")
                    self.logger.warning(message)
                    self.structured_logger.log_warning(message, 'engine', {'padded_length': count})

                raw = self.engine.compute_linear_autocorrelation(padded, count)
        except (AutocorrelationError, ValueError, TypeError) as e:
            elapsed = time.perf_counter() - start_time
            self.performance_tracker.reset()
            self._handle_component_error('engine', e, {'num_samples': int(np.size(signal))})
            self._record_run(False, elapsed, 0)
            self.state = PipelineState.READY
            return AutocorrelationResult.failed(signal, sample_rate, e, elapsed)

        n = 2 * raw.shape[0]
        raw = raw[:min(signal.shape[0], raw.shape[0])]
        if analysis_config.normalize:
            normalized = normalize_to_lag_zero(raw)
        else:
            normalized = np.array([], dtype=np.float32)

        elapsed = time.perf_counter() - start_time
        self.error_handler.record_success('engine')

        result = AutocorrelationResult(
            signal=signal,
            autocorrelation=raw,
            normalized=normalized,
            sample_rate=sample_rate,
            transform_size=n,
            processing_time=elapsed
        )

        self.structured_logger.log_autocorrelation(
            input_length=int(signal.shape[0]),
            transform_size=n,
            num_lags=int(raw.shape[0]),
            lag_zero=float(raw[0]) if raw.size else 0.0,
            processing_time=elapsed,
            method=analysis_config.method,
            metadata={'padding_factor': analysis_config.padding_factor,
                      'backend': analysis_config.fft_backend}
        )
        self.performance_tracker.log_performance_summary(n)

        self._record_run(True, elapsed, n)
        self.state = PipelineState.READY
        self.logger.info(f"Autocorrelation of {signal.shape[0]} samples at N={n} "
                         f"took {elapsed * 1000:.2f}ms")
        return result

    def _require_ready(self) -> None:
        if self.synthesizer is None or self.engine is None:
            raise RuntimeError("Pipeline is not set up; call setup() first")

    def _record_run(self, success: bool, processing_time: float, n: int) -> None:
        """Update pipeline metrics."""
        metrics = self.metrics
        metrics.total_runs += 1
        if success:
            metrics.successful_runs += 1
            metrics.last_transform_size = n
        else:
            metrics.failed_runs += 1

        # Running average over all runs
        metrics.average_processing_time += (
            (processing_time - metrics.average_processing_time) / metrics.total_runs
        )

    def _handle_component_error(self, component: str, error: Exception,
                                context: Optional[Dict[str, Any]] = None) -> None:
        """Report an error to the error handler and the structured log."""
        handle_component_error(self.error_handler, component, error, context)
        self.structured_logger.log_error(
            error=str(error),
            context=component,
            component=component,
            exception=error,
            additional_data=context
        )

    def get_metrics(self) -> PipelineMetrics:
        """Get current pipeline metrics."""
        self.metrics.uptime = time.time() - self.metrics.last_reset_time
        return self.metrics

    def get_system_status(self) -> Dict[str, Any]:
        """Get pipeline, engine and health status."""
        status = {
            'pipeline_state': self.state.value,
            'metrics': self.get_metrics().__dict__,
            'configuration': self.config_manager.to_dict(),
            'health': self.error_handler.get_system_health()
        }
        if hasattr(self.engine, 'get_statistics'):
            status['engine'] = self.engine.get_statistics()
        return status

    def shutdown(self) -> None:
        """Shutdown the pipeline and cleanup resources."""
        self.logger.info("Shutting down pipeline...")

        if self.engine is not None:
            self.engine.close()

        self.structured_logger.close()
        self.error_handler.shutdown()

        self.state = PipelineState.STOPPED
        self.logger.info("Pipeline shutdown complete")


def create_pipeline(config_path: Optional[str] = None, log_dir: str = "logs") -> AutocorrelationPipeline:
    """Create and set up a pipeline, raising RuntimeError if setup fails."""
    pipeline = AutocorrelationPipeline(config_path=config_path, log_dir=log_dir)
    if not pipeline.setup():
        pipeline.shutdown()
        raise RuntimeError("Pipeline setup failed")
    return pipeline
