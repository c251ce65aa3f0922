"""
Configuration management for the autocorrelation system.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, asdict, fields, replace
from typing import Dict, List, Tuple, Any, Optional
import json
import logging
import math
from pathlib import Path

from fft_backend import FFT_BACKENDS

AUTOCORRELATION_METHODS = ("fft", "direct")


@dataclass
class SignalConfig:
    """Test signal parameters."""
    frequency: float = 5.0
    sample_rate: float = 1024.0
    duration: float = 1.0
    noise_magnitude: float = 0.15
    seed: Optional[int] = None


@dataclass
class AnalysisConfig:
    """Autocorrelation parameters."""
    padding_factor: int = 2
    pad_to_power_of_two: bool = False
    method: str = "fft"
    fft_backend: str = "scipy"
    normalize: bool = True
    cache_setups: bool = False


SIGNAL_OVERRIDES = {f.name for f in fields(SignalConfig)}
ANALYSIS_OVERRIDES = {f.name for f in fields(AnalysisConfig)}


def _as_number(name: str, value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{name} must be a number, got {value!r}")
    return float(value)


def _as_integer(name: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not float(value).is_integer():
        raise ValueError(f"{name} must be an integer, got {value!r}")
    return int(value)


def _as_flag(name: str, value: Any) -> bool:
    if not isinstance(value, bool):
        raise ValueError(f"{name} must be true or false, got {value!r}")
    return value


def _as_text(name: str, value: Any) -> str:
    if not isinstance(value, str):
        raise ValueError(f"{name} must be a string, got {value!r}")
    return value


# JSON key -> checked conversion applied when the key is present and not null
SIGNAL_CASTS = {
    'frequency': _as_number,
    'sample_rate': _as_number,
    'duration': _as_number,
    'noise_magnitude': _as_number,
    'seed': _as_integer,
}
ANALYSIS_CASTS = {
    'padding_factor': _as_integer,
    'pad_to_power_of_two': _as_flag,
    'method': _as_text,
    'fft_backend': _as_text,
    'normalize': _as_flag,
    'cache_setups': _as_flag,
}


def _read_section(data: Dict[str, Any], section_cls, casts: Dict[str, Any]):
    """
    Build a config section from a JSON object.

    Raises:
        ValueError: A present value has the wrong JSON type, such as the
            string "false" for a flag or 2.5 for an integer
    """
    if not isinstance(data, dict):
        raise ValueError(f"section must be a JSON object, got {data!r}")
    values = {name: cast(name, data[name]) for name, cast in casts.items()
              if name in data and data[name] is not None}
    return section_cls(**values)


class ConfigurationManagerInterface(ABC):
    """Abstract interface for configuration management."""

    @abstractmethod
    def load_config(self, config_path: str) -> bool:
        """Load configuration from file."""
        pass

    @abstractmethod
    def get_signal_config(self) -> SignalConfig:
        """Get test signal parameters."""
        pass

    @abstractmethod
    def get_analysis_config(self) -> AnalysisConfig:
        """Get autocorrelation parameters."""
        pass

    @abstractmethod
    def validate_config(self) -> Tuple[bool, List[str]]:
        """Validate configuration and return errors if any."""
        pass


class ConfigurationManager(ConfigurationManagerInterface):
    """JSON-file configuration with dataclass sections."""

    def __init__(self):
        """Initialize configuration manager with defaults."""
        self.logger = logging.getLogger(__name__)
        self._signal_config = SignalConfig()
        self._analysis_config = AnalysisConfig()
        self._config_loaded = False

    def load_config(self, config_path: str) -> bool:
        """
        Load configuration from JSON file.

        Missing keys keep their defaults. On any failure every section is
        reset to defaults.

        Returns:
            True if the file was read and parsed
        """
        config_file = Path(config_path)
        if not config_file.exists():
            self.logger.warning(f"No configuration at {config_path}")
            self._load_defaults()
            return False

        try:
            with open(config_file, 'r') as f:
                config_data = json.load(f)
            if not isinstance(config_data, dict):
                raise ValueError("top-level JSON value must be an object")

            self._signal_config = _read_section(config_data.get('signal', {}), SignalConfig, SIGNAL_CASTS)
            self._analysis_config = _read_section(config_data.get('analysis', {}), AnalysisConfig,
                                                  ANALYSIS_CASTS)
        except json.JSONDecodeError as e:
            self.logger.error(f"{config_path} is not valid JSON: {e}")
            self._load_defaults()
            return False
        except (TypeError, ValueError, AttributeError) as e:
            self.logger.error(f"Bad value in {config_path}: {e}")
            self._load_defaults()
            return False
        except OSError as e:
            self.logger.error(f"Cannot read {config_path}: {e}")
            self._load_defaults()
            return False

        if 'signal' not in config_data and 'analysis' not in config_data:
            self.logger.warning(f"{config_path} has neither a 'signal' nor an 'analysis' section")

        self._config_loaded = True
        self.logger.info(f"Loaded configuration from {config_path}")
        return True

    def _load_defaults(self):
        self._signal_config = SignalConfig()
        self._analysis_config = AnalysisConfig()
        self._config_loaded = False
        self.logger.info("Falling back to built-in defaults")

    def get_signal_config(self) -> SignalConfig:
        """Get test signal parameters."""
        return self._signal_config

    def get_analysis_config(self) -> AnalysisConfig:
        """Get autocorrelation parameters."""
        return self._analysis_config

    def apply_overrides(self, **overrides: Any) -> Dict[str, Any]:
        """
        Apply runtime overrides; None values are ignored.

        Returns:
            The overrides that were applied

        Raises:
            KeyError: For a name that is not a configuration field
        """
        signal_updates = {}
        analysis_updates = {}

        for key, value in overrides.items():
            if value is None:
                continue
            if key in SIGNAL_OVERRIDES:
                signal_updates[key] = value
            elif key in ANALYSIS_OVERRIDES:
                analysis_updates[key] = value
            else:
                raise KeyError(f"Unknown configuration field: {key}")

        if signal_updates:
            self._signal_config = replace(self._signal_config, **signal_updates)
        if analysis_updates:
            self._analysis_config = replace(self._analysis_config, **analysis_updates)

        applied = {**signal_updates, **analysis_updates}
        if applied:
            self.logger.info(f"Applied configuration overrides: {applied}")
        return applied

    def validate_config(self) -> Tuple[bool, List[str]]:
        """
        Validate configuration and return errors if any.

        Returns:
            Tuple of (is_valid, error_messages)
        """
        errors = []
        signal_config = self._signal_config
        analysis_config = self._analysis_config

        for name in ('frequency', 'sample_rate', 'duration', 'noise_magnitude'):
            value = getattr(signal_config, name)
            if not isinstance(value, (int, float)) or not math.isfinite(value):
                errors.append(f"{name} must be a finite number")

        if not errors:
            if signal_config.sample_rate <= 0:
                errors.append("Sample rate must be positive")

            if signal_config.duration < 0:
                errors.append("Duration must be non-negative")

            if signal_config.frequency <= 0:
                errors.append("Frequency must be positive")

            if signal_config.noise_magnitude < 0:
                errors.append("Noise magnitude must be non-negative")

            if signal_config.sample_rate > 0 and signal_config.frequency > signal_config.sample_rate / 2:
                errors.append(
                    f"Frequency {signal_config.frequency} Hz is above the Nyquist limit "
                    f"({signal_config.sample_rate / 2} Hz)"
                )

            if int(math.floor(signal_config.duration * max(signal_config.sample_rate, 0.0))) < 1:
                errors.append("Duration and sample rate produce no samples")

        if analysis_config.padding_factor < 1:
            errors.append("Padding factor must be at least 1")

        if analysis_config.method not in AUTOCORRELATION_METHODS:
            errors.append(f"Method must be one of {list(AUTOCORRELATION_METHODS)}")

        if analysis_config.fft_backend not in FFT_BACKENDS:
            errors.append(f"FFT backend must be one of {sorted(FFT_BACKENDS)}")

        is_valid = len(errors) == 0
        return is_valid, errors

    def is_config_loaded(self) -> bool:
        """Check if configuration was loaded from file."""
        return self._config_loaded

    def to_dict(self) -> Dict[str, Any]:
        """Configuration as a JSON-serializable dict."""
        return {
            'signal': asdict(self._signal_config),
            'analysis': asdict(self._analysis_config)
        }

    def generate_config_template(self, output_path: str, preset: str = "default") -> bool:
        """
        Generate a configuration template file.

        Args:
            output_path: Path where to save the template
            preset: "default", "noiseless" or "high_resolution"

        Returns:
            True if template generated successfully
        """
        try:
            signal_config, analysis_config = self._preset_configs(preset)
            config_template = {
                'signal': asdict(signal_config),
                'analysis': asdict(analysis_config)
            }

            with open(output_path, 'w') as f:
                json.dump(config_template, f, indent=2)

            self.logger.info(f"Configuration template generated: {output_path}")
            return True

        except (OSError, ValueError) as e:
            self.logger.error(f"Error generating template: {e}")
            return False

    def _preset_configs(self, preset: str) -> Tuple[SignalConfig, AnalysisConfig]:
        """Signal and analysis settings for a named preset."""
        if preset == "noiseless":
            return SignalConfig(noise_magnitude=0.0), AnalysisConfig()

        elif preset == "high_resolution":
            # 4 s at 4096 Hz: 16384 samples, padded to 32768
            return (SignalConfig(sample_rate=4096.0, duration=4.0),
                    AnalysisConfig(cache_setups=True))

        elif preset == "default":
            return SignalConfig(), AnalysisConfig()

        raise ValueError(f"Unknown preset '{preset}'")
