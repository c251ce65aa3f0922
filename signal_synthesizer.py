"""
Test signal synthesis: an approximate square wave with uniform noise.
"""
from abc import ABC, abstractmethod
from typing import Optional, Sequence
import logging
import math

import numpy as np

from error_handler import InvalidInputError
from utils import next_power_of_two, require_finite

DEFAULT_NOISE_MAGNITUDE = 0.15
SQUARE_WAVE_HARMONICS = (1, 3, 5)


class NoiseSource(ABC):
    """Source of uniform random perturbations."""

    @abstractmethod
    def uniform(self, magnitude: float, count: int) -> np.ndarray:
        """Return count independent values in [-magnitude, magnitude]."""
        pass


class UniformNoiseSource(NoiseSource):
    """Noise source backed by numpy's default generator."""

    def __init__(self, seed: Optional[int] = None):
        """
        Args:
            seed: Optional seed for reproducible noise
        """
        self.seed = seed
        self.rng = np.random.default_rng(seed)

    def uniform(self, magnitude: float, count: int) -> np.ndarray:
        if magnitude == 0:
            return np.zeros(count)
        return self.rng.uniform(-magnitude, magnitude, size=count)


class SignalSynthesizerInterface(ABC):
    """Abstract interface for test signal synthesis."""

    @abstractmethod
    def synthesize(self, frequency: float, sample_rate: float, duration: float) -> np.ndarray:
        """Produce floor(duration * sample_rate) samples."""
        pass


class SquareWaveSynthesizer(SignalSynthesizerInterface):
    """
    Truncated Fourier series of a square wave plus noise.

    x[i] = sum_h sin(h * t_i) / h + u_i,  t_i = 2*pi*(f/r)*i

    With the default odd harmonics (1, 3, 5) the levels ripple around
    +/-pi/4 and never sit at exact +/-1.
    """

    def __init__(self, noise_magnitude: float = DEFAULT_NOISE_MAGNITUDE,
                 noise_source: Optional[NoiseSource] = None,
                 harmonics: Sequence[int] = SQUARE_WAVE_HARMONICS):
        """
        Initialize square wave synthesizer.

        Args:
            noise_magnitude: Half-width of the uniform noise interval
            noise_source: Noise source (defaults to an unseeded UniformNoiseSource)
            harmonics: Harmonic numbers summed with amplitude 1/h
        """
        self.logger = logging.getLogger(__name__)

        noise_magnitude = require_finite("noise_magnitude", noise_magnitude)
        if noise_magnitude < 0:
            raise InvalidInputError(f"Noise magnitude must be non-negative, got {noise_magnitude}")
        if not harmonics or any(int(h) < 1 for h in harmonics):
            raise InvalidInputError(f"Harmonics must be positive integers, got {list(harmonics)}")

        self.noise_magnitude = noise_magnitude
        self.noise_source = noise_source or UniformNoiseSource()
        self.harmonics = tuple(int(h) for h in harmonics)

    def synthesize(self, frequency: float, sample_rate: float, duration: float) -> np.ndarray:
        """
        Generate the square wave approximation.

        Args:
            frequency: Fundamental frequency in Hz
            sample_rate: Samples per second
            duration: Signal length in seconds

        Returns:
            float32 array of floor(duration * sample_rate) samples

        Raises:
            InvalidInputError: Non-finite arguments, frequency <= 0,
                sample_rate <= 0 or duration < 0
        """
        frequency = require_finite("frequency", frequency)
        sample_rate = require_finite("sample_rate", sample_rate)
        duration = require_finite("duration", duration)

        if sample_rate <= 0:
            raise InvalidInputError(f"Sample rate must be positive, got {sample_rate}")
        if duration < 0:
            raise InvalidInputError(f"Duration must be non-negative, got {duration}")
        if frequency <= 0:
            raise InvalidInputError(f"Frequency must be positive, got {frequency}")

        num_samples = int(math.floor(duration * sample_rate))
        angle_delta = 2.0 * math.pi * (frequency / sample_rate)
        theta = angle_delta * np.arange(num_samples, dtype=np.float64)

        wave = np.zeros(num_samples, dtype=np.float64)
        for harmonic in self.harmonics:
            wave += np.sin(harmonic * theta) / harmonic

        if num_samples and self.noise_magnitude > 0:
            noise = np.asarray(self.noise_source.uniform(self.noise_magnitude, num_samples),
                               dtype=np.float64)
            if noise.shape != (num_samples,):
                raise ValueError(f"Noise source returned shape {noise.shape}, expected ({num_samples},)")
            wave += noise

        self.logger.debug(f"Synthesized {num_samples} samples at {frequency} Hz "
                          f"(rate={sample_rate}, noise={self.noise_magnitude})")
        return wave.astype(np.float32)


def synthesize(frequency: float, sample_rate: float, duration: float,
               noise_magnitude: float = DEFAULT_NOISE_MAGNITUDE,
               noise_source: Optional[NoiseSource] = None) -> np.ndarray:
    """Generate a noisy three-harmonic square wave."""
    synthesizer = SquareWaveSynthesizer(noise_magnitude=noise_magnitude, noise_source=noise_source)
    return synthesizer.synthesize(frequency, sample_rate, duration)


def zero_pad(samples, factor: int = 2, to_power_of_two: bool = False) -> np.ndarray:
    """
    Append zeros so the buffer is factor times its original length.

    Args:
        samples: Real sample sequence
        factor: Length multiplier (>= 1); 2 avoids circular wrap-around
        to_power_of_two: Round the padded length up to the next power of two

    Returns:
        float32 array; the original samples come first
    """
    if isinstance(factor, bool) or int(factor) != factor or factor < 1:
        raise InvalidInputError(f"Padding factor must be an integer >= 1, got {factor}")

    buffer = np.asarray(samples, dtype=np.float32)
    if buffer.ndim != 1:
        raise InvalidInputError(f"Samples must be 1-D, got shape {buffer.shape}")

    padded_length = buffer.shape[0] * int(factor)
    if to_power_of_two and padded_length > 0:
        padded_length = next_power_of_two(padded_length)

    padded = np.zeros(padded_length, dtype=np.float32)
    padded[:buffer.shape[0]] = buffer
    return padded
