"""
Linear autocorrelation via the FFT power spectrum (Wiener-Khinchin).

autocorr(x) = IFFT(FFT(x) * conj(FFT(x)))

The FFT computes circular correlation, so callers must zero-pad the signal
to at least twice its length for the result to be the linear
autocorrelation.
"""
from abc import ABC, abstractmethod
from collections import deque
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional
import logging
import threading
import time

import numpy as np

from error_handler import InvalidInputError
from fft_backend import FFTSetup, FFTSetupCache, MAX_LOG2N, create_fft_setup
from spectral_packing import (
    SplitComplex,
    pack_real_to_split_complex,
    unpack_split_complex_to_real,
)
from utils import as_sample_buffer, transform_size


class AutocorrelationEngineInterface(ABC):
    """Abstract interface for autocorrelation engines."""

    @abstractmethod
    def compute_linear_autocorrelation(self, samples, count: int) -> np.ndarray:
        """
        Compute the autocorrelation over the first N = 2**floor(log2(count)) samples.

        Args:
            samples: Zero-padded real sample buffer
            count: Window length W

        Returns:
            float32 array of N/2 lag values, index 0 = zero lag
        """
        pass


def power_spectrum(spectrum: SplitComplex) -> SplitComplex:
    """
    Multiply every packed bin by its own conjugate.

    Bins 1..H-1 become (re^2 + im^2, 0). Bin 0 holds two independent real
    bins, DC in the real slot and Nyquist in the imaginary slot, so each is
    squared on its own.
    """
    real = spectrum.real * spectrum.real + spectrum.imag * spectrum.imag
    imag = np.zeros_like(spectrum.imag)

    real[0] = spectrum.real[0] * spectrum.real[0]
    imag[0] = spectrum.imag[0] * spectrum.imag[0]

    return SplitComplex(real, imag)


def normalize_to_lag_zero(values) -> np.ndarray:
    """
    Divide an autocorrelation sequence by its lag-0 value.

    Returns an empty array for empty input and zeros when lag 0 is zero.
    """
    values = np.asarray(values, dtype=np.float32)
    if values.size == 0:
        return values.copy()
    if values[0] == 0:
        return np.zeros_like(values)
    return values / values[0]


def direct_linear_autocorrelation(samples, n_lags: Optional[int] = None) -> np.ndarray:
    """
    Direct O(N^2) linear autocorrelation, r[k] = sum_i x[i] * x[i + k].

    Args:
        samples: Real sample sequence
        n_lags: Number of lags to return (defaults to len(samples))

    Returns:
        float64 array of lag values
    """
    x = np.asarray(samples, dtype=np.float64)
    if x.ndim != 1 or x.size == 0:
        raise InvalidInputError("Direct autocorrelation needs a non-empty 1-D sequence")

    full = np.correlate(x, x, mode='full')
    lags = full[x.size - 1:]
    if n_lags is not None:
        lags = lags[:n_lags]
    return lags


class FFTAutocorrelationEngine(AutocorrelationEngineInterface):
    """Autocorrelation engine using the packed real FFT."""

    FORWARD_SCALE = 0.5

    def __init__(self, backend: str = "scipy", cache_setups: bool = False,
                 max_log2n: int = MAX_LOG2N):
        """
        Initialize FFT autocorrelation engine.

        Args:
            backend: FFT backend name ("scipy" or "numpy")
            cache_setups: Reuse transform setups across calls of the same size
            max_log2n: Largest supported transform size as log2
        """
        self.logger = logging.getLogger(__name__)
        self.backend = backend
        self.max_log2n = max_log2n
        self.setup_cache = FFTSetupCache(backend, max_log2n=max_log2n) if cache_setups else None

        # Create and release one setup so an unknown backend fails here, not on first use
        create_fft_setup(1, backend, max_log2n).release()

        self.stats_lock = threading.Lock()
        self.call_count = 0
        self.total_processing_time = 0.0
        self.history = deque(maxlen=100)

        self.logger.debug(f"FFT autocorrelation engine initialized: backend={backend}, "
                          f"cache_setups={cache_setups}")

    @contextmanager
    def _setup_scope(self, log2n: int) -> Iterator[FFTSetup]:
        if self.setup_cache is not None:
            with self.setup_cache.checkout(log2n) as setup:
                yield setup
            return
        with create_fft_setup(log2n, self.backend, self.max_log2n) as setup:
            yield setup

    def compute_linear_autocorrelation(self, samples, count: int) -> np.ndarray:
        """
        Compute linear autocorrelation of a zero-padded buffer.

        Args:
            samples: Real sample buffer, zero-padded by the caller
            count: Window length W. Only the first N = 2**floor(log2(W))
                samples are transformed.

        Returns:
            float32 array of N/2 lag values

        Raises:
            InvalidInputError: Empty or malformed buffer, count < 1, or count
                larger than the buffer
            UnsupportedWindowSizeError: N < 2 or no transform setup for N
        """
        start_time = time.perf_counter()

        log2n, n, half = transform_size(count)
        buffer = as_sample_buffer(samples)
        if buffer.shape[0] < n:
            raise InvalidInputError(
                f"Window length {count} needs {n} samples, buffer has {buffer.shape[0]}"
            )
        if count != n:
            self.logger.debug(f"Window length {count} is not a power of two; "
                              f"ignoring {count - n} samples beyond N={n}")

        packed = pack_real_to_split_complex(buffer, n)

        with self._setup_scope(log2n) as setup:
            spectrum = setup.forward_real_transform(packed)
            spectrum.scale(self.FORWARD_SCALE)
            spectrum = power_spectrum(spectrum)
            packed_lags = setup.inverse_real_transform(spectrum)

        lags = unpack_split_complex_to_real(packed_lags)
        lags *= np.float32(1.0 / n)
        result = lags[:half].copy()

        elapsed = time.perf_counter() - start_time
        with self.stats_lock:
            self.call_count += 1
            self.total_processing_time += elapsed
            self.history.append({'count': int(count), 'transform_size': n,
                                 'lag_zero': float(result[0]), 'processing_time': elapsed})

        return result

    def get_statistics(self) -> Dict[str, Any]:
        """Get call statistics for this engine."""
        with self.stats_lock:
            stats = {
                'backend': self.backend,
                'calls': self.call_count,
                'total_processing_time': self.total_processing_time,
                'average_processing_time': (self.total_processing_time / self.call_count
                                            if self.call_count else 0.0),
                'last_call': self.history[-1] if self.history else None,
            }
        if self.setup_cache is not None:
            stats['cache'] = self.setup_cache.stats()
        return stats

    def close(self) -> None:
        """Release cached transform setups."""
        if self.setup_cache is not None:
            self.setup_cache.clear()


class DirectAutocorrelationEngine(AutocorrelationEngineInterface):
    """Reference engine with the same contract, computed without the FFT."""

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def compute_linear_autocorrelation(self, samples, count: int) -> np.ndarray:
        _, n, half = transform_size(count)
        buffer = as_sample_buffer(samples)
        if buffer.shape[0] < n:
            raise InvalidInputError(
                f"Window length {count} needs {n} samples, buffer has {buffer.shape[0]}"
            )
        return direct_linear_autocorrelation(buffer[:n], n_lags=half).astype(np.float32)

    def close(self) -> None:
        pass


def create_autocorrelation_engine(method: str = "fft", backend: str = "scipy",
                                  cache_setups: bool = False) -> AutocorrelationEngineInterface:
    """
    Create an autocorrelation engine.

    Args:
        method: "fft" or "direct"
        backend: FFT backend for the "fft" method
        cache_setups: Reuse transform setups (fft method only)
    """
    if method == "fft":
        return FFTAutocorrelationEngine(backend=backend, cache_setups=cache_setups)
    if method == "direct":
        return DirectAutocorrelationEngine()
    raise ValueError(f"Unknown autocorrelation method '{method}', expected 'fft' or 'direct'")


def autocorrelate(samples, count: int, backend: str = "scipy") -> np.ndarray:
    """Compute the linear autocorrelation of a zero-padded buffer with a fresh engine."""
    return FFTAutocorrelationEngine(backend=backend).compute_linear_autocorrelation(samples, count)
