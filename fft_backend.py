"""
Real FFT capability used by the autocorrelation engine.

Every backend implements the same packed convention for a real signal x of
length N = 2**log2n, with H = N/2:

Forward transform
    Input is x packed as H split-complex values z[k] = x[2k] + i*x[2k+1].
    Output holds DFT bins 0..H-1 of x multiplied by 2. Bins 0 and H of a
    real signal are purely real, so bin 0 carries 2*X[0] in its real slot
    and the Nyquist value 2*X[H] in its imaginary slot.

Inverse transform
    Input is a spectrum in the same packed layout. Output is the time signal
    in the packed split-complex layout (not unpacked), multiplied by N.

A forward transform followed by an inverse transform returns the input
scaled by 2N. Callers undo this with a 1/2 factor after the forward
transform and a 1/N factor after the inverse transform.
"""
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Dict, Iterator, Optional, Tuple
import logging
import threading

import numpy as np
import scipy.fft

from error_handler import InvalidInputError, UnsupportedWindowSizeError
from spectral_packing import (
    SplitComplex,
    pack_real_to_split_complex,
    unpack_split_complex_to_real,
)

MIN_LOG2N = 1
MAX_LOG2N = 24  # 16M samples, 64 MB per float32 buffer


class FFTSetup(ABC):
    """
    Transform setup for one power-of-two size.

    Acquire with create_fft_setup() and release with release() or by using
    the setup as a context manager. A released setup rejects further use.
    """

    backend_name = "abstract"

    def __init__(self, log2n: int, max_log2n: int = MAX_LOG2N):
        """
        Args:
            log2n: Base-2 logarithm of the transform size N
            max_log2n: Largest supported log2n
        """
        if not MIN_LOG2N <= log2n <= max_log2n:
            raise UnsupportedWindowSizeError(
                f"Transform size 2**{log2n} is outside the supported range "
                f"2**{MIN_LOG2N}..2**{max_log2n}"
            )
        self.logger = logging.getLogger(__name__)
        self.log2n = log2n
        self.size = 1 << log2n
        self.half_size = self.size // 2
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        """Release the setup. Safe to call more than once."""
        if not self._released:
            self._released = True
            self.logger.debug(f"Released {self.backend_name} FFT setup for N={self.size}")

    def __enter__(self) -> "FFTSetup":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.release()

    def _check_buffer(self, split: SplitComplex) -> None:
        if self._released:
            raise RuntimeError(f"FFT setup for N={self.size} has been released")
        if len(split) != self.half_size:
            raise InvalidInputError(
                f"Expected {self.half_size} split-complex values for N={self.size}, got {len(split)}"
            )

    def forward_real_transform(self, split: SplitComplex) -> SplitComplex:
        """
        Forward real-to-complex transform in the packed convention.

        Args:
            split: Real signal packed as N/2 split-complex values

        Returns:
            Packed spectrum scaled by 2 (DC and Nyquist share bin 0)
        """
        self._check_buffer(split)

        signal = unpack_split_complex_to_real(split)
        spectrum = self._rfft(signal)

        h = self.half_size
        real = 2.0 * spectrum.real[:h]
        imag = 2.0 * spectrum.imag[:h]
        imag[0] = 2.0 * spectrum.real[h]

        return SplitComplex(real, imag)

    def inverse_real_transform(self, split: SplitComplex) -> SplitComplex:
        """
        Inverse complex-to-real transform in the packed convention.

        Args:
            split: Packed spectrum of N/2 values

        Returns:
            Time signal scaled by N, still packed as N/2 split-complex values
        """
        self._check_buffer(split)

        h = self.half_size
        spectrum = np.zeros(h + 1, dtype=np.complex64)
        spectrum[1:h] = split.real[1:] + 1j * split.imag[1:]
        spectrum[0] = split.real[0]
        spectrum[h] = split.imag[0]

        signal = self._irfft(spectrum) * np.float32(self.size)
        return pack_real_to_split_complex(signal, self.size)

    @abstractmethod
    def _rfft(self, signal: np.ndarray) -> np.ndarray:
        """Unnormalized DFT bins 0..N/2 of a real signal of length N."""
        pass

    @abstractmethod
    def _irfft(self, spectrum: np.ndarray) -> np.ndarray:
        """Real signal of length N from bins 0..N/2, normalized by 1/N."""
        pass


class ScipyFFTSetup(FFTSetup):
    """FFT setup backed by scipy.fft (pocketfft, float32-native)."""

    backend_name = "scipy"

    def __init__(self, log2n: int, max_log2n: int = MAX_LOG2N, workers: Optional[int] = None):
        super().__init__(log2n, max_log2n)
        self.workers = workers

    def _rfft(self, signal: np.ndarray) -> np.ndarray:
        return scipy.fft.rfft(signal, n=self.size, workers=self.workers)

    def _irfft(self, spectrum: np.ndarray) -> np.ndarray:
        return scipy.fft.irfft(spectrum, n=self.size, workers=self.workers)


class NumpyFFTSetup(FFTSetup):
    """FFT setup backed by numpy.fft."""

    backend_name = "numpy"

    def _rfft(self, signal: np.ndarray) -> np.ndarray:
        return np.fft.rfft(signal, n=self.size)

    def _irfft(self, spectrum: np.ndarray) -> np.ndarray:
        return np.fft.irfft(spectrum, n=self.size).astype(np.float32)


FFT_BACKENDS = {
    "scipy": ScipyFFTSetup,
    "numpy": NumpyFFTSetup,
}


def create_fft_setup(log2n: int, backend: str = "scipy", max_log2n: int = MAX_LOG2N) -> FFTSetup:
    """
    Create a transform setup for size 2**log2n.

    Args:
        log2n: Base-2 logarithm of the transform size
        backend: Backend name ("scipy" or "numpy")
        max_log2n: Largest supported log2n

    Returns:
        A new FFTSetup owned by the caller

    Raises:
        UnsupportedWindowSizeError: If the size is outside the supported range
        ValueError: If the backend is unknown
    """
    setup_class = FFT_BACKENDS.get(backend)
    if setup_class is None:
        raise ValueError(f"Unknown FFT backend '{backend}', expected one of {sorted(FFT_BACKENDS)}")
    return setup_class(log2n, max_log2n=max_log2n)


class FFTSetupCache:
    """
    Thread-safe cache of transform setups keyed by (backend, log2n).

    Transforms run on setups held through checkout(). An evicted setup that
    is still checked out stays usable and is released by its last holder.
    """

    def __init__(self, backend: str = "scipy", max_entries: int = 8, max_log2n: int = MAX_LOG2N):
        """
        Args:
            backend: Backend used for new setups
            max_entries: Number of sizes kept before the oldest is evicted
            max_log2n: Largest supported log2n
        """
        if backend not in FFT_BACKENDS:
            raise ValueError(f"Unknown FFT backend '{backend}', expected one of {sorted(FFT_BACKENDS)}")
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")

        self.logger = logging.getLogger(__name__)
        self.backend = backend
        self.max_entries = max_entries
        self.max_log2n = max_log2n
        self._setups: Dict[Tuple[str, int], FFTSetup] = {}
        self._holders: Dict[FFTSetup, int] = {}
        self.lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def _lookup(self, log2n: int) -> FFTSetup:
        # Caller holds the lock
        key = (self.backend, log2n)
        setup = self._setups.get(key)
        if setup is not None:
            self.hits += 1
            return setup

        setup = create_fft_setup(log2n, self.backend, self.max_log2n)
        self.misses += 1

        if len(self._setups) >= self.max_entries:
            oldest_key = next(iter(self._setups))
            self._discard(self._setups.pop(oldest_key))
            self.logger.debug(f"Evicted cached FFT setup {oldest_key}")

        self._setups[key] = setup
        self.logger.debug(f"Cached FFT setup {key}")
        return setup

    def _discard(self, setup: FFTSetup) -> None:
        # Caller holds the lock; checked-out setups are released on return
        if not self._holders.get(setup):
            setup.release()

    def _is_cached(self, setup: FFTSetup) -> bool:
        return self._setups.get((self.backend, setup.log2n)) is setup

    def acquire(self, log2n: int) -> FFTSetup:
        """Return the cached setup for log2n without holding it."""
        with self.lock:
            return self._lookup(log2n)

    @contextmanager
    def checkout(self, log2n: int) -> Iterator[FFTSetup]:
        """Hold the cached setup for log2n for the duration of the block."""
        with self.lock:
            setup = self._lookup(log2n)
            self._holders[setup] = self._holders.get(setup, 0) + 1
        try:
            yield setup
        finally:
            with self.lock:
                remaining = self._holders[setup] - 1
                if remaining:
                    self._holders[setup] = remaining
                else:
                    del self._holders[setup]
                    if not self._is_cached(setup):
                        setup.release()

    def stats(self) -> Dict[str, int]:
        with self.lock:
            return {
                'entries': len(self._setups),
                'hits': self.hits,
                'misses': self.misses,
                'checked_out': sum(self._holders.values()),
            }

    def clear(self) -> None:
        """Drop every cached setup, releasing those not checked out."""
        with self.lock:
            for setup in self._setups.values():
                self._discard(setup)
            self._setups.clear()

    def __len__(self) -> int:
        with self.lock:
            return len(self._setups)

    def __contains__(self, log2n: int) -> bool:
        with self.lock:
            return (self.backend, log2n) in self._setups
