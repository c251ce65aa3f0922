"""
Conversion between real sample buffers and split-complex buffers.

A real signal of even length N is stored as N/2 complex values by pairing
consecutive samples: even-indexed samples become real parts, odd-indexed
samples become imaginary parts. This is a storage layout for the real FFT,
not a physical interpretation of the signal as complex.
"""
from dataclasses import dataclass

import numpy as np

from error_handler import InvalidInputError


@dataclass
class SplitComplex:
    """Real and imaginary parts of complex values held in separate float32 buffers."""
    real: np.ndarray
    imag: np.ndarray

    def __post_init__(self):
        self.real = np.asarray(self.real, dtype=np.float32)
        self.imag = np.asarray(self.imag, dtype=np.float32)
        if self.real.ndim != 1 or self.real.shape != self.imag.shape:
            raise InvalidInputError(
                f"Real and imaginary buffers must be 1-D with equal length, "
                f"got {self.real.shape} and {self.imag.shape}"
            )

    def __len__(self) -> int:
        return self.real.shape[0]

    def copy(self) -> "SplitComplex":
        return SplitComplex(self.real.copy(), self.imag.copy())

    def scale(self, factor: float) -> None:
        """Multiply both buffers by factor in place."""
        factor = np.float32(factor)
        self.real *= factor
        self.imag *= factor

    def to_complex(self) -> np.ndarray:
        """Interleaved complex64 view of the values."""
        return self.real.astype(np.complex64) + 1j * self.imag.astype(np.complex64)


def pack_real_to_split_complex(samples, n: int) -> SplitComplex:
    """
    Pack the first n real samples into n/2 split-complex values.

    complex[k].real = samples[2k], complex[k].imag = samples[2k + 1]

    Args:
        samples: Real sample sequence with at least n values
        n: Number of samples to pack (even, >= 2)

    Returns:
        SplitComplex of length n/2
    """
    if n < 2 or n % 2:
        raise InvalidInputError(f"Packed length must be even and >= 2, got {n}")

    buffer = np.asarray(samples, dtype=np.float32)
    if buffer.ndim != 1:
        raise InvalidInputError(f"Samples must be 1-D, got shape {buffer.shape}")
    if buffer.shape[0] < n:
        raise InvalidInputError(f"Need {n} samples to pack, got {buffer.shape[0]}")

    window = buffer[:n]
    return SplitComplex(window[0::2].copy(), window[1::2].copy())


def unpack_split_complex_to_real(split: SplitComplex) -> np.ndarray:
    """
    Inverse of pack_real_to_split_complex.

    Returns:
        float32 array of length 2 * len(split)
    """
    out = np.empty(2 * len(split), dtype=np.float32)
    out[0::2] = split.real
    out[1::2] = split.imag
    return out
