"""
Unit tests for the packed real FFT backends.
"""
import unittest
import numpy as np

from error_handler import InvalidInputError, UnsupportedWindowSizeError
from fft_backend import (
    FFTSetupCache,
    NumpyFFTSetup,
    ScipyFFTSetup,
    create_fft_setup
)
from spectral_packing import SplitComplex, pack_real_to_split_complex, unpack_split_complex_to_real


class TestPackedConvention(unittest.TestCase):
    """Both backends must produce the same packed spectrum layout."""

    def setUp(self):
        """Set up test fixtures."""
        self.samples = np.random.default_rng(42).standard_normal(16).astype(np.float32)
        self.reference = np.fft.rfft(self.samples.astype(np.float64))

    def _check_forward(self, backend):
        with create_fft_setup(4, backend) as setup:
            spectrum = setup.forward_real_transform(pack_real_to_split_complex(self.samples, 16))

        self.assertEqual(len(spectrum), 8)
        np.testing.assert_allclose(spectrum.real, 2 * self.reference.real[:8], rtol=1e-4, atol=1e-4)
        np.testing.assert_allclose(spectrum.imag[1:], 2 * self.reference.imag[1:8], rtol=1e-4, atol=1e-4)
        # Nyquist bin rides in the imaginary slot of bin 0
        self.assertAlmostEqual(float(spectrum.imag[0]), 2 * self.reference[8].real, places=4)

    def test_scipy_forward_layout(self):
        """Test scipy forward transform against numpy's rfft."""
        self._check_forward("scipy")

    def test_numpy_forward_layout(self):
        """Test numpy forward transform against numpy's rfft."""
        self._check_forward("numpy")

    def test_round_trip_scales_by_two_n(self):
        """Test that forward followed by inverse returns 2N times the input."""
        for backend in ("scipy", "numpy"):
            with create_fft_setup(4, backend) as setup:
                spectrum = setup.forward_real_transform(pack_real_to_split_complex(self.samples, 16))
                restored = unpack_split_complex_to_real(setup.inverse_real_transform(spectrum))

            np.testing.assert_allclose(restored, 32 * self.samples, rtol=1e-4, atol=1e-4)

    def test_inverse_of_dc_and_nyquist(self):
        """Test the inverse transform of a spectrum holding only DC and Nyquist."""
        with create_fft_setup(2) as setup:
            # X[0] = 4, X[2] = 4 for N=4 is x = [2, 0, 2, 0]; packed input carries 2x
            spectrum = SplitComplex([8.0, 0.0], [8.0, 0.0])
            restored = unpack_split_complex_to_real(setup.inverse_real_transform(spectrum))

        # Inverse output is scaled by N relative to the time signal of the packed spectrum
        np.testing.assert_allclose(restored, 2 * 4 * np.array([2.0, 0.0, 2.0, 0.0]), atol=1e-5)


class TestFFTSetupLifetime(unittest.TestCase):
    """Test cases for setup creation and release."""

    def test_sizes(self):
        """Test derived sizes."""
        setup = ScipyFFTSetup(10)

        self.assertEqual(setup.size, 1024)
        self.assertEqual(setup.half_size, 512)
        setup.release()

    def test_out_of_range_sizes(self):
        """Test that unsupported sizes are rejected."""
        with self.assertRaises(UnsupportedWindowSizeError):
            create_fft_setup(0)

        with self.assertRaises(UnsupportedWindowSizeError):
            create_fft_setup(5, max_log2n=4)

    def test_unknown_backend(self):
        """Test that an unknown backend name is rejected."""
        with self.assertRaises(ValueError):
            create_fft_setup(4, "fftw")

    def test_context_manager_releases(self):
        """Test that leaving the context releases the setup."""
        with NumpyFFTSetup(3) as setup:
            self.assertFalse(setup.released)

        self.assertTrue(setup.released)

        with self.assertRaises(RuntimeError):
            setup.forward_real_transform(SplitComplex(np.zeros(4), np.zeros(4)))

    def test_release_is_idempotent(self):
        """Test that releasing twice is harmless."""
        setup = create_fft_setup(3)
        setup.release()
        setup.release()

        self.assertTrue(setup.released)

    def test_buffer_length_mismatch(self):
        """Test that a buffer of the wrong length is rejected."""
        with create_fft_setup(3) as setup:
            with self.assertRaises(InvalidInputError):
                setup.forward_real_transform(SplitComplex(np.zeros(2), np.zeros(2)))


class TestFFTSetupCache(unittest.TestCase):
    """Test cases for the setup cache."""

    def test_reuses_setups(self):
        """Test that repeated sizes hit the cache."""
        cache = FFTSetupCache("scipy")
        first = cache.acquire(5)
        second = cache.acquire(5)

        self.assertIs(first, second)
        self.assertEqual(cache.hits, 1)
        self.assertEqual(cache.misses, 1)
        self.assertIn(5, cache)
        cache.clear()

    def test_evicts_oldest(self):
        """Test eviction once the cache is full."""
        cache = FFTSetupCache("numpy", max_entries=2)
        oldest = cache.acquire(2)
        cache.acquire(3)
        cache.acquire(4)

        self.assertEqual(len(cache), 2)
        self.assertNotIn(2, cache)
        self.assertTrue(oldest.released)
        cache.clear()

    def test_clear_releases_all(self):
        """Test that clearing releases every cached setup."""
        cache = FFTSetupCache()
        setups = [cache.acquire(log2n) for log2n in (1, 2, 3)]
        cache.clear()

        self.assertEqual(len(cache), 0)
        self.assertTrue(all(setup.released for setup in setups))

    def test_checked_out_setup_survives_eviction(self):
        """Test that eviction leaves a held setup usable until it is returned."""
        cache = FFTSetupCache("numpy", max_entries=1)
        samples = np.arange(8, dtype=np.float32)

        with cache.checkout(3) as held:
            cache.acquire(2)
            self.assertNotIn(3, cache)
            self.assertFalse(held.released)
            spectrum = held.forward_real_transform(pack_real_to_split_complex(samples, 8))
            self.assertEqual(len(spectrum), 4)
            self.assertEqual(cache.stats()['checked_out'], 1)

        self.assertTrue(held.released)
        self.assertEqual(cache.stats()['checked_out'], 0)
        cache.clear()

    def test_returned_setup_stays_cached(self):
        """Test that returning a cached setup does not release it."""
        cache = FFTSetupCache()
        with cache.checkout(4) as setup:
            pass

        self.assertFalse(setup.released)
        self.assertEqual(cache.stats(), {'entries': 1, 'hits': 0, 'misses': 1, 'checked_out': 0})
        cache.clear()
        self.assertTrue(setup.released)

    def test_clear_while_checked_out(self):
        """Test that clearing defers release of held setups to their holders."""
        cache = FFTSetupCache()
        with cache.checkout(4) as setup:
            cache.clear()
            self.assertFalse(setup.released)

        self.assertTrue(setup.released)

    def test_invalid_arguments(self):
        """Test rejection of unknown backends and empty caches."""
        with self.assertRaises(ValueError):
            FFTSetupCache("fftw")

        with self.assertRaises(ValueError):
            FFTSetupCache(max_entries=0)


if __name__ == '__main__':
    unittest.main()
