"""
Unit tests for test signal synthesis and zero padding.
"""
import math
import unittest
import numpy as np

from error_handler import InvalidInputError
from signal_synthesizer import (
    NoiseSource,
    SquareWaveSynthesizer,
    UniformNoiseSource,
    synthesize,
    zero_pad
)


class ConstantNoise(NoiseSource):
    """Deterministic noise source returning a fixed value."""

    def __init__(self, value: float):
        self.value = value
        self.calls = []

    def uniform(self, magnitude, count):
        self.calls.append((magnitude, count))
        return np.full(count, self.value)


class TestSquareWaveSynthesizer(unittest.TestCase):
    """Test cases for the square wave synthesizer."""

    def test_sample_count(self):
        """Test that one second at 1024 Hz gives 1024 samples."""
        signal = synthesize(5, 1024, 1)

        self.assertEqual(len(signal), 1024)
        self.assertEqual(signal.dtype, np.float32)

    def test_fractional_duration(self):
        """Test that the sample count is floor(duration * sample_rate)."""
        signal = synthesize(5, 100, 0.255, noise_magnitude=0.0)

        self.assertEqual(len(signal), 25)

    def test_noiseless_matches_formula(self):
        """Test the three-harmonic formula without noise."""
        synthesizer = SquareWaveSynthesizer(noise_magnitude=0.0)
        signal = synthesizer.synthesize(5, 1024, 0.25)

        theta = 2 * math.pi * (5 / 1024) * np.arange(256)
        expected = np.sin(theta) + np.sin(3 * theta) / 3 + np.sin(5 * theta) / 5
        np.testing.assert_allclose(signal, expected, atol=1e-6)
        self.assertEqual(signal[0], 0.0)

    def test_noise_is_added(self):
        """Test that the noise source output is added to every sample."""
        noise = ConstantNoise(0.1)
        noisy = SquareWaveSynthesizer(noise_magnitude=0.15, noise_source=noise).synthesize(5, 64, 1)
        clean = SquareWaveSynthesizer(noise_magnitude=0.0).synthesize(5, 64, 1)

        np.testing.assert_allclose(noisy - clean, np.full(64, 0.1), atol=1e-6)
        self.assertEqual(noise.calls, [(0.15, 64)])

    def test_noise_bounded(self):
        """Test that seeded noise stays within the configured magnitude."""
        clean = SquareWaveSynthesizer(noise_magnitude=0.0).synthesize(5, 1024, 1)
        noisy = SquareWaveSynthesizer(noise_magnitude=0.15,
                                      noise_source=UniformNoiseSource(seed=1)).synthesize(5, 1024, 1)

        self.assertLessEqual(float(np.max(np.abs(noisy - clean))), 0.15 + 1e-6)

    def test_seeded_noise_reproducible(self):
        """Test that equal seeds give equal signals."""
        first = synthesize(5, 512, 1, noise_source=UniformNoiseSource(seed=3))
        second = synthesize(5, 512, 1, noise_source=UniformNoiseSource(seed=3))

        np.testing.assert_array_equal(first, second)

    def test_zero_duration(self):
        """Test that a zero duration gives an empty signal without drawing noise."""
        noise = ConstantNoise(0.1)
        signal = SquareWaveSynthesizer(noise_source=noise).synthesize(5, 1024, 0)

        self.assertEqual(len(signal), 0)
        self.assertEqual(noise.calls, [])

    def test_invalid_parameters(self):
        """Test rejection of invalid synthesis parameters."""
        synthesizer = SquareWaveSynthesizer()

        for args in [(5, 0, 1), (5, -10, 1), (5, 1024, -1), (0, 1024, 1),
                     (float('nan'), 1024, 1), (5, float('inf'), 1)]:
            with self.assertRaises(InvalidInputError):
                synthesizer.synthesize(*args)

    def test_invalid_construction(self):
        """Test rejection of invalid noise magnitude and harmonics."""
        with self.assertRaises(InvalidInputError):
            SquareWaveSynthesizer(noise_magnitude=-0.1)

        with self.assertRaises(InvalidInputError):
            SquareWaveSynthesizer(harmonics=[])

        with self.assertRaises(InvalidInputError):
            SquareWaveSynthesizer(harmonics=[1, 0])


class TestZeroPad(unittest.TestCase):
    """Test cases for zero padding."""

    def test_doubles_length(self):
        """Test the default factor of two."""
        padded = zero_pad([1.0, 2.0, 3.0])

        np.testing.assert_array_equal(padded, [1.0, 2.0, 3.0, 0.0, 0.0, 0.0])
        self.assertEqual(padded.dtype, np.float32)

    def test_factor_one(self):
        """Test that factor one leaves the length unchanged."""
        self.assertEqual(len(zero_pad(np.ones(5), 1)), 5)

    def test_round_to_power_of_two(self):
        """Test rounding the padded length up to a power of two."""
        padded = zero_pad(np.ones(1000), 2, to_power_of_two=True)

        self.assertEqual(len(padded), 2048)
        self.assertEqual(float(padded[:1000].sum()), 1000.0)
        self.assertEqual(float(padded[1000:].sum()), 0.0)

    def test_empty_input(self):
        """Test that an empty signal pads to an empty buffer."""
        self.assertEqual(len(zero_pad([], 2)), 0)

    def test_invalid_factor(self):
        """Test rejection of invalid padding factors."""
        for factor in (0, -1, 1.5, True):
            with self.assertRaises(InvalidInputError):
                zero_pad([1.0], factor)


if __name__ == '__main__':
    unittest.main()
