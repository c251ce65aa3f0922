"""
Tests for the autocorrelation pipeline.
"""
import json
import os
import shutil
import tempfile
import unittest
import numpy as np

from autocorrelation_pipeline import (
    AutocorrelationPipeline,
    AutocorrelationResult,
    PipelineState,
    create_pipeline
)
from signal_synthesizer import NoiseSource


class ZeroNoise(NoiseSource):
    """Noise source that adds nothing."""

    def uniform(self, magnitude, count):
        return np.zeros(count)


class TestAutocorrelationPipeline(unittest.TestCase):
    """Test cases for AutocorrelationPipeline."""

    def setUp(self):
        """Set up test fixtures."""
        self.temp_dir = tempfile.mkdtemp()
        self.log_dir = os.path.join(self.temp_dir, "logs")
        self.pipelines = []

    def tearDown(self):
        """Clean up test fixtures."""
        for pipeline in self.pipelines:
            pipeline.shutdown()
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _pipeline(self, config=None, **kwargs) -> AutocorrelationPipeline:
        config_path = None
        if config is not None:
            config_path = os.path.join(self.temp_dir, "config.json")
            with open(config_path, 'w') as f:
                json.dump(config, f)
        pipeline = AutocorrelationPipeline(config_path=config_path, log_dir=self.log_dir, **kwargs)
        self.pipelines.append(pipeline)
        return pipeline

    def test_default_run(self):
        """Test the default 5 Hz analysis end to end."""
        pipeline = self._pipeline()
        self.assertTrue(pipeline.setup())
        self.assertEqual(pipeline.state, PipelineState.READY)

        result = pipeline.run()

        self.assertTrue(result.succeeded)
        self.assertEqual(len(result.signal), 1024)
        self.assertEqual(result.transform_size, 2048)
        self.assertEqual(len(result.autocorrelation), 1024)
        self.assertGreater(result.autocorrelation[0], 0.0)
        self.assertEqual(float(result.autocorrelation[0]), float(np.max(result.autocorrelation)))
        self.assertAlmostEqual(float(result.normalized[0]), 1.0, places=6)

    def test_noiseless_period(self):
        """Test that a noiseless signal peaks one period away from lag 0."""
        pipeline = self._pipeline(noise_source=ZeroNoise())
        pipeline.setup()

        result = pipeline.run()

        # 5 Hz at 1024 Hz repeats every 204.8 samples
        peak_lag = 150 + int(np.argmax(result.normalized[150:260]))
        self.assertLessEqual(abs(peak_lag - 205), 3)

    def test_seed_from_config(self):
        """Test that a seeded configuration is reproducible."""
        config = {'signal': {'seed': 11}}
        first = self._pipeline(config)
        first.setup()
        second = self._pipeline(config)
        second.setup()

        np.testing.assert_array_equal(first.run().signal, second.run().signal)

    def test_overrides(self):
        """Test that setup overrides reach the synthesizer."""
        pipeline = self._pipeline()
        self.assertTrue(pipeline.setup({'duration': 0.5, 'noise_magnitude': 0.0}))

        result = pipeline.run()

        self.assertEqual(len(result.signal), 512)
        self.assertEqual(result.transform_size, 1024)

    def test_invalid_configuration(self):
        """Test that an invalid configuration fails setup."""
        pipeline = self._pipeline({'signal': {'sample_rate': -5}})

        self.assertFalse(pipeline.setup())
        self.assertEqual(pipeline.state, PipelineState.ERROR)
        stats = pipeline.error_handler.get_error_statistics()
        self.assertEqual(stats['errors_by_component'], {'config_manager': 1})

    def test_unknown_override(self):
        """Test that an unknown override fails setup."""
        pipeline = self._pipeline()

        self.assertFalse(pipeline.setup({'sound_speed': 343.0}))

    def test_run_before_setup(self):
        """Test that running without setup is an error."""
        with self.assertRaises(RuntimeError):
            self._pipeline().run()

    def test_empty_signal(self):
        """Test that an empty signal gives an empty result with the error recorded."""
        pipeline = self._pipeline()
        pipeline.setup()

        result = pipeline.analyze([], 1024.0)

        self.assertFalse(result.succeeded)
        self.assertEqual(len(result.autocorrelation), 0)
        self.assertEqual(result.error_type, "InvalidInputError")
        self.assertEqual(pipeline.get_metrics().failed_runs, 1)
        self.assertEqual(pipeline.state, PipelineState.READY)

    def test_single_sample(self):
        """Test that a single sample with factor 1 has no transform size."""
        pipeline = self._pipeline({'analysis': {'padding_factor': 1}})
        pipeline.setup()

        result = pipeline.analyze([1.0], 10.0)

        self.assertEqual(result.error_type, "UnsupportedWindowSizeError")

    def test_non_power_of_two_padding(self):
        """Test analysis of a signal whose padded length is not a power of two."""
        pipeline = self._pipeline()
        pipeline.setup()

        result = pipeline.analyze(np.ones(600), 100.0)

        # 1200 padded samples use N = 1024
        self.assertTrue(result.succeeded)
        self.assertEqual(result.transform_size, 1024)
        self.assertEqual(len(result.autocorrelation), 512)

    def test_power_of_two_rounding(self):
        """Test that rounding the padded length keeps the full linear result."""
        pipeline = self._pipeline({'analysis': {'pad_to_power_of_two': True}})
        pipeline.setup()

        result = pipeline.analyze(np.ones(600), 100.0)

        self.assertEqual(result.transform_size, 2048)
        self.assertEqual(len(result.autocorrelation), 600)
        self.assertAlmostEqual(float(result.autocorrelation[0]), 600.0, places=1)
        self.assertAlmostEqual(float(result.autocorrelation[599]), 1.0, places=2)

    def test_direct_method(self):
        """Test that the direct method agrees with the FFT method."""
        samples = np.random.default_rng(8).standard_normal(256)
        fft_pipeline = self._pipeline()
        fft_pipeline.setup()
        direct_pipeline = self._pipeline()
        direct_pipeline.setup({'method': 'direct'})

        np.testing.assert_allclose(
            direct_pipeline.analyze(samples, 256.0).autocorrelation,
            fft_pipeline.analyze(samples, 256.0).autocorrelation,
            rtol=1e-4, atol=1e-3
        )

    def test_normalization_disabled(self):
        """Test that raw values are used when normalization is off."""
        pipeline = self._pipeline()
        pipeline.setup({'normalize': False})

        result = pipeline.run()

        self.assertEqual(result.normalized.size, 0)
        np.testing.assert_array_equal(result.values(), result.autocorrelation)

    def test_lag_times_and_plot_points(self):
        """Test the lag axis helpers."""
        pipeline = self._pipeline()
        pipeline.setup()
        result = pipeline.run()

        lag_times = result.lag_times()
        points = result.plot_points(count=3)

        self.assertAlmostEqual(lag_times[1], 1 / 1024)
        self.assertEqual(len(points), 3)
        self.assertEqual(points[0], (0.0, 1.0))

    def test_metrics_and_status(self):
        """Test metrics and status reporting."""
        pipeline = self._pipeline()
        pipeline.setup()
        pipeline.run()
        pipeline.run()

        metrics = pipeline.get_metrics()
        status = pipeline.get_system_status()

        self.assertEqual(metrics.total_runs, 2)
        self.assertEqual(metrics.successful_runs, 2)
        self.assertEqual(metrics.last_transform_size, 2048)
        self.assertEqual(status['engine']['calls'], 2)
        self.assertEqual(status['pipeline_state'], 'ready')

    def test_structured_log_written(self):
        """Test that a run writes synthesis and autocorrelation events."""
        pipeline = self._pipeline()
        pipeline.setup()
        pipeline.run()
        pipeline.structured_logger.flush_logs()

        session_log = os.path.join(
            self.log_dir, f"autocorrelation_{pipeline.structured_logger.session_id}.jsonl"
        )
        with open(session_log) as f:
            event_types = [json.loads(line)['event_type'] for line in f if line.strip()]

        self.assertIn('configuration', event_types)
        self.assertIn('synthesis', event_types)
        self.assertIn('autocorrelation', event_types)

    def test_structured_logging_disabled(self):
        """Test that disabling structured logging writes no files."""
        pipeline = self._pipeline(enable_structured_logging=False)
        pipeline.setup()
        pipeline.run()

        self.assertFalse(os.path.exists(self.log_dir))

    def test_create_pipeline(self):
        """Test the convenience constructor."""
        pipeline = create_pipeline(log_dir=self.log_dir)
        self.pipelines.append(pipeline)

        self.assertEqual(pipeline.state, PipelineState.READY)


class TestAutocorrelationResult(unittest.TestCase):
    """Test cases for AutocorrelationResult."""

    def test_failed_result(self):
        """Test construction of a failed result."""
        result = AutocorrelationResult.failed(np.ones(3, dtype=np.float32), 8.0, ValueError("bad"))

        self.assertFalse(result.succeeded)
        self.assertEqual(result.error, "bad")
        self.assertEqual(result.error_type, "ValueError")
        self.assertEqual(result.lag_times().size, 0)
        self.assertEqual(result.plot_points(), [])


if __name__ == '__main__':
    unittest.main()
