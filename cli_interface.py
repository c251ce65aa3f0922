"""
Command-line interface for the autocorrelation system.

Results go to stdout (or --output-file); diagnostics go to stderr and the
structured session logs, so JSON and CSV output can be piped.
"""
import argparse
import sys
import os
import logging
import platform
from typing import Dict, Any, Optional, List
from dataclasses import dataclass, asdict

import numpy as np
import psutil
import scipy

from autocorrelation_pipeline import AutocorrelationPipeline
from config_manager import AUTOCORRELATION_METHODS, ConfigurationManager
from fft_backend import FFT_BACKENDS
from output_formatter import OutputFormat, create_output_manager
from utils import setup_logging

__version__ = "1.0.0"

PRESETS = ['default', 'noiseless', 'high_resolution']

LOG_LEVELS = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']

# CLI option dest -> configuration key
OVERRIDE_KEYS = {
    'frequency': 'frequency',
    'sample_rate': 'sample_rate',
    'duration': 'duration',
    'noise_magnitude': 'noise_magnitude',
    'seed': 'seed',
    'padding_factor': 'padding_factor',
    'method': 'method',
    'backend': 'fft_backend',
}

EPILOG = '''
Examples:
  %(prog)s                                          # 5 Hz square wave, 1 s at 1024 Hz
  %(prog)s --frequency 12 --noise-magnitude 0       # Noiseless 12 Hz signal
  %(prog)s -f json | jq .first_peak                 # Machine-readable result
  %(prog)s -f csv -o acf.csv                        # Lag table for plotting
  %(prog)s --method direct                          # O(n^2) reference engine
  %(prog)s --generate-config acf.json --preset noiseless
  %(prog)s --check-config --config acf.json
'''


@dataclass
class CLIConfig:
    """Parsed command line."""
    config_file: Optional[str]
    output_format: OutputFormat
    output_file: Optional[str]
    log_level: str
    log_dir: str
    verbose: bool
    quiet: bool
    structured_logging: bool

    # Overrides keyed by configuration name; None means "keep the file value"
    frequency: Optional[float]
    sample_rate: Optional[float]
    duration: Optional[float]
    noise_magnitude: Optional[float]
    seed: Optional[int]
    padding_factor: Optional[int]
    method: Optional[str]
    fft_backend: Optional[str]
    normalize: Optional[bool]

    check_config: bool
    generate_config: Optional[str]
    preset: str
    system_info: bool

    def get_overrides(self) -> Dict[str, Any]:
        """Only the overrides actually given on the command line."""
        names = list(OVERRIDE_KEYS.values()) + ['normalize']
        return {name: getattr(self, name) for name in names if getattr(self, name) is not None}


class AutocorrelationCLI:
    """Parses arguments and dispatches to analysis or a system command."""

    def __init__(self):
        self.config: Optional[CLIConfig] = None
        self.pipeline: Optional[AutocorrelationPipeline] = None
        self.logger = logging.getLogger(__name__)
        self.parser = self._build_parser()

    def _build_parser(self) -> argparse.ArgumentParser:
        parser = argparse.ArgumentParser(
            prog='fft-autocorrelation',
            description='Linear autocorrelation of a synthesized square wave via the real FFT',
            epilog=EPILOG,
            formatter_class=argparse.RawDescriptionHelpFormatter
        )
        parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
        parser.add_argument('--config', '-c', type=str,
                            help='JSON configuration file; built-in defaults when omitted')

        self._add_signal_options(parser.add_argument_group('signal overrides'))
        self._add_analysis_options(parser.add_argument_group('analysis overrides'))
        self._add_output_options(parser.add_argument_group('output'))
        self._add_logging_options(parser.add_argument_group('logging'))
        self._add_commands(parser.add_argument_group('commands (run instead of an analysis)'))
        return parser

    @staticmethod
    def _add_signal_options(group) -> None:
        group.add_argument('--frequency', type=float, metavar='HZ',
                           help='Square wave fundamental')
        group.add_argument('--sample-rate', type=float, metavar='HZ',
                           help='Samples per second')
        group.add_argument('--duration', type=float, metavar='SECONDS',
                           help='Length of the synthesized signal')
        group.add_argument('--noise-magnitude', type=float, metavar='M',
                           help='Uniform noise drawn from [-M, M] per sample')
        group.add_argument('--seed', type=int,
                           help='Seed the noise generator for repeatable runs')

    @staticmethod
    def _add_analysis_options(group) -> None:
        group.add_argument('--padding-factor', type=int, metavar='K',
                           help='Pad the signal to K times its length (2 avoids circular wrap)')
        group.add_argument('--method', choices=list(AUTOCORRELATION_METHODS),
                           help='fft, or the direct O(n^2) sum')
        group.add_argument('--backend', choices=sorted(FFT_BACKENDS),
                           help='Real FFT implementation used by the fft method')
        group.add_argument('--no-normalize', action='store_true',
                           help='Keep raw lag values instead of dividing by lag 0')

    @staticmethod
    def _add_output_options(group) -> None:
        group.add_argument('--output-format', '-f', choices=[fmt.value for fmt in OutputFormat],
                           default=OutputFormat.CONSOLE.value,
                           help='Result format (default: %(default)s)')
        group.add_argument('--output-file', '-o', type=str, metavar='PATH',
                           help='Write the result to PATH instead of stdout')
        group.add_argument('--verbose', '-v', action='store_true',
                           help='Debug logging and a pipeline metrics report')
        group.add_argument('--quiet', '-q', action='store_true',
                           help='Log errors only')

    @staticmethod
    def _add_logging_options(group) -> None:
        group.add_argument('--log-level', choices=LOG_LEVELS, default='WARNING',
                           help='stderr log level (default: %(default)s)')
        group.add_argument('--log-dir', type=str, default='logs',
                           help='Session log directory (default: %(default)s)')
        group.add_argument('--no-structured-log', action='store_true',
                           help='Skip the JSON-lines session logs')

    @staticmethod
    def _add_commands(group) -> None:
        group.add_argument('--check-config', action='store_true',
                           help='Validate the --config file and print a summary')
        group.add_argument('--generate-config', type=str, metavar='PATH',
                           help='Write a configuration template to PATH')
        group.add_argument('--preset', choices=PRESETS, default='default',
                           help='Template preset for --generate-config (default: %(default)s)')
        group.add_argument('--system-info', action='store_true',
                           help='Report platform and library versions')

    def parse_arguments(self, args: Optional[List[str]] = None) -> CLIConfig:
        """
        Parse and validate arguments; usage errors exit with status 2.

        Args:
            args: Argument list, sys.argv[1:] when None
        """
        namespace = self.parser.parse_args(args)
        self._validate_arguments(namespace)

        overrides = {key: getattr(namespace, dest) for dest, key in OVERRIDE_KEYS.items()}
        self.config = CLIConfig(
            config_file=namespace.config,
            output_format=OutputFormat(namespace.output_format),
            output_file=namespace.output_file,
            log_level=namespace.log_level,
            log_dir=namespace.log_dir,
            verbose=namespace.verbose,
            quiet=namespace.quiet,
            structured_logging=not namespace.no_structured_log,
            normalize=False if namespace.no_normalize else None,
            check_config=namespace.check_config,
            generate_config=namespace.generate_config,
            preset=namespace.preset,
            system_info=namespace.system_info,
            **overrides
        )
        return self.config

    def _validate_arguments(self, namespace) -> None:
        fail = self.parser.error

        if namespace.verbose and namespace.quiet:
            fail("--verbose conflicts with --quiet")
        if sum([namespace.check_config, namespace.generate_config is not None,
                namespace.system_info]) > 1:
            fail("choose at most one of --check-config, --generate-config, --system-info")

        bounds = [
            ('--sample-rate', namespace.sample_rate, lambda v: v > 0, "must be positive"),
            ('--frequency', namespace.frequency, lambda v: v > 0, "must be positive"),
            ('--duration', namespace.duration, lambda v: v >= 0, "must not be negative"),
            ('--noise-magnitude', namespace.noise_magnitude, lambda v: v >= 0, "must not be negative"),
            ('--padding-factor', namespace.padding_factor, lambda v: v >= 1, "must be at least 1"),
        ]
        for option, value, accept, requirement in bounds:
            if value is not None and not accept(value):
                fail(f"{option} {requirement}, got {value}")

        if namespace.check_config and not namespace.config:
            fail("--check-config needs --config")
        if namespace.config and not namespace.generate_config and not os.path.exists(namespace.config):
            fail(f"no such configuration file: {namespace.config}")

    def setup_logging(self) -> None:
        """stderr logging; --verbose and --quiet win over --log-level."""
        if self.config.verbose:
            level = "DEBUG"
        elif self.config.quiet:
            level = "ERROR"
        else:
            level = self.config.log_level

        setup_logging(level)
        self.logger.debug(f"stderr logging at {level}")

    def check_config(self) -> int:
        path = self.config.config_file
        print(f"Checking {path}")

        manager = ConfigurationManager()
        if not manager.load_config(path):
            print(f"❌ Could not read {path}")
            return 1

        manager.apply_overrides(**self.config.get_overrides())
        is_valid, errors = manager.validate_config()
        if not is_valid:
            print(f"❌ {len(errors)} problem(s) found:")
            for error in errors:
                print(f"  - {error}")
            return 1

        signal = manager.get_signal_config()
        analysis = manager.get_analysis_config()
        print("✅ Configuration file is valid\n")
        for label, value in [
            ("Frequency", f"{signal.frequency} Hz"),
            ("Sample Rate", f"{signal.sample_rate} Hz"),
            ("Duration", f"{signal.duration} s"),
            ("Noise Magnitude", signal.noise_magnitude),
            ("Seed", signal.seed),
            ("Padding Factor", analysis.padding_factor),
            ("Method", f"{analysis.method} ({analysis.fft_backend})"),
            ("Normalize", analysis.normalize),
        ]:
            print(f"  {label}: {value}")
        return 0

    def generate_config(self) -> int:
        path, preset = self.config.generate_config, self.config.preset
        if ConfigurationManager().generate_config_template(path, preset):
            print(f"Wrote {preset} template to {path}")
            return 0
        print(f"❌ Could not write template to {path}")
        return 1

    def get_system_info(self) -> Dict[str, Any]:
        """Platform, CPU, memory and numerical library versions."""
        memory = psutil.virtual_memory()
        gib = 1024 ** 3
        return {
            'platform': platform.platform(),
            'python_version': platform.python_version(),
            'cpu_cores': f"{psutil.cpu_count(logical=False)} physical, "
                         f"{psutil.cpu_count(logical=True)} logical",
            'memory': f"{memory.total / gib:.1f} GB total, {memory.available / gib:.1f} GB available",
            'numpy': np.__version__,
            'scipy': scipy.__version__,
            'fft_backends': ", ".join(sorted(FFT_BACKENDS)),
            'version': __version__
        }

    def create_pipeline(self) -> AutocorrelationPipeline:
        self.pipeline = AutocorrelationPipeline(
            config_path=self.config.config_file,
            log_dir=self.config.log_dir,
            enable_structured_logging=self.config.structured_logging
        )
        return self.pipeline

    def run_analysis(self) -> int:
        """Synthesize, analyze and write one result; 1 when the analysis failed."""
        output = create_output_manager(self.config.output_format.value, self.config.output_file)
        try:
            self.create_pipeline()
            overrides = self.config.get_overrides()
            self.logger.debug(f"Command-line overrides: {overrides}")

            if not self.pipeline.setup(overrides):
                output.output_error("Pipeline setup failed, see log for details", "setup")
                return 1

            result = self.pipeline.run()
            output.output_result(result)
            if self.config.verbose:
                output.output_system_info(asdict(self.pipeline.get_metrics()))
            return 0 if result.succeeded else 1
        finally:
            if self.pipeline is not None:
                self.pipeline.shutdown()
            output.close()

    def show_system_info(self) -> int:
        output = create_output_manager(self.config.output_format.value, self.config.output_file)
        try:
            output.output_system_info(self.get_system_info())
        finally:
            output.close()
        return 0

    def run(self, args: Optional[List[str]] = None) -> int:
        """
        Parse arguments and run the selected command.

        Returns:
            Process exit code: 0 on success, 1 on failure, 130 when interrupted
        """
        self.parse_arguments(args)

        try:
            self.setup_logging()
            if self.config.check_config:
                return self.check_config()
            if self.config.generate_config:
                return self.generate_config()
            if self.config.system_info:
                return self.show_system_info()
            return self.run_analysis()
        except KeyboardInterrupt:
            self.logger.info("Interrupted")
            return 130
        except Exception as e:
            self.logger.exception(f"Unhandled error: {e}")
            print(f"Error: {e}", file=sys.stderr)
            return 1


def main(args: Optional[List[str]] = None) -> int:
    return AutocorrelationCLI().run(args)


if __name__ == '__main__':
    sys.exit(main())
