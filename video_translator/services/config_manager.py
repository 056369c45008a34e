"""Configuration management service for pipeline settings and hardware detection.

This module loads ``ProcessingConfig`` from the environment, validates it, and
reports hardware capabilities and resource headroom before jobs start.
"""

import dataclasses
import logging
import os
import platform
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

import psutil

from ..models.core import ProcessingConfig

logger = logging.getLogger(__name__)

ENV_PREFIX = "VIDEO_TRANSLATOR_"

VALID_WHISPER_SIZES = ['tiny', 'base', 'small', 'medium', 'large', 'large-v2', 'large-v3']
VALID_STRICTNESS = ['strict', 'balanced', 'lenient']
VALID_TRANSLATION_BACKENDS = ['auto', 'gemini', 'nllb']
VALID_LOG_LEVELS = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']

_TRUE_VALUES = {'1', 'true', 'yes', 'on'}
_FALSE_VALUES = {'0', 'false', 'no', 'off'}


@dataclass
class HardwareInfo:
    """Information about system hardware capabilities."""
    has_cuda: bool = False
    has_mps: bool = False  # Apple Metal Performance Shaders
    cuda_version: Optional[str] = None
    gpu_count: int = 0
    gpu_names: List[str] = field(default_factory=list)
    cpu_count: int = 0
    total_memory_gb: float = 0.0
    available_memory_gb: float = 0.0
    platform: str = ""
    python_version: str = ""


@dataclass
class ResourceUsage:
    """Current system resource usage."""
    cpu_percent: float = 0.0
    memory_percent: float = 0.0
    memory_used_gb: float = 0.0
    memory_available_gb: float = 0.0
    disk_usage_percent: float = 0.0
    disk_free_gb: float = 0.0


class ConfigurationManager:
    """Loads and validates configuration, and monitors hardware resources."""

    def __init__(self):
        """Initialize the configuration manager."""
        self._hardware_info: Optional[HardwareInfo] = None

    @property
    def hardware_info(self) -> HardwareInfo:
        """Hardware capabilities, detected on first access."""
        if self._hardware_info is None:
            self._hardware_info = self._detect_hardware()
        return self._hardware_info

    def load_config(self, env: Optional[Mapping[str, str]] = None, **overrides) -> ProcessingConfig:
        """Build a ProcessingConfig from environment variables.

        Each field ``name`` is read from ``VIDEO_TRANSLATOR_<NAME>``. The
        Gemini key is also read from ``GEMINI_API_KEY``. Keyword overrides
        win over the environment.

        Args:
            env: Mapping to read from (defaults to ``os.environ``)
            **overrides: Explicit field values

        Returns:
            The populated configuration

        Raises:
            ValueError: If a variable cannot be converted to the field's type
        """
        env = os.environ if env is None else env
        defaults = ProcessingConfig()
        values: Dict[str, Any] = {}

        for config_field in dataclasses.fields(ProcessingConfig):
            key = ENV_PREFIX + config_field.name.upper()
            raw = env.get(key)
            if raw is None and config_field.name == 'gemini_api_key':
                raw = env.get('GEMINI_API_KEY')
            if raw is None:
                continue
            values[config_field.name] = self._coerce(config_field.name, raw, getattr(defaults, config_field.name))

        values.update({k: v for k, v in overrides.items() if v is not None})
        return dataclasses.replace(defaults, **values)

    @staticmethod
    def _coerce(name: str, raw: str, default: Any) -> Any:
        """Convert an environment string to the type of the field's default."""
        raw = raw.strip()
        if isinstance(default, bool):
            lowered = raw.lower()
            if lowered in _TRUE_VALUES:
                return True
            if lowered in _FALSE_VALUES:
                return False
            raise ValueError(f"{name} must be a boolean, got {raw!r}")
        if isinstance(default, int):
            try:
                return int(raw)
            except ValueError:
                raise ValueError(f"{name} must be an integer, got {raw!r}")
        if isinstance(default, float):
            try:
                return float(raw)
            except ValueError:
                raise ValueError(f"{name} must be a number, got {raw!r}")
        if default is None and not raw:
            return None
        return raw

    def validate_configuration(
        self, config: Union[ProcessingConfig, Dict[str, Any]]
    ) -> Tuple[bool, List[str]]:
        """Validate configuration settings and provide guidance.

        Args:
            config: Configuration object or dictionary to validate

        Returns:
            Tuple of (is_valid, error_messages)
        """
        if isinstance(config, ProcessingConfig):
            config = dataclasses.asdict(config)
        errors = []

        def number(key: str) -> Optional[float]:
            value = config.get(key)
            if value is None or isinstance(value, bool) or not isinstance(value, (int, float)):
                return None
            return float(value)

        if 'gemini_api_key' in config:
            api_key = config['gemini_api_key']
            if api_key and not isinstance(api_key, str):
                errors.append("Gemini API key must be a string")
            elif api_key and len(api_key) < 10:
                errors.append("Gemini API key appears to be invalid (too short)")

        if 'whisper_model_size' in config and config['whisper_model_size'] not in VALID_WHISPER_SIZES:
            errors.append(f"Invalid whisper model size. Must be one of: {', '.join(VALID_WHISPER_SIZES)}")

        if 'chunk_duration_seconds' in config:
            value = number('chunk_duration_seconds')
            if value is None or value <= 0:
                errors.append("chunk_duration_seconds must be a positive number")

        if 'max_concurrent_jobs' in config:
            value = config['max_concurrent_jobs']
            if not isinstance(value, int) or value < 1 or value > 64:
                errors.append("max_concurrent_jobs must be an integer between 1 and 64")

        if 'language_fanout' in config:
            value = config['language_fanout']
            if not isinstance(value, int) or value < 1:
                errors.append("language_fanout must be a positive integer")

        if 'retry_attempts' in config:
            value = config['retry_attempts']
            if not isinstance(value, int) or value < 1 or value > 10:
                errors.append("retry_attempts must be an integer between 1 and 10")

        if 'retry_delay_seconds' in config:
            value = number('retry_delay_seconds')
            if value is None or value < 0:
                errors.append("retry_delay_seconds must not be negative")

        for key in ('media_timeout_seconds', 'service_timeout_seconds', 'max_video_duration_seconds'):
            if key in config:
                value = number(key)
                if value is None or value <= 0:
                    errors.append(f"{key} must be a positive number")

        if 'transcription_alternatives' in config:
            value = config['transcription_alternatives']
            if not isinstance(value, int) or value < 1 or value > 5:
                errors.append("transcription_alternatives must be an integer between 1 and 5")

        if 'min_tempo' in config:
            value = number('min_tempo')
            if value is None or value < 0.5 or value > 1.0:
                errors.append("min_tempo must be between 0.5 and 1.0")

        if 'max_tempo' in config:
            value = number('max_tempo')
            if value is None or value < 1.0 or value > 2.0:
                errors.append("max_tempo must be between 1.0 and 2.0")

        if 'duration_tolerance' in config:
            value = number('duration_tolerance')
            if value is None or value < 0 or value > 0.5:
                errors.append("duration_tolerance must be between 0.0 and 0.5")

        if 'proper_noun_strictness' in config and config['proper_noun_strictness'] not in VALID_STRICTNESS:
            errors.append(f"proper_noun_strictness must be one of: {', '.join(VALID_STRICTNESS)}")

        if 'translation_backend' in config and config['translation_backend'] not in VALID_TRANSLATION_BACKENDS:
            errors.append(f"translation_backend must be one of: {', '.join(VALID_TRANSLATION_BACKENDS)}")
        elif config.get('translation_backend') == 'gemini' and not config.get('gemini_api_key'):
            errors.append("translation_backend 'gemini' requires gemini_api_key")

        if 'log_level' in config and str(config['log_level']).upper() not in VALID_LOG_LEVELS:
            errors.append(f"log_level must be one of: {', '.join(VALID_LOG_LEVELS)}")

        return len(errors) == 0, errors

    def _detect_hardware(self) -> HardwareInfo:
        """Detect available hardware capabilities.

        Returns:
            HardwareInfo object with detected capabilities
        """
        info = HardwareInfo()
        info.platform = platform.system()
        info.python_version = platform.python_version()
        info.cpu_count = psutil.cpu_count(logical=True) or 1

        memory = psutil.virtual_memory()
        info.total_memory_gb = memory.total / (1024 ** 3)
        info.available_memory_gb = memory.available / (1024 ** 3)

        info.has_cuda = self._detect_cuda()
        info.has_mps = self._detect_mps()
        if info.has_cuda:
            info.cuda_version, info.gpu_count, info.gpu_names = self._get_cuda_info()

        logger.info(f"Hardware detected: {info}")
        return info

    def _detect_cuda(self) -> bool:
        try:
            import torch
            return torch.cuda.is_available()
        except ImportError:
            logger.debug("PyTorch not available, CUDA detection skipped")
            return False

    def _detect_mps(self) -> bool:
        try:
            import torch
            return hasattr(torch.backends, 'mps') and torch.backends.mps.is_available()
        except (ImportError, AttributeError):
            return False

    def _get_cuda_info(self) -> Tuple[Optional[str], int, List[str]]:
        """Get CUDA version, device count and device names."""
        try:
            import torch
            gpu_count = torch.cuda.device_count()
            return torch.version.cuda, gpu_count, [torch.cuda.get_device_name(i) for i in range(gpu_count)]
        except (ImportError, RuntimeError) as e:
            logger.warning(f"Failed to get CUDA info: {e}")
            return None, 0, []

    def get_optimal_device(self) -> str:
        """Determine the optimal device for computation.

        Returns:
            Device string: 'cuda', 'mps', or 'cpu'
        """
        if self.hardware_info.has_cuda:
            return 'cuda'
        elif self.hardware_info.has_mps:
            return 'mps'
        return 'cpu'

    def resolve_whisper_device(self, config: ProcessingConfig) -> Tuple[str, str]:
        """Pick the device and compute type for faster-whisper.

        CTranslate2 has no MPS backend, so Apple GPUs fall back to CPU.

        Returns:
            Tuple of (device, compute_type)
        """
        device = config.whisper_device
        if device == 'auto':
            device = 'cuda' if self.get_optimal_device() == 'cuda' else 'cpu'
        compute_type = 'float16' if device == 'cuda' else 'int8'
        return device, compute_type

    def get_resource_usage(self, path: str = '/') -> ResourceUsage:
        """Get current system resource usage.

        Args:
            path: Filesystem path whose disk usage is reported

        Returns:
            ResourceUsage object with current metrics
        """
        usage = ResourceUsage()
        usage.cpu_percent = psutil.cpu_percent(interval=0.1)

        memory = psutil.virtual_memory()
        usage.memory_percent = memory.percent
        usage.memory_used_gb = memory.used / (1024 ** 3)
        usage.memory_available_gb = memory.available / (1024 ** 3)

        disk = psutil.disk_usage(path)
        usage.disk_usage_percent = disk.percent
        usage.disk_free_gb = disk.free / (1024 ** 3)
        return usage

    def check_resource_availability(
        self,
        path: str = '/',
        required_memory_gb: float = 2.0,
        required_disk_gb: float = 1.0
    ) -> List[str]:
        """Check whether resources look sufficient for a job.

        Args:
            path: Directory that will hold the job's temporary files
            required_memory_gb: Memory expected to be needed
            required_disk_gb: Free disk expected to be needed

        Returns:
            List of warnings; empty when resources look sufficient
        """
        usage = self.get_resource_usage(path)
        warnings = []

        if usage.memory_available_gb < required_memory_gb:
            warnings.append(
                f"Low memory: {usage.memory_available_gb:.1f} GB available, "
                f"{required_memory_gb:.1f} GB recommended"
            )
        if usage.disk_free_gb < required_disk_gb:
            warnings.append(
                f"Low disk space: {usage.disk_free_gb:.1f} GB free, "
                f"{required_disk_gb:.1f} GB recommended for temporary files"
            )
        if usage.cpu_percent > 95:
            warnings.append(
                f"High CPU usage ({usage.cpu_percent:.1f}%). Processing may be slower than expected."
            )
        return warnings

    def get_hardware_summary(self) -> str:
        """Get a human-readable summary of hardware capabilities.

        Returns:
            Formatted string with hardware information
        """
        info = self.hardware_info
        lines = [
            "=== Hardware Summary ===",
            f"Platform: {info.platform}",
            f"Python: {info.python_version}",
            f"CPU Cores: {info.cpu_count}",
            f"Total Memory: {info.total_memory_gb:.1f} GB",
            f"Available Memory: {info.available_memory_gb:.1f} GB",
        ]

        if info.has_cuda:
            lines.append(f"CUDA: Available (v{info.cuda_version})")
            lines.append(f"GPU Count: {info.gpu_count}")
            for i, name in enumerate(info.gpu_names):
                lines.append(f"  GPU {i}: {name}")
        elif info.has_mps:
            lines.append("MPS: Available (Apple Silicon, Whisper runs on CPU)")
        else:
            lines.append("GPU: Not available (CPU only)")

        lines.append("=" * 24)
        return "\n".join(lines)
