"""
Module: sd_sampler.config
Purpose: Configuration management for sd_sampler
Dependencies: pyyaml, pathlib
"""

from pathlib import Path
from typing import Dict, Any, Optional
import os

import yaml

from sd_sampler.pipeline import GenerationConfig

# Project root directory
PROJECT_ROOT = Path(__file__).parent.parent

# Directory paths
OUTPUTS_DIR = PROJECT_ROOT / "outputs"
RESOURCES_DIR = PROJECT_ROOT / "resources"
MODELS_CACHE_DIR = PROJECT_ROOT / "models"
CONFIG_DIR = PROJECT_ROOT / "config"

# Environment override for the config file location
CONFIG_ENV_VAR = "SD_SAMPLER_CONFIG"


class Config:
    """
    Configuration manager for sd_sampler.

    Handles pipeline resources, sampling defaults, API settings and output
    formatting.

    Attributes:
        pipeline (Dict[str, Any]): Model resources and vocabulary locations
        sampling (Dict[str, Any]): Default generation options
        api (Dict[str, Any]): API server configuration
        output (Dict[str, Any]): Output file configuration
        device (str): Compute device override (None for auto-detection)

    Example:
        >>> config = Config()
        >>> config.sampling["steps"]
        50
        >>> config.default_generation_config().width
        512
    """

    def __init__(self, config_file: Optional[Path] = None):
        """
        Initialize configuration with default values and optional overrides.

        Args:
            config_file: Optional path to YAML config file for overrides
        """
        self.pipeline: Dict[str, Any] = {
            "resources_dir": str(RESOURCES_DIR),
            "vocab_path": None,  # None = <resources_dir>/clip_vocab.json
            "keep_loaded": True,  # False = unload the engines after every generation
        }

        self.sampling: Dict[str, Any] = {
            "steps": 50,
            "batch_size": 1,
            "width": 512,
            "height": 512,
            "seed": 0,  # 0 = non-reproducible
        }

        self.api: Dict[str, Any] = {
            "host": "0.0.0.0",
            "port": 8000,
            "reload": False,
            "log_level": "info",
        }

        self.output: Dict[str, Any] = {
            "directory": str(OUTPUTS_DIR),
            "image_format": "PNG",
            "max_filename_length": 50,
        }

        # Device configuration (None = auto-detect)
        self.device: Optional[str] = None

        # Download cache for remote model ids
        self.cache_dir: str = str(MODELS_CACHE_DIR)

        if config_file and Path(config_file).exists():
            self._load_overrides(Path(config_file))

    def _load_overrides(self, config_file: Path) -> None:
        """
        Load configuration overrides from YAML file.

        Dictionary sections are merged key by key; other values replace the
        defaults.

        Args:
            config_file: Path to YAML configuration file
        """
        with open(config_file, 'r') as f:
            overrides = yaml.safe_load(f)

        if not overrides:
            return

        if not isinstance(overrides, dict):
            raise ValueError(f"Config file {config_file} must contain a mapping")

        for key, value in overrides.items():
            current = getattr(self, key, None)
            if isinstance(current, dict) and isinstance(value, dict):
                current.update(value)
            else:
                setattr(self, key, value)

    @property
    def resources_dir(self) -> Path:
        return Path(self.pipeline["resources_dir"])

    @property
    def vocab_path(self) -> Path:
        """Vocabulary file, defaulting to clip_vocab.json inside the resources directory."""
        if self.pipeline.get("vocab_path"):
            return Path(self.pipeline["vocab_path"])
        return self.resources_dir / "clip_vocab.json"

    def default_generation_config(self, **overrides: Any) -> GenerationConfig:
        """
        Build a GenerationConfig from the sampling defaults.

        Overrides whose value is None keep the configured default.

        Example:
            >>> get_config().default_generation_config(steps=20, seed=42).steps
            20
        """
        options = dict(self.sampling)
        options.update({k: v for k, v in overrides.items() if v is not None})
        return GenerationConfig(
            steps=int(options["steps"]),
            batch_size=int(options["batch_size"]),
            width=int(options["width"]),
            height=int(options["height"]),
            seed=int(options["seed"]),
        )


# Global configuration instance
_config_instance: Optional[Config] = None


def get_config() -> Config:
    """
    Get global configuration instance (singleton pattern).

    The config file is taken from $SD_SAMPLER_CONFIG, else config/local.yaml
    when present.

    Returns:
        Shared Config instance
    """
    global _config_instance
    if _config_instance is None:
        env_config = os.environ.get(CONFIG_ENV_VAR)
        if env_config:
            config_file = Path(env_config)
        else:
            config_file = CONFIG_DIR / "local.yaml"
        _config_instance = Config(config_file if config_file.exists() else None)
    return _config_instance


def reset_config() -> None:
    """Drop the cached configuration so the next get_config() reloads it."""
    global _config_instance
    _config_instance = None
