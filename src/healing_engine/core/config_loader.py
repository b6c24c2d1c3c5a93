"""Configuration loading and validation utilities for triage and self-healing."""

import yaml
from pathlib import Path
from typing import Dict, Any, Optional
import logging

from .models.healing_models import EngineConfiguration
from .exceptions import ConfigurationError
from .config import settings

logger = logging.getLogger(__name__)


class SelfHealingConfigLoader:
    """Loads and validates engine configuration."""

    DEFAULT_CONFIG = {
        "self_healing": {
            "enabled": True,
            "auto_apply_threshold": 85,
            "require_approval": False,
            "oracle": {
                "timeout": 30.0,
                "retries": 1
            },
            "triage": {
                "min_confidence": 70
            },
            "pipeline": {
                "similarity_threshold": 0.70
            },
            "orchestration": {
                "lock_timeout": 10.0,
                "reverify_before_commit": True
            }
        }
    }

    def __init__(self, config_path: Optional[str] = None):
        """Initialize config loader with optional custom path."""
        self.config_path = Path(
            config_path or settings.SELF_HEALING_CONFIG_PATH)
        self._config_cache: Optional[EngineConfiguration] = None
        self._config_file_mtime: Optional[float] = None

    def load_config(self, force_reload: bool = False) -> EngineConfiguration:
        """Load and validate engine configuration.

        Args:
            force_reload: Force reload even if cached config exists

        Returns:
            EngineConfiguration: Validated configuration object

        Raises:
            ConfigurationError: If configuration is invalid
        """
        if not force_reload and self._config_cache and self._is_config_current():
            return self._config_cache

        try:
            config_data = self._load_config_file()
            engine_config = self._parse_engine_config(config_data)
            self._validate_config(engine_config)
        except ConfigurationError as e:
            logger.error(f"Failed to load self-healing configuration: {e}")
            raise
        except (TypeError, ValueError) as e:
            logger.error(f"Failed to load self-healing configuration: {e}")
            raise ConfigurationError(
                f"Configuration loading failed: {e}") from e

        self._config_cache = engine_config
        if self.config_path.exists():
            self._config_file_mtime = self.config_path.stat().st_mtime

        logger.info(
            f"Loaded self-healing configuration from {self.config_path}")
        return engine_config

    def save_config(self, config: EngineConfiguration) -> None:
        """Save configuration to file.

        Args:
            config: Configuration to save

        Raises:
            ConfigurationError: If saving fails
        """
        self._validate_config(config)

        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)

            config_data = {
                "self_healing": self._config_to_dict(config)
            }

            with open(self.config_path, 'w', encoding='utf-8') as f:
                yaml.dump(config_data, f, default_flow_style=False, indent=2)
        except OSError as e:
            logger.error(f"Failed to save self-healing configuration: {e}")
            raise ConfigurationError(
                f"Configuration saving failed: {e}") from e

        self._config_cache = config
        self._config_file_mtime = self.config_path.stat().st_mtime

        logger.info(
            f"Saved self-healing configuration to {self.config_path}")

    def _load_config_file(self) -> Dict[str, Any]:
        """Load configuration from file or return defaults."""
        if not self.config_path.exists():
            logger.info(
                f"Config file {self.config_path} not found, using defaults")
            return self._deep_merge(self.DEFAULT_CONFIG, {})

        try:
            with open(self.config_path, 'r', encoding='utf-8') as f:
                config_data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}") from e
        except OSError as e:
            raise ConfigurationError(f"Failed to read config file: {e}") from e

        if not isinstance(config_data, dict):
            raise ConfigurationError("Config file must contain a mapping at the top level")

        # Merge with defaults to ensure all keys exist
        return self._deep_merge(self.DEFAULT_CONFIG, config_data)

    def _parse_engine_config(self, config_data: Dict[str, Any]) -> EngineConfiguration:
        """Parse configuration data into EngineConfiguration object."""
        section = config_data.get("self_healing", {})

        oracle = section.get("oracle", {})
        triage = section.get("triage", {})
        pipeline = section.get("pipeline", {})
        orchestration = section.get("orchestration", {})

        return EngineConfiguration(
            enabled=bool(section.get("enabled", True)),
            auto_apply_threshold=int(section.get("auto_apply_threshold", 85)),
            require_approval=bool(section.get("require_approval", False)),
            oracle_timeout=float(oracle.get("timeout", 30.0)),
            oracle_retries=int(oracle.get("retries", 1)),
            triage_min_confidence=int(triage.get("min_confidence", 70)),
            similarity_threshold=float(pipeline.get("similarity_threshold", 0.70)),
            lock_timeout=float(orchestration.get("lock_timeout", 10.0)),
            reverify_before_commit=bool(
                orchestration.get("reverify_before_commit", True))
        )

    def _config_to_dict(self, config: EngineConfiguration) -> Dict[str, Any]:
        """Convert EngineConfiguration to nested dictionary structure."""
        return {
            "enabled": config.enabled,
            "auto_apply_threshold": config.auto_apply_threshold,
            "require_approval": config.require_approval,
            "oracle": {
                "timeout": config.oracle_timeout,
                "retries": config.oracle_retries
            },
            "triage": {
                "min_confidence": config.triage_min_confidence
            },
            "pipeline": {
                "similarity_threshold": config.similarity_threshold
            },
            "orchestration": {
                "lock_timeout": config.lock_timeout,
                "reverify_before_commit": config.reverify_before_commit
            }
        }

    def _validate_config(self, config: EngineConfiguration) -> None:
        """Validate configuration values.

        Args:
            config: Configuration to validate

        Raises:
            ConfigurationError: If validation fails
        """
        errors = []

        if config.auto_apply_threshold < 0 or config.auto_apply_threshold > 100:
            errors.append("auto_apply_threshold must be between 0 and 100")

        if config.oracle_timeout <= 0 or config.oracle_timeout > 300:
            errors.append("oracle.timeout must be between 0 and 300 seconds")

        if config.oracle_retries < 0 or config.oracle_retries > 3:
            errors.append("oracle.retries must be between 0 and 3")

        if config.triage_min_confidence < 0 or config.triage_min_confidence > 100:
            errors.append("triage.min_confidence must be between 0 and 100")

        if config.similarity_threshold < 0.0 or config.similarity_threshold > 1.0:
            errors.append("pipeline.similarity_threshold must be between 0.0 and 1.0")

        if config.lock_timeout <= 0 or config.lock_timeout > 600:
            errors.append("orchestration.lock_timeout must be between 0 and 600 seconds")

        if errors:
            raise ConfigurationError(
                "Configuration validation failed: " + "; ".join(errors))

    def _is_config_current(self) -> bool:
        """Check if cached config is still current."""
        if not self.config_path.exists():
            return self._config_file_mtime is None

        current_mtime = self.config_path.stat().st_mtime
        return self._config_file_mtime == current_mtime

    def _deep_merge(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge two dictionaries."""
        result = {
            key: (self._deep_merge(value, {}) if isinstance(value, dict) else value)
            for key, value in base.items()
        }

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result


def get_engine_config(config_path: Optional[str] = None,
                      force_reload: bool = False) -> EngineConfiguration:
    """Load engine configuration, applying the environment-level switches.

    ``SELF_HEALING_ENABLED=false`` disables healing and
    ``SELF_HEALING_REQUIRE_APPROVAL=true`` forces manual approval, whatever
    the YAML file says.

    Args:
        config_path: Optional YAML path, defaults to settings
        force_reload: Force reload from file

    Returns:
        EngineConfiguration: Current configuration
    """
    config = SelfHealingConfigLoader(config_path).load_config(force_reload)

    if not settings.SELF_HEALING_ENABLED:
        config.enabled = False
    if settings.SELF_HEALING_REQUIRE_APPROVAL:
        config.require_approval = True
    if not Path(config_path or settings.SELF_HEALING_CONFIG_PATH).exists():
        # No file: environment decides the thresholds
        config.auto_apply_threshold = settings.SELF_HEALING_THRESHOLD
        config.oracle_timeout = settings.ORACLE_TIMEOUT

    return config
