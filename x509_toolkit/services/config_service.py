"""
Configuration service for loading and validating application settings.
"""
import os
import configparser
from typing import Optional, Dict, Any
import logging

from ..models.config import Config, ConfigValidationError, ConfigValidationResult
from ..x509.keys import CURVES, get_curve
from ..x509.errors import KeyFormatError


class ConfigService:
    """Service for loading and validating application configuration."""

    # Sectioned keys and their flat aliases map to (Config field, type)
    CONFIG_MAPPING = {
        # Engine settings
        "engine.default_hash": ("default_hash", str),
        "default_hash": ("default_hash", str),
        "engine.key_identifier_hash": ("key_identifier_hash", str),
        "key_identifier_hash": ("key_identifier_hash", str),
        "engine.default_key_size": ("default_key_size", int),
        "default_key_size": ("default_key_size", int),
        "engine.default_curve": ("default_curve", str),
        "default_curve": ("default_curve", str),
        "engine.default_validity_days": ("default_validity_days", int),
        "default_validity_days": ("default_validity_days", int),
        "engine.pkcs12_iterations": ("pkcs12_iterations", int),
        "pkcs12_iterations": ("pkcs12_iterations", int),
        "engine.max_input_bytes": ("max_input_bytes", int),
        "max_input_bytes": ("max_input_bytes", int),

        # API settings
        "api.host": ("host", str),
        "host": ("host", str),
        "api.api_port": ("api_port", int),
        "api.port": ("api_port", int),
        "api_port": ("api_port", int),

        # Application settings
        "app.log_level": ("log_level", str),
        "log_level": ("log_level", str),
        "app.log_file_path": ("log_file_path", str),
        "log_file_path": ("log_file_path", str),
    }

    def __init__(self, config_path: Optional[str] = None):
        self.logger = logging.getLogger(__name__)
        self._config = None
        if config_path:
            self._config = self.load_config(config_path)

    def get_config(self) -> Config:
        """
        Get the loaded configuration.

        Returns:
            Config object

        Raises:
            ValueError: If no configuration has been loaded
        """
        if self._config is None:
            raise ValueError("No configuration loaded. Call load_config() first.")
        return self._config

    def load_config(self, config_path: str) -> Config:
        """
        Load configuration from a property file.

        Args:
            config_path: Path to the configuration file

        Returns:
            Config object with loaded settings

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If config file is invalid or has validation errors
        """
        if not os.path.exists(config_path):
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        config_data = self._load_config_file(config_path)
        config = self._create_config_from_data(config_data)

        validation_result = self.validate_config(config)
        if validation_result.has_errors():
            raise ValueError(f"Configuration validation failed:\n{validation_result.get_error_summary()}")

        if validation_result.has_warnings():
            self.logger.warning(f"Configuration warnings:\n{validation_result.get_error_summary()}")

        self._config = config
        return config

    def _load_config_file(self, config_path: str) -> Dict[str, Any]:
        """Load configuration data from file."""
        config_parser = configparser.ConfigParser()

        try:
            config_parser.read(config_path)
        except configparser.Error as e:
            raise ValueError(f"Failed to parse configuration file: {e}")

        # Flatten to section.key
        config_data = {}
        for section in config_parser.sections():
            for key, value in config_parser.items(section):
                config_data[f"{section}.{key}"] = value

        for key, value in config_parser.defaults().items():
            config_data.setdefault(key, value)

        return config_data

    def _create_config_from_data(self, config_data: Dict[str, Any]) -> Config:
        """Create Config object from configuration data."""
        config_kwargs = {}

        for config_key, raw_value in config_data.items():
            if config_key not in self.CONFIG_MAPPING:
                continue
            field_name, field_type = self.CONFIG_MAPPING[config_key]
            try:
                if field_type == int:
                    value = int(raw_value)
                else:
                    value = str(raw_value).strip()
                config_kwargs[field_name] = value
            except (ValueError, TypeError) as e:
                raise ValueError(f"Invalid value for {config_key}: {raw_value} ({e})")

        return Config(**config_kwargs)

    def validate_config(self, config: Config) -> ConfigValidationResult:
        """
        Validate configuration settings.

        Args:
            config: Configuration object to validate

        Returns:
            ConfigValidationResult with validation results
        """
        errors = []
        warnings = []

        try:
            get_curve(config.default_curve)
        except KeyFormatError:
            errors.append(ConfigValidationError(
                "default_curve",
                f"Unsupported curve; choose one of: {', '.join(CURVES)}"
            ))

        if config.default_key_size < 2048:
            warnings.append(ConfigValidationError(
                "default_key_size",
                "RSA keys shorter than 2048 bits are considered weak",
                "warning"
            ))

        if config.pkcs12_iterations < 2048:
            warnings.append(ConfigValidationError(
                "pkcs12_iterations",
                "Fewer than 2048 PKCS#12 iterations weakens password protection",
                "warning"
            ))

        if config.max_input_bytes > 16 * 1024 * 1024:
            warnings.append(ConfigValidationError(
                "max_input_bytes",
                "Input limit above 16 MiB allows very large uploads",
                "warning"
            ))

        if config.log_file_path:
            log_dir = os.path.dirname(config.log_file_path)
            if log_dir and not os.path.exists(log_dir):
                warnings.append(ConfigValidationError(
                    "log_file_path",
                    f"Log directory does not exist: {log_dir}",
                    "warning"
                ))

        return ConfigValidationResult(
            is_valid=len(errors) == 0,
            errors=errors + warnings,
            warnings=[]
        )

    def create_default_config_file(self, config_path: str) -> None:
        """
        Create a default configuration file with example settings.

        Args:
            config_path: Path where to create the config file
        """
        config_content = """# X.509 Toolkit Configuration File

[engine]
default_hash = sha256
key_identifier_hash = sha1
default_key_size = 2048
default_curve = prime256v1
default_validity_days = 365
pkcs12_iterations = 2048
max_input_bytes = 1048576

[api]
host = 127.0.0.1
api_port = 5000

[app]
log_level = INFO
log_file_path = logs/x509_toolkit.log
"""

        config_dir = os.path.dirname(config_path)
        if config_dir:
            os.makedirs(config_dir, exist_ok=True)

        with open(config_path, 'w') as f:
            f.write(config_content)

        self.logger.info(f"Created default configuration file: {config_path}")
