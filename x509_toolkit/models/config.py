"""
Configuration data models for the X.509 toolkit.
"""
from dataclasses import dataclass


SUPPORTED_HASHES = ("sha256", "sha384", "sha512")
KEY_IDENTIFIER_HASHES = ("sha1", "sha256", "sha384", "sha512")


@dataclass
class Config:
    """Main configuration class containing all application settings."""

    # Engine settings
    default_hash: str = "sha256"
    key_identifier_hash: str = "sha1"
    default_key_size: int = 2048
    default_curve: str = "prime256v1"
    default_validity_days: int = 365
    pkcs12_iterations: int = 2048
    max_input_bytes: int = 1024 * 1024

    # API settings
    host: str = "127.0.0.1"
    api_port: int = 5000

    # Application settings
    log_level: str = "INFO"
    log_file_path: str = "logs/x509_toolkit.log"

    def __post_init__(self):
        """Validate configuration after initialization."""
        self._validate_types()

    def _validate_types(self):
        """Ensure all configuration values have correct types."""
        if self.default_hash not in SUPPORTED_HASHES:
            raise ValueError(f"default_hash must be one of: {', '.join(SUPPORTED_HASHES)}")

        if self.key_identifier_hash not in KEY_IDENTIFIER_HASHES:
            raise ValueError(f"key_identifier_hash must be one of: {', '.join(KEY_IDENTIFIER_HASHES)}")

        if not isinstance(self.default_key_size, int) or self.default_key_size < 1024:
            raise ValueError("default_key_size must be an integer of at least 1024")

        if not isinstance(self.default_validity_days, int) or self.default_validity_days <= 0:
            raise ValueError("default_validity_days must be a positive integer")

        if not isinstance(self.pkcs12_iterations, int) or self.pkcs12_iterations <= 0:
            raise ValueError("pkcs12_iterations must be a positive integer")

        if not isinstance(self.max_input_bytes, int) or self.max_input_bytes <= 0:
            raise ValueError("max_input_bytes must be a positive integer")

        if not isinstance(self.api_port, int) or not (1 <= self.api_port <= 65535):
            raise ValueError("api_port must be an integer between 1 and 65535")

        if self.log_level not in ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
            raise ValueError("log_level must be one of: DEBUG, INFO, WARNING, ERROR, CRITICAL")


@dataclass
class ConfigValidationError:
    """Represents a configuration validation error."""
    field: str
    message: str
    severity: str = "error"  # error, warning

    def __str__(self):
        return f"{self.severity.upper()}: {self.field} - {self.message}"


@dataclass
class ConfigValidationResult:
    """Result of configuration validation."""
    is_valid: bool
    errors: list
    warnings: list

    def __post_init__(self):
        """Separate errors and warnings."""
        all_issues = self.errors + self.warnings
        self.errors = [e for e in all_issues if e.severity == "error"]
        self.warnings = [e for e in all_issues if e.severity == "warning"]

    def has_errors(self) -> bool:
        return len(self.errors) > 0

    def has_warnings(self) -> bool:
        return len(self.warnings) > 0

    def get_error_summary(self) -> str:
        """Get a formatted summary of all errors and warnings."""
        lines = []

        if self.errors:
            lines.append("Configuration Errors:")
            lines.extend(f"  - {error}" for error in self.errors)

        if self.warnings:
            lines.append("Configuration Warnings:")
            lines.extend(f"  - {warning}" for warning in self.warnings)

        return "\n".join(lines) if lines else "Configuration is valid"
