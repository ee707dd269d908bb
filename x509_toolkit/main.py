"""
Main application entry point for the X.509 toolkit.
Handles configuration, logging setup, engine creation and graceful shutdown.
"""

import os
import sys
import signal
import logging
from typing import Optional
from datetime import datetime

from .services.config_service import ConfigService
from .services.logging_service import LoggingService
from .x509.service import X509Service
from .app import X509App


class X509ToolkitApplication:
    """Main application class for the X.509 toolkit service."""

    def __init__(self, config_path: Optional[str] = None, install_signal_handlers: bool = True):
        """
        Initialize the application.

        Args:
            config_path: Path to configuration file (optional)
            install_signal_handlers: Register SIGINT/SIGTERM/SIGHUP handlers
        """
        self.config_path = config_path or self._get_default_config_path()
        self.logger = logging.getLogger(__name__)
        self.config_service = None
        self.config = None
        self.logging_service = None
        self.service = None
        self.flask_app = None
        self.started_at = None

        self._is_running = False

        if install_signal_handlers:
            self._setup_signal_handlers()

    def _get_default_config_path(self) -> str:
        """Get the default configuration file path."""
        possible_paths = [
            "config/default.properties",
            "config.properties",
            os.path.expanduser("~/.x509_toolkit/config.properties"),
            "/etc/x509_toolkit/config.properties"
        ]

        for path in possible_paths:
            if os.path.exists(path):
                return path

        return possible_paths[0]

    def _setup_signal_handlers(self):
        """Setup signal handlers for graceful shutdown."""
        def signal_handler(signum, frame):
            self.logger.info(f"Received {signal.Signals(signum).name} signal, shutting down")
            self.shutdown()

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

        if hasattr(signal, 'SIGHUP'):
            def reload_handler(signum, frame):
                self.logger.info("Received SIGHUP signal, reloading configuration")
                self._reload_configuration()

            signal.signal(signal.SIGHUP, reload_handler)

    def initialize(self) -> bool:
        """
        Initialize all application components.

        Returns:
            True if initialization successful, False otherwise
        """
        if not self._load_configuration():
            return False

        try:
            self.logging_service = LoggingService(self.config)
            self.logger.info("Starting X.509 toolkit initialization")

            self.service = X509Service(self.config)
            self.flask_app = X509App(self.config_service, self.logging_service, self.service)
        except (OSError, ValueError) as e:
            self.logger.error(f"Failed to initialize application: {e}")
            return False

        self.started_at = datetime.now()
        self._is_running = True
        self.logger.info("X.509 toolkit initialized")
        return True

    def _load_configuration(self) -> bool:
        """Load configuration, writing a default file when none exists."""
        self.config_service = ConfigService()

        if not os.path.exists(self.config_path):
            self.logger.warning(f"Configuration file not found: {self.config_path}")
            self.config_service.create_default_config_file(self.config_path)
            self.logger.info(f"Default configuration created at: {self.config_path}")

        try:
            self.config = self.config_service.load_config(self.config_path)
        except (FileNotFoundError, ValueError) as e:
            self.logger.error(f"Failed to load configuration: {e}")
            return False

        self.logger.info(f"Configuration loaded from {self.config_path}")
        return True

    def run(self, host: Optional[str] = None, port: Optional[int] = None, debug: bool = False):
        """
        Run the HTTP API.

        Args:
            host: Host to bind to (uses config if not specified)
            port: Port to bind to (uses config if not specified)
            debug: Enable debug mode
        """
        if not self._is_running:
            self.logger.error("Application not initialized. Call initialize() first.")
            return

        try:
            self.flask_app.run(host=host, port=port, debug=debug)
        except KeyboardInterrupt:
            self.logger.info("Received keyboard interrupt")
        finally:
            self.shutdown()

    def shutdown(self):
        """Perform graceful shutdown of the application."""
        if not self._is_running:
            return

        self.logger.info("Initiating graceful shutdown")
        self._is_running = False
        logging.shutdown()

    def _reload_configuration(self):
        """Reload configuration without restarting the application."""
        try:
            new_config = self.config_service.load_config(self.config_path)
        except (FileNotFoundError, ValueError) as e:
            self.logger.error(f"Failed to reload configuration: {e}")
            return

        if new_config.log_level != self.config.log_level:
            logging.getLogger().setLevel(getattr(logging, new_config.log_level.upper(), logging.INFO))
            self.logger.info(f"Log level updated to: {new_config.log_level}")

        # Engine defaults apply to requests started after the swap
        self.config = new_config
        self.service = X509Service(new_config)
        if self.flask_app is not None:
            self.flask_app.apply_config(new_config, self.service)
        self.logger.info("Configuration reloaded")

    def is_running(self) -> bool:
        return self._is_running

    def get_status(self) -> dict:
        """Get application status information."""
        return {
            'running': self._is_running,
            'config_path': self.config_path,
            'default_hash': self.config.default_hash if self.config else None,
            'api': f"{self.config.host}:{self.config.api_port}" if self.config else None,
            'log_file': self.config.log_file_path if self.config else None,
            'started_at': self.started_at.isoformat() if self.started_at else None,
        }


def main():
    """Main entry point for the application."""
    import argparse

    parser = argparse.ArgumentParser(description='X.509 certificate toolkit API')
    parser.add_argument('--config', '-c', help='Configuration file path')
    parser.add_argument('--host', help='Host to bind to (uses config if not specified)')
    parser.add_argument('--port', type=int, help='Port to bind to (uses config if not specified)')
    parser.add_argument('--debug', action='store_true', help='Enable debug mode')
    parser.add_argument('--check-config', action='store_true', help='Check configuration and exit')

    args = parser.parse_args()

    app = X509ToolkitApplication(config_path=args.config)

    if not app.initialize():
        print("Failed to initialize application")
        sys.exit(1)

    if args.check_config:
        print("Configuration check passed")
        for key, value in app.get_status().items():
            print(f"{key}: {value}")
        sys.exit(0)

    app.run(host=args.host, port=args.port, debug=args.debug)


if __name__ == '__main__':
    main()
