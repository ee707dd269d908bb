"""
Flask JSON API for the X.509 toolkit.
"""
from flask import Flask, request, jsonify
import logging
from contextlib import nullcontext
from typing import Optional, Any, Dict
from datetime import datetime

from . import __version__
from .services.config_service import ConfigService
from .services.logging_service import LoggingService
from .x509.errors import CapabilityError, PasswordError, X509Error
from .x509.service import X509Service


ERROR_STATUS = {
    CapabilityError: 422,
    PasswordError: 401,
}


def error_status(error: X509Error) -> int:
    for error_type, status in ERROR_STATUS.items():
        if isinstance(error, error_type):
            return status
    return 400


class BadRequest(X509Error):
    """Request body is not usable JSON."""


class X509App:
    """Flask application exposing the certificate engine."""

    def __init__(self, config_service: ConfigService, logging_service: Optional[LoggingService] = None,
                 service: Optional[X509Service] = None):
        self.app = Flask(__name__)
        self.config_service = config_service
        self.config = config_service.get_config()
        self.logging_service = logging_service
        self.logger = logging.getLogger(__name__)
        self.apply_config(self.config, service or X509Service(self.config))

        self._setup_routes()
        self._setup_error_handlers()
        self._setup_security_headers()

    def apply_config(self, config, service: X509Service):
        """Swap in a new configuration and the service built from it."""
        self.config = config
        self.service = service
        # JSON and base64 inflate the raw input limit
        self.app.config['MAX_CONTENT_LENGTH'] = config.max_input_bytes * 4

    def _json_body(self) -> Dict[str, Any]:
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            raise BadRequest("Request body must be a JSON object.")
        return data

    def _index(self, data: Dict[str, Any]) -> int:
        try:
            return int(data.get('index') or 0)
        except (TypeError, ValueError):
            raise BadRequest("index must be an integer.")

    def _measure(self, operation: str):
        if self.logging_service:
            return self.logging_service.measure_performance(operation)
        return nullcontext()

    def _setup_routes(self):
        """Set up API routes."""

        @self.app.route('/health', methods=['GET'])
        def health_check():
            health_status = {
                'status': 'healthy',
                'service': 'x509-toolkit',
                'version': __version__,
                'engine': {
                    'default_hash': self.service.engine.default_hash,
                    'key_identifier_hash': self.service.engine.key_identifier_hash,
                },
                'timestamp': datetime.now().isoformat()
            }
            if self.logging_service:
                health_status['logging'] = self.logging_service.get_health_status()
            return jsonify(health_status)

        @self.app.route('/api/monitoring/metrics', methods=['GET'])
        def get_performance_metrics():
            if not self.logging_service:
                return jsonify({'error': 'Unavailable', 'message': 'Logging service not available'}), 503
            return jsonify({
                'metrics': self.logging_service.get_performance_stats(request.args.get('operation')),
                'errors': self.logging_service.get_error_summary(),
                'timestamp': datetime.now().isoformat()
            })

        @self.app.route('/api/keys/generate', methods=['POST'])
        def generate_key():
            data = self._json_body()
            with self._measure('generate_key'):
                result = self.service.generate_key(
                    data.get('family', 'rsa'), data.get('key_size'), data.get('curve')
                )
            return jsonify(result)

        @self.app.route('/api/certificates', methods=['POST'])
        def build_certificate():
            data = self._json_body()
            with self._measure('build_certificate'):
                result = self.service.build_certificate(data)
            return jsonify(result.to_dict()), 201

        @self.app.route('/api/csr', methods=['POST'])
        def build_csr():
            data = self._json_body()
            with self._measure('build_csr'):
                result = self.service.build_csr(data)
            return jsonify(result.to_dict()), 201

        @self.app.route('/api/csr/sign', methods=['POST'])
        def sign_csr():
            data = self._json_body()
            with self._measure('sign_csr'):
                result = self.service.sign_csr(data)
            return jsonify(result.to_dict()), 201

        @self.app.route('/api/view', methods=['POST'])
        def view():
            data = self._json_body()
            with self._measure('view'):
                result = self.service.view(
                    data.get('data', ''),
                    data.get('format', 'pem'),
                    data.get('password'),
                    self._index(data),
                    data.get('key_text'),
                    data.get('key_password'),
                )
            return jsonify(result)

        @self.app.route('/api/validate', methods=['POST'])
        def validate():
            data = self._json_body()
            with self._measure('validate'):
                result = self.service.validate(
                    data.get('data', ''),
                    data.get('format', 'pem'),
                    data.get('password'),
                    data.get('ca_bundle'),
                    data.get('ca_format', 'pem'),
                )
            return jsonify(result.to_dict())

        @self.app.route('/api/convert', methods=['POST'])
        def convert():
            data = self._json_body()
            with self._measure('convert'):
                result = self.service.convert(
                    data.get('data', ''),
                    data.get('source_format', 'pem'),
                    data.get('target_format', 'der'),
                    data.get('password'),
                    data.get('key_text'),
                    data.get('key_password'),
                )
            return jsonify(result.to_dict())

        @self.app.route('/api/pkcs12/pack', methods=['POST'])
        def pack_pkcs12():
            data = self._json_body()
            with self._measure('pkcs12_pack'):
                bundle = self.service.pack_pkcs12(
                    data.get('certificate', ''),
                    data.get('key_text', ''),
                    data.get('password', ''),
                    data.get('certificate_format', 'pem'),
                    data.get('key_password'),
                )
            return jsonify({'pkcs12_base64': bundle})

        @self.app.route('/api/pkcs12/unpack', methods=['POST'])
        def unpack_pkcs12():
            data = self._json_body()
            with self._measure('pkcs12_unpack'):
                result = self.service.unpack_pkcs12(data.get('data', ''), data.get('password', ''))
            return jsonify(result)

    def _setup_error_handlers(self):
        """Set up error handlers."""

        @self.app.errorhandler(X509Error)
        def engine_error(error):
            if self.logging_service:
                self.logging_service.track_error(error, request.path, expected=True)
            else:
                self.logger.warning(f"{request.path} rejected: {type(error).__name__}")
            return jsonify(error.to_dict()), error_status(error)

        @self.app.errorhandler(404)
        def not_found(error):
            return jsonify({
                'error': 'NotFound',
                'message': 'The requested endpoint does not exist'
            }), 404

        @self.app.errorhandler(405)
        def method_not_allowed(error):
            return jsonify({
                'error': 'MethodNotAllowed',
                'message': 'The requested method is not allowed for this endpoint'
            }), 405

        @self.app.errorhandler(413)
        def too_large(error):
            return jsonify({
                'error': 'ParseError',
                'message': 'Input exceeds the maximum allowed size'
            }), 413

        @self.app.errorhandler(500)
        def internal_error(error):
            original = getattr(error, 'original_exception', None) or error
            if self.logging_service:
                self.logging_service.track_error(original, request.path)
            else:
                self.logger.error(f"Internal server error: {type(original).__name__}")
            return jsonify({
                'error': 'InternalServerError',
                'message': 'An unexpected error occurred'
            }), 500

    def _setup_security_headers(self):
        """Set up security headers for all responses."""

        @self.app.after_request
        def add_security_headers(response):
            response.headers['Strict-Transport-Security'] = 'max-age=31536000; includeSubDomains'
            response.headers['Content-Security-Policy'] = "default-src 'none'; frame-ancestors 'none'"
            response.headers['X-Content-Type-Options'] = 'nosniff'
            response.headers['X-Frame-Options'] = 'DENY'
            response.headers['Referrer-Policy'] = 'no-referrer'
            # Responses may carry private keys
            response.headers['Cache-Control'] = 'no-store'
            response.headers.pop('Server', None)
            return response

    def run(self, host: Optional[str] = None, port: Optional[int] = None, debug: bool = False):
        """Run the development server."""
        host = host or self.config.host
        port = port or self.config.api_port
        self.logger.info(f"Starting X.509 toolkit API on http://{host}:{port}")
        self.app.run(host=host, port=port, debug=debug)

    def get_app(self) -> Flask:
        """Get the Flask application instance."""
        return self.app
