"""Flask application factory."""
import logging

from flask import Flask, jsonify, request
from estoque_pdv.database import init_db


def create_app(config_object='config.Config'):
    """Create and configure the Flask application."""
    app = Flask(__name__)
    app.config.from_object(config_object)

    # Service modules log under the "estoque_pdv" logger hierarchy
    logging.getLogger('estoque_pdv').setLevel(app.config.get('LOG_LEVEL', 'INFO'))

    # Production: Enable ProxyFix for HTTPS behind Nginx reverse proxy
    if app.config.get('ENV') == 'production':
        from werkzeug.middleware.proxy_fix import ProxyFix
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_port=1, x_prefix=0)

    # Initialize database
    init_db(app)

    # Multi-Tenant: Load tenant and user context before each request
    from estoque_pdv.middleware import load_actor_context

    @app.before_request
    def before_request_handler():
        """Load tenant and user context for each request."""
        load_actor_context()

    # Error Handlers
    from estoque_pdv.exceptions import EstoqueError

    @app.errorhandler(EstoqueError)
    def handle_estoque_error(error):
        """Handle custom application exceptions."""
        if error.status_code >= 500:
            app.logger.error(f"EstoqueError [{error.status_code}]: {error.message}")
        else:
            app.logger.warning(f"EstoqueError [{error.status_code}]: {error.message}")
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(404)
    def not_found_error(error):
        return jsonify({'status': 'error', 'message': 'Not Found'}), 404

    @app.errorhandler(500)
    def internal_error(error):
        app.logger.error(f"Unhandled Exception on {request.method} {request.path}: {error}")
        return jsonify({'status': 'error', 'message': 'Internal Server Error'}), 500

    # Register blueprints
    from estoque_pdv.blueprints.products import products_bp
    from estoque_pdv.blueprints.movements import movements_bp
    from estoque_pdv.blueprints.pdv import pdv_bp

    app.register_blueprint(products_bp)
    app.register_blueprint(movements_bp)
    app.register_blueprint(pdv_bp)

    # Register CLI commands
    from estoque_pdv.cli_commands import init_cli_commands
    init_cli_commands(app)

    return app
