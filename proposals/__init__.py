"""Flask application factory."""
import os

from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

from proposals.database import init_db


def create_app(config_object='config.Config'):
    """Create and configure the Flask application."""
    app = Flask(__name__)
    app.config.from_object(config_object)

    # Sentry error tracking in production
    if os.getenv('SENTRY_DSN') and app.config.get('ENV') == 'production':
        import sentry_sdk
        from sentry_sdk.integrations.flask import FlaskIntegration

        sentry_sdk.init(
            dsn=os.getenv('SENTRY_DSN'),
            integrations=[FlaskIntegration()],
            traces_sample_rate=0.1,
            environment=app.config.get('ENV'),
            release=os.getenv('GIT_COMMIT', 'unknown')
        )

    app.config['MAX_CONTENT_LENGTH'] = app.config.get('MAX_UPLOAD_SIZE')

    # Production: trust the reverse proxy headers
    if app.config.get('ENV') == 'production':
        from werkzeug.middleware.proxy_fix import ProxyFix
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_port=1, x_prefix=0)

    init_db(app)

    from proposals.middleware import load_user
    app.before_request(load_user)

    from proposals.services.cache_service import init_cache
    init_cache(app)

    from proposals.services.storage_service import init_artifact_store
    init_artifact_store(app)

    # Error Handlers
    from proposals.exceptions import ProposalError

    @app.errorhandler(ProposalError)
    def handle_proposal_error(error):
        """Handle custom application exceptions."""
        if error.status_code >= 500:
            app.logger.error(f"ProposalError [{error.status_code}]: {error.message}")
        else:
            app.logger.warning(f"ProposalError [{error.status_code}]: {error.message}")
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(error):
        return jsonify({'status': 'error', 'message': error.description}), error.code

    @app.errorhandler(Exception)
    def internal_error(error):
        app.logger.exception(f"Unhandled Exception: {error}")
        return jsonify({'status': 'error', 'message': 'Internal Server Error'}), 500

    # Register blueprints
    from proposals.blueprints.products import products_bp
    from proposals.blueprints.quotes import quotes_bp
    from proposals.blueprints.price_import import price_import_bp
    from proposals.blueprints.artifacts import artifacts_bp

    app.register_blueprint(products_bp)
    app.register_blueprint(quotes_bp)
    app.register_blueprint(price_import_bp)
    app.register_blueprint(artifacts_bp)

    # Register CLI commands
    from proposals.cli_commands import init_cli_commands
    init_cli_commands(app)

    return app
