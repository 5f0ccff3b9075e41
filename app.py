import os
import logging
from typing import Any, Dict, Optional

from flask import Flask, jsonify

from insightflow.config import InsightFlowConfig, configure_logging
from insightflow.secrets import load_secrets_from_secret_manager

logger = logging.getLogger(__name__)


def create_app(config: Optional[InsightFlowConfig] = None, overrides: Optional[Dict[str, Any]] = None):
    """Create and configure an instance of the Flask application."""
    if config is None:
        configure_logging()
        # Secret Manager may provide DISCORD_WEBHOOK_URL and friends
        load_secrets_from_secret_manager()
        config = InsightFlowConfig.from_env()

    app = Flask(__name__)
    app.config["INSIGHTFLOW_CONFIG"] = config
    app.config["INSIGHTFLOW_OVERRIDES"] = dict(overrides or {})

    if not config.discord_webhook_url and "channel" not in app.config["INSIGHTFLOW_OVERRIDES"]:
        logger.warning("DISCORD_WEBHOOK_URL environment variable not set. Digests will not be delivered.")

    with app.app_context():
        from insightflow.endpoints import tasks_bp

        app.register_blueprint(tasks_bp)
        logger.info("Registered tasks blueprint.")

    @app.route('/', methods=['GET'])
    def health_check():
        """Health check endpoint for Cloud Run startup probes."""
        return jsonify({"status": "healthy", "service": "insightflow-core"})

    return app


if __name__ == '__main__':
    app = create_app()
    port = int(os.environ.get("PORT", 8080))
    app.run(debug=False, host='0.0.0.0', port=port)
