from __future__ import annotations

import logging

from flask import Flask
from flask_cors import CORS

from doccost.api.routes import api_bp
from doccost.config import Config


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    logging.basicConfig(
        level=app.config.get("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    CORS(app)  # ok for MVP; tighten later

    app.register_blueprint(api_bp)
    return app
