"""
Flask application factory.

Creates and configures the Flask app, registers all blueprints.
"""
import logging

from flask import Flask, jsonify

logger = logging.getLogger('gamification')


def create_app():
    """Create and configure the Flask application."""
    from gamification.logging_config import configure_logging
    from gamification.errors import GamificationError

    app = Flask(__name__)

    configure_logging(app)

    @app.errorhandler(GamificationError)
    def handle_gamification_error(error):
        if error.status_code >= 500:
            logger.error("Request failed: %s", error.message)
        return jsonify(error.to_dict()), error.status_code

    # Register blueprints
    from gamification.routes.health import bp as health_bp
    from gamification.routes.scores import bp as scores_bp
    from gamification.routes.achievements import bp as achievements_bp
    from gamification.routes.leaderboards import bp as leaderboards_bp
    from gamification.routes.bonus_zones import bp as bonus_zones_bp
    from gamification.routes.rewards import bp as rewards_bp

    app.register_blueprint(health_bp)
    app.register_blueprint(scores_bp)
    app.register_blueprint(achievements_bp)
    app.register_blueprint(leaderboards_bp)
    app.register_blueprint(bonus_zones_bp)
    app.register_blueprint(rewards_bp)

    # Import models so Base.metadata knows about them (required for SQLAlchemy).
    # Schema is managed by Alembic; there is no create_all() call.
    import importlib
    importlib.import_module('gamification.models.driver_score')
    importlib.import_module('gamification.models.achievement')
    importlib.import_module('gamification.models.leaderboard')
    importlib.import_module('gamification.models.bonus_zone')
    importlib.import_module('gamification.models.driver_bonus')

    return app
