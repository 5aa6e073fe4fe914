"""
Flask application factory for the sales forecast dashboard backend.
Single-user local deployment mode.
"""
import os
from typing import Optional, Dict, Any
from flask import Flask
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Import db from models module
from forecast.models import db
from forecast.config import load_salesforce_config


def create_app(config_overrides: Optional[Dict[str, Any]] = None):
    """Create and configure the Flask application.

    Args:
        config_overrides: Settings applied after the environment is read
            (tests use this to inject credentials and a temp database).
    """
    app = Flask(__name__)

    # Configuration
    app.config['SECRET_KEY'] = os.environ.get('SECRET_KEY', 'dev-secret-key-change-in-production')
    app.config['SQLALCHEMY_DATABASE_URI'] = os.environ.get('DATABASE_URL', 'sqlite:///data/forecast.db')
    app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False

    # Salesforce credentials are read here once; services never touch os.environ
    app.config.update(load_salesforce_config())

    if config_overrides:
        app.config.update(config_overrides)

    missing = app.config['SALESFORCE_CREDENTIALS'].missing_fields()
    if missing:
        app.logger.warning(f"Salesforce credentials not configured: {', '.join(missing)}")

    # Relative SQLite paths need their folder to exist
    db_uri = app.config['SQLALCHEMY_DATABASE_URI']
    if db_uri.startswith('sqlite:///') and not db_uri.startswith('sqlite:////'):
        db_dir = os.path.dirname(db_uri[len('sqlite:///'):])
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)

    # Initialize extensions with app
    db.init_app(app)

    # Create tables and apply idempotent migrations
    from forecast.migrations import run_migrations
    with app.app_context():
        run_migrations(db)

    # Register blueprints
    from forecast.routes.deals import deals_bp
    from forecast.routes.forecast import forecast_bp

    app.register_blueprint(deals_bp)
    app.register_blueprint(forecast_bp)

    return app
