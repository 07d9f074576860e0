# ==============================================================================
# compsense/__init__.py
# ------------------------------------------------------------------------------
# Application factory for creating and configuring the Flask app instance.
# ==============================================================================

import os
import logging
from datetime import date

import click
from flask import Flask
from config import Config
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

# Initialize extensions globally to be accessible by other modules
db = SQLAlchemy()
migrate = Migrate()

def create_app(config_class=Config):
    """
    Application factory function. Creates and configures the Flask application.

    Args:
        config_class (class): The configuration class to use.

    Returns:
        Flask: The configured Flask application instance.
    """
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config_class)

    # Configure logging
    logging.basicConfig(level=getattr(logging, str(app.config.get('LOG_LEVEL', 'INFO')).upper(), logging.INFO),
                        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s')

    # Ensure the instance folder exists for the SQLite database
    os.makedirs(app.instance_path, exist_ok=True)

    # Initialize extensions with the application instance
    db.init_app(app)
    migrate.init_app(app, db)

    # Register blueprints with the application
    from compsense.main import bp as main_bp
    app.register_blueprint(main_bp)

    from compsense.signals import connect_default_receivers
    connect_default_receivers(app)

    @app.cli.command("seed")
    def seed():
        """Seeds the database with default policy settings and demo bands."""
        from compsense.seed import seed_data
        seed_data()
        app.logger.info("Database has been seeded with default values.")

    @app.cli.command("process-vesting")
    @click.option('--as-of', 'as_of', default=None, help='Reference date (YYYY-MM-DD), defaults to today.')
    def process_vesting(as_of):
        """Refreshes vested flags and vested unit totals of every grant."""
        from compsense.main.services import refresh_vesting
        summary = refresh_vesting(as_of or date.today())
        click.echo(f"Processed {summary['grants']} grants, {summary['newly_vested']} tranches newly vested, "
                   f"{summary['fully_vested']} grants fully vested.")

    app.logger.info('CompSense compensation engine startup complete')

    return app
