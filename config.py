# ==============================================================================
# config.py
# ------------------------------------------------------------------------------
# Configuration settings for the CompSense Flask application.
# Uses environment variables for sensitive data to keep them out of version control.
# ==============================================================================

import os
from dotenv import load_dotenv

# Determine the absolute path of the project directory
basedir = os.path.abspath(os.path.dirname(__file__))

# Load environment variables from a .env file located in the project root
load_dotenv(os.path.join(basedir, '.env'))

class Config:
    """
    Base configuration class. Contains default settings that can be overridden
    by environment-specific configurations.
    """
    # --- Security ---
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'you-should-really-set-a-secret-key-in-your-env-file'

    # --- Database Configuration ---
    # SQLite under the instance folder unless DATABASE_URL points elsewhere.
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or \
        'sqlite:///' + os.path.join(basedir, 'instance/compsense.db')

    # Disable an SQLAlchemy feature that is not needed and adds overhead.
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # --- Logging ---
    LOG_LEVEL = os.environ.get('LOG_LEVEL') or 'INFO'

    # --- Engine orchestration ---
    # Window (in days) inside which an unvested tranche triggers a vesting_due signal.
    VESTING_LOOKAHEAD_DAYS = int(os.environ.get('VESTING_LOOKAHEAD_DAYS') or 30)

    # Token the caller must echo back to commit a scenario.
    SCENARIO_APPLY_TOKEN = os.environ.get('SCENARIO_APPLY_TOKEN') or 'CONFIRM_APPLY'

    # The JSON API carries no browser session, so forms skip CSRF tokens.
    WTF_CSRF_ENABLED = False
