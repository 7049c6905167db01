"""
Application Configuration
Load settings from environment variables
"""
import os
from decimal import Decimal

from dotenv import load_dotenv

load_dotenv()

# Database Configuration
DB_HOST = os.getenv("DB_HOST", "localhost")
DB_PORT = int(os.getenv("DB_PORT", 3306))
DB_USER = os.getenv("DB_USER", "root")
DB_PASSWORD = os.getenv("DB_PASSWORD", "")
DB_NAME = os.getenv("DB_NAME", "clubhouse_gym")

# Security Configuration (tokens are issued by the identity service)
SECRET_KEY = os.getenv("SECRET_KEY", "your-secret-key-change-in-production")
ALGORITHM = os.getenv("ALGORITHM", "HS256")

# SMTP Configuration
SMTP_HOST = os.getenv("SMTP_HOST", "smtp.gmail.com")
SMTP_PORT = int(os.getenv("SMTP_PORT", 587))
SMTP_USER = os.getenv("SMTP_USER", "")
SMTP_PASSWORD = os.getenv("SMTP_PASSWORD", "")
SMTP_FROM_EMAIL = os.getenv("SMTP_FROM_EMAIL", "noreply@clubhouse.gym")
SMTP_FROM_NAME = os.getenv("SMTP_FROM_NAME", "Clubhouse Gym")
EMAIL_ENABLED = os.getenv("EMAIL_ENABLED", "true").lower() == "true"

# Application Settings
APP_NAME = os.getenv("APP_NAME", "Clubhouse Gym API")
DEBUG = os.getenv("DEBUG", "false").lower() == "true"
CORS_ORIGINS = os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",")

# Scheduler Settings
SCHEDULER_ENABLED = os.getenv("SCHEDULER_ENABLED", "true").lower() == "true"
SESSION_GENERATION_DAYS_AHEAD = int(os.getenv("SESSION_GENERATION_DAYS_AHEAD", 14))
SESSION_AUTO_COMPLETE_GRACE_MINUTES = int(os.getenv("SESSION_AUTO_COMPLETE_GRACE_MINUTES", 60))

# Pricing defaults
DEFAULT_CURRENCY = os.getenv("DEFAULT_CURRENCY", "SAR")
DEFAULT_TAX_RATE = Decimal(os.getenv("DEFAULT_TAX_RATE", "15.00"))
