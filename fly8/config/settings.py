"""
Application settings and configuration
"""
import os
from dotenv import load_dotenv

load_dotenv()

class Settings:
    # Application
    APP_NAME = "Fly8 Commission Engine"
    VERSION = "1.0.0"
    DEBUG = os.getenv("DEBUG", "False") == "True"
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # Display timezone for serialized datetimes
    TIMEZONE = os.getenv("TIMEZONE", "UTC")

    # Security
    SECRET_KEY = os.getenv("SECRET_KEY", "your-secret-key-change-in-production")
    ALGORITHM = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES = 60 * 24  # 24 hours

    # CORS
    ALLOWED_ORIGINS = [
        origin.strip()
        for origin in os.getenv(
            "ALLOWED_ORIGINS",
            "http://localhost:3000,http://localhost:5173,http://127.0.0.1:5173",
        ).split(",")
        if origin.strip()
    ]

    # Pagination
    DEFAULT_PAGE_SIZE = 20
    MAX_PAGE_SIZE = 100

    # Invoice numbering
    INVOICE_PREFIX = os.getenv("INVOICE_PREFIX", "FLY8")

    # Commission fallbacks (used when the settings document is silent)
    DEFAULT_COMMISSION_RATE = 10.0
    DEFAULT_TUITION_BASE_AMOUNT = 10000.0
    DEFAULT_VAS_FEE = 500.0
    DEFAULT_PAYOUT_THRESHOLD = 100.0
    DEFAULT_CURRENCY = "USD"

settings = Settings()
