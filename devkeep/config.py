# devkeep/config.py
# Environment-aware configuration for the DevKeep backend

import os
from typing import Literal

# Environment detection
ENV: Literal["dev", "staging", "prod"] = os.environ.get("ENV", "dev")  # type: ignore
IS_DEV = (ENV == "dev")
IS_STAGING = (ENV == "staging")
IS_PROD = (ENV == "prod")

# JWT configuration
SECRET_KEY = os.environ.get("SECRET_KEY", "devkeep-dev-secret-change-me")
ALGORITHM = "HS256"
ACCESS_TOKEN_MINUTES = int(os.environ.get("ACCESS_TOKEN_MINUTES", "1440"))

# Database configuration
# Relative paths resolve next to this package; absolute paths are used as-is
DATABASE_PATH = os.environ.get("DATABASE_PATH", "devkeep.db")

# Fernet key for credential passwords and chat messages.
# Dev falls back to a fixed key so local data survives restarts.
ENCRYPTION_KEY = os.environ.get(
    "ENCRYPTION_KEY",
    "ZGV2a2VlcC1kZXYtZW5jcnlwdGlvbi1rZXktMzJieXQ=" if IS_DEV else "",
)

# Shared secret for signed subscription webhooks
WEBHOOK_SECRET = os.environ.get("WEBHOOK_SECRET", "devkeep-webhook-secret")

# Listing caps
MESSAGE_PAGE_SIZE = int(os.environ.get("MESSAGE_PAGE_SIZE", "100"))
NOTIFICATION_PAGE_SIZE = int(os.environ.get("NOTIFICATION_PAGE_SIZE", "50"))
ATTENDANCE_PAGE_SIZE = int(os.environ.get("ATTENDANCE_PAGE_SIZE", "100"))

# CORS origins (expand for staging/prod)
CORS_ORIGINS = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]

if IS_STAGING:
    staging_origins = os.environ.get("CORS_ORIGINS", "")
    if staging_origins:
        CORS_ORIGINS.extend(staging_origins.split(","))
    else:
        CORS_ORIGINS.append("https://staging.devkeep.app")

if IS_PROD:
    prod_origins = os.environ.get("CORS_ORIGINS", "")
    if prod_origins:
        CORS_ORIGINS.extend(prod_origins.split(","))
    else:
        CORS_ORIGINS.append("https://devkeep.app")

print(f"[CONFIG] Environment: {ENV}")
print(f"[CONFIG] Database: {DATABASE_PATH}")
print(f"[CONFIG] Access token: {ACCESS_TOKEN_MINUTES} minutes")
print(f"[CONFIG] Encryption key configured: {bool(ENCRYPTION_KEY)}")
