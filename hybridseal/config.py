"""
Configuration module for HybridSeal.

Centralizes all configuration with environment variable support and
validation. Values are read once at import time.
"""

import os
from typing import Dict

# ============================================================
# Environment Configuration
# ============================================================

ENV = os.getenv("HYBRIDSEAL_ENV", "dev")  # dev|stage|prod

# Default content cipher for freshly generated content keys
CONTENT_CIPHER = os.getenv("HYBRIDSEAL_CONTENT_CIPHER", "xchacha20-poly1305")

# Argon2id cost profile for new protected keys and passphrase envelopes
KDF_PROFILE = os.getenv("HYBRIDSEAL_KDF_PROFILE", "interactive")  # min|interactive|moderate|sensitive

# Entropy of generated transport passwords (bytes before url-safe encoding)
PASSWORD_BYTES = int(os.getenv("HYBRIDSEAL_PASSWORD_BYTES", "32"))

# Logging
LOG_LEVEL = os.getenv("HYBRIDSEAL_LOG_LEVEL", "WARNING")
LOG_JSON = os.getenv("HYBRIDSEAL_LOG_JSON", "1").lower() in ("1", "true", "yes")
LOG_FILE = os.getenv("HYBRIDSEAL_LOG_FILE", "") or None

KDF_PROFILES = ("min", "interactive", "moderate", "sensitive")
CONTENT_CIPHERS = ("xchacha20-poly1305", "xsalsa20-poly1305")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


# ============================================================
# Validation
# ============================================================

def validate_config() -> Dict[str, bool]:
    """
    Validate the configured values.
    Returns dict of setting -> valid.
    """
    return {
        "env": ENV in ("dev", "stage", "prod"),
        "content_cipher": CONTENT_CIPHER in CONTENT_CIPHERS,
        "kdf_profile": KDF_PROFILE in KDF_PROFILES and not (is_production() and KDF_PROFILE == "min"),
        "password_bytes": PASSWORD_BYTES >= 16,
        "log_level": LOG_LEVEL.upper() in LOG_LEVELS,
    }


# ============================================================
# Feature Flags
# ============================================================

def is_production() -> bool:
    """Check if running in production mode."""
    return ENV == "prod"


def is_debug() -> bool:
    """Check if debug mode is enabled."""
    return os.getenv("HYBRIDSEAL_DEBUG", "").lower() in ("1", "true", "yes")
