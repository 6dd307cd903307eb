import os

# Argon2id at its cheapest cost; must be set before hybridseal.config is imported
os.environ.setdefault("HYBRIDSEAL_KDF_PROFILE", "min")
os.environ.setdefault("HYBRIDSEAL_LOG_LEVEL", "WARNING")
