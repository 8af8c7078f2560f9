# config.py — sane config with loud failures

import os

# Hard requirements. Fail fast if any are missing.
REQUIRED = [
    "STREAM_SIGNING_SECRET",
]

# Optional knobs with defaults that won't sandbag you at runtime.
DEFAULTS = {
    # Signed stream/download URLs
    "STREAM_BASE_URL": "/stream",
    "STREAM_URL_TTL_SECONDS": 300,

    # Playback audit trail (JSONL, fsynced per record)
    "AUDIT_LOG_PATH": "var/playback_audit.jsonl",

    # Event registry backend
    "EVENT_STORE": "memory",  # memory, sqlite
    "EVENT_DB_PATH": "var/events.db",
    "ACTIVATION_MAX_RETRIES": 3,

    # Availability
    "EDITOR_PRESENCE_WINDOW_MINUTES": 5,

    # Policy
    "CAPABILITY_GRANTS_PATH": None,  # None = built-in grant table
}

EVENT_STORES = ("memory", "sqlite")


def _positive_int(key, val):
    try:
        val = int(val)
        if val < 1:
            raise ValueError(f"{key} must be positive")
    except (ValueError, TypeError):
        raise RuntimeError(f"{key} must be a positive integer, got: {val}")
    return val


def load_config():
    """
    Load env config, erroring clearly if anything critical is missing.
    Returns a dict of required + defaults (with types normalized).
    """
    missing = [k for k in REQUIRED if not os.getenv(k)]
    if missing:
        missing_list = ', '.join(missing)
        raise RuntimeError(
            f"Missing required environment variables: {missing_list}. "
            f"Please check your .env file and ensure all required variables are set."
        )

    cfg = {k: os.getenv(k) for k in REQUIRED}

    for k, v in DEFAULTS.items():
        val = os.getenv(k, v)

        # Type conversion and validation
        if k in ("STREAM_URL_TTL_SECONDS", "ACTIVATION_MAX_RETRIES", "EDITOR_PRESENCE_WINDOW_MINUTES"):
            val = _positive_int(k, val)
        elif k == "EVENT_STORE":
            val = (val or "").lower()
            if val not in EVENT_STORES:
                raise RuntimeError(f"EVENT_STORE must be one of {', '.join(EVENT_STORES)}, got: {val}")
        elif k == "CAPABILITY_GRANTS_PATH":
            val = val or None
        elif k == "STREAM_BASE_URL":
            val = (val or "/stream").rstrip("/") or "/stream"

        cfg[k] = val

    return cfg
