from __future__ import annotations

import logging

LOGGER = logging.getLogger("relay.auth")
PROVIDER_LOGGER = logging.getLogger("relay.google")
APP_VERSION = "0.1.0"

DEFAULT_SESSION_TTL_SECONDS = 300
DEFAULT_SWEEP_INTERVAL_SECONDS = 300
DEFAULT_HTTP_TIMEOUT_SECONDS = 10.0
CALLBACK_PATH = "/auth/callback"
