from __future__ import annotations

import logging

LOGGER = logging.getLogger("bloggermcp")
APP_VERSION = "0.1.0"
APP_NAME = "blogger-mcp"

DEFAULT_SCOPES = ["https://www.googleapis.com/auth/blogger"]
DEFAULT_CALLBACK_HOST = "localhost"
DEFAULT_CALLBACK_PORT = 3000
CALLBACK_PATH = "/oauth/callback"

CONSENT_TIMEOUT_SECONDS = 300.0
HTTP_TIMEOUT_SECONDS = 30.0
HTTP_MAX_RETRIES = 1
REFRESH_MARGIN_SECONDS = 60.0
