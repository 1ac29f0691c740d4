"""Shared constants for the chat migration tool."""

# HTTP status codes
HTTP_OK = 200
HTTP_BAD_REQUEST = 400
HTTP_UNAUTHORIZED = 401
HTTP_FORBIDDEN = 403
HTTP_NOT_FOUND = 404
HTTP_RATE_LIMIT = 429
HTTP_SERVER_ERROR_MIN = 500
HTTP_SERVER_ERROR_MAX = 599

# Google API quota errors arrive as 403s with one of these in the message
GOOGLE_QUOTA_MESSAGES = (
    "Quota exceeded",
    "quota metric",
    "Critical read requests",
    "Rate limit exceeded",
    "Rate Limit Exceeded",
    "rateLimitExceeded",
    "userRateLimitExceeded",
)

# Slack Web API error codes
SLACK_RATE_LIMIT_CODES = frozenset({"ratelimited", "rate_limited"})
SLACK_SDK_RATE_LIMIT_CODE = "slack_webapi_rate_limited"
SLACK_AUTH_CODES = frozenset(
    {
        "not_authed",
        "invalid_auth",
        "account_inactive",
        "token_revoked",
        "token_expired",
    }
)
# Scope errors reject one call; the token itself still works
SLACK_SCOPE_CODES = frozenset({"no_permission", "missing_scope"})
SLACK_TRANSIENT_CODES = frozenset({"internal_error", "fatal_error", "service_unavailable"})

SLACK_API_BASE_URL = "https://slack.com/api/"
SLACK_UPLOAD_TIMEOUT = 120
SLACK_REQUEST_TIMEOUT = 30

# Output
DEFAULT_OUTPUT_DIR = "migration_logs"
ERROR_LOG_FILENAME = "errors.log"
MAIN_LOG_FILENAME = "migration.log"
