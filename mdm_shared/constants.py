from __future__ import annotations

MAX_STRING_LEN = 1024
MAX_PAYLOAD_BYTES = 10 * 1024 * 1024

SCREEN_LOCK_MAX_GRACE_SECONDS = 3600
ONLINE_WINDOW_SECONDS = 24 * 60 * 60

QUERY_FAILED_STATUS = "failed to execute query"
NO_DATA_STATUS_PREFIX = "no_data_found for"

MAX_REPORT_CLOCK_SKEW_SECONDS = 5 * 60
