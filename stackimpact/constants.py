"""Shared constants for the StackImpact agent."""

SAAS_DASHBOARD_ADDRESS = "https://agent-api.stackimpact.com"

REDACTED_MARKER = "__REDACTED__"

# Upper bound on messages held by the queue between flushes.
MAX_QUEUED_MESSAGES = 1000

DEFAULT_REPORT_INTERVAL_S = 60.0

# Floor for any periodic reporting interval, whatever path set it.
MIN_REPORT_INTERVAL_S = 1.0

# Distinct segment paths / error keys a reporter aggregates between reports.
MAX_AGGREGATED_KEYS = 1000
