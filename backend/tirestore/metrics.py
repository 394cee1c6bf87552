from prometheus_client import CONTENT_TYPE_LATEST, Counter, generate_latest

REQUESTS_TOTAL = Counter(
    "requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)
RATE_LIMIT_HITS_TOTAL = Counter(
    "rate_limit_hits_total",
    "Requests rejected by a rate limiter",
    ["category"],
)
SECURITY_INCIDENTS_TOTAL = Counter(
    "security_incidents_total",
    "Security incidents raised by the login pipeline",
    ["type"],
)
RATE_LIMITER_REBUILDS_TOTAL = Counter(
    "rate_limiter_rebuilds_total",
    "Rebuilds of the rate limiter family from stored settings",
)


__all__ = [
    "CONTENT_TYPE_LATEST",
    "REQUESTS_TOTAL",
    "RATE_LIMIT_HITS_TOTAL",
    "SECURITY_INCIDENTS_TOTAL",
    "RATE_LIMITER_REBUILDS_TOTAL",
    "generate_latest",
]
