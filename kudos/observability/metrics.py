"""Prometheus metrics for Kudos.

Counters and histograms for admission decisions, breaker state
transitions, abuse flags, and job outcomes. Consumed by an external
dashboard through the /metrics endpoint.
"""

from prometheus_client import Counter, Gauge, Histogram

# Request metrics
REQUEST_COUNT = Counter(
    "kudos_request_count_total",
    "Total number of API requests processed",
    labelnames=["endpoint", "status"],
)

REQUEST_LATENCY = Histogram(
    "kudos_request_latency_seconds",
    "API request latency in seconds",
    labelnames=["endpoint"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# Admission control
ADMISSION_DECISIONS = Counter(
    "kudos_admission_decisions_total",
    "Admission control decisions by check and outcome",
    labelnames=["check", "outcome"],
)

RATE_LIMIT_BREACHES = Counter(
    "kudos_rate_limit_breaches_total",
    "Rate limit breaches by limit type",
    labelnames=["limit_type"],
)

QUOTA_CONSUMED = Counter(
    "kudos_quota_consumed_total",
    "Quota units consumed by action type",
    labelnames=["action_type"],
)

DEGRADATIONS = Counter(
    "kudos_degradations_total",
    "Checks that failed open because a dependency was unavailable",
    labelnames=["component"],
)

CAS_CONFLICTS = Counter(
    "kudos_cas_conflicts_total",
    "Conditional writes that lost a race and were retried",
    labelnames=["collection"],
)

# Circuit breakers
BREAKER_STATE = Gauge(
    "kudos_breaker_state",
    "Circuit breaker state (0=closed, 1=half_open, 2=open)",
    labelnames=["dependency"],
)

BREAKER_TRANSITIONS = Counter(
    "kudos_breaker_transitions_total",
    "Circuit breaker state transitions",
    labelnames=["dependency", "from_state", "to_state"],
)

BREAKER_REJECTIONS = Counter(
    "kudos_breaker_rejections_total",
    "Calls rejected without invoking the dependency",
    labelnames=["dependency"],
)

DEPENDENCY_CALL_LATENCY = Histogram(
    "kudos_dependency_call_latency_seconds",
    "Latency of calls through a circuit breaker",
    labelnames=["dependency", "outcome"],
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# Recognitions and abuse
RECOGNITIONS_CREATED = Counter(
    "kudos_recognitions_created_total",
    "Recognitions persisted",
    labelnames=["source", "abuse_detected"],
)

RECOGNITION_WEIGHT = Histogram(
    "kudos_recognition_weight",
    "Final persisted recognition weight",
    buckets=(0.1, 0.25, 0.5, 1.0, 1.5, 2.0, 2.5, 3.0, 4.0, 5.0),
)

ABUSE_FLAGS = Counter(
    "kudos_abuse_flags_total",
    "Abuse flags raised",
    labelnames=["flag_type", "severity"],
)

# Jobs
JOBS_ENQUEUED = Counter(
    "kudos_jobs_enqueued_total",
    "Jobs enqueued",
    labelnames=["job_type"],
)

JOB_OUTCOMES = Counter(
    "kudos_job_outcomes_total",
    "Job attempt outcomes",
    labelnames=["job_type", "outcome"],
)

JOB_LATENCY = Histogram(
    "kudos_job_latency_seconds",
    "Job handler execution time in seconds",
    labelnames=["job_type"],
    buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
)

# Audit
AUDIT_EMIT_FAILURES = Counter(
    "kudos_audit_emit_failures_total",
    "Audit events that could not be written",
    labelnames=["event_code"],
)
