"""Prometheus metrics for the zero-trust engine."""

from prometheus_client import Counter, Histogram

authorization_decisions = Counter(
    "zerotrust_authorization_decisions_total",
    "Authorization decisions",
    ["outcome"],
)

authorization_latency = Histogram(
    "zerotrust_authorization_duration_seconds",
    "Time spent in the authorization pipeline",
)

anomaly_detections = Counter(
    "zerotrust_anomaly_detections_total",
    "Anomaly detections",
    ["anomaly_type", "severity"],
)

threat_responses = Counter(
    "zerotrust_threat_responses_total",
    "Threat responses issued",
    ["action", "automatic"],
)

consent_decisions = Counter(
    "zerotrust_consent_decisions_total",
    "Consent decisions",
    ["outcome"],
)
