"""Prometheus metrics shared by the API and the analysis engine."""

from prometheus_client import CollectorRegistry, Counter

# Registry for isolated metric collection
CUSTOM_REGISTRY = CollectorRegistry()

REQUESTS = Counter("requests_total", "Total HTTP requests", registry=CUSTOM_REGISTRY)
ERRORS = Counter("errors_total", "Total HTTP requests that failed", registry=CUSTOM_REGISTRY)
ANALYSES = Counter(
    "symptom_analyses_total",
    "Symptom analyses by outcome",
    ["outcome"],
    registry=CUSTOM_REGISTRY,
)
