from prometheus_client import Counter

from inkflow.monitoring.prometheus_metrics import REGISTRY

rl_decisions = Counter(
    "inkflow_rl_decisions_total",
    "rate-limit decisions",
    ["bucket", "action"],
    registry=REGISTRY,
)

__all__ = ["rl_decisions"]
