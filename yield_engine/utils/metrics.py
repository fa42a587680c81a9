"""
Prometheus metrics for the agent engine.

Scraped through the /metrics endpoint.
"""

from prometheus_client import Counter, Gauge, Histogram

agent_cycles = Counter(
    "yield_agent_cycles_total",
    "Agent evaluation cycles by outcome",
    ["agent_id", "outcome"],
)

cycle_skips = Counter(
    "yield_agent_cycle_skips_total",
    "Ticks skipped because a cycle was still running",
    ["agent_id"],
)

cycle_duration = Histogram(
    "yield_agent_cycle_duration_seconds",
    "Wall time of one evaluation cycle",
    ["agent_id"],
)

actions_enqueued = Counter(
    "yield_actions_enqueued_total",
    "Actions appended to an agent queue",
    ["agent_id", "action_type"],
)

policy_violations = Counter(
    "yield_policy_violations_total",
    "Recommendations rejected for exceeding configured limits",
    ["agent_id"],
)

action_executions = Counter(
    "yield_action_executions_total",
    "Action submissions by outcome",
    ["outcome"],
)

authorization_denials = Counter(
    "yield_authorization_denials_total",
    "Authorization checks that were denied",
    ["reason"],
)

agent_status = Gauge(
    "yield_agent_running",
    "1 while an agent's scheduler is armed",
    ["agent_id"],
)

http_requests = Counter(
    "yield_http_requests_total",
    "HTTP requests served by the API",
    ["method", "route", "status"],
)

http_request_duration = Histogram(
    "yield_http_request_duration_seconds",
    "HTTP request latency",
    ["method", "route"],
)
