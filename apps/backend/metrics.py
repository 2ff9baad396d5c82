"""
Ganttium - Prometheus Metrics
=============================
Centralized metrics definitions for observability.
"""

from prometheus_client import Counter, Histogram, Gauge, Info

# =============================================================================
# Application Info
# =============================================================================

app_info = Info("ganttium_app", "Application information")
app_info.info({
    "version": "1.0.0",
    "service": "backend",
})

# =============================================================================
# Request Metrics
# =============================================================================

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    labelnames=["method", "endpoint", "status"]
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency in seconds",
    labelnames=["method", "endpoint"],
    buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0)
)

# =============================================================================
# Authentication Metrics
# =============================================================================

login_attempts_total = Counter(
    "login_attempts_total",
    "Login attempts by outcome",
    labelnames=["outcome"]
)

# =============================================================================
# Scheduling Metrics
# =============================================================================

schedule_runs_total = Counter(
    "schedule_runs_total",
    "Critical path schedule runs",
    labelnames=["status"]
)

schedule_duration_seconds = Histogram(
    "schedule_duration_seconds",
    "Critical path calculation duration in seconds",
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5)
)

# =============================================================================
# Integration Metrics
# =============================================================================

exchange_rate_syncs_total = Counter(
    "exchange_rate_syncs_total",
    "Exchange rate sync runs",
    labelnames=["status"]
)

sms_sent_total = Counter(
    "sms_sent_total",
    "SMS send attempts",
    labelnames=["status"]
)

project_imports_total = Counter(
    "project_imports_total",
    "Project import runs",
    labelnames=["status"]
)

uploads_rejected_total = Counter(
    "uploads_rejected_total",
    "Uploads rejected by validation",
    labelnames=["reason"]
)

# =============================================================================
# Chat Metrics
# =============================================================================

chat_messages_total = Counter(
    "chat_messages_total",
    "Chat messages posted",
    labelnames=["transport"]
)

websocket_connections = Gauge(
    "websocket_connections",
    "Open chat WebSocket connections"
)

# =============================================================================
# Dependency Health
# =============================================================================

database_is_healthy = Gauge(
    "database_is_healthy",
    "Database health status (1=healthy, 0=unhealthy)"
)

redis_is_healthy = Gauge(
    "redis_is_healthy",
    "Redis health status (1=healthy, 0=unhealthy)"
)

provider_circuit_state = Gauge(
    "ganttium_provider_circuit_state",
    "Outbound provider circuit (0=closed, 1=half-open, 2=open)",
    labelnames=["provider"]
)
