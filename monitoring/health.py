"""
Health monitoring for the explorer service
"""

import os
import time
import asyncio
from typing import Dict, Any, Optional
from dataclasses import dataclass
from enum import Enum

from prometheus_client import Counter, Gauge, Histogram, Info, generate_latest, CONTENT_TYPE_LATEST

from errors.exceptions import ExplorerError
from log_utils import get_logger

logger = get_logger(__name__)

# Prometheus metrics
explorer_info = Info('explorer', 'Block explorer service information')
uptime_seconds = Gauge('explorer_uptime_seconds', 'Service uptime in seconds')
chain_height = Gauge('explorer_chain_height', 'Latest chain height seen by the view')
view_window_size = Gauge('explorer_view_window_size', 'Entries held in a view window', ['window'])
realtime_connection_state = Gauge('explorer_realtime_connection_state', 'Websocket state (1=open, 0.5=connecting, 0=closed)')
realtime_connect_attempts_total = Counter('explorer_realtime_connect_attempts_total', 'Websocket connection attempts')
realtime_frames_total = Counter('explorer_realtime_frames_total', 'Inbound stream frames by type', ['op'])
node_api_response_time = Histogram('explorer_node_api_response_seconds', 'Node API health check latency in seconds')
metric_store_entries = Gauge('explorer_metric_store_entries', 'Samples held in the PFLOPS store')
health_check_status = Gauge('explorer_health_check_status', 'Health check status by component', ['component'])

# Hourly sampling; anything older than this means the scheduler stopped
METRIC_STORE_MAX_AGE = 2 * 3600

class HealthStatus(Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"

_STATUS_VALUE = {
    HealthStatus.HEALTHY: 1.0,
    HealthStatus.DEGRADED: 0.5,
    HealthStatus.UNHEALTHY: 0.0,
}

@dataclass
class ComponentHealth:
    status: HealthStatus
    message: str
    last_check: float
    details: Optional[Dict[str, Any]] = None

def _result(component: str, status: HealthStatus, message: str, details=None) -> ComponentHealth:
    health_check_status.labels(component=component).set(_STATUS_VALUE[status])
    return ComponentHealth(status=status, message=message, last_check=time.time(), details=details)

class HealthMonitor:
    """System health monitoring"""

    def __init__(self, stale_after: float = 120.0):
        self.components: Dict[str, ComponentHealth] = {}
        self.start_time = time.time()
        self.stale_after = stale_after
        explorer_info.info({
            'version': '1.0.0',
            'instance': os.environ.get('HOSTNAME', 'unknown')
        })

    async def check_node_api(self, gateway) -> ComponentHealth:
        """Probe the node REST API"""
        start_time = time.time()
        try:
            tip = await gateway.get_tip()
        except ExplorerError as e:
            return _result("node_api", HealthStatus.UNHEALTHY, f"Node API error: {e.message}")
        duration = time.time() - start_time
        node_api_response_time.observe(duration)

        details = {"response_time": duration, "tip_height": tip.height}
        if duration > 2.0:
            return _result("node_api", HealthStatus.DEGRADED, f"Node API slow: {duration:.2f}s", details)
        return _result("node_api", HealthStatus.HEALTHY, "Node API reachable", details)

    async def check_realtime(self, channel) -> ComponentHealth:
        """Check the event stream connection"""
        state = channel.state.value
        details = {"state": state, "attempts": channel.attempts}
        if state == "open":
            return _result("realtime", HealthStatus.HEALTHY, "Event stream connected", details)
        if state in ("connecting", "closed_reconnecting"):
            return _result("realtime", HealthStatus.DEGRADED, f"Event stream {state}", details)
        return _result("realtime", HealthStatus.UNHEALTHY, "Event stream closed", details)

    async def check_view(self, view) -> ComponentHealth:
        """Check that chain stats keep arriving"""
        snapshot_age = view.stats_age()
        latest = len(view.latest_blocks)
        view_window_size.labels(window="home_blocks").set(latest)
        view_window_size.labels(window="home_transactions").set(len(view.latest_transactions))
        if view.stats is not None:
            chain_height.set(view.stats.height)

        if snapshot_age is None:
            return _result("view", HealthStatus.UNHEALTHY, "No chain stats received yet")
        details = {"stats_age": snapshot_age, "latest_blocks": latest}
        if snapshot_age > self.stale_after:
            return _result("view", HealthStatus.DEGRADED, f"Chain stats stale for {snapshot_age:.0f}s", details)
        return _result("view", HealthStatus.HEALTHY, "View up to date", details)

    async def check_metric_store(self, store) -> ComponentHealth:
        """Check the PFLOPS time series is being appended"""
        try:
            samples = store.load()
        except ExplorerError as e:
            return _result("metric_store", HealthStatus.UNHEALTHY, f"Metric store unreadable: {e.message}")

        metric_store_entries.set(len(samples))
        if not samples:
            return _result("metric_store", HealthStatus.DEGRADED, "Metric store empty")

        age = time.time() - samples[-1].timestamp / 1000
        details = {"entries": len(samples), "last_sample_age": age}
        if age > METRIC_STORE_MAX_AGE:
            return _result("metric_store", HealthStatus.DEGRADED,
                           f"No sample for {age / 3600:.1f} hours", details)
        return _result("metric_store", HealthStatus.HEALTHY, "Metric store current", details)

    async def run_health_checks(self, context) -> Dict[str, ComponentHealth]:
        """Run all health checks against an explorer context"""
        uptime_seconds.set(time.time() - self.start_time)

        checks = {
            "node_api": self.check_node_api(context.gateway),
            "realtime": self.check_realtime(context.channel),
            "view": self.check_view(context.view),
            "metric_store": self.check_metric_store(context.metric_store),
        }

        results = await asyncio.gather(*checks.values(), return_exceptions=True)

        health_status = {}
        for component, result in zip(checks.keys(), results):
            if isinstance(result, Exception):
                logger.error(f"Health check {component} failed: {result}")
                health_status[component] = _result(
                    component, HealthStatus.UNHEALTHY, f"Health check failed: {str(result)}"
                )
            else:
                health_status[component] = result

        self.components = health_status
        return health_status

    def get_overall_health(self) -> HealthStatus:
        """Get overall system health status"""
        if not self.components:
            return HealthStatus.UNHEALTHY

        statuses = [comp.status for comp in self.components.values()]

        if any(status == HealthStatus.UNHEALTHY for status in statuses):
            return HealthStatus.UNHEALTHY
        elif any(status == HealthStatus.DEGRADED for status in statuses):
            return HealthStatus.DEGRADED
        else:
            return HealthStatus.HEALTHY

    def get_health_summary(self) -> Dict[str, Any]:
        """Get comprehensive health summary"""
        overall_status = self.get_overall_health()
        uptime = time.time() - self.start_time

        return {
            "status": overall_status.value,
            "uptime": uptime,
            "timestamp": time.time(),
            "components": {
                name: {
                    "status": comp.status.value,
                    "message": comp.message,
                    "last_check": comp.last_check,
                    "details": comp.details
                }
                for name, comp in self.components.items()
            }
        }

    def generate_metrics(self) -> tuple[bytes, str]:
        """Generate Prometheus metrics"""
        return generate_latest(), CONTENT_TYPE_LATEST
