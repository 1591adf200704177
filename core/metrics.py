import threading
import time
from typing import Callable, Iterable, Optional

from prometheus_client import Counter, Gauge, Histogram

from config.settings import (
    METRICS_REFRESH_INTERVAL,
    VSPHERE_CLONING,
    VSPHERE_HOST,
)
from core.logger import log_event

# -----------------------------
# HTTP / API level metrics
# -----------------------------
REQUEST_COUNT = Counter(
    "vsphere_manager_requests_total",
    "Total HTTP requests to vsphere-manager",
    ["method", "endpoint"],
)

REQUEST_LATENCY = Histogram(
    "vsphere_manager_request_latency_seconds",
    "Latency of HTTP requests to vsphere-manager",
    ["endpoint"],
)

# -----------------------------
# Node / group metrics
# -----------------------------
NODES_PROVISIONED_TOTAL = Counter(
    "vsphere_nodes_provisioned_total",
    "Total number of nodes cloned from a template",
    ["group"],
)

NODES_DESTROYED_TOTAL = Counter(
    "vsphere_nodes_destroyed_total",
    "Total number of nodes destroyed",
)

PROVISION_FAILURES_TOTAL = Counter(
    "vsphere_provision_failures_total",
    "Provisioning calls that ended in an error, by error kind",
    ["reason"],
)

NODES_BY_POWER_STATE = Gauge(
    "vsphere_nodes_by_power_state",
    "Number of non-template VMs per power state",
    ["state"],
)

# -----------------------------
# Provider side work
# -----------------------------
TASK_DURATION = Histogram(
    "vsphere_task_duration_seconds",
    "Time spent waiting for vSphere tasks to reach a terminal state",
    ["kind", "outcome"],
)

GUEST_COMMANDS_TOTAL = Counter(
    "vsphere_guest_commands_total",
    "Guest operations commands by result",
    ["result"],
)

ENDPOINT_INFO = Gauge(
    "vsphere_manager_endpoint",
    "Label gauge exposing the configured vCenter and cloning mode",
    ["host", "cloning"],
)

POWER_STATES = ["poweredOn", "poweredOff", "suspended"]


def init_static_metrics() -> None:
    ENDPOINT_INFO.labels(host=VSPHERE_HOST, cloning=VSPHERE_CLONING).set(1.0)


def record_node_provisioned(group: Optional[str]) -> None:
    NODES_PROVISIONED_TOTAL.labels(group=group or "default").inc()


def record_node_destroyed() -> None:
    NODES_DESTROYED_TOTAL.inc()


def record_provision_failure(reason: str) -> None:
    PROVISION_FAILURES_TOTAL.labels(reason=reason).inc()


def record_task(kind: str, outcome: str, seconds: float) -> None:
    TASK_DURATION.labels(kind=kind, outcome=outcome).observe(seconds)


def record_guest_command(result: str) -> None:
    GUEST_COMMANDS_TOTAL.labels(result=result).inc()


def update_power_states(nodes: Iterable[dict]) -> None:
    counts = {state: 0 for state in POWER_STATES}
    for node in nodes:
        state = node.get("power_state")
        if state in counts:
            counts[state] += 1
    for state, count in counts.items():
        NODES_BY_POWER_STATE.labels(state=state).set(count)


def start_background_collectors(list_nodes: Callable[[], Iterable[dict]]) -> None:
    """
    Refresh the per power state gauge from the vSphere inventory.
    'list_nodes' never raises: it degrades to an empty listing.
    """

    def loop() -> None:
        log_event("[metrics] Starting background inventory collector")
        while True:
            try:
                update_power_states(list_nodes())
            except Exception as e:  # noqa: BLE001
                log_event(f"[metrics] Collector error: {e}")
            time.sleep(METRICS_REFRESH_INTERVAL)

    t = threading.Thread(target=loop, daemon=True)
    t.start()
