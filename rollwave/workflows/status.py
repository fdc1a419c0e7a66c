"""Workflow for reporting the deployment status of a stack."""
import logging
from collections import Counter
from dataclasses import dataclass
from typing import List

logger = logging.getLogger(__name__)


@dataclass
class ServiceStatus:
    name: str
    replicas: str
    image: str
    ports: str


def _desired_replicas(replicas: str) -> str:
    # docker reports "running/desired", sometimes with a "(max N per node)" suffix
    if "/" not in replicas:
        return "?"
    return replicas.split("/", 1)[1].split()[0] or "?"


def stack_status(stack: str, client) -> List[ServiceStatus]:
    """
    Collect one status row per service of the stack.

    Running replicas are counted from tasks whose current state is running;
    the stack prefix is trimmed from service names and image digests are dropped.
    """
    services = client.list_services(stack)
    if not services:
        return []

    running = Counter(
        task.service_name
        for task in client.list_running_tasks(stack)
        if task.current_state.lower().startswith("running")
    )

    rows = []
    for service in sorted(services, key=lambda s: s.name):
        count = running.get(service.name, 0)
        if service.mode == "global":
            replicas = f"{count} (global)"
        else:
            replicas = f"{count}/{_desired_replicas(service.replicas)}"

        short_name = service.name[len(stack) + 1:] if service.name.startswith(stack + "_") else service.name
        rows.append(ServiceStatus(
            name=short_name,
            replicas=replicas,
            image=service.image.split("@sha256", 1)[0],
            ports=", ".join(service.ports) or "-",
        ))

    logger.debug(f"Collected status of {len(rows)} service(s) in stack '{stack}'")
    return rows


def format_status_table(rows: List[ServiceStatus]) -> str:
    header = ("SERVICE", "REPLICAS", "IMAGE", "PORTS")
    table = [header] + [(r.name, r.replicas, r.image, r.ports) for r in rows]
    widths = [max(len(row[i]) for row in table) for i in range(len(header) - 1)]

    lines = []
    for row in table:
        cells = [cell.ljust(width + 3) for cell, width in zip(row, widths)]
        lines.append("".join(cells) + row[-1])
    return "\n".join(lines)
