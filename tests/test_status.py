"""Tests for stack status reporting."""
from rollwave.domains.models import Task
from rollwave.workflows.status import ServiceStatus, format_status_table, stack_status


def _task(service, state="Running 5 minutes ago"):
    return Task(id=f"t-{service}", name=f"{service}.1", current_state=state, service_name=service)


class TestStackStatus:
    """Test per-service status rows."""

    def test_rows_for_replicated_and_global(self, swarm):
        swarm.add_service("demo", "demo_web", mode="replicated", replicas="2/3",
                          image="reg.io/web:abc@sha256:ffff", ports=["*:80->80/tcp"])
        swarm.add_service("demo", "demo_agent", mode="global", replicas="2/2", image="agent:1")
        swarm.tasks["demo"] = [
            _task("demo_web"),
            _task("demo_web"),
            _task("demo_web", state="Preparing 3 seconds ago"),
            _task("demo_agent"),
        ]

        rows = stack_status("demo", swarm)

        assert rows == [
            ServiceStatus(name="agent", replicas="1 (global)", image="agent:1", ports="-"),
            ServiceStatus(name="web", replicas="2/3", image="reg.io/web:abc", ports="*:80->80/tcp"),
        ]

    def test_desired_count_ignores_suffix(self, swarm):
        swarm.add_service("demo", "demo_web", mode="replicated", replicas="0/4 (max 2 per node)")

        assert stack_status("demo", swarm)[0].replicas == "0/4"

    def test_empty_stack(self, swarm):
        assert stack_status("demo", swarm) == []


class TestFormatStatusTable:
    """Test table layout."""

    def test_columns_aligned(self):
        rows = [
            ServiceStatus("web", "2/3", "reg.io/web:abc", "*:80->80/tcp"),
            ServiceStatus("worker-long-name", "1/1", "w:1", "-"),
        ]

        lines = format_status_table(rows).splitlines()

        assert lines[0].startswith("SERVICE")
        assert len(lines) == 3
        image_col = lines[0].index("IMAGE")
        assert lines[1][image_col:].startswith("reg.io/web:abc")
        assert lines[2][image_col:].startswith("w:1")
