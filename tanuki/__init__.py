"""Agent state, load balancing, workstream scheduling and orchestration for multi-agent coding workflows."""

__version__ = "0.1.0"

__all__ = [
    "balancer",
    "events",
    "interfaces",
    "logwriter",
    "orchestrator",
    "project",
    "state",
    "workstream",
]