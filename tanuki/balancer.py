"""Task-to-agent assignment by workstream and workload."""

from __future__ import annotations

import threading
from collections import Counter
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Iterable, Optional, Sequence

from tanuki.events import Task, TaskStatus


class NoAgentAvailableError(LookupError):
    """Raised when no agent can take a task."""


@dataclass
class BalancerAgent:
    """The view of an agent that balancing needs."""

    name: str
    workstream: str = ""
    status: str = ""


@dataclass
class BalancerStats:
    """Workload statistics."""

    total_tasks: int = 0
    agent_workloads: dict[str, int] = field(default_factory=dict)
    max_workload: int = 0
    busiest_agent: str = ""
    avg_workload: float = 0.0


class Strategy(IntEnum):
    """How an agent is chosen among the idle candidates."""

    LEAST_LOADED = 0
    ROUND_ROBIN = 1
    RANDOM = 2


class Balancer:
    """Tracks active task counts per agent and picks the least-loaded agent."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._workloads: Counter[str] = Counter()

    def _candidates(self, task: Optional[Task], agents: Iterable[BalancerAgent]) -> tuple[list[BalancerAgent], str]:
        if task is None:
            raise ValueError("task is nil")
        workstream = task.get_workstream()
        candidates = self._filter_by_workstream(agents, workstream)
        if not candidates:
            raise NoAgentAvailableError(f"no agents available for workstream {workstream!r}")
        available = self._filter_available(candidates)
        if not available:
            raise NoAgentAvailableError(f"no idle agents for workstream {workstream!r}")
        return available, workstream

    def assign_task(self, task: Optional[Task], agents: Sequence[BalancerAgent]) -> BalancerAgent:
        """Choose the least-loaded idle agent of the task's workstream."""
        available, _ = self._candidates(task, agents)
        selected = self._select_least_loaded(available)
        assert selected is not None
        return selected

    @staticmethod
    def _filter_by_workstream(agents: Iterable[BalancerAgent], workstream: str) -> list[BalancerAgent]:
        return [agent for agent in agents if agent.workstream == workstream]

    @staticmethod
    def _filter_available(agents: Iterable[BalancerAgent]) -> list[BalancerAgent]:
        return [agent for agent in agents if agent.status == "idle"]

    def _select_least_loaded(self, agents: Sequence[BalancerAgent]) -> Optional[BalancerAgent]:
        if not agents:
            return None
        with self._lock:
            return min(agents, key=lambda agent: self._workloads[agent.name])

    def track_assignment(self, agent_name: str) -> None:
        with self._lock:
            self._workloads[agent_name] += 1

    def track_completion(self, agent_name: str) -> None:
        with self._lock:
            if self._workloads[agent_name] > 0:
                self._workloads[agent_name] -= 1

    def get_workload(self, agent_name: str) -> int:
        with self._lock:
            return self._workloads.get(agent_name, 0)

    def get_total_workload(self) -> int:
        with self._lock:
            return sum(self._workloads.values())

    def reset_workload(self, agent_name: str) -> None:
        with self._lock:
            self._workloads.pop(agent_name, None)

    def get_idle_agents(self, agents: Iterable[BalancerAgent], workstream: str = "") -> list[BalancerAgent]:
        """Idle agents, limited to ``workstream`` unless it is empty."""
        return [
            agent
            for agent in agents
            if agent.status == "idle" and (not workstream or agent.workstream == workstream)
        ]

    def get_agents_by_workstream(self, agents: Iterable[BalancerAgent], workstream: str) -> list[BalancerAgent]:
        return self._filter_by_workstream(agents, workstream)

    def get_workstreams_needed(self, tasks: Iterable[Task], agents: Iterable[BalancerAgent]) -> list[str]:
        """Workstreams with pending or blocked tasks but no agent."""
        task_workstreams = dict.fromkeys(
            task.get_workstream()
            for task in tasks
            if task.status in (TaskStatus.PENDING, TaskStatus.BLOCKED)
        )
        agent_workstreams = {agent.workstream for agent in agents if agent.workstream}
        return [ws for ws in task_workstreams if ws not in agent_workstreams]

    def stats(self) -> BalancerStats:
        with self._lock:
            result = BalancerStats()
            for agent, count in self._workloads.items():
                result.agent_workloads[agent] = count
                result.total_tasks += count
                if count > result.max_workload:
                    result.max_workload = count
                    result.busiest_agent = agent
            if self._workloads:
                result.avg_workload = result.total_tasks / len(self._workloads)
            return result


class BalancerWithStrategy(Balancer):
    """Balancer that selects agents with a configurable strategy."""

    def __init__(self, strategy: Strategy = Strategy.LEAST_LOADED) -> None:
        super().__init__()
        self.strategy = strategy
        self._round_robin: dict[str, int] = {}
        self._rr_lock = threading.Lock()

    def assign_task_with_strategy(self, task: Optional[Task], agents: Sequence[BalancerAgent]) -> BalancerAgent:
        """Choose an idle agent of the task's workstream using the strategy."""
        available, workstream = self._candidates(task, agents)
        selected = self._select_agent(available, workstream)
        assert selected is not None
        return selected

    def _select_agent(self, agents: Sequence[BalancerAgent], workstream: str) -> Optional[BalancerAgent]:
        if self.strategy == Strategy.ROUND_ROBIN:
            return self._select_round_robin(agents, workstream)
        if self.strategy == Strategy.RANDOM:
            return self._select_random(agents)
        return self._select_least_loaded(agents)

    def _select_round_robin(self, agents: Sequence[BalancerAgent], workstream: str) -> Optional[BalancerAgent]:
        with self._rr_lock:
            if not agents:
                return None
            index = self._round_robin.get(workstream, 0)
            self._round_robin[workstream] = index + 1
            return agents[index % len(agents)]

    @staticmethod
    def _select_random(agents: Sequence[BalancerAgent]) -> Optional[BalancerAgent]:
        return agents[0] if agents else None