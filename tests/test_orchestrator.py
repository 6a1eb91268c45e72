import threading
import time
from datetime import timedelta

import pytest

from tanuki.balancer import Balancer
from tanuki.events import Event, EventType, Task, TaskStatus
from tanuki.interfaces import TaskStats
from tanuki.orchestrator import (
    Orchestrator,
    OrchestratorConfig,
    OrchestratorError,
    OrchestratorStatus,
    count_idle_agents,
    default_orchestrator_config,
)
from tanuki.state import Agent
from tanuki.workstream import WorkstreamStatus


class MockTaskManager:
    def __init__(self):
        self.tasks = {}

    def add_task(self, task):
        self.tasks[task.id] = task

    def scan(self):
        return list(self.tasks.values())

    def get(self, task_id):
        try:
            return self.tasks[task_id]
        except KeyError:
            raise LookupError("not found") from None

    def get_by_workstream(self, workstream):
        return [t for t in self.tasks.values() if t.workstream == workstream]

    def get_by_status(self, status):
        return [t for t in self.tasks.values() if t.status == status]

    def get_pending(self):
        return self.get_by_status(TaskStatus.PENDING)

    def update_status(self, task_id, status):
        self.get(task_id).status = status

    def assign(self, task_id, agent_name):
        task = self.get(task_id)
        task.assigned_to = agent_name
        task.status = TaskStatus.ASSIGNED

    def unassign(self, task_id):
        self.get(task_id).assigned_to = ""

    def is_blocked(self, task_id):
        return False

    def stats(self):
        return TaskStats.from_tasks(self.tasks.values())


class MockAgentManager:
    def __init__(self):
        self.agents = {}

    def add_agent(self, agent):
        self.agents[agent.name] = agent

    def spawn(self, name, **options):
        agent = Agent(name=name, workstream=options.get("workstream", ""), status="idle")
        self.agents[name] = agent
        return agent

    def get(self, name):
        try:
            return self.agents[name]
        except KeyError:
            raise LookupError("agent not found") from None

    def list(self):
        return list(self.agents.values())

    def start(self, name):
        self.get(name).status = "idle"

    def stop(self, name):
        self.get(name).status = "stopped"

    def remove(self, name, **options):
        self.agents.pop(name, None)

    def run(self, name, prompt, **options):
        return None


class MockTaskQueue:
    def __init__(self):
        self.tasks = {}

    def enqueue(self, task):
        self.tasks[task.id] = task

    def dequeue(self, workstream):
        for task_id, task in list(self.tasks.items()):
            if task.workstream == workstream:
                del self.tasks[task_id]
                return task
        raise LookupError("no tasks for workstream")

    def peek(self, workstream):
        for task in self.tasks.values():
            if task.workstream == workstream:
                return task
        raise LookupError("no tasks for workstream")

    def size(self):
        return len(self.tasks)

    def size_by_workstream(self, workstream):
        return sum(1 for t in self.tasks.values() if t.workstream == workstream)

    def contains(self, task_id):
        return task_id in self.tasks

    def clear(self):
        self.tasks = {}


def make_orchestrator(tasks=(), agents=(), config=None, **kwargs):
    task_mgr = MockTaskManager()
    for task in tasks:
        task_mgr.add_task(task)
    agent_mgr = MockAgentManager()
    for agent in agents:
        agent_mgr.add_agent(agent)
    task_queue = MockTaskQueue()
    orch = Orchestrator(task_mgr, agent_mgr, task_queue, config or default_orchestrator_config(), **kwargs)
    return orch, task_mgr, agent_mgr, task_queue


def fast_config(**overrides):
    config = default_orchestrator_config()
    config.poll_interval = timedelta(milliseconds=10)
    for key, value in overrides.items():
        setattr(config, key, value)
    return config


def wait_for(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


class Background:
    def __init__(self, orch):
        self.orch = orch
        self.cancel = threading.Event()
        self.error = None
        self.thread = threading.Thread(target=self._run, daemon=True)

    def _run(self):
        try:
            self.orch.start(self.cancel)
        except OrchestratorError as exc:
            self.error = exc

    def __enter__(self):
        self.thread.start()
        assert wait_for(lambda: self.orch.status == OrchestratorStatus.RUNNING)
        return self

    def __exit__(self, *exc_info):
        self.cancel.set()
        self.thread.join(timeout=2)


def test_new_orchestrator_starts_stopped():
    orch, *_ = make_orchestrator()
    assert orch.status == OrchestratorStatus.STOPPED
    assert orch.get_status().status == OrchestratorStatus.STOPPED


def test_start_with_no_tasks_errors():
    orch, *_ = make_orchestrator()
    with pytest.raises(OrchestratorError, match="no tasks found"):
        orch.start(threading.Event())
    assert orch.status == OrchestratorStatus.STOPPED


def test_start_already_running_errors():
    config = fast_config()
    orch, *_ = make_orchestrator(
        tasks=[Task(id="T1", workstream="backend", status=TaskStatus.PENDING)], config=config
    )
    with Background(orch):
        with pytest.raises(OrchestratorError, match="already running"):
            orch.start()


def test_start_rejects_dependency_cycle():
    class CyclicResolver:
        def is_blocked(self, task_id):
            return False

        def detect_cycle(self):
            return ["A", "B", "A"]

    orch, *_ = make_orchestrator(
        tasks=[Task(id="A", status=TaskStatus.PENDING)], resolver=CyclicResolver()
    )
    with pytest.raises(OrchestratorError, match="dependency cycle"):
        orch.start(threading.Event())
    assert orch.status == OrchestratorStatus.STOPPED


def test_get_progress():
    orch, *_ = make_orchestrator(
        tasks=[
            Task(id="T1", workstream="backend", status=TaskStatus.COMPLETE),
            Task(id="T2", workstream="backend", status=TaskStatus.PENDING),
            Task(id="T3", workstream="frontend", status=TaskStatus.IN_PROGRESS),
        ]
    )
    progress = orch.get_progress()
    assert progress.total == 3
    assert progress.complete == 1
    assert progress.in_progress == 1
    assert progress.pending == 1
    assert 30 <= progress.percentage <= 35
    assert progress.by_workstream["backend"].total == 2
    assert progress.by_workstream["backend"].complete == 1
    assert progress.by_workstream["frontend"].complete == 0


def test_get_progress_empty():
    orch, *_ = make_orchestrator()
    progress = orch.get_progress()
    assert progress.total == 0
    assert progress.percentage == 0.0


def test_status_while_running():
    config = fast_config()
    orch, *_ = make_orchestrator(
        tasks=[Task(id="T1", workstream="backend", status=TaskStatus.PENDING)],
        agents=[Agent(name="be-1", workstream="frontend", status="idle")],
        config=config,
    )
    with Background(orch):
        status = orch.get_status()
        assert status.status == OrchestratorStatus.RUNNING
        assert status.agent_count == 1
        assert status.idle_agents == 1
        assert status.task_stats.total == 1
        assert status.uptime >= timedelta(0)


def test_stop_not_running_errors():
    orch, *_ = make_orchestrator()
    with pytest.raises(OrchestratorError, match="not running"):
        orch.stop()


def test_stop_stops_workstream_agents():
    config = fast_config()
    orch, _, agent_mgr, _ = make_orchestrator(
        tasks=[Task(id="T1", workstream="backend", status=TaskStatus.COMPLETE)],
        agents=[
            Agent(name="be-1", workstream="backend", status="working"),
            Agent(name="loose", status="working"),
        ],
        config=config,
    )
    with Background(orch):
        orch.stop()
        assert orch.status == OrchestratorStatus.STOPPED
    assert agent_mgr.agents["be-1"].status == "stopped"
    assert agent_mgr.agents["loose"].status == "working"


@pytest.mark.parametrize(
    "statuses, complete",
    [
        ([TaskStatus.COMPLETE, TaskStatus.COMPLETE], True),
        ([TaskStatus.COMPLETE, TaskStatus.PENDING], False),
        ([TaskStatus.COMPLETE, TaskStatus.IN_PROGRESS], False),
        ([TaskStatus.COMPLETE, TaskStatus.FAILED], True),
    ],
    ids=["all complete", "some pending", "some in progress", "failed tasks count as complete"],
)
def test_is_complete(statuses, complete):
    tasks = [Task(id=f"T{i}", status=status) for i, status in enumerate(statuses, 1)]
    orch, *_ = make_orchestrator(tasks=tasks)
    assert orch.is_complete() is complete


def test_default_orchestrator_config():
    config = default_orchestrator_config()
    assert config.poll_interval == timedelta(seconds=10)
    assert config.max_agents_per_workstream == 1
    assert config.auto_spawn_agents is True
    assert config.stop_when_complete is False
    assert config.workstream_concurrency == {}


def test_config_workstream_concurrency_fallbacks():
    config = OrchestratorConfig(max_agents_per_workstream=3, workstream_concurrency={"api": 5, "web": 0})
    assert config.get_workstream_concurrency("api") == 5
    assert config.get_workstream_concurrency("web") == 3
    assert config.get_workstream_concurrency("other") == 3
    config.max_agents_per_workstream = 0
    assert config.get_workstream_concurrency("other") == 1


def test_set_workstream_concurrency_updates_config_and_scheduler():
    orch, *_ = make_orchestrator()
    orch.set_workstream_concurrency("api", 4)
    assert orch.config.workstream_concurrency["api"] == 4
    assert orch.workstream_scheduler.get_workstream_concurrency("api") == 4


def test_events_queue_starts_empty():
    orch, *_ = make_orchestrator()
    assert orch.events.qsize() == 0


def test_count_idle_agents():
    agents = [
        Agent(name="a1", status="idle"),
        Agent(name="a2", status="working"),
        Agent(name="a3", status="idle"),
        Agent(name="a4", status="stopped"),
    ]
    assert count_idle_agents(agents) == 2


def test_count_idle_agents_empty():
    assert count_idle_agents(None) == 0


def test_handle_event_task_completed_unassigns():
    balancer = Balancer()
    balancer.track_assignment("be-1")
    orch, task_mgr, *_ = make_orchestrator(
        tasks=[Task(id="T1", workstream="backend", status=TaskStatus.IN_PROGRESS, assigned_to="be-1")],
        balancer=balancer,
    )
    orch.handle_event(Event(type=EventType.TASK_COMPLETED, task_id="T1", agent_name="be-1"))
    assert task_mgr.get("T1").assigned_to == ""
    assert balancer.get_workload("be-1") == 0


def test_handle_event_completed_unblocks_blocked_tasks():
    orch, task_mgr, _, task_queue = make_orchestrator(
        tasks=[
            Task(id="T1", workstream="backend", status=TaskStatus.COMPLETE),
            Task(id="T2", workstream="backend", status=TaskStatus.BLOCKED),
        ]
    )
    orch.handle_event(Event(type=EventType.TASK_COMPLETED, task_id="T1"))
    assert task_mgr.get("T2").status == TaskStatus.PENDING
    assert task_queue.contains("T2")


def test_handle_event_blocked_updates_status():
    orch, task_mgr, *_ = make_orchestrator(tasks=[Task(id="T1", status=TaskStatus.PENDING)])
    orch.handle_event(Event(type=EventType.TASK_BLOCKED, task_id="T1"))
    assert task_mgr.get("T1").status == TaskStatus.BLOCKED


def test_handle_event_failed_marks_workstream_failed():
    orch, *_ = make_orchestrator(tasks=[Task(id="T1", workstream="backend", status=TaskStatus.PENDING)])
    orch.workstream_scheduler.initialize()
    orch.handle_event(Event(type=EventType.TASK_FAILED, task_id="T1", message="boom"))
    state = orch.workstream_scheduler.get_workstream_state("backend")
    assert state.status == WorkstreamStatus.FAILED


def test_running_loop_assigns_task_to_idle_agent():
    config = fast_config()
    orch, task_mgr, _, task_queue = make_orchestrator(
        tasks=[Task(id="T1", workstream="backend", status=TaskStatus.PENDING)],
        agents=[Agent(name="be-1", workstream="backend", status="idle")],
        config=config,
    )
    with Background(orch) as bg:
        assert wait_for(lambda: task_mgr.get("T1").assigned_to == "be-1")
    assert isinstance(bg.error, OrchestratorError)
    assert task_mgr.get("T1").status == TaskStatus.ASSIGNED
    assert task_queue.size() == 0


def test_failed_runner_fails_workstream():
    class FailingRunner:
        def __init__(self):
            self.calls = []

        def run_task(self, task_id, agent_name):
            self.calls.append((task_id, agent_name))
            raise RuntimeError("boom")

    runner = FailingRunner()
    config = fast_config()
    orch, *_ = make_orchestrator(
        tasks=[Task(id="T1", workstream="backend", status=TaskStatus.PENDING)],
        agents=[Agent(name="be-1", workstream="backend", status="idle")],
        config=config,
        runner=runner,
    )
    with Background(orch):
        assert wait_for(
            lambda: orch.workstream_scheduler.get_workstream_state("backend").status
            == WorkstreamStatus.FAILED
        )
    assert runner.calls == [("T1", "be-1")]


def test_stop_when_complete_returns():
    config = fast_config(stop_when_complete=True)
    orch, *_ = make_orchestrator(
        tasks=[Task(id="T1", workstream="backend", status=TaskStatus.COMPLETE)], config=config
    )
    cancel = threading.Event()
    timer = threading.Timer(2.0, cancel.set)
    timer.start()
    try:
        result = orch.start(cancel)
    finally:
        timer.cancel()
    assert result is None
    assert cancel.is_set() is False
    assert orch.status == OrchestratorStatus.RUNNING