# tanuki

`tanuki` is a library for coordinating coding agents that work through tasks
grouped into workstreams. It has no runtime dependencies. It is made up of
these modules:

- **`tanuki.state`**: agent state saved to a JSON file.
  `FileStateManager` loads the file, or starts an empty state when the file
  does not exist. `set_agent` stamps `created_at` and `updated_at` and writes
  the file atomically, through a `.tmp` file that is then renamed into place.
  `get_agent` and `remove_agent` raise `AgentNotFoundError` for unknown names.
  `reconcile` asks a `ContainerChecker` that you supply about each agent's
  container. A missing container marks the agent `error`. An idle or working
  agent whose container has stopped becomes `stopped`. A stopped agent whose
  container is running again becomes `idle`. `WorkstreamSession` tracks a turn
  budget and reports when a context reset is due.
- **`tanuki.events`**: the `Task` record, `TaskStatus`, `Event` and
  `EventType`. `status_to_event_type` maps a status to the event that
  announces it. A task with no workstream belongs to `"main"`.
- **`tanuki.balancer`**: `Balancer` picks the least-loaded idle agent in a
  task's workstream and keeps per-agent workload counts. It raises
  `NoAgentAvailableError` when no agent fits and `ValueError` when the task is
  `None`. `BalancerWithStrategy` can use `Strategy.ROUND_ROBIN`, which cycles
  per workstream. `Strategy.RANDOM` always picks the first idle candidate.
- **`tanuki.logwriter`**: `LogWriter` creates timestamped task and validation
  log files under `<project>/.tanuki/logs`. Each call returns the open file and
  its path relative to the project root. `clean_old_logs` removes files older
  than a given `timedelta`.
- **`tanuki.interfaces`**: the `TaskManager`, `TaskQueue` and `AgentManager`
  protocols, and the `TaskStats` dataclass with `TaskStats.from_tasks`.
- **`tanuki.workstream`**: `WorkstreamScheduler` groups scanned tasks by
  workstream and tracks each one as pending, active, completed or failed. A
  single failed task fails its whole workstream.
- **`tanuki.project`**: `ProjectManager` groups tasks into project folders.
  Each project's description is taken from the first paragraph of its
  `README.md`. `create_project` makes a new folder with a README template.
  `agent_name` and `worktree_branch` build the standard names.
- **`tanuki.orchestrator`**: `Orchestrator` ties a task manager, an agent
  manager and a task queue together. It queues pending tasks that are not
  blocked and hands them to idle agents of the matching workstream. It reacts
  to completion, failure and blocking events, and reports `get_status()` and
  `get_progress()`.

## Installation

```
pip install .
```

## Examples

Choose an agent for a task:

```python
from tanuki.balancer import Balancer, BalancerAgent
from tanuki.events import Task

balancer = Balancer()
balancer.track_assignment("api-1")

agents = [
    BalancerAgent(name="api-1", workstream="api", status="idle"),
    BalancerAgent(name="api-2", workstream="api", status="idle"),
]
chosen = balancer.assign_task(Task(id="T1", workstream="api"), agents)
print(chosen.name)  # api-2, the least loaded
```

Keep agent state across runs:

```python
from tanuki.state import Agent, AgentStatus, FileStateManager

manager = FileStateManager(".tanuki/state/agents.json")
manager.set_agent(Agent(name="worker", status=AgentStatus.IDLE))
print(manager.get_agent("worker").created_at)
```

Build the standard names:

```python
from tanuki.project import agent_name, worktree_branch

agent_name("Auth Feature", "api")       # "auth-feature-api"
worktree_branch("Auth Feature", "api")  # "tanuki/auth-feature-api"
```

Run the orchestrator with your own implementations of the protocols in
`tanuki.interfaces`:

```python
import threading
from tanuki.orchestrator import Orchestrator, default_orchestrator_config

config = default_orchestrator_config()
config.stop_when_complete = True

orchestrator = Orchestrator(task_manager, agent_manager, task_queue, config)
cancel = threading.Event()
orchestrator.start(cancel)  # returns once every task is finished
```

`start` raises `OrchestratorError` in three cases: when the orchestrator is
already started, when there are no tasks, and when `cancel` is set. If a
`runner` is given, each assigned task runs on a background thread. The thread
puts a completion or failure event on `orchestrator.events`.

## What the package does not do

- It does not read or write task files. There is no task manager, task queue
  or dependency resolver in the package, so you supply objects that follow
  the protocols in `tanuki.interfaces`. A resolver, if you pass one, needs
  `is_blocked` and `detect_cycle`.
- It does not manage containers or Git worktrees. `AgentManager` and
  `ContainerChecker` are protocols that you implement.
- The orchestrator does not create agents. With `auto_spawn_agents` set, it
  only works out and logs the agent names each workstream would need. It then
  assigns tasks to the agents your agent manager already lists.
- There is no command-line program.

## Running the tests

```
pip install ".[test]"
pytest
```