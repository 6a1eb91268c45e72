from tanuki.events import Task, TaskStatus
from tanuki.interfaces import TaskQueue, TaskStats


class _ListQueue:
    def __init__(self):
        self.items = []

    def enqueue(self, task):
        self.items.append(task)

    def dequeue(self, workstream):
        for task in self.items:
            if task.get_workstream() == workstream:
                self.items.remove(task)
                return task
        raise LookupError(workstream)

    def peek(self, workstream):
        for task in self.items:
            if task.get_workstream() == workstream:
                return task
        raise LookupError(workstream)

    def size(self):
        return len(self.items)

    def size_by_workstream(self, workstream):
        return sum(1 for t in self.items if t.get_workstream() == workstream)

    def contains(self, task_id):
        return any(t.id == task_id for t in self.items)

    def clear(self):
        self.items.clear()


def test_stats_from_tasks_counts_everything():
    tasks = [
        Task(id="T1", workstream="backend", status=TaskStatus.COMPLETE, priority="high"),
        Task(id="T2", workstream="backend", status=TaskStatus.PENDING, priority="medium"),
        Task(id="T3", workstream="frontend", status=TaskStatus.PENDING, priority="medium"),
    ]
    stats = TaskStats.from_tasks(tasks)
    assert stats.total == len(tasks)
    assert stats.by_status == {TaskStatus.COMPLETE: 1, TaskStatus.PENDING: 2}
    assert stats.by_workstream == {"backend": 2, "frontend": 1}
    assert stats.by_priority == {"high": 1, "medium": 2}


def test_stats_default_workstream_used_for_unnamed_tasks():
    stats = TaskStats.from_tasks([Task(id="T1")])
    assert stats.by_workstream == {"main": 1}


def test_stats_from_no_tasks_is_empty():
    stats = TaskStats.from_tasks([])
    assert stats.total == 0
    assert stats.by_status == {}
    assert sum(stats.by_priority.values()) == 0


def test_queue_implementation_satisfies_protocol_and_works():
    queue = _ListQueue()
    assert isinstance(queue, TaskQueue)
    queue.enqueue(Task(id="T1", workstream="api"))
    assert queue.contains("T1")
    assert queue.dequeue("api").id == "T1"
    assert queue.size() == 0