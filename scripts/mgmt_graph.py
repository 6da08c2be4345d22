"""
Named task graph with a sequential topological runner.

Tasks declare their prerequisites explicitly. Running a target runs its
prerequisites first, each task at most once, and stops at the first failure.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from mgmt_config import ConfigError
from mgmt_run import TaskError, log_error, log_info, require_commands


class TaskState(Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class Task:
    name: str
    func: Callable
    deps: Tuple[str, ...] = ()
    needs_config: bool = False
    tools: Tuple[str, ...] = ()
    help: str = ""


@dataclass
class TaskGraph:
    tasks: Dict[str, Task] = field(default_factory=dict)

    def add(self, task: Task) -> None:
        if task.name in self.tasks:
            raise ValueError(f"Task already registered: {task.name}")
        self.tasks[task.name] = task

    def plan(self, targets: Iterable[str]) -> List[Task]:
        """Resolve targets and their prerequisites into execution order.

        Depth first: prerequisites come before dependents and requested
        targets keep their order. Raises ConfigError for unknown names and
        cycles.
        """
        order: List[Task] = []
        done = set()
        visiting = []

        def visit(name: str) -> None:
            if name in done:
                return
            if name in visiting:
                cycle = " -> ".join(visiting[visiting.index(name):] + [name])
                raise ConfigError(f"Task dependency cycle: {cycle}")
            task = self.tasks.get(name)
            if task is None:
                available = ", ".join(sorted(self.tasks))
                raise ConfigError(f"Unknown task: {name}. Available: {available}")
            visiting.append(name)
            for dep in task.deps:
                visit(dep)
            visiting.pop()
            done.add(name)
            order.append(task)

        for target in targets:
            visit(target)
        return order


@dataclass
class RunResult:
    states: Dict[str, TaskState]
    error: Optional[TaskError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def run_plan(plan: List[Task], ctx, check_tools: bool = True) -> RunResult:
    """Run planned tasks in order, stopping at the first failure.

    ``ctx`` is handed to every task function. A failed task leaves its
    dependents pending.
    """
    states = {task.name: TaskState.PENDING for task in plan}
    for task in plan:
        log_info(f"▶ {task.name}")
        try:
            if check_tools:
                require_commands(task.tools)
            task.func(ctx)
        except TaskError as e:
            states[task.name] = TaskState.FAILED
            log_error(f"{task.name} failed: {e}")
            return RunResult(states, e)
        states[task.name] = TaskState.SUCCEEDED
    return RunResult(states)
