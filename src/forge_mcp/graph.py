"""Task dependency analysis over ``depends_on`` edges.

An edge ``A -> B`` means task A depends on B. Only task nodes contribute
edges; references to other node types or to missing ids are inert.
"""

from __future__ import annotations

from collections import deque

from .exceptions import CycleError
from .models import Node, Project, TaskNode


def _tasks(project: Project) -> dict[str, TaskNode]:
    return {
        node_id: project.nodes[node_id]
        for node_id in sorted(project.nodes)
        if project.nodes[node_id].type == "task"
    }


def _is_complete_task(node: Node | None) -> bool:
    return node is None or node.type != "task" or node.status == "complete"


def would_create_cycle(project: Project, node_id: str, dependency_id: str) -> bool:
    """True if adding ``node_id -> dependency_id`` would close a cycle."""
    if node_id == dependency_id:
        return True
    visited: set[str] = set()
    stack = [dependency_id]
    while stack:
        current = stack.pop()
        if current == node_id:
            return True
        if current in visited:
            continue
        visited.add(current)
        node = project.nodes.get(current)
        if node is not None and node.type == "task":
            stack.extend(node.depends_on)
    return False


def get_dependencies(project: Project, node_id: str) -> list[Node]:
    """Nodes that ``node_id`` directly depends on (missing ids are dropped)."""
    node = project.nodes.get(node_id)
    if node is None or node.type != "task":
        return []
    return [project.nodes[dep] for dep in node.depends_on if dep in project.nodes]


def get_dependents(project: Project, node_id: str) -> list[TaskNode]:
    """Tasks that directly depend on ``node_id``."""
    return [task for task in _tasks(project).values() if node_id in task.depends_on]


def get_transitive_dependencies(project: Project, node_id: str) -> list[str]:
    """All ids reachable from ``node_id`` along ``depends_on``, nearest first."""
    seen: list[str] = []
    queue = deque([node_id])
    while queue:
        node = project.nodes.get(queue.popleft())
        if node is None or node.type != "task":
            continue
        for dep in node.depends_on:
            if dep != node_id and dep not in seen and dep in project.nodes:
                seen.append(dep)
                queue.append(dep)
    return seen


def get_blocked_tasks(project: Project) -> list[TaskNode]:
    """Incomplete tasks with at least one incomplete task dependency."""
    return [
        task
        for task in _tasks(project).values()
        if task.status != "complete"
        and any(not _is_complete_task(project.nodes.get(dep)) for dep in task.depends_on)
    ]


def get_would_unblock(project: Project, task_id: str) -> list[TaskNode]:
    """Tasks whose only remaining incomplete dependency is ``task_id``."""
    unblocked = []
    for task in get_dependents(project, task_id):
        if task.status == "complete":
            continue
        pending = {dep for dep in task.depends_on if not _is_complete_task(project.nodes.get(dep))}
        if pending == {task_id}:
            unblocked.append(task)
    return unblocked


def find_cycle(project: Project, task_ids: set[str] | None = None) -> list[str] | None:
    """Return one cycle as ``[a, b, ..., a]`` or None.

    ``task_ids`` restricts the search to a subset of tasks.
    """
    tasks = _tasks(project)
    if task_ids is not None:
        tasks = {k: v for k, v in tasks.items() if k in task_ids}
    state: dict[str, int] = {}  # 1 = on stack, 2 = done

    for start in tasks:
        if start in state:
            continue
        path = [start]
        iters = [iter(tasks[start].depends_on)]
        state[start] = 1
        while iters:
            dep = next(iters[-1], None)
            if dep is None:
                state[path.pop()] = 2
                iters.pop()
                continue
            if dep not in tasks:
                continue
            if state.get(dep) == 1:
                return path[path.index(dep):] + [dep]
            if dep not in state:
                state[dep] = 1
                path.append(dep)
                iters.append(iter(tasks[dep].depends_on))
    return None


def topological_sort(project: Project) -> list[str]:
    """Task ids ordered so every task follows its dependencies.

    Raises CycleError if the task graph is cyclic.
    """
    tasks = _tasks(project)
    indegree = {task_id: 0 for task_id in tasks}
    dependents: dict[str, list[str]] = {task_id: [] for task_id in tasks}
    for task_id, task in tasks.items():
        for dep in dict.fromkeys(task.depends_on):
            if dep in tasks and dep != task_id:
                dependents[dep].append(task_id)
                indegree[task_id] += 1
            elif dep == task_id:
                raise CycleError([task_id, task_id])

    queue = deque(task_id for task_id, degree in indegree.items() if degree == 0)
    order = []
    while queue:
        current = queue.popleft()
        order.append(current)
        for nxt in dependents[current]:
            indegree[nxt] -= 1
            if indegree[nxt] == 0:
                queue.append(nxt)
    if len(order) != len(tasks):
        raise CycleError(find_cycle(project) or sorted(set(tasks) - set(order)))
    return order


def get_critical_path(project: Project) -> list[TaskNode]:
    """Longest chain of incomplete tasks linked by ``depends_on``.

    The result starts at the task nothing incomplete depends on and ends at
    the task with no incomplete dependencies. Raises CycleError when the
    incomplete tasks contain a cycle.
    """
    incomplete = {k: v for k, v in _tasks(project).items() if v.status != "complete"}
    if not incomplete:
        return []

    dependents: dict[str, list[str]] = {task_id: [] for task_id in incomplete}
    indegree = dict.fromkeys(incomplete, 0)
    for task_id, task in incomplete.items():
        for dep in dict.fromkeys(task.depends_on):
            if dep in incomplete:
                dependents[dep].append(task_id)
                indegree[task_id] += 1

    dist = dict.fromkeys(incomplete, 1)
    prev: dict[str, str | None] = dict.fromkeys(incomplete)
    queue = deque(task_id for task_id, degree in indegree.items() if degree == 0)
    processed = 0
    while queue:
        current = queue.popleft()
        processed += 1
        for nxt in dependents[current]:
            if dist[current] + 1 > dist[nxt]:
                dist[nxt] = dist[current] + 1
                prev[nxt] = current
            indegree[nxt] -= 1
            if indegree[nxt] == 0:
                queue.append(nxt)

    if processed != len(incomplete):
        cycle = find_cycle(project, set(incomplete)) or sorted(k for k, d in indegree.items() if d > 0)
        raise CycleError(cycle, f"Cannot compute critical path, dependency cycle: {' -> '.join(cycle)}")

    end = max(incomplete, key=lambda task_id: dist[task_id])
    path = []
    current: str | None = end
    while current is not None:
        path.append(incomplete[current])
        current = prev[current]
    return path
