"""
Task tracker storage backend (flat JSON files).

Keeps tasks and categories in memory and rewrites the snapshot files on every
mutation:

    <data_dir>/tasks.json       pretty-printed array of task objects
    <data_dir>/categories.json  pretty-printed array of {"name": ...}
    <data_dir>/tasks.seq        {"last_id": N}, highest id ever issued

Every read-modify-write-persist sequence runs under one lock. Files are written
to a temp file and renamed into place; the in-memory state only changes once
all files of a mutation are on disk.
"""
import json
import logging
import os
import threading
from dataclasses import replace
from pathlib import Path
from typing import Any, List, Optional, Tuple

from .errors import NotFound, StorageUnavailable, ValidationSkipped
from .schema import Category, Task, normalize_status, utc_now
from .store import TaskRepository

logger = logging.getLogger(__name__)


class JSONRepository(TaskRepository):
    """JSON-snapshot store for tasks and categories."""

    backend = "json"

    def __init__(self, data_dir: str = None):
        """Initialize store and load any existing snapshot."""
        super().__init__()
        if data_dir is None:
            data_dir = "data"
        self.data_dir = Path(data_dir).expanduser()
        self.tasks_path = self.data_dir / "tasks.json"
        self.categories_path = self.data_dir / "categories.json"
        self.seq_path = self.data_dir / "tasks.seq"

        self._lock = threading.Lock()
        self._tasks: List[Task] = []
        self._categories: List[Category] = []
        self._last_id = 0
        self._rejected_tasks: List[Any] = []
        self._rejected_categories: List[Any] = []

        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageUnavailable(f"Cannot create {self.data_dir}: {e}",
                                     backend=self.backend) from e
        self._load()

    # ── Loading ──

    def _read_json(self, path: Path, default: Any) -> Any:
        if not path.exists():
            return default
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            logger.error(f"Cannot read {path}: {e}")
            raise StorageUnavailable(f"Cannot read {path}: {e}", backend=self.backend) from e

    def _load(self):
        """Load the snapshot files, dropping malformed records from the lists.

        Records that fail to parse are kept verbatim and written back with
        every later snapshot, and their ids still count towards the sequence.
        """
        raw_tasks = self._read_json(self.tasks_path, [])
        raw_categories = self._read_json(self.categories_path, [])
        raw_seq = self._read_json(self.seq_path, {})

        if not isinstance(raw_tasks, list) or not isinstance(raw_categories, list):
            raise StorageUnavailable(
                f"Snapshot in {self.data_dir} is not a JSON array", backend=self.backend
            )

        seen_ids = set()

        def parse_task(record):
            task = Task.from_dict(record)
            if task.id in seen_ids:
                raise ValidationSkipped(f"duplicate task id {task.id} in {self.tasks_path}")
            seen_ids.add(task.id)
            return task

        rejected_tasks: List[Any] = []
        tasks = list(self._scan(raw_tasks, parse_task, "task", rejected_tasks))
        tasks.sort(key=lambda t: t.id)

        rejected_categories: List[Any] = []
        categories: List[Category] = []
        seen_names = set()
        for category in self._scan(raw_categories, Category.from_dict, "category",
                                   rejected_categories):
            if category.name not in seen_names:
                seen_names.add(category.name)
                categories.append(category)

        last_id = 0
        if isinstance(raw_seq, dict):
            try:
                last_id = int(raw_seq.get("last_id", 0))
            except (TypeError, ValueError):
                logger.warning(f"Ignoring unreadable sequence file {self.seq_path}")
        last_id = max([last_id] + [t.id for t in tasks]
                      + [self._raw_id(r) for r in rejected_tasks])

        self._tasks = tasks
        self._categories = categories
        self._last_id = last_id
        self._rejected_tasks = rejected_tasks
        self._rejected_categories = rejected_categories
        logger.info(
            f"Loaded {len(tasks)} tasks and {len(categories)} categories "
            f"from {self.data_dir} (last id {last_id}, "
            f"{len(rejected_tasks) + len(rejected_categories)} malformed kept on disk)"
        )

    @staticmethod
    def _raw_id(record: Any) -> int:
        """Best-effort id of a record that failed to parse, 0 if it has none."""
        if not isinstance(record, dict):
            return 0
        try:
            return int(record.get("id"))
        except (TypeError, ValueError):
            return 0

    # ── Persisting ──

    def _write_json(self, path: Path, data: Any) -> None:
        """Atomic write: write to temp, then rename."""
        tmp_path = path.with_name(path.name + ".tmp")
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
                f.write("\n")
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, path)
        except OSError:
            tmp_path.unlink(missing_ok=True)
            raise

    def _snapshot(self, tasks: Optional[List[Task]] = None,
                  categories: Optional[List[Category]] = None,
                  last_id: Optional[int] = None) -> List[Tuple[Path, Any]]:
        files = []
        if last_id is not None:
            files.append((self.seq_path, {"last_id": last_id}))
        if tasks is not None:
            files.append((self.tasks_path, [t.to_dict() for t in tasks] + self._rejected_tasks))
        if categories is not None:
            files.append((self.categories_path,
                          [c.to_dict() for c in categories] + self._rejected_categories))
        return files

    def _commit(self, action: str, tasks: Optional[List[Task]] = None,
                categories: Optional[List[Category]] = None,
                last_id: Optional[int] = None) -> None:
        """Write the changed files, then swap them into memory.

        Must be called with the lock held. If any file fails, the files
        already written are restored from the current in-memory state and
        StorageUnavailable is raised.
        """
        written = []
        try:
            for path, data in self._snapshot(tasks, categories, last_id):
                self._write_json(path, data)
                written.append(path)
        except OSError as e:
            logger.error(f"Storage error during {action}: {e}")
            self._restore(written)
            raise StorageUnavailable(f"Storage error during {action}: {e}",
                                     backend=self.backend) from e

        if tasks is not None:
            self._tasks = tasks
        if categories is not None:
            self._categories = categories
        if last_id is not None:
            self._last_id = last_id

    def _restore(self, paths: List[Path]) -> None:
        previous = dict(self._snapshot(self._tasks, self._categories, self._last_id))
        for path in paths:
            try:
                self._write_json(path, previous[path])
            except OSError as e:
                logger.error(f"Could not restore {path} after failed write: {e}")

    # ── Reads ──

    def list_tasks(self) -> List[Task]:
        """All tasks in id order."""
        with self._lock:
            return [replace(t) for t in self._tasks]

    def list_categories(self) -> List[Category]:
        """All categories in insertion order."""
        with self._lock:
            return [replace(c) for c in self._categories]

    def get_task(self, task_id: int) -> Task:
        with self._lock:
            return replace(self._tasks[self._index(task_id)])

    def _index(self, task_id: int) -> int:
        for i, task in enumerate(self._tasks):
            if task.id == task_id:
                return i
        raise NotFound(task_id)

    # ── Task writes ──

    def create_task(self, title: str, category: str, description: str,
                    status: Optional[str] = None) -> Task:
        with self._lock:
            task = Task(
                id=self._last_id + 1,
                title=title or "",
                category=category or "",
                description=description or "",
                status=normalize_status(status),
                created_at=utc_now(),
            )
            self._commit("create task", tasks=self._tasks + [task], last_id=task.id)
        logger.info(f"Task created: id={task.id} title={task.title!r} status={task.status}")
        return replace(task)

    def update_task(self, task_id: int, title: str, category: str,
                    description: str, status: str) -> None:
        """Replace the mutable fields. An empty status keeps the current one."""
        with self._lock:
            i = self._index(task_id)
            current = self._tasks[i]
            updated = replace(
                current,
                title=title or "",
                category=category or "",
                description=description or "",
                status=normalize_status(status, fallback=current.status),
            )
            tasks = list(self._tasks)
            tasks[i] = updated
            self._commit("update task", tasks=tasks)
        logger.info(f"Task updated: id={task_id}")

    def delete_task(self, task_id: int) -> None:
        """Delete a task. Missing ids are ignored."""
        with self._lock:
            tasks = [t for t in self._tasks if t.id != task_id]
            if len(tasks) == len(self._tasks):
                return
            self._commit("delete task", tasks=tasks)
        logger.info(f"Task deleted: id={task_id}")

    def set_task_status(self, task_id: int, status: str) -> None:
        status = normalize_status(status)
        with self._lock:
            i = self._index(task_id)
            tasks = list(self._tasks)
            tasks[i] = replace(tasks[i], status=status)
            self._commit("set task status", tasks=tasks)
        logger.info(f"Task status changed: id={task_id} status={status}")

    # ── Category writes ──

    def create_category(self, name: str) -> None:
        if self._blank(name):
            return
        with self._lock:
            if any(c.name == name for c in self._categories):
                return
            self._commit("create category", categories=self._categories + [Category(name)])
        logger.info(f"Category added: {name!r}")

    def delete_category(self, name: str) -> None:
        """Delete a category. Tasks keep the (now orphaned) name."""
        with self._lock:
            categories = [c for c in self._categories if c.name != name]
            if len(categories) == len(self._categories):
                return
            self._commit("delete category", categories=categories)
        logger.info(f"Category deleted: {name!r}")

    def rename_category(self, old_name: str, new_name: str) -> None:
        """Rename a category and retag its tasks; both files or neither."""
        if self._blank(old_name) or self._blank(new_name) or old_name == new_name:
            return
        with self._lock:
            if any(c.name == new_name for c in self._categories):
                # Renaming onto an existing name merges the two
                categories = [c for c in self._categories if c.name != old_name]
            else:
                categories = [
                    Category(new_name) if c.name == old_name else c
                    for c in self._categories
                ]
            retagged = 0
            tasks = []
            for task in self._tasks:
                if task.category == old_name:
                    task = replace(task, category=new_name)
                    retagged += 1
                tasks.append(task)
            self._commit("rename category", tasks=tasks, categories=categories)
        logger.info(f"Category renamed: {old_name!r} -> {new_name!r} ({retagged} tasks retagged)")

