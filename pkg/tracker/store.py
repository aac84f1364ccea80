"""
Task tracker storage backend (SQLite).

Provides CRUD operations for tasks and categories, plus the category rename
that cascades to every task pointing at the old name.
"""
import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, TypeVar

from .errors import NotFound, StorageUnavailable, ValidationSkipped
from .schema import Category, Task, format_timestamp, normalize_status, utc_now

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TaskRepository:
    """Interface shared by the SQLite and JSON backends.

    Reads return plain records, writes raise NotFound / StorageUnavailable.
    Malformed stored records are dropped from list results. ``skipped_records``
    is the number of such records seen by the most recent scan of each kind,
    so re-reading the same bad row does not inflate it.
    """

    backend = "abstract"

    def __init__(self):
        self._skipped: Dict[str, int] = {}

    @property
    def skipped_records(self) -> int:
        return sum(self._skipped.values())

    # ── Reads ──

    def list_tasks(self) -> List[Task]:
        raise NotImplementedError

    def list_categories(self) -> List[Category]:
        raise NotImplementedError

    def get_task(self, task_id: int) -> Task:
        raise NotImplementedError

    # ── Writes ──

    def create_task(self, title: str, category: str, description: str,
                    status: Optional[str] = None) -> Task:
        raise NotImplementedError

    def update_task(self, task_id: int, title: str, category: str,
                    description: str, status: str) -> None:
        raise NotImplementedError

    def delete_task(self, task_id: int) -> None:
        raise NotImplementedError

    def set_task_status(self, task_id: int, status: str) -> None:
        raise NotImplementedError

    def create_category(self, name: str) -> None:
        raise NotImplementedError

    def delete_category(self, name: str) -> None:
        raise NotImplementedError

    def rename_category(self, old_name: str, new_name: str) -> None:
        raise NotImplementedError

    def close(self) -> None:
        pass

    def stats(self) -> Dict[str, Any]:
        """Record counts for the health endpoint."""
        return {
            "backend": self.backend,
            "tasks": len(self.list_tasks()),
            "categories": len(self.list_categories()),
            "skipped_records": self.skipped_records,
        }

    # ── Helpers ──

    def _scan(self, records: Iterable, parse: Callable[..., T], kind: str,
              rejected: Optional[list] = None) -> Iterator[T]:
        """Yield parsed records, skipping the malformed ones.

        Once exhausted, the number skipped replaces the previous count for
        ``kind``. Raw records that failed are appended to ``rejected``.
        """
        skipped = 0
        for record in records:
            try:
                yield parse(record)
            except ValidationSkipped as e:
                skipped += 1
                if rejected is not None:
                    rejected.append(record)
                logger.warning(f"Skipping malformed {kind} record ({self.backend}): {e}")
        self._skipped[kind] = skipped

    @staticmethod
    def _blank(name: Optional[str]) -> bool:
        return not name or not name.strip()


class SQLiteRepository(TaskRepository):
    """SQLite-backed store for tasks and categories."""

    backend = "sqlite"

    def __init__(self, db_path: str = None):
        """Initialize store and create tables if needed."""
        super().__init__()
        if db_path is None:
            db_path = str(Path("data") / "todo.db")
        self.db_path = str(Path(db_path).expanduser())
        try:
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageUnavailable(f"Cannot create directory for {self.db_path}: {e}",
                                     backend=self.backend) from e
        self._init_schema()

    def _connect(self) -> sqlite3.Connection:
        """Open a connection in WAL mode."""
        conn = sqlite3.connect(self.db_path, timeout=10)
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA journal_mode = WAL")
        except sqlite3.Error:
            conn.close()
            raise
        return conn

    @contextmanager
    def _session(self, action: str):
        """One connection, one transaction. Commit on success, roll back otherwise."""
        try:
            conn = self._connect()
        except sqlite3.Error as e:
            logger.error(f"Cannot open {self.db_path} ({action}): {e}")
            raise StorageUnavailable(f"Database unavailable: {e}", backend=self.backend) from e
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            logger.error(f"Database error during {action}: {e}")
            raise StorageUnavailable(f"Database error during {action}: {e}",
                                     backend=self.backend) from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_schema(self):
        """Create tables if they don't exist."""
        with self._session("init schema") as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS categories (
                    name TEXT PRIMARY KEY
                )
            """)
            # category is a soft reference: deleting a category leaves it in place
            conn.execute("""
                CREATE TABLE IF NOT EXISTS tasks (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    title TEXT,
                    category TEXT,
                    description TEXT,
                    status TEXT,
                    created_at TEXT
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_tasks_category ON tasks(category)")

    # ── Reads ──

    def list_tasks(self) -> List[Task]:
        """All tasks in id order."""
        with self._session("list tasks") as conn:
            rows = conn.execute(
                "SELECT id, title, category, description, status, created_at "
                "FROM tasks ORDER BY id"
            ).fetchall()
        return list(self._scan(rows, self._row_to_task, "task"))

    def list_categories(self) -> List[Category]:
        """All categories in insertion order."""
        with self._session("list categories") as conn:
            rows = conn.execute("SELECT name FROM categories ORDER BY rowid").fetchall()
        return list(self._scan(rows, self._row_to_category, "category"))

    def get_task(self, task_id: int) -> Task:
        """Retrieve a task by id."""
        with self._session("get task") as conn:
            row = conn.execute(
                "SELECT id, title, category, description, status, created_at "
                "FROM tasks WHERE id = ?",
                (task_id,)
            ).fetchone()
        if row is None:
            raise NotFound(task_id)
        return self._row_to_task(row)

    # ── Task writes ──

    def create_task(self, title: str, category: str, description: str,
                    status: Optional[str] = None) -> Task:
        """Insert a task. The id comes from AUTOINCREMENT, so it is never reused."""
        task = Task(
            id=0,
            title=title or "",
            category=category or "",
            description=description or "",
            status=normalize_status(status),
            created_at=utc_now(),
        )
        with self._session("create task") as conn:
            cur = conn.execute(
                "INSERT INTO tasks (title, category, description, status, created_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (task.title, task.category, task.description, task.status,
                 format_timestamp(task.created_at)),
            )
            task.id = cur.lastrowid
        logger.info(f"Task created: id={task.id} title={task.title!r} status={task.status}")
        return task

    def update_task(self, task_id: int, title: str, category: str,
                    description: str, status: str) -> None:
        """Replace the mutable fields. An empty status keeps the current one."""
        status = (status or "").strip()
        with self._session("update task") as conn:
            cur = conn.execute(
                "UPDATE tasks SET title = ?, category = ?, description = ?, "
                "status = CASE WHEN ? = '' THEN status ELSE ? END "
                "WHERE id = ?",
                (title or "", category or "", description or "", status, status, task_id),
            )
            if cur.rowcount == 0:
                raise NotFound(task_id)
        logger.info(f"Task updated: id={task_id}")

    def delete_task(self, task_id: int) -> None:
        """Delete a task. Missing ids are ignored."""
        with self._session("delete task") as conn:
            deleted = conn.execute("DELETE FROM tasks WHERE id = ?", (task_id,)).rowcount
        if deleted:
            logger.info(f"Task deleted: id={task_id}")

    def set_task_status(self, task_id: int, status: str) -> None:
        """Change only the status of a task."""
        status = normalize_status(status)
        with self._session("set task status") as conn:
            cur = conn.execute("UPDATE tasks SET status = ? WHERE id = ?", (status, task_id))
            if cur.rowcount == 0:
                raise NotFound(task_id)
        logger.info(f"Task status changed: id={task_id} status={status}")

    # ── Category writes ──

    def create_category(self, name: str) -> None:
        """Insert a category if it is not there yet."""
        if self._blank(name):
            return
        with self._session("create category") as conn:
            added = conn.execute(
                "INSERT OR IGNORE INTO categories (name) VALUES (?)", (name,)
            ).rowcount
        if added:
            logger.info(f"Category added: {name!r}")

    def delete_category(self, name: str) -> None:
        """Delete a category. Tasks keep the (now orphaned) name."""
        with self._session("delete category") as conn:
            deleted = conn.execute("DELETE FROM categories WHERE name = ?", (name,)).rowcount
        if deleted:
            logger.info(f"Category deleted: {name!r}")

    def rename_category(self, old_name: str, new_name: str) -> None:
        """Rename a category and retag its tasks in one transaction."""
        if self._blank(old_name) or self._blank(new_name) or old_name == new_name:
            return
        with self._session("rename category") as conn:
            # Take the write lock before reading so the existence check holds
            conn.execute("BEGIN IMMEDIATE")
            exists = conn.execute(
                "SELECT 1 FROM categories WHERE name = ?", (new_name,)
            ).fetchone()
            if exists:
                # Renaming onto an existing name merges the two
                conn.execute("DELETE FROM categories WHERE name = ?", (old_name,))
            else:
                conn.execute(
                    "UPDATE categories SET name = ? WHERE name = ?", (new_name, old_name)
                )
            cur = conn.execute(
                "UPDATE tasks SET category = ? WHERE category = ?", (new_name, old_name)
            )
            retagged = cur.rowcount
        logger.info(f"Category renamed: {old_name!r} -> {new_name!r} ({retagged} tasks retagged)")

    # ── Row conversion ──

    @staticmethod
    def _row_to_task(row: sqlite3.Row) -> Task:
        """Convert a database row to a Task."""
        return Task.from_dict(dict(row))

    @staticmethod
    def _row_to_category(row: sqlite3.Row) -> Category:
        return Category.from_dict(dict(row))
