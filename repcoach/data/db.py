from __future__ import annotations
import logging
import sqlite3
import threading
import uuid
from pathlib import Path
from typing import Callable, List, Optional, Union

from repcoach.common.events import ExerciseRecord

logger = logging.getLogger(__name__)

_DB_PATH = Path("./workout.db")

SCHEMA = r"""
PRAGMA journal_mode=WAL;

CREATE TABLE IF NOT EXISTS exercises (
  id TEXT PRIMARY KEY,
  user_id TEXT NOT NULL,
  name TEXT NOT NULL,
  sets INTEGER NOT NULL,
  reps INTEGER NOT NULL,
  completed_at REAL NOT NULL
);

CREATE INDEX IF NOT EXISTS exercises_by_user ON exercises (user_id, completed_at);
"""

Subscriber = Callable[[List[ExerciseRecord]], None]


class ExerciseStore:
    """
    Completed-exercise history for one user. Subscribers get the full list
    right away and again after every save/delete.
    """
    def __init__(self, path: Union[str, Path] = _DB_PATH, user_id: str = "local"):
        self.path = Path(path)
        self.user_id = user_id
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()
        self._subscribers: List[Subscriber] = []

    def get_conn(self) -> sqlite3.Connection:
        with self._lock:
            if self._conn is None:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                self._conn = sqlite3.connect(self.path.as_posix(), check_same_thread=False)
                self._conn.executescript(SCHEMA)
                self._conn.commit()
            return self._conn

    def save(self, record: ExerciseRecord) -> str:
        record_id = record.id or uuid.uuid4().hex
        with self._lock:
            conn = self.get_conn()
            conn.execute(
                "INSERT INTO exercises (id, user_id, name, sets, reps, completed_at) VALUES (?,?,?,?,?,?)",
                (record_id, self.user_id, record.name, record.sets, record.reps, record.completed_at),
            )
            conn.commit()
        logger.info("Exercise saved successfully: %s", record.name)
        self._publish()
        return record_id

    def list(self) -> List[ExerciseRecord]:
        with self._lock:
            rows = self.get_conn().execute(
                "SELECT id, name, sets, reps, completed_at FROM exercises WHERE user_id=? "
                "ORDER BY completed_at DESC, rowid DESC",
                (self.user_id,),
            ).fetchall()
        return [ExerciseRecord(id=r[0], name=r[1], sets=r[2], reps=r[3], completed_at=r[4]) for r in rows]

    def delete(self, record_id: str) -> bool:
        with self._lock:
            conn = self.get_conn()
            cur = conn.execute("DELETE FROM exercises WHERE id=? AND user_id=?", (record_id, self.user_id))
            conn.commit()
            deleted = cur.rowcount > 0
        if deleted:
            logger.info("Exercise deleted successfully: %s", record_id)
            self._publish()
        return deleted

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        with self._lock:
            self._subscribers.append(callback)
        self._deliver(callback, self.list())

        def unsubscribe():
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)
        return unsubscribe

    def close(self):
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def _publish(self):
        with self._lock:
            subscribers = list(self._subscribers)
        if not subscribers:
            return
        records = self.list()
        for cb in subscribers:
            self._deliver(cb, records)

    def _deliver(self, cb: Subscriber, records: List[ExerciseRecord]):
        try:
            cb(records)
        except Exception:
            logger.exception("history subscriber failed")
