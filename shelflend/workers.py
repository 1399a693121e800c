"""Threaded request execution for ShelfLend.

sqlite3 connections belong to the thread that opened them, so each worker
thread lazily opens its own DatabaseManager and LendingEngine on the same
database file. Concurrent writers are serialized by the database lock
(BEGIN IMMEDIATE), never by this pool.
"""
import logging
import threading
from concurrent.futures import ThreadPoolExecutor

from shelflend.config import DEFAULT_DB_TIMEOUT, load_rules
from shelflend.database import DatabaseManager
from shelflend.engine import LendingEngine

logger = logging.getLogger(__name__)

DEFAULT_WORKERS = 4


class EnginePool:
    """Runs LendingEngine operations on a pool of worker threads.

    Rules are loaded once at construction and shared by every worker.

    Usage:
        with EnginePool("library.db", rules=rules) as pool:
            futures = [pool.submit("create_loan", b, item_id) for b in borrowers]
            results = [f.result() for f in futures]
    """

    def __init__(self, db_path, rules=None, audit_sink=None, clock=None,
                 max_workers=DEFAULT_WORKERS, timeout=DEFAULT_DB_TIMEOUT):
        if db_path == ":memory:":
            raise ValueError("EnginePool needs a database file shared by all workers")
        self.db_path = db_path
        if rules is None:
            with DatabaseManager(db_path, timeout=timeout) as db:
                rules = load_rules(db)
        self.rules = rules
        self.audit_sink = audit_sink
        self.clock = clock
        self.timeout = timeout
        self._local = threading.local()
        self._lock = threading.Lock()
        self._managers = []
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="shelflend")

    def _engine(self):
        engine = getattr(self._local, "engine", None)
        if engine is None:
            db = DatabaseManager(self.db_path, timeout=self.timeout, check_same_thread=False)
            with self._lock:
                self._managers.append(db)
            engine = LendingEngine(db, rules=self.rules, audit_sink=self.audit_sink, clock=self.clock)
            self._local.engine = engine
            logger.debug("Opened engine for %s", threading.current_thread().name)
        return engine

    def _run(self, operation, args, kwargs):
        return getattr(self._engine(), operation)(*args, **kwargs)

    def submit(self, operation, *args, **kwargs):
        """Schedule a LendingEngine operation by name.

        Returns:
            concurrent.futures.Future resolving to the operation's Result.
            Infrastructure errors are re-raised by Future.result().
        """
        if not callable(getattr(LendingEngine, operation, None)) or operation.startswith("_"):
            raise ValueError(f"Unknown engine operation '{operation}'")
        return self._executor.submit(self._run, operation, args, kwargs)

    def shutdown(self):
        """Wait for queued work to finish, then close every worker's connection."""
        self._executor.shutdown(wait=True)
        with self._lock:
            managers, self._managers = self._managers, []
        for db in managers:
            db.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.shutdown()
        return False
