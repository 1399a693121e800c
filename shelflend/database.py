"""Database management module for ShelfLend."""
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime

import pandas as pd

from shelflend.config import DEFAULT_DB_TIMEOUT, TIMESTAMP_FORMAT_STORAGE
from shelflend.exceptions import DatabaseError, TransactionError, ConstraintViolationError

logger = logging.getLogger(__name__)

OUTSTANDING_STATUSES = ("active", "overdue")

# Counters that may be moved with conditional_update, per table.
_COUNTER_COLUMNS = {
    "items": ("available_copies", "total_copies"),
    "loans": ("extensions",),
}

# Named preconditions for conditional_update. Evaluated in the same
# statement as the write, so they hold at commit time.
GUARDS = {
    "in_stock": "available_copies > 0",
    "spare_total": "total_copies > available_copies",
}


class DatabaseManager:
    """Handles all SQLite database operations.

    The connection runs in autocommit mode; multi-statement work goes
    through transaction(), which opens with BEGIN IMMEDIATE so concurrent
    writers queue on the database lock instead of interleaving.
    """

    def __init__(self, db_name="shelflend.db", timeout=DEFAULT_DB_TIMEOUT, check_same_thread=True):
        self.db_name = db_name
        self._closed = True
        try:
            self.conn = sqlite3.connect(db_name, timeout=timeout, isolation_level=None,
                                        check_same_thread=check_same_thread)
        except sqlite3.Error as e:
            raise DatabaseError(f"Could not open database: {e}", {'db_name': db_name})
        self._closed = False
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA foreign_keys = ON")
        self.create_tables()

    def close(self):
        """Close the database connection."""
        if not self._closed:
            self.conn.close()
            self._closed = True

    def __del__(self):
        """Ensure connection is closed on garbage collection."""
        if getattr(self, "conn", None) is not None:
            self.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    # =========================================================================
    # Transactions
    # =========================================================================

    def begin_transaction(self):
        """Start a write transaction, waiting for the database lock."""
        self._execute("BEGIN IMMEDIATE")

    def commit_transaction(self):
        """Commit the current transaction."""
        try:
            self.conn.commit()
        except sqlite3.Error as e:
            raise TransactionError(f"Commit failed: {e}")

    def rollback_transaction(self):
        """Rollback the current transaction."""
        if self.conn.in_transaction:
            self.conn.rollback()

    @contextmanager
    def transaction(self):
        """Context manager for database transactions with automatic rollback on failure.

        Usage:
            with db.transaction():
                loan_id = db.insert_loan(...)
                if db.conditional_update("items", item_id, "available_copies", -1, "in_stock") == 0:
                    raise StockExhaustedError(item_id)

        If any exception occurs, the transaction is rolled back and the
        exception propagates. A nested call joins the outer transaction.
        """
        if self.conn.in_transaction:
            yield self
            return

        self.begin_transaction()
        try:
            yield self
        except sqlite3.IntegrityError as e:
            self.rollback_transaction()
            raise ConstraintViolationError(f"Transaction failed: {e}")
        except sqlite3.Error as e:
            self.rollback_transaction()
            raise TransactionError(f"Transaction failed: {e}")
        except Exception:
            self.rollback_transaction()
            raise
        try:
            self.commit_transaction()
        except TransactionError:
            self.rollback_transaction()
            raise

    def run_transaction(self, statements):
        """Execute (sql, params) pairs atomically.

        Returns:
            List of affected-row counts, one per statement.

        Raises:
            TransactionError: If any statement fails; nothing is committed.
        """
        counts = []
        with self.transaction():
            for sql, params in statements:
                counts.append(self._execute(sql, params).rowcount)
        return counts

    def conditional_update(self, table, row_id, column, delta, guard=None):
        """Move a counter by delta only while the named guard holds.

        The guard is checked by the same UPDATE statement that writes, so
        the store applies check and write atomically. Callers must inspect
        the returned count: zero means the precondition did not hold and
        nothing changed.

        Args:
            table: Table holding the counter ("items" or "loans").
            row_id: Primary key of the row.
            column: Counter column to adjust.
            delta: Signed amount to add.
            guard: Optional key of GUARDS.

        Returns:
            Number of rows affected (0 or 1).
        """
        if column not in _COUNTER_COLUMNS.get(table, ()):
            raise ValueError(f"'{table}.{column}' is not an adjustable counter")
        sql = f"UPDATE {table} SET {column} = {column} + ? WHERE id = ?"
        if guard is not None:
            if guard not in GUARDS:
                raise ValueError(f"Unknown guard '{guard}'")
            sql += f" AND {GUARDS[guard]}"
        return self._execute(sql, (delta, row_id)).rowcount

    def _execute(self, sql, params=()):
        try:
            return self.conn.execute(sql, params)
        except sqlite3.IntegrityError as e:
            raise ConstraintViolationError(f"Constraint violated: {e}", {'sql': sql.split()[0]})
        except sqlite3.Error as e:
            logger.error("Database statement failed: %s", e)
            raise DatabaseError(f"Database operation failed: {e}", {'sql': sql.split()[0]})

    def _fetch_one(self, sql, params=()):
        row = self._execute(sql, params).fetchone()
        return dict(row) if row else None

    def _fetch_all(self, sql, params=()):
        return [dict(r) for r in self._execute(sql, params).fetchall()]

    def _read_frame(self, sql, params=()):
        try:
            return pd.read_sql_query(sql, self.conn, params=params)
        except (sqlite3.Error, pd.errors.DatabaseError) as e:
            logger.error("Database query failed: %s", e)
            raise DatabaseError(f"Database query failed: {e}")

    @staticmethod
    def _now():
        return datetime.now().strftime(TIMESTAMP_FORMAT_STORAGE)

    # =========================================================================
    # Schema
    # =========================================================================

    def create_tables(self):
        cursor = self.conn.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS borrowers (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                email TEXT,
                is_active INTEGER NOT NULL DEFAULT 1,
                created_at TEXT
            )
        """)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS items (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                title TEXT NOT NULL,
                isbn TEXT,
                total_copies INTEGER NOT NULL DEFAULT 0,
                available_copies INTEGER NOT NULL DEFAULT 0,
                created_at TEXT,
                CHECK (total_copies >= 0),
                CHECK (available_copies >= 0 AND available_copies <= total_copies)
            )
        """)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS loans (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                borrower_id INTEGER NOT NULL,
                item_id INTEGER NOT NULL,
                loan_date TEXT NOT NULL,
                due_date TEXT NOT NULL,
                return_date TEXT,
                status TEXT NOT NULL DEFAULT 'active',
                extensions INTEGER NOT NULL DEFAULT 0,
                notes TEXT,
                created_by TEXT,
                updated_at TEXT,
                CHECK (status IN ('active', 'overdue', 'returned', 'lost')),
                CHECK (extensions >= 0),
                FOREIGN KEY(borrower_id) REFERENCES borrowers(id),
                FOREIGN KEY(item_id) REFERENCES items(id)
            )
        """)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS fines (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                loan_id INTEGER NOT NULL,
                borrower_id INTEGER NOT NULL,
                amount INTEGER NOT NULL,
                reason TEXT NOT NULL,
                kind TEXT NOT NULL,
                fine_date TEXT NOT NULL,
                created_at TEXT,
                is_paid INTEGER NOT NULL DEFAULT 0,
                paid_date TEXT,
                paid_by TEXT,
                payment_method TEXT,
                CHECK (amount > 0),
                CHECK (kind IN ('late_return', 'overdue')),
                FOREIGN KEY(loan_id) REFERENCES loans(id),
                FOREIGN KEY(borrower_id) REFERENCES borrowers(id)
            )
        """)
        # One generator fine per loan per day
        cursor.execute("""
            CREATE UNIQUE INDEX IF NOT EXISTS idx_fines_overdue_daily
            ON fines(loan_id, fine_date) WHERE kind = 'overdue'
        """)
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_loans_borrower ON loans(borrower_id, status)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_loans_item ON loans(item_id, status)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_fines_borrower ON fines(borrower_id, is_paid)")

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS settings (
                key TEXT PRIMARY KEY,
                value TEXT
            )
        """)

    # =========================================================================
    # Borrowers
    # =========================================================================

    def add_borrower(self, name, email=None, is_active=True):
        cursor = self._execute(
            "INSERT INTO borrowers (name, email, is_active, created_at) VALUES (?, ?, ?, ?)",
            (name, email, 1 if is_active else 0, self._now()))
        return cursor.lastrowid

    def get_borrower(self, borrower_id):
        return self._fetch_one("SELECT * FROM borrowers WHERE id = ?", (borrower_id,))

    def set_borrower_active(self, borrower_id, is_active):
        self._execute("UPDATE borrowers SET is_active = ? WHERE id = ?",
                      (1 if is_active else 0, borrower_id))

    def get_borrower_posture(self, borrower_id, today):
        """Count active/overdue loans and unpaid fines for a borrower.

        A loan still marked active whose due date has passed counts as
        overdue, so the posture does not depend on the generator having run.
        """
        return self._fetch_one("""
            SELECT
                (SELECT COUNT(*) FROM loans
                  WHERE borrower_id = ? AND status = 'active') AS active_loans,
                (SELECT COUNT(*) FROM loans
                  WHERE borrower_id = ?
                    AND (status = 'overdue' OR (status = 'active' AND due_date < ?))) AS overdue_loans,
                (SELECT COUNT(*) FROM fines
                  WHERE borrower_id = ? AND is_paid = 0) AS unpaid_fines_count,
                (SELECT COALESCE(SUM(amount), 0) FROM fines
                  WHERE borrower_id = ? AND is_paid = 0) AS unpaid_fines_amount
        """, (borrower_id, borrower_id, today, borrower_id, borrower_id))

    def count_unpaid_fines(self, borrower_id):
        row = self._fetch_one("SELECT COUNT(*) AS n FROM fines WHERE borrower_id = ? AND is_paid = 0",
                              (borrower_id,))
        return row['n']

    # =========================================================================
    # Items
    # =========================================================================

    def add_item(self, title, total_copies, isbn=None):
        cursor = self._execute(
            "INSERT INTO items (title, isbn, total_copies, available_copies, created_at) VALUES (?, ?, ?, ?, ?)",
            (title, isbn, total_copies, total_copies, self._now()))
        return cursor.lastrowid

    def get_item(self, item_id):
        return self._fetch_one("SELECT * FROM items WHERE id = ?", (item_id,))

    def set_available_copies(self, item_id, available_copies):
        return self._execute("UPDATE items SET available_copies = ? WHERE id = ?",
                             (available_copies, item_id)).rowcount

    def get_items_frame(self):
        return self._read_frame(
            "SELECT id AS item_id, title, total_copies, available_copies FROM items ORDER BY id")

    def get_outstanding_loans_frame(self):
        return self._read_frame(
            "SELECT id AS loan_id, item_id FROM loans WHERE status IN (?, ?)",
            OUTSTANDING_STATUSES)

    def count_outstanding_loans(self, item_id):
        row = self._fetch_one(
            "SELECT COUNT(*) AS n FROM loans WHERE item_id = ? AND status IN (?, ?)",
            (item_id,) + OUTSTANDING_STATUSES)
        return row['n']

    # =========================================================================
    # Loans
    # =========================================================================

    def insert_loan(self, borrower_id, item_id, loan_date, due_date, notes=None, created_by=None):
        cursor = self._execute("""
            INSERT INTO loans (borrower_id, item_id, loan_date, due_date, status,
                               extensions, notes, created_by, updated_at)
            VALUES (?, ?, ?, ?, 'active', 0, ?, ?, ?)
        """, (borrower_id, item_id, loan_date, due_date, notes, created_by, self._now()))
        return cursor.lastrowid

    def get_loan(self, loan_id):
        return self._fetch_one("SELECT * FROM loans WHERE id = ?", (loan_id,))

    def get_loans_for_borrower(self, borrower_id):
        return self._fetch_all("SELECT * FROM loans WHERE borrower_id = ? ORDER BY id", (borrower_id,))

    def mark_loan_returned(self, loan_id, return_date, note=None):
        """Close an outstanding loan. Returns affected rows (0 if already closed)."""
        return self._execute("""
            UPDATE loans
            SET status = 'returned', return_date = ?, updated_at = ?,
                notes = CASE WHEN ? IS NULL THEN notes
                             WHEN notes IS NULL OR notes = '' THEN ?
                             ELSE notes || char(10) || ? END
            WHERE id = ? AND status IN ('active', 'overdue')
        """, (return_date, self._now(), note, note, note, loan_id)).rowcount

    def extend_loan_record(self, loan_id, new_due_date, note, max_extensions):
        """Push the due date of an active loan below the extension limit."""
        return self._execute("""
            UPDATE loans
            SET due_date = ?, extensions = extensions + 1, updated_at = ?,
                notes = CASE WHEN notes IS NULL OR notes = '' THEN ?
                             ELSE notes || char(10) || ? END
            WHERE id = ? AND status = 'active' AND extensions < ?
        """, (new_due_date, self._now(), note, note, loan_id, max_extensions)).rowcount

    def mark_loan_overdue(self, loan_id):
        return self._execute("""
            UPDATE loans SET status = 'overdue', updated_at = ?
            WHERE id = ? AND status IN ('active', 'overdue')
        """, (self._now(), loan_id)).rowcount

    def mark_loan_lost(self, loan_id, note=None):
        return self._execute("""
            UPDATE loans
            SET status = 'lost', updated_at = ?,
                notes = CASE WHEN ? IS NULL THEN notes
                             WHEN notes IS NULL OR notes = '' THEN ?
                             ELSE notes || char(10) || ? END
            WHERE id = ? AND status IN ('active', 'overdue')
        """, (self._now(), note, note, note, loan_id)).rowcount

    def get_overdue_candidates(self, today):
        """Outstanding loans past due that have no late fine dated today."""
        return self._read_frame("""
            SELECT l.id AS loan_id, l.borrower_id, l.item_id, l.due_date, l.status
            FROM loans l
            WHERE l.status IN ('active', 'overdue')
              AND l.due_date < ?
              AND NOT EXISTS (
                  SELECT 1 FROM fines f
                  WHERE f.loan_id = l.id AND f.fine_date = ?
              )
            ORDER BY l.due_date, l.id
        """, (today, today))

    # =========================================================================
    # Fines
    # =========================================================================

    def insert_fine(self, loan_id, borrower_id, amount, reason, kind, fine_date):
        cursor = self._execute("""
            INSERT INTO fines (loan_id, borrower_id, amount, reason, kind, fine_date, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        """, (loan_id, borrower_id, amount, reason, kind, fine_date, self._now()))
        return cursor.lastrowid

    def get_fine(self, fine_id):
        return self._fetch_one("SELECT * FROM fines WHERE id = ?", (fine_id,))

    def get_fines_for_loan(self, loan_id):
        return self._fetch_all("SELECT * FROM fines WHERE loan_id = ? ORDER BY id", (loan_id,))

    def get_fines_for_borrower(self, borrower_id):
        return self._fetch_all("SELECT * FROM fines WHERE borrower_id = ? ORDER BY id", (borrower_id,))

    def settle_fine(self, fine_id, paid_date, paid_by, payment_method=None, reason_suffix=None):
        """Mark an unpaid fine settled. Returns affected rows (0 if already settled)."""
        return self._execute("""
            UPDATE fines
            SET is_paid = 1, paid_date = ?, paid_by = ?, payment_method = ?,
                reason = reason || COALESCE(?, '')
            WHERE id = ? AND is_paid = 0
        """, (paid_date, paid_by, payment_method, reason_suffix, fine_id)).rowcount

    # =========================================================================
    # Settings
    # =========================================================================

    def get_setting(self, key, default=None):
        row = self._fetch_one("SELECT value FROM settings WHERE key = ?", (key,))
        return row['value'] if row else default

    def set_setting(self, key, value):
        self._execute("INSERT OR REPLACE INTO settings (key, value) VALUES (?, ?)", (key, str(value)))

    def get_settings(self):
        return {r['key']: r['value'] for r in self._fetch_all("SELECT key, value FROM settings")}
