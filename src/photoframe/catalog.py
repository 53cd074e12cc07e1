"""SQLite catalog of photos, slideshow settings and display schedule."""

import logging
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from photoframe.models import AppSettings, Category, PhotoRecord, Schedule

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS photos (
    photo_name TEXT NOT NULL,
    category INTEGER NOT NULL,
    "order" INTEGER NOT NULL,
    PRIMARY KEY (photo_name, category)
);
CREATE INDEX IF NOT EXISTS idx_photos_category_order ON photos(category, "order");
CREATE TABLE IF NOT EXISTS app_settings (
    singleton INTEGER NOT NULL DEFAULT 1 CHECK (singleton = 1),
    slideshow_interval_seconds INTEGER NOT NULL,
    include_surprise INTEGER NOT NULL,
    shuffle_enabled INTEGER NOT NULL,
    PRIMARY KEY (singleton)
);
CREATE TABLE IF NOT EXISTS schedule (
    singleton INTEGER NOT NULL DEFAULT 1 CHECK (singleton = 1),
    enabled INTEGER NOT NULL,
    start TEXT NOT NULL,
    "end" TEXT NOT NULL,
    PRIMARY KEY (singleton)
);
"""


class CatalogError(Exception):
    """Base exception for catalog errors."""

    pass


class PhotoNotFoundError(CatalogError):
    """Exception raised when a photo is not registered in the catalog."""

    def __init__(self, name: str, category: Category) -> None:
        super().__init__(f"Photo '{name}' not found in category {category.label}")
        self.name = name
        self.category = category


class DuplicatePhotoError(CatalogError):
    """Exception raised when registering a photo that already exists."""

    def __init__(self, name: str, category: Category) -> None:
        super().__init__(
            f"Photo '{name}' already exists in category {category.label}"
        )
        self.name = name
        self.category = category


class CatalogStore:
    """Catalog of photo records with a dense per-category display order.

    Every order-changing operation runs in a single transaction. Separate calls
    are not serialized against each other: ``next_order`` followed by
    ``insert_photo`` from two callers can collide, use ``append_photo`` when
    that matters.
    """

    def __init__(self, db_path: Path | str, timeout: float = 5.0) -> None:
        """Open (and create if needed) the catalog database.

        Args:
            db_path: Path to the SQLite file, or ``":memory:"``
            timeout: Seconds to wait for another connection's write lock
        """
        if str(db_path) != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self.db_path = db_path
        self._lock = threading.RLock()
        self._conn = sqlite3.connect(
            str(db_path), timeout=timeout, check_same_thread=False, isolation_level=None
        )
        self._conn.row_factory = sqlite3.Row
        self._conn.executescript(SCHEMA)
        logger.debug(f"Opened catalog at {db_path}")

    def __enter__(self) -> "CatalogStore":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a block in one write transaction, rolling back on any error.

        SQLite errors other than constraint violations (locked or unwritable
        database) are raised as CatalogError.
        """
        with self._lock:
            try:
                self._conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as e:
                raise CatalogError(f"Unable to start catalog transaction: {e}") from e

            try:
                yield self._conn
                self._conn.execute("COMMIT")
            except sqlite3.IntegrityError:
                self._rollback()
                raise
            except sqlite3.Error as e:
                self._rollback()
                raise CatalogError(f"Catalog write failed: {e}") from e
            except BaseException:
                self._rollback()
                raise

    @contextmanager
    def _reading(self) -> Iterator[sqlite3.Connection]:
        """Run read queries under the lock, raising SQLite errors as CatalogError."""
        with self._lock:
            try:
                yield self._conn
            except sqlite3.Error as e:
                raise CatalogError(f"Catalog read failed: {e}") from e

    def _rollback(self) -> None:
        if not self._conn.in_transaction:
            return
        try:
            self._conn.execute("ROLLBACK")
        except sqlite3.Error as e:
            logger.warning(f"Catalog rollback failed: {e}")

    @staticmethod
    def _to_record(row: sqlite3.Row) -> PhotoRecord:
        return PhotoRecord(
            name=row["photo_name"],
            category=Category(row["category"]),
            order=row["order"],
        )

    @staticmethod
    def _next_order(conn: sqlite3.Connection, category: Category) -> int:
        row = conn.execute(
            'SELECT COALESCE(MAX("order"), -1) FROM photos WHERE category = ?',
            (int(category),),
        ).fetchone()
        return row[0] + 1

    @staticmethod
    def _exists(conn: sqlite3.Connection, name: str, category: Category) -> bool:
        row = conn.execute(
            "SELECT 1 FROM photos WHERE photo_name = ? AND category = ?",
            (name, int(category)),
        ).fetchone()
        return row is not None

    # -----------------------------
    # Photos
    # -----------------------------

    def next_order(self, category: Category) -> int:
        """Return one past the highest order in a category, or 0 when empty."""
        with self._reading():
            return self._next_order(self._conn, category)

    def insert_photo(self, name: str, category: Category, order: int) -> PhotoRecord:
        """Insert a photo at an explicit order.

        Raises:
            DuplicatePhotoError: If ``(name, category)`` is already registered
            ValueError: If the name is empty or the order is negative
        """
        record = PhotoRecord(name=name, category=category, order=order)
        try:
            with self._transaction() as conn:
                conn.execute(
                    'INSERT INTO photos (photo_name, category, "order") VALUES (?, ?, ?)',
                    (record.name, int(record.category), record.order),
                )
        except sqlite3.IntegrityError as e:
            raise DuplicatePhotoError(name, category) from e
        return record

    def append_photo(self, name: str, category: Category) -> PhotoRecord:
        """Insert a photo after the last one of its category in one transaction.

        Raises:
            DuplicatePhotoError: If ``(name, category)`` is already registered
            CatalogError: If the database is locked or cannot be written
        """
        if not name:
            raise ValueError("Photo name cannot be empty")
        try:
            with self._transaction() as conn:
                if self._exists(conn, name, category):
                    raise DuplicatePhotoError(name, category)
                record = PhotoRecord(
                    name=name, category=category, order=self._next_order(conn, category)
                )
                conn.execute(
                    'INSERT INTO photos (photo_name, category, "order") VALUES (?, ?, ?)',
                    (record.name, int(record.category), record.order),
                )
        except sqlite3.IntegrityError as e:
            raise DuplicatePhotoError(name, category) from e
        logger.debug(f"Appended {name} to {category.label} at order {record.order}")
        return record

    def register_photo_if_absent(self, name: str, category: Category) -> bool:
        """Register a photo unless it already exists.

        Returns:
            True if a new record was created, False if it was already there
        """
        try:
            record = self.append_photo(name, category)
        except DuplicatePhotoError:
            return False
        logger.info(f"Registered {name} in {category.label} at order {record.order}")
        return True

    def update_photo_order(self, name: str, category: Category, new_order: int) -> None:
        """Move a photo to a new position, shifting the photos in between.

        Moving to a higher order decrements every photo in ``(old, new]``;
        moving to a lower order increments every photo in ``[new, old)``.

        Raises:
            PhotoNotFoundError: If the photo is not registered
            ValueError: If ``new_order`` is outside the category's range
        """
        if new_order < 0:
            raise ValueError(f"Photo order must be non-negative, got {new_order}")

        with self._transaction() as conn:
            row = conn.execute(
                'SELECT "order" FROM photos WHERE photo_name = ? AND category = ?',
                (name, int(category)),
            ).fetchone()
            if row is None:
                raise PhotoNotFoundError(name, category)

            old_order = row["order"]
            if old_order == new_order:
                return

            max_order = self._next_order(conn, category) - 1
            if new_order > max_order:
                raise ValueError(
                    f"Photo order {new_order} out of range, highest is {max_order}"
                )

            if old_order < new_order:
                conn.execute(
                    'UPDATE photos SET "order" = "order" - 1 '
                    'WHERE category = ? AND "order" > ? AND "order" <= ?',
                    (int(category), old_order, new_order),
                )
            else:
                conn.execute(
                    'UPDATE photos SET "order" = "order" + 1 '
                    'WHERE category = ? AND "order" >= ? AND "order" < ?',
                    (int(category), new_order, old_order),
                )
            conn.execute(
                'UPDATE photos SET "order" = ? WHERE photo_name = ? AND category = ?',
                (new_order, name, int(category)),
            )

        logger.info(
            f"Photo order updated for {name} ({category.label}): {old_order} -> {new_order}"
        )

    def delete_photo(self, name: str, category: Category, compact: bool = False) -> None:
        """Remove a photo record.

        Orders of the remaining photos are left as they are unless ``compact``
        is set, in which case the category is renumbered to ``0..n-1``.

        Raises:
            PhotoNotFoundError: If the photo is not registered
        """
        with self._transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM photos WHERE photo_name = ? AND category = ?",
                (name, int(category)),
            )
            if cursor.rowcount == 0:
                raise PhotoNotFoundError(name, category)
            if compact:
                self._compact(conn, category)
        logger.info(f"Deregistered {name} from {category.label}")

    def compact_orders(self, category: Category) -> None:
        """Renumber a category to ``0..n-1`` keeping the relative order."""
        with self._transaction() as conn:
            self._compact(conn, category)

    @staticmethod
    def _compact(conn: sqlite3.Connection, category: Category) -> None:
        rows = conn.execute(
            'SELECT photo_name, "order" FROM photos WHERE category = ? ORDER BY "order" ASC',
            (int(category),),
        ).fetchall()
        for index, row in enumerate(rows):
            if row["order"] != index:
                conn.execute(
                    'UPDATE photos SET "order" = ? WHERE photo_name = ? AND category = ?',
                    (index, row["photo_name"], int(category)),
                )

    def photo_exists(self, name: str, category: Category) -> bool:
        with self._reading():
            return self._exists(self._conn, name, category)

    def get_photo(self, name: str, category: Category) -> PhotoRecord:
        """Fetch a single photo record.

        Raises:
            PhotoNotFoundError: If the photo is not registered
        """
        with self._reading():
            row = self._conn.execute(
                'SELECT photo_name, category, "order" FROM photos '
                "WHERE photo_name = ? AND category = ?",
                (name, int(category)),
            ).fetchone()
        if row is None:
            raise PhotoNotFoundError(name, category)
        return self._to_record(row)

    def get_photos(self, category: Category, limit: int, offset: int = 0) -> list[PhotoRecord]:
        """Fetch one page of a category in ascending order."""
        with self._reading():
            rows = self._conn.execute(
                'SELECT photo_name, category, "order" FROM photos '
                'WHERE category = ? ORDER BY "order" ASC LIMIT ? OFFSET ?',
                (int(category), limit, offset),
            ).fetchall()
        return [self._to_record(row) for row in rows]

    def get_all_photos(self, category: Category) -> list[PhotoRecord]:
        """Fetch every photo of a category in display order (highest order first)."""
        with self._reading():
            rows = self._conn.execute(
                'SELECT photo_name, category, "order" FROM photos '
                'WHERE category = ? ORDER BY "order" DESC',
                (int(category),),
            ).fetchall()
        return [self._to_record(row) for row in rows]

    def get_photo_count(self, category: Category) -> int:
        with self._reading():
            row = self._conn.execute(
                "SELECT COUNT(*) FROM photos WHERE category = ?", (int(category),)
            ).fetchone()
        return row[0]

    # -----------------------------
    # Settings and schedule
    # -----------------------------

    def get_app_settings(self) -> AppSettings:
        """Return the slideshow settings, storing the defaults on first use."""
        with self._reading():
            row = self._conn.execute(
                "SELECT slideshow_interval_seconds, include_surprise, shuffle_enabled "
                "FROM app_settings WHERE singleton = 1"
            ).fetchone()
            if row is None:
                defaults = AppSettings()
                self.upsert_app_settings(defaults)
                return defaults
        return AppSettings(
            interval_seconds=row["slideshow_interval_seconds"],
            include_surprise=bool(row["include_surprise"]),
            shuffle=bool(row["shuffle_enabled"]),
        )

    def upsert_app_settings(self, settings: AppSettings) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO app_settings (
                    singleton, slideshow_interval_seconds, include_surprise, shuffle_enabled
                ) VALUES (1, ?, ?, ?)
                ON CONFLICT(singleton) DO UPDATE SET
                    slideshow_interval_seconds = excluded.slideshow_interval_seconds,
                    include_surprise = excluded.include_surprise,
                    shuffle_enabled = excluded.shuffle_enabled
                """,
                (
                    settings.interval_seconds,
                    int(settings.include_surprise),
                    int(settings.shuffle),
                ),
            )

    def get_schedule(self) -> Schedule:
        """Return the display schedule, storing the defaults on first use."""
        with self._reading():
            row = self._conn.execute(
                'SELECT enabled, start, "end" FROM schedule WHERE singleton = 1'
            ).fetchone()
            if row is None:
                defaults = Schedule()
                self.upsert_schedule(defaults)
                return defaults
        return Schedule(enabled=bool(row["enabled"]), start=row["start"], end=row["end"])

    def upsert_schedule(self, schedule: Schedule) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO schedule (singleton, enabled, start, "end")
                VALUES (1, ?, ?, ?)
                ON CONFLICT(singleton) DO UPDATE SET
                    enabled = excluded.enabled,
                    start = excluded.start,
                    "end" = excluded."end"
                """,
                (int(schedule.enabled), schedule.start, schedule.end),
            )
