"""Storage of courses in an SQLite database."""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime
from typing import Iterator, Optional

from .models import (
    Course,
    CourseID,
    CourseNotFound,
    PartialCourse,
    PolybaseError,
    clamp_quantity,
    validate_course,
    validate_course_id,
)

logger = logging.getLogger(__name__)

_COURSE_COLUMNS = "code, kind, part, parts, name, quantity, total, shown, semester"

_SCHEMA = """
CREATE TABLE IF NOT EXISTS courses (
    code TEXT NOT NULL,
    kind TEXT NOT NULL,
    part INTEGER NOT NULL,
    parts INTEGER NOT NULL DEFAULT 0,
    name TEXT NOT NULL DEFAULT '',
    quantity INTEGER NOT NULL DEFAULT 0,
    total INTEGER NOT NULL DEFAULT 0,
    shown INTEGER NOT NULL DEFAULT 1,
    semester TEXT NOT NULL DEFAULT '',
    PRIMARY KEY (code, kind, part)
);
CREATE TABLE IF NOT EXISTS packs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS pack_courses (
    pack_id INTEGER NOT NULL REFERENCES packs(id) ON DELETE CASCADE,
    course_code TEXT NOT NULL,
    course_kind TEXT NOT NULL,
    course_part INTEGER NOT NULL,
    PRIMARY KEY (pack_id, course_code, course_kind, course_part)
);
"""


def create_schema(conn: sqlite3.Connection) -> None:
    """Create the course and pack tables if they do not exist yet."""
    conn.executescript(_SCHEMA)
    conn.execute("PRAGMA foreign_keys = ON")


@contextmanager
def _db_step(what: str) -> Iterator[None]:
    """Turn database errors raised in the block into PolybaseError."""
    try:
        yield
    except sqlite3.Error as exc:
        raise PolybaseError(f"{what}: {exc}") from exc


def _row_to_course(row: tuple) -> Course:
    code, kind, part, parts, name, quantity, total, shown, semester = row
    return Course(
        code=code,
        kind=kind,
        part=part,
        parts=parts,
        name=name,
        quantity=quantity,
        total=total,
        shown=shown == 1,
        semester=semester,
    )


class CourseStore:
    """Creates, reads, updates and deletes courses, logging each change."""

    def __init__(
        self,
        conn: sqlite3.Connection,
        log_path: Optional[str] = "",
        log_stdout: bool = False,
    ) -> None:
        self._conn = conn
        self._conn.isolation_level = None
        self._conn.execute("PRAGMA foreign_keys = ON")
        self.log_path = log_path or ""
        self.log_stdout = log_stdout

    # -- shared helpers -------------------------------------------------

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with _db_step("begin transaction"):
            self._conn.execute("BEGIN")
        try:
            yield self._conn
        except BaseException:
            try:
                self._conn.execute("ROLLBACK")
            except sqlite3.Error as exc:
                logger.error("failed to rollback transaction: %s", exc)
            raise
        with _db_step("commit transaction"):
            self._conn.execute("COMMIT")

    def _exists(self, course_id: CourseID) -> bool:
        with _db_step("failed to check course existence"):
            row = self._conn.execute(
                "SELECT 1 FROM courses WHERE code = ? AND kind = ? AND part = ?",
                (course_id.code, course_id.kind, course_id.part),
            ).fetchone()
        return row is not None

    def _fetch_course(self, course_id: CourseID) -> Course:
        with _db_step("failed to retrieve course"):
            row = self._conn.execute(
                f"SELECT {_COURSE_COLUMNS} FROM courses "
                "WHERE code = ? AND kind = ? AND part = ?",
                (course_id.code, course_id.kind, course_id.part),
            ).fetchone()
        if row is None:
            raise CourseNotFound()
        return _row_to_course(row)

    def _set_parts(self, course_id: CourseID) -> None:
        with _db_step("set parts: get max part"):
            (max_part,) = self._conn.execute(
                "SELECT COALESCE(MAX(part), 0) FROM courses "
                "WHERE code = ? AND kind = ?",
                (course_id.code, course_id.kind),
            ).fetchone()
        with _db_step("set parts: update parts"):
            self._conn.execute(
                "UPDATE courses SET parts = ? WHERE code = ? AND kind = ?",
                (max_part, course_id.code, course_id.kind),
            )

    def _log_action(self, user: str, action: str, details: str) -> None:
        if not self.log_path:
            return
        timestamp = datetime.now().strftime("%Y/%m/%d %H:%M:%S")
        entry = f"{timestamp} [{user}] {action}: {details}\n"
        try:
            with open(self.log_path, "a", encoding="utf-8") as log_file:
                log_file.write(entry)
        except OSError as exc:
            logger.warning("failed to log action: %s", exc)
            return
        print(entry, end="")

    def _get_updated(self, course_id: CourseID) -> Course:
        try:
            return self.get_course(course_id)
        except PolybaseError as exc:
            raise PolybaseError(f"get updated course: {exc}") from exc

    def _merge_course(self, course_id: CourseID, partial: PartialCourse) -> Course:
        if partial.is_empty():
            raise PolybaseError("at least one field must be updated")
        try:
            current = self._fetch_course(course_id)
        except CourseNotFound as exc:
            raise CourseNotFound(f"get current course: {exc}") from exc
        except PolybaseError as exc:
            raise PolybaseError(f"get current course: {exc}") from exc
        changes = {
            name: value
            for name, value in vars(partial).items()
            if value is not None
        }
        return validate_course(replace(current, **changes))

    # -- public operations ----------------------------------------------

    def create_course(self, user: str, course: Course) -> Course:
        """Add a new, visible course and return it as stored."""
        with self._transaction():
            course = validate_course(course)
            if self._exists(course.cid()):
                raise PolybaseError("course already exists")
            try:
                validate_course_id(course.cid())
            except PolybaseError as exc:
                raise PolybaseError("invalid course id") from exc
            course = replace(course, shown=True)
            with _db_step("create course"):
                self._conn.execute(
                    f"INSERT INTO courses ({_COURSE_COLUMNS}) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        course.code, course.kind, course.part, course.parts,
                        course.name, course.quantity, course.total,
                        int(course.shown), course.semester,
                    ),
                )
            self._set_parts(course.cid())
        created = self._get_updated(course.cid())
        self._log_action(user, "CREATE", f"created course {course.id()}")
        return created

    def update_course(
        self, user: str, course_id: CourseID, partial: PartialCourse
    ) -> Course:
        """Change the given fields of a course and return the result."""
        with self._transaction():
            course_id = validate_course_id(course_id)
            course = self._merge_course(course_id, partial)
            if not self._exists(course_id):
                raise PolybaseError("course does not exists")
            with _db_step("update course"):
                self._conn.execute(
                    "UPDATE courses SET code = ?, kind = ?, part = ?, parts = ?, "
                    "name = ?, quantity = ?, total = ?, shown = ?, semester = ? "
                    "WHERE code = ? AND kind = ? AND part = ?",
                    (
                        course.code, course.kind, course.part, course.parts,
                        course.name, course.quantity, course.total,
                        int(course.shown), course.semester,
                        course_id.code, course_id.kind, course_id.part,
                    ),
                )
            self._set_parts(course.cid())
            if partial.code is not None or partial.kind is not None or partial.part is not None:
                new_id = CourseID(
                    partial.code if partial.code is not None else course_id.code,
                    partial.kind if partial.kind is not None else course_id.kind,
                    partial.part if partial.part is not None else course_id.part,
                )
                with _db_step("update pack course references"):
                    self._conn.execute(
                        "UPDATE pack_courses "
                        "SET course_code = ?, course_kind = ?, course_part = ? "
                        "WHERE course_code = ? AND course_kind = ? AND course_part = ?",
                        (
                            new_id.code, new_id.kind, new_id.part,
                            course_id.code, course_id.kind, course_id.part,
                        ),
                    )
        updated = self._get_updated(course.cid())
        self._log_action(user, "UPDATE", f"updated course {course.id()}")
        return updated

    def delete_course(self, user: str, course_id: CourseID) -> None:
        """Remove a course, detach it from packs and renumber its siblings."""
        with self._transaction():
            if not self._exists(course_id):
                raise PolybaseError("course does not exists")
            with _db_step("get max part"):
                (max_part,) = self._conn.execute(
                    "SELECT COALESCE(MAX(part), 0) FROM courses "
                    "WHERE code = ? AND kind = ? AND part != ?",
                    (course_id.code, course_id.kind, course_id.part),
                ).fetchone()
            with _db_step("remove course from packs"):
                self._conn.execute(
                    "DELETE FROM pack_courses WHERE course_code = ? "
                    "AND course_kind = ? AND course_part = ?",
                    (course_id.code, course_id.kind, course_id.part),
                )
            with _db_step("delete course"):
                self._conn.execute(
                    "DELETE FROM courses WHERE code = ? AND kind = ? AND part = ?",
                    (course_id.code, course_id.kind, course_id.part),
                )
            with _db_step("update parts"):
                self._conn.execute(
                    "UPDATE courses SET parts = ? WHERE code = ? AND kind = ?",
                    (max_part, course_id.code, course_id.kind),
                )
        self._log_action(user, "DELETE", f"deleted course {course_id.id()}")

    def get_course(self, course_id: CourseID) -> Course:
        """Return one course; raise CourseNotFound if it is absent."""
        course_id = validate_course_id(course_id)
        return self._fetch_course(course_id)

    def list_courses(
        self,
        show_hidden: bool = False,
        semester: Optional[str] = None,
        code: Optional[str] = None,
        kind: Optional[str] = None,
        part: Optional[int] = None,
    ) -> list[Course]:
        """Return the courses matching every filter given."""
        conditions: list[str] = []
        params: list[object] = []
        if not show_hidden:
            conditions.append("shown = 1")
        for column, value in (
            ("semester", semester),
            ("code", code),
            ("kind", kind),
            ("part", part),
        ):
            if value is not None:
                conditions.append(f"{column} = ?")
                params.append(value)
        query = f"SELECT {_COURSE_COLUMNS} FROM courses"
        if conditions:
            query += " WHERE " + " AND ".join(conditions)
        query += " ORDER BY semester DESC, code ASC, kind ASC, part ASC"
        with _db_step("list courses"):
            rows = self._conn.execute(query, params).fetchall()
        return [
            replace(_row_to_course(row), shown=bool(row[7])) for row in rows
        ]

    def update_course_quantity(
        self, user: str, course_id: CourseID, delta: int
    ) -> Course:
        """Add ``delta`` to a course's quantity, kept within ``0..total``."""
        course_id = validate_course_id(course_id)
        try:
            current = self.get_course(course_id)
        except CourseNotFound as exc:
            raise CourseNotFound(f"failed to get current course: {exc}") from exc
        except PolybaseError as exc:
            raise PolybaseError(f"failed to get current course: {exc}") from exc
        quantity = clamp_quantity(current.quantity + delta, current.total)
        with _db_step("update quantity"):
            self._conn.execute(
                "UPDATE courses SET quantity = ? "
                "WHERE code = ? AND kind = ? AND part = ?",
                (quantity, course_id.code, course_id.kind, course_id.part),
            )
        self._log_action(
            user, "UPDATE QUANTITY", f"updated quantity of course {course_id.id()}"
        )
        return self.get_course(course_id)

    def update_course_shown(
        self, user: str, course_id: CourseID, shown: bool
    ) -> Course:
        """Show or hide a course and return it."""
        course_id = validate_course_id(course_id)
        with _db_step("update shown"):
            self._conn.execute(
                "UPDATE courses SET shown = ? "
                "WHERE code = ? AND kind = ? AND part = ?",
                (int(bool(shown)), course_id.code, course_id.kind, course_id.part),
            )
        self._log_action(
            user,
            "UPDATE VISIBILITY",
            f"updated visibility of course {course_id.id()}",
        )
        return self.get_course(course_id)