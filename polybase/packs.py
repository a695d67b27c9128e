"""Packs: named bundles of courses sold or handed out together."""

from __future__ import annotations

from dataclasses import dataclass
from itertools import groupby
from typing import Iterable, Optional

from .courses import CourseStore, _db_step
from .models import (
    CourseID,
    Pack,
    PartialPack,
    PolybaseError,
    validate_pack,
)

_PACK_COURSES_QUERY = """
    SELECT c.code, c.kind, c.part
    FROM courses c
    JOIN pack_courses pc ON c.code = pc.course_code
      AND c.kind = pc.course_kind
      AND c.part = pc.course_part
    WHERE pc.pack_id = ?
    ORDER BY c.code,
    CASE c.kind
        WHEN 'Memento' THEN 1
        WHEN 'TME' THEN 2
        WHEN 'Cours' THEN 3
        WHEN 'TD' THEN 4
        ELSE 5
    END,
    c.part
"""


@dataclass(frozen=True)
class _QuantityChange:
    course_id: CourseID
    delta: int


class Polybase(CourseStore):
    """The full course and pack store."""

    def _pack_exists(self, pack_id: int) -> bool:
        with _db_step("check pack existence"):
            (found,) = self._conn.execute(
                "SELECT EXISTS(SELECT 1 FROM packs WHERE id = ?)", (pack_id,)
            ).fetchone()
        return bool(found)

    def _require_courses_exist(self, courses: Iterable[CourseID]) -> None:
        for course_id in courses:
            if not self._exists(course_id):
                raise PolybaseError(f"course {course_id.id()} does not exist")

    def _link_courses(self, pack_id: int, courses: Iterable[CourseID]) -> None:
        with _db_step("add course to pack"):
            self._conn.executemany(
                "INSERT INTO pack_courses "
                "(pack_id, course_code, course_kind, course_part) "
                "VALUES (?, ?, ?, ?)",
                [(pack_id, c.code, c.kind, c.part) for c in courses],
            )

    def create_pack(
        self, user: str, name: str, courses: Optional[list[CourseID]]
    ) -> Pack:
        """Create a pack of existing, distinct courses and return it."""
        validate_pack(name, courses)
        course_list = list(courses or ())
        with self._transaction():
            self._require_courses_exist(course_list)
            with _db_step("create pack"):
                cursor = self._conn.execute(
                    "INSERT INTO packs (name) VALUES (?)", (name.strip(),)
                )
            pack_id = cursor.lastrowid
            if pack_id is None:
                raise PolybaseError("get pack id: no id returned")
            self._link_courses(pack_id, course_list)
        self._log_action(
            user,
            "CREATE PACK",
            f"created pack {pack_id} with {len(course_list)} courses",
        )
        return self.get_pack(pack_id)

    def update_pack(self, user: str, pack_id: int, partial: PartialPack) -> Pack:
        """Rename a pack and/or replace its courses."""
        if partial.name is None and partial.courses is None:
            raise PolybaseError("at least one field must be updated")
        with self._transaction():
            if not self._pack_exists(pack_id):
                raise PolybaseError("pack not found")
            if partial.name is not None:
                new_name = partial.name.strip()
                if new_name == "":
                    raise PolybaseError("pack name cannot be empty")
                with _db_step("update pack name"):
                    self._conn.execute(
                        "UPDATE packs SET name = ? WHERE id = ?", (new_name, pack_id)
                    )
            if partial.courses is not None:
                course_list = list(partial.courses)
                if not course_list:
                    raise PolybaseError("pack must contain at least one course")
                self._require_courses_exist(course_list)
                with _db_step("remove existing courses"):
                    self._conn.execute(
                        "DELETE FROM pack_courses WHERE pack_id = ?", (pack_id,)
                    )
                self._link_courses(pack_id, course_list)
        self._log_action(user, "UPDATE PACK", f"updated pack {pack_id}")
        return self.get_pack(pack_id)

    def delete_pack(self, user: str, pack_id: int) -> None:
        """Remove a pack; its courses are left untouched."""
        if not self._pack_exists(pack_id):
            raise PolybaseError("pack not found")
        with _db_step("delete pack"):
            self._conn.execute(
                "DELETE FROM pack_courses WHERE pack_id = ?", (pack_id,)
            )
            self._conn.execute("DELETE FROM packs WHERE id = ?", (pack_id,))
        self._log_action(user, "DELETE PACK", f"deleted pack {pack_id}")

    def get_pack(self, pack_id: int) -> Pack:
        """Return a pack with its courses; raise if it does not exist."""
        with _db_step("get pack"):
            row = self._conn.execute(
                "SELECT id, name FROM packs WHERE id = ?", (pack_id,)
            ).fetchone()
        if row is None:
            raise PolybaseError("pack not found")
        with _db_step("get pack courses"):
            rows = self._conn.execute(_PACK_COURSES_QUERY, (pack_id,)).fetchall()
        return Pack(
            id=row[0],
            name=row[1],
            courses=[CourseID(code, kind, part) for code, kind, part in rows],
        )

    def list_packs(self) -> list[Pack]:
        """Return every pack, ordered by id, with its courses."""
        with _db_step("list packs"):
            rows = self._conn.execute(
                "SELECT id, name, course_code, course_kind, course_part "
                "FROM packs "
                "LEFT JOIN pack_courses ON packs.id = pack_courses.pack_id "
                "ORDER BY packs.id, course_code, course_kind, course_part"
            ).fetchall()
        packs: list[Pack] = []
        for (pack_id, name), group in groupby(rows, key=lambda r: (r[0], r[1])):
            courses = [
                CourseID(code, kind, part)
                for _, _, code, kind, part in group
                if code is not None and kind is not None and part is not None
            ]
            packs.append(Pack(id=pack_id, name=name, courses=courses))
        return packs

    def update_pack_quantity(self, user: str, pack_id: int, delta: int) -> Pack:
        """Add ``delta`` to every course of a pack.

        A decrease stops at zero for each course; an increase past a
        course's total fails without changing anything.
        """
        with self._transaction():
            with _db_step("get pack courses"):
                rows = self._conn.execute(
                    "SELECT c.code, c.kind, c.part, c.quantity, c.total "
                    "FROM courses c "
                    "JOIN pack_courses pc ON c.code = pc.course_code "
                    "AND c.kind = pc.course_kind "
                    "AND c.part = pc.course_part "
                    "WHERE pc.pack_id = ?",
                    (pack_id,),
                ).fetchall()
            changes: list[_QuantityChange] = []
            for code, kind, part, quantity, total in rows:
                course_delta = delta
                if delta < 0:
                    if quantity + delta < 0:
                        course_delta = -quantity
                elif quantity + delta > total:
                    raise PolybaseError(
                        f"quantity would exceed total for course {code}/{kind}/{part}"
                    )
                changes.append(_QuantityChange(CourseID(code, kind, part), course_delta))
            with _db_step("update course quantity"):
                self._conn.executemany(
                    "UPDATE courses SET quantity = quantity + ? "
                    "WHERE code = ? AND kind = ? AND part = ?",
                    [
                        (c.delta, c.course_id.code, c.course_id.kind, c.course_id.part)
                        for c in changes
                    ],
                )
        if changes:
            self._log_action(
                user,
                "UPDATE PACK QUANTITY",
                f"updated quantities for pack {pack_id} by {delta}",
            )
        return self.get_pack(pack_id)