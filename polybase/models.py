"""Course and pack records, identifiers and their validation rules."""

from __future__ import annotations

import re
from dataclasses import dataclass, field, fields, replace
from typing import Iterable, Optional

_ID_CODE_RE = re.compile(r"[A-Z0-9\-{},]+")
_ID_KIND_RE = re.compile(r"[a-zA-Z]+")
_COURSE_CODE_RE = re.compile(r"[A-Za-z0-9{},._-]+")
_SID_RE = re.compile(r"[^a-zA-Z0-9]+")
_INTEGER_RE = re.compile(r"[+-]?[0-9]+")

VALID_KINDS = ("TD", "Cours", "Memento", "TME")
VALID_SEMESTERS = ("S1", "S2")


class PolybaseError(Exception):
    """Raised when an operation on the course database fails."""


class CourseNotFound(PolybaseError):
    """Raised when a course does not exist."""

    def __init__(self, message: str = "course not found") -> None:
        super().__init__(message)


def _sid(code: str, kind: str, part: int) -> str:
    raw = f"course-{code}-{kind}-{part}"
    return _SID_RE.sub("-", raw).lower()


@dataclass(frozen=True)
class CourseID:
    """Identifies a course by code, kind and part number."""

    code: str
    kind: str
    part: int

    def id(self) -> str:
        """Return the slash-separated identifier, e.g. ``CS101/Cours/1``."""
        return f"{self.code}/{self.kind}/{self.part}"

    def sid(self) -> str:
        """Return a lowercase identifier safe for HTML ids."""
        return _sid(self.code, self.kind, self.part)

    def pid(self) -> str:
        """Return the space-separated identifier."""
        return f"{self.code} {self.kind} {self.part}"


@dataclass(frozen=True)
class Course:
    """A course document held in stock."""

    code: str
    kind: str
    part: int
    parts: int = 0
    name: str = ""
    quantity: int = 0
    total: int = 0
    shown: bool = False
    semester: str = ""

    def id(self) -> str:
        """Return the slash-separated identifier."""
        return f"{self.code}/{self.kind}/{self.part}"

    def cid(self) -> CourseID:
        """Return the identifier of this course."""
        return CourseID(self.code, self.kind, self.part)

    def sid(self) -> str:
        """Return a lowercase identifier safe for HTML ids."""
        return _sid(self.code, self.kind, self.part)


@dataclass
class PartialCourse:
    """A set of course fields to change; ``None`` means unchanged."""

    code: Optional[str] = None
    kind: Optional[str] = None
    part: Optional[int] = None
    parts: Optional[int] = None
    name: Optional[str] = None
    quantity: Optional[int] = None
    total: Optional[int] = None
    shown: Optional[bool] = None
    semester: Optional[str] = None

    def is_empty(self) -> bool:
        """Return True when no field is set."""
        return all(getattr(self, f.name) is None for f in fields(self))


@dataclass
class Pack:
    """A named bundle of courses."""

    id: int
    name: str
    courses: list[CourseID] = field(default_factory=list)


@dataclass
class PartialPack:
    """A set of pack fields to change; ``None`` means unchanged."""

    name: Optional[str] = None
    courses: Optional[list[CourseID]] = None


def validate_course_id(course_id: CourseID) -> CourseID:
    """Check the format of a course identifier and return it."""
    if not _ID_CODE_RE.fullmatch(course_id.code):
        raise PolybaseError(
            "invalid code format: must only contain uppercase letters, "
            "numbers, dashes, and curly braces"
        )
    if not _ID_KIND_RE.fullmatch(course_id.kind):
        raise PolybaseError("invalid kind format: must only contain letters")
    return course_id


def validate_semester(semester: str) -> None:
    """Check that a semester is ``S1`` or ``S2``."""
    if semester == "":
        raise PolybaseError("semester cannot be empty")
    if not semester.startswith("S"):
        raise PolybaseError("semester must start with 'S'")
    rest = semester[1:]
    if not _INTEGER_RE.fullmatch(rest):
        raise PolybaseError(
            "invalid semester format: must be S followed by a number"
        )
    if int(rest) not in (1, 2):
        raise PolybaseError(
            "invalid semester format: semester number must be either 1 or 2"
        )


def validate_quantity(quantity: int, total: int) -> None:
    """Check that ``0 <= quantity <= total`` and ``total > 0``."""
    if quantity < 0:
        raise PolybaseError("quantity cannot be negative")
    if total <= 0:
        raise PolybaseError("total cannot be negative or nil")
    if quantity > total:
        raise PolybaseError(
            f"quantity ({quantity}) cannot exceed total ({total})"
        )


def clamp_quantity(quantity: int, total: int) -> int:
    """Bound a quantity to the range ``0..total``."""
    if quantity < 0:
        return 0
    if quantity > total:
        return total
    return quantity


def validate_course(course: Course) -> Course:
    """Check every field of a course and return it with text fields trimmed."""
    code = course.code.strip()
    if code == "":
        raise PolybaseError("CODE cannot be empty")
    if not _COURSE_CODE_RE.fullmatch(code):
        raise PolybaseError(
            "CODE can only contain letters, numbers, and the characters {},._"
        )

    kind = course.kind.strip()
    if kind == "":
        raise PolybaseError("KIND cannot be empty")
    if kind not in VALID_KINDS:
        raise PolybaseError("KIND must be one of: TD, Cours, Memento, TME")

    if course.part <= 0 or course.part >= 1000:
        raise PolybaseError("PART must be in 1-1000")

    name = course.name.strip()

    try:
        validate_quantity(course.quantity, course.total)
    except PolybaseError as exc:
        raise PolybaseError(f"invalid quantities: {exc}") from exc

    semester = course.semester.strip()
    if semester not in VALID_SEMESTERS:
        raise PolybaseError("SEMESTER must be either S1 or S2")

    return replace(course, code=code, kind=kind, name=name, semester=semester)


def validate_pack(name: str, courses: Optional[Iterable[CourseID]]) -> None:
    """Check a pack name and its list of distinct courses."""
    if name.strip() == "":
        raise PolybaseError("pack name cannot be empty")
    course_list = list(courses or ())
    if not course_list:
        raise PolybaseError("pack must contain at least one course")
    seen: set[str] = set()
    for course_id in course_list:
        key = course_id.id()
        if key in seen:
            raise PolybaseError(f"duplicate course in pack: {key}")
        seen.add(key)