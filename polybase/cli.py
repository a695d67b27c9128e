"""Command-line interface for managing the course database."""

from __future__ import annotations

import getpass
import json
import os
import re
import sqlite3
import sys
from collections import deque
from contextlib import closing
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional, Sequence, Union

from .courses import create_schema
from .models import Course, CourseID, PartialCourse, PolybaseError
from .packs import Polybase

try:
    import termios
    import tty
except ImportError:  # pragma: no cover - platforms without termios
    termios = None
    tty = None

DEFAULT_DB_PATH = "/var/lib/polybase/polybase.db"
DEFAULT_LOG_PATH = "/var/log/polybase/polybase.log"
VERSION = "0.1.0"

_INTEGER_RE = re.compile(r"[+-]?[0-9]+")

_BOOL_VALUES = {
    "1": True, "t": True, "T": True, "TRUE": True, "true": True, "True": True,
    "0": False, "f": False, "F": False, "FALSE": False, "false": False, "False": False,
}

_USAGE = f"""Usage: polybase [-db PATH] command [arguments]

OPTIONS
    -db PATH    Path to database file (default: {DEFAULT_DB_PATH})
    -h          Print help information
    -v          Print version information

COMMANDS
    create      Create a new course entry
    get         Display details for a specific course
    update      Update course information
    delete      Remove a course from the database
    list        List all courses
    quantity    Update course quantity
    visibility  Set course visibility
    help        Show help message for a specific command

Use "polybase help command" for more information about a command.
"""

_COMMAND_USAGE = {
    "create": """Usage: polybase create <CODE> <KIND> <PART> [OPTIONS]
    Create a new course entry.

    Options:
    -n NAME      Course name (required)
    -q QUANTITY  Initial quantity (required)
    -t TOTAL     Total quantity (default: same as quantity)
    -s SEMESTER  Semester (required)
    -json        Output in JSON format
""",
    "get": """Usage: polybase get <CODE> <KIND> <PART> [OPTIONS]
    Display details for a specific course

    Options:
    -json        Output in JSON format
""",
    "update": """Usage: polybase update <CODE> <KIND> <PART> [OPTIONS]
    Update course information

    Options:
    -c CODE      Update course code
    -k KEY       Update course key
    -p PART      Update course part
    -n NAME      Update course name
    -q QUANTITY  Update quantity
    -t TOTAL     Update total quantity
    -s SEMESTER  Update semester
    -json        Output in JSON format
""",
    "delete": """Usage: polybase delete <CODE> <KIND> <PART>
    Remove a course from the database
""",
    "list": """Usage: polybase list [OPTIONS]
    List all courses

    Options:
    -a              Show hidden courses
    -s SEMESTER     Filter by semester
    -c CODE         Filter by code prefix
    -k KIND         Filter by kind
    -p PART         Filter by part number
    -json           Output in JSON format
""",
    "quantity": """Usage: polybase quantity <CODE> <KIND> <PART> <DELTA> [OPTIONS]
    Update course quantity by adding DELTA (can be negative)

    Options:
    -json           Output in JSON format
""",
    "visibility": """Usage: polybase visibility <CODE> <KIND> <PART> [-s STATE] [OPTIONS]
    Set course visibility

    Options:
    -s              Set visibility state (default: true)
    -json           Output in JSON format
""",
}


# -- flag parsing ------------------------------------------------------------

FlagValue = Union[str, int, bool]


@dataclass(frozen=True)
class _Flag:
    name: str
    default: FlagValue


@dataclass
class _ParsedFlags:
    values: dict[str, FlagValue]
    given: set[str] = field(default_factory=set)
    rest: list[str] = field(default_factory=list)


def _convert(flag: _Flag, text: str) -> FlagValue:
    if isinstance(flag.default, bool):
        if text not in _BOOL_VALUES:
            raise PolybaseError(f'invalid boolean value "{text}" for -{flag.name}: parse error')
        return _BOOL_VALUES[text]
    if isinstance(flag.default, int):
        try:
            return int(text, 0)
        except ValueError:
            raise PolybaseError(
                f'invalid value "{text}" for flag -{flag.name}: parse error'
            ) from None
    return text


def _parse_flags(specs: Iterable[_Flag], args: Sequence[str]) -> _ParsedFlags:
    """Parse single-dash flags up to the first non-flag argument."""
    flags = {spec.name: spec for spec in specs}
    parsed = _ParsedFlags(values={name: spec.default for name, spec in flags.items()})
    pending = deque(args)
    while pending:
        arg = pending[0]
        if len(arg) < 2 or not arg.startswith("-"):
            break
        pending.popleft()
        if arg == "--":
            break
        body = arg[2:] if arg.startswith("--") else arg[1:]
        if not body or body[0] in "-=":
            raise PolybaseError(f"bad flag syntax: {arg}")
        name, eq, value = body.partition("=")
        spec = flags.get(name)
        if spec is None:
            if name in ("h", "help"):
                raise PolybaseError("flag: help requested")
            raise PolybaseError(f"flag provided but not defined: -{name}")
        if isinstance(spec.default, bool) and not eq:
            parsed.values[name] = True
        else:
            if not eq:
                if not pending:
                    raise PolybaseError(f"flag needs an argument: -{name}")
                value = pending.popleft()
            parsed.values[name] = _convert(spec, value)
        parsed.given.add(name)
    parsed.rest = list(pending)
    return parsed


def _atoi(text: str, message: str) -> int:
    if not _INTEGER_RE.fullmatch(text):
        raise PolybaseError(f"{message}: {text}")
    return int(text)


# -- output ------------------------------------------------------------------

def _to_json(value: object) -> str:
    text = json.dumps(value, ensure_ascii=False, separators=(",", ":"))
    for char, escaped in (
        ("<", "\\u003c"), (">", "\\u003e"), ("&", "\\u0026"),
        ("\u2028", "\\u2028"), ("\u2029", "\\u2029"),
    ):
        text = text.replace(char, escaped)
    return text + "\n"


def _print_usage(command: Optional[str] = None) -> None:
    """Print the general usage, or that of ``command`` when one is named."""
    text = _USAGE if command is None else _COMMAND_USAGE[command]
    sys.stdout.write(text)


def format_course(course: Course) -> str:
    """Render a course as aligned ``Label: value`` lines."""
    rows = [
        ("Code:", course.code),
        ("Kind:", course.kind),
        ("Part:", f"{course.part}/{course.parts}"),
        ("Name:", course.name),
        ("Quantity:", f"{course.quantity}/{course.total}"),
        ("Semester:", course.semester),
        ("Visible:", "true" if course.shown else "false"),
    ]
    width = max(len(label) for label, _ in rows) + 2
    return "".join(f"{label:<{width}}{value}\n" for label, value in rows)


def print_course(course: Course, json_output: bool) -> None:
    """Write one course to standard output, as text or JSON."""
    if json_output:
        sys.stdout.write(_to_json({
            "code": course.code,
            "kind": course.kind,
            "part": course.part,
            "parts": course.parts,
            "name": course.name,
            "quantity": course.quantity,
            "total": course.total,
            "visible": course.shown,
            "semester": course.semester,
        }))
        return
    sys.stdout.write(format_course(course))


def print_courses(courses: Sequence[Course], json_output: bool) -> None:
    """Write several courses to standard output, as text or JSON."""
    if json_output:
        records = [
            {
                "Code": c.code,
                "Kind": c.kind,
                "Part": c.part,
                "Parts": c.parts,
                "Name": c.name,
                "Quantity": c.quantity,
                "Total": c.total,
                "Shown": c.shown,
                "Semester": c.semester,
            }
            for c in courses
        ]
        sys.stdout.write(_to_json(records or None))
        return
    sys.stdout.write("\n".join(format_course(c) for c in courses))


# -- helpers -----------------------------------------------------------------

def get_current_user() -> str:
    """Return the login name of the current user, without any domain."""
    try:
        username = getpass.getuser()
    except (OSError, KeyError, ImportError):
        return "unknown-user"
    return username.rsplit("\\", 1)[-1]


def _read_key() -> str:
    stdin = sys.stdin
    if termios is not None and stdin.isatty():
        fd = stdin.fileno()
        saved = termios.tcgetattr(fd)
        try:
            tty.setraw(fd)
            data = os.read(fd, 1)
        finally:
            try:
                termios.tcsetattr(fd, termios.TCSADRAIN, saved)
            except termios.error as exc:
                raise PolybaseError(f"failed to restore terminal: {exc}") from exc
        key = data.decode("utf-8", errors="replace")
    else:
        key = stdin.read(1)
    if not key:
        raise PolybaseError("EOF")
    return key


def _require_args(args: Sequence[str], count: int, command: str, message: str) -> None:
    if len(args) < count:
        _print_usage(command)
        raise PolybaseError(message)


# -- commands ----------------------------------------------------------------

def _run_create(pb: Polybase, args: list[str]) -> None:
    _require_args(args, 3, "create", "CODE, KIND and PART are required")
    opts = _parse_flags(
        [_Flag("n", ""), _Flag("q", -1), _Flag("t", 0), _Flag("s", ""), _Flag("json", False)],
        args[3:],
    ).values
    if opts["n"] == "" or opts["q"] == -1 or opts["s"] == "":
        _print_usage("create")
        raise PolybaseError("name (-n), quantity (-q) and semester (-s) are required")
    part = _atoi(args[2], "invalid part number")
    total = opts["t"] if opts["t"] != 0 else opts["q"]
    course = Course(
        code=args[0],
        kind=args[1],
        part=part,
        parts=0,
        name=opts["n"],
        quantity=opts["q"],
        total=total,
        shown=True,
        semester=opts["s"],
    )
    created = pb.create_course(get_current_user(), course)
    print_course(created, bool(opts["json"]))


def _run_get(pb: Polybase, args: list[str]) -> None:
    _require_args(args, 3, "get", "CODE, KIND and PART are required")
    part = _atoi(args[2], "invalid part number")
    opts = _parse_flags([_Flag("json", False)], args[3:]).values
    course = pb.get_course(CourseID(args[0], args[1], part))
    print_course(course, bool(opts["json"]))


_UPDATE_FIELDS = {
    "c": "code", "k": "kind", "p": "part", "n": "name",
    "q": "quantity", "t": "total", "s": "semester",
}


def _run_update(pb: Polybase, args: list[str]) -> None:
    _require_args(args, 3, "update", "CODE, KIND and PART are required")
    part = _atoi(args[2], "invalid part number")
    course_id = CourseID(args[0], args[1], part)
    parsed = _parse_flags(
        [
            _Flag("c", ""), _Flag("k", ""), _Flag("p", 0), _Flag("n", ""),
            _Flag("q", 0), _Flag("t", 0), _Flag("s", ""), _Flag("json", False),
        ],
        args[3:],
    )
    partial = PartialCourse(**{
        attr: parsed.values[flag]
        for flag, attr in _UPDATE_FIELDS.items()
        if flag in parsed.given
    })
    updated = pb.update_course(get_current_user(), course_id, partial)
    print_course(updated, bool(parsed.values["json"]))


def _run_delete(pb: Polybase, args: list[str]) -> None:
    _require_args(args, 3, "delete", "CODE, KIND and PART are required")
    part = _atoi(args[2], "invalid part number")
    course_id = CourseID(args[0], args[1], part)
    course = pb.get_course(course_id)
    print("Are you sure you want to delete this course?")
    print(f"  {course.code} {course.kind} {course.part} [y/N]: ", end="", flush=True)
    key = _read_key()
    print()
    if key not in ("y", "Y"):
        return
    pb.delete_course(get_current_user(), course_id)


def _run_list(pb: Polybase, args: list[str]) -> None:
    parsed = _parse_flags(
        [
            _Flag("a", False), _Flag("s", ""), _Flag("c", ""),
            _Flag("k", ""), _Flag("p", 0), _Flag("json", False),
        ],
        args,
    )
    values, given = parsed.values, parsed.given
    courses = pb.list_courses(
        show_hidden=bool(values["a"]),
        semester=values["s"] if "s" in given else None,
        code=values["c"] if "c" in given else None,
        kind=values["k"] if "k" in given else None,
        part=values["p"] if "p" in given else None,
    )
    print_courses(courses, bool(values["json"]))


def _run_quantity(pb: Polybase, args: list[str]) -> None:
    _require_args(args, 4, "quantity", "CODE, KIND, PART and DELTA are required")
    part = _atoi(args[2], "invalid part number")
    delta = _atoi(args[3], "invalid delta value")
    opts = _parse_flags([_Flag("json", False)], args[4:]).values
    updated = pb.update_course_quantity(
        get_current_user(), CourseID(args[0], args[1], part), delta
    )
    print_course(updated, bool(opts["json"]))


def _run_visibility(pb: Polybase, args: list[str]) -> None:
    _require_args(args, 3, "visibility", "CODE, KIND and PART are required")
    opts = _parse_flags([_Flag("s", True), _Flag("json", False)], args[3:]).values
    part = _atoi(args[2], "invalid part number")
    updated = pb.update_course_shown(
        get_current_user(), CourseID(args[0], args[1], part), bool(opts["s"])
    )
    print_course(updated, bool(opts["json"]))


def run_help(args: Sequence[str]) -> None:
    """Print general help, or the help of the command named first in ``args``."""
    if not args:
        _print_usage()
        return
    command = args[0]
    if command not in _COMMAND_USAGE:
        _print_usage()
        raise PolybaseError(f'unknown command "{command}"')
    _print_usage(command)


_COMMANDS: dict[str, Callable[[Polybase, list[str]], None]] = {
    "create": _run_create,
    "get": _run_get,
    "update": _run_update,
    "delete": _run_delete,
    "list": _run_list,
    "quantity": _run_quantity,
    "visibility": _run_visibility,
}


def dispatch(pb: Polybase, args: Sequence[str]) -> None:
    """Run the command named by ``args[0]`` with the remaining arguments."""
    if not args:
        raise PolybaseError("no command specified")
    command, rest = args[0], list(args[1:])
    if command == "help":
        run_help(rest)
        return
    handler = _COMMANDS.get(command)
    if handler is None:
        _print_usage()
        raise PolybaseError(f"unknown command: {command}")
    handler(pb, rest)


def parse_args(argv: Sequence[str]) -> Optional[tuple[str, list[str]]]:
    """Return the database path and command arguments.

    Returns ``None`` when help or version information was printed and
    there is nothing left to run.
    """
    argv = list(argv)
    for index, arg in enumerate(argv):
        if arg in ("-h", "help"):
            try:
                rest = _parse_flags([], argv[index + 1:]).rest
            except PolybaseError:
                _print_usage()
                raise
            run_help(rest)
            return None

    if any(arg in ("-v", "version") for arg in argv):
        print(f"polybase version {VERSION}")
        return None

    try:
        parsed = _parse_flags([_Flag("db", DEFAULT_DB_PATH)], argv)
    except PolybaseError:
        _print_usage()
        raise
    if not parsed.rest:
        _print_usage()
        return None
    return str(parsed.values["db"]), parsed.rest


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Entry point of the ``polybase`` command; returns the exit status."""
    if argv is None:
        argv = sys.argv[1:]
    try:
        parsed = parse_args(argv)
        if parsed is None:
            return 0
        db_path, args = parsed
        try:
            conn = sqlite3.connect(db_path)
        except sqlite3.Error as exc:
            raise PolybaseError(f"failed to open database: {exc}") from exc
        with closing(conn):
            try:
                conn.execute("SELECT 1").fetchone()
                create_schema(conn)
            except sqlite3.Error as exc:
                raise PolybaseError(f"invalid database file: {exc}") from exc
            dispatch(Polybase(conn, DEFAULT_LOG_PATH, False), args)
    except PolybaseError as exc:
        sys.stderr.write(f"\nerror: {exc}\n")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())