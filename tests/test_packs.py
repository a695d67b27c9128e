import sqlite3

import pytest

from polybase.courses import create_schema
from polybase.models import Course, CourseID, PartialPack, PolybaseError
from polybase.packs import Polybase


@pytest.fixture
def conn():
    connection = sqlite3.connect(":memory:")
    create_schema(connection)
    yield connection
    connection.close()


@pytest.fixture
def pb(conn):
    return Polybase(conn, "", False)


def _course(code, kind="Cours", part=1, name="Course", quantity=50, total=100):
    return Course(
        code=code,
        kind=kind,
        part=part,
        parts=1,
        name=name,
        quantity=quantity,
        total=total,
        shown=True,
        semester="S1",
    )


def _count(conn, table):
    return conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]


def _pack_course_count(conn, pack_id):
    return conn.execute(
        "SELECT COUNT(*) FROM pack_courses WHERE pack_id = ?", (pack_id,)
    ).fetchone()[0]


def _assert_pack_equal(pb, pack_id, want_name, want_courses):
    got = pb.get_pack(pack_id)
    assert got.id == pack_id
    assert got.name == want_name
    assert sorted(c.id() for c in got.courses) == sorted(c.id() for c in want_courses)


@pytest.fixture
def three_courses(pb):
    for course in (
        _course("CS101", "Cours", name="Programming I", quantity=50, total=100),
        _course("CS102", "TME", name="Programming Lab", quantity=30, total=60),
        _course("CS103", "TD", name="Programming Tutorial", quantity=20, total=40),
    ):
        pb.create_course("testuser", course)
    return [
        CourseID("CS101", "Cours", 1),
        CourseID("CS102", "TME", 1),
        CourseID("CS103", "TD", 1),
    ]


@pytest.mark.parametrize(
    "pack_name, indexes",
    [
        ("Programming Basics", [0]),
        ("Complete Programming", [0, 1, 2]),
        ("   Programming Pack   ", [0, 1]),
    ],
)
def test_create_pack_with_valid_courses(pb, conn, three_courses, pack_name, indexes):
    courses = [three_courses[i] for i in indexes]
    created = pb.create_pack("testuser", pack_name, courses)
    assert created.name == pack_name.strip()
    assert created.courses == courses
    _assert_pack_equal(pb, created.id, pack_name.strip(), courses)
    assert _pack_course_count(conn, created.id) == len(courses)


@pytest.mark.parametrize("courses", [[], None])
def test_create_pack_with_no_courses(pb, conn, courses):
    with pytest.raises(PolybaseError, match="pack must contain at least one course"):
        pb.create_pack("testuser", "Empty Pack", courses)
    assert _count(conn, "packs") == 0
    assert _count(conn, "pack_courses") == 0


@pytest.mark.parametrize(
    "courses",
    [
        [CourseID("FAKE101", "Missing", 1)],
        [CourseID("FAKE101", "Missing", 1), CourseID("FAKE102", "Missing", 1)],
        [CourseID("CS101", "Cours", 1), CourseID("FAKE101", "Missing", 1)],
        [CourseID("CS101", "WrongKind", 1)],
        [CourseID("CS101", "Cours", 999)],
    ],
)
def test_create_pack_with_non_existent_courses(pb, conn, courses):
    pb.create_course("testuser", _course("CS101", name="Programming"))
    with pytest.raises(PolybaseError, match="does not exist"):
        pb.create_pack("testuser", "Invalid Pack", courses)
    assert _count(conn, "courses") == 1
    assert _count(conn, "packs") == 0
    assert _count(conn, "pack_courses") == 0


@pytest.mark.parametrize(
    "indexes",
    [[0, 0], [0, 1, 0, 1], [0, 1, 0]],
)
def test_create_pack_with_duplicate_courses(pb, conn, three_courses, indexes):
    courses = [three_courses[i] for i in indexes]
    with pytest.raises(PolybaseError, match="duplicate course in pack"):
        pb.create_pack("testuser", "Duplicate Pack", courses)
    assert _count(conn, "packs") == 0
    assert _count(conn, "pack_courses") == 0


@pytest.mark.parametrize(
    "input_name, want_name",
    [
        ("   Programming Pack", "Programming Pack"),
        ("Programming Pack   ", "Programming Pack"),
        ("   Programming Pack   ", "Programming Pack"),
        ("   Programming    Pack   ", "Programming    Pack"),
        ("\tProgramming\nPack\t", "Programming\nPack"),
    ],
)
def test_create_pack_name_trimming(pb, input_name, want_name):
    pb.create_course("testuser", _course("CS101", name="Programming"))
    course_id = CourseID("CS101", "Cours", 1)
    created = pb.create_pack("testuser", input_name, [course_id])
    assert created.name == want_name
    _assert_pack_equal(pb, created.id, want_name, [course_id])


def test_create_pack_whitespace_name_rejected(pb, conn):
    pb.create_course("testuser", _course("CS101", name="Programming"))
    with pytest.raises(PolybaseError, match="pack name cannot be empty"):
        pb.create_pack("testuser", "     ", [CourseID("CS101", "Cours", 1)])
    assert _count(conn, "packs") == 0


def test_list_packs_empty_database(pb, conn):
    assert pb.list_packs() == []
    assert _count(conn, "packs") == 0
    assert _count(conn, "pack_courses") == 0


def test_list_single_pack(pb, conn):
    for course in (
        _course("CS101", "Cours", 1, "Programming I", 50, 100),
        _course("CS101", "Cours", 2, "Programming II", 45, 100),
        _course("CS101", "TME", 1, "Programming Lab", 30, 60),
    ):
        pb.create_course("testuser", course)
    courses = [
        CourseID("CS101", "Cours", 1),
        CourseID("CS101", "Cours", 2),
        CourseID("CS101", "TME", 1),
    ]
    created = pb.create_pack("testuser", "Programming Bundle", courses)

    packs = pb.list_packs()
    assert len(packs) == 1
    got = packs[0]
    assert got.id == created.id
    assert got.name == "Programming Bundle"
    assert {c.id() for c in got.courses} == {c.id() for c in courses}
    assert len(got.courses) == 3
    _assert_pack_equal(pb, created.id, "Programming Bundle", courses)
    assert _pack_course_count(conn, created.id) == 3


def test_list_packs_order(pb, three_courses):
    definitions = [
        ("Pack with 1 and 2", [three_courses[0], three_courses[1]]),
        ("Pack with 1 and 3", [three_courses[0], three_courses[2]]),
        ("Pack with 2 and 3", [three_courses[1], three_courses[2]]),
    ]
    created = [pb.create_pack("testuser", n, c) for n, c in definitions]
    packs = pb.list_packs()
    assert [p.id for p in packs] == [p.id for p in created]
    for pack, want in zip(packs, created):
        assert pack.name == want.name
        assert sorted(c.id() for c in pack.courses) == sorted(
            c.id() for c in want.courses
        )


def test_list_pack_includes_all_courses(pb, three_courses):
    definitions = [
        ("Pack 1", [three_courses[0], three_courses[1]]),
        ("Pack 2", [three_courses[1], three_courses[2]]),
    ]
    for name, courses in definitions:
        pb.create_pack("testuser", name, courses)
    packs = pb.list_packs()
    assert len(packs) == 2
    for pack, (name, courses) in zip(packs, definitions):
        assert pack.name == name
        assert {c.id() for c in pack.courses} == {c.id() for c in courses}


def test_list_packs_large_number(pb):
    ids = []
    for i in range(10):
        course = _course(f"CS{100 + i:03d}", name=f"Course {i + 1}")
        pb.create_course("testuser", course)
        ids.append(course.cid())
    created_ids = set()
    count = 0
    for i, first in enumerate(ids):
        for second in ids[i + 1:]:
            pack = pb.create_pack("testuser", f"Pack {count}", [first, second])
            created_ids.add(pack.id)
            count += 1
    packs = pb.list_packs()
    assert len(packs) == count == 45
    assert {p.id for p in packs} == created_ids
    for pack in packs:
        full = pb.get_pack(pack.id)
        assert full.name == pack.name
        assert sorted(c.id() for c in full.courses) == sorted(
            c.id() for c in pack.courses
        )


def test_get_pack_orders_courses_by_code_then_kind(pb):
    for kind in ("TD", "Cours", "TME", "Memento"):
        pb.create_course("testuser", _course("CS101", kind))
    order = [CourseID("CS101", k, 1) for k in ("TD", "Cours", "TME", "Memento")]
    pack = pb.create_pack("testuser", "All kinds", order)
    assert [c.kind for c in pack.courses] == ["Memento", "TME", "Cours", "TD"]


def test_get_missing_pack(pb):
    with pytest.raises(PolybaseError, match="pack not found"):
        pb.get_pack(42)


def test_pack_keeps_existing_after_course_deleted(pb, conn):
    pb.create_course("testuser", _course("CS101"))
    course_id = CourseID("CS101", "Cours", 1)
    pack = pb.create_pack("testuser", "Test Pack", [course_id])
    pb.delete_course("testuser", course_id)
    assert pb.get_pack(pack.id).courses == []
    assert _count(conn, "courses") == 0


def test_update_pack_name_and_courses(pb, three_courses):
    pack = pb.create_pack("testuser", "Old", [three_courses[0]])
    updated = pb.update_pack(
        "testuser",
        pack.id,
        PartialPack(name="  New  ", courses=[three_courses[1], three_courses[2]]),
    )
    assert updated.name == "New"
    assert {c.id() for c in updated.courses} == {"CS102/TME/1", "CS103/TD/1"}


def test_update_pack_requires_a_field(pb, three_courses):
    pack = pb.create_pack("testuser", "Pack", [three_courses[0]])
    with pytest.raises(PolybaseError, match="at least one field must be updated"):
        pb.update_pack("testuser", pack.id, PartialPack())


def test_update_missing_pack(pb):
    with pytest.raises(PolybaseError, match="pack not found"):
        pb.update_pack("testuser", 7, PartialPack(name="x"))


@pytest.mark.parametrize(
    "partial, message",
    [
        (PartialPack(name="   "), "pack name cannot be empty"),
        (PartialPack(courses=[]), "pack must contain at least one course"),
        (PartialPack(name="New", courses=[CourseID("NOPE", "TD", 1)]), "does not exist"),
    ],
)
def test_update_pack_invalid_rolls_back(pb, three_courses, partial, message):
    pack = pb.create_pack("testuser", "Pack", [three_courses[0]])
    with pytest.raises(PolybaseError, match=message):
        pb.update_pack("testuser", pack.id, partial)
    _assert_pack_equal(pb, pack.id, "Pack", [three_courses[0]])


def test_delete_pack(pb, conn, three_courses):
    pack = pb.create_pack("testuser", "Pack", three_courses)
    pb.delete_pack("testuser", pack.id)
    assert pb.list_packs() == []
    assert _count(conn, "pack_courses") == 0
    assert _count(conn, "courses") == 3


def test_delete_missing_pack(pb):
    with pytest.raises(PolybaseError, match="pack not found"):
        pb.delete_pack("testuser", 3)


def test_update_pack_quantity_increase(pb, three_courses):
    pack = pb.create_pack("testuser", "Pack", three_courses)
    pb.update_pack_quantity("testuser", pack.id, 5)
    quantities = [pb.get_course(c).quantity for c in three_courses]
    assert quantities == [55, 35, 25]


def test_update_pack_quantity_decrease_stops_at_zero(pb, three_courses):
    pack = pb.create_pack("testuser", "Pack", three_courses)
    pb.update_pack_quantity("testuser", pack.id, -25)
    quantities = [pb.get_course(c).quantity for c in three_courses]
    assert quantities == [25, 5, 0]


def test_update_pack_quantity_exceeding_total_rolls_back(pb, three_courses):
    pack = pb.create_pack("testuser", "Pack", three_courses)
    with pytest.raises(PolybaseError, match="quantity would exceed total for course"):
        pb.update_pack_quantity("testuser", pack.id, 25)
    quantities = [pb.get_course(c).quantity for c in three_courses]
    assert quantities == [50, 30, 20]


def test_update_pack_quantity_missing_pack(pb):
    with pytest.raises(PolybaseError, match="pack not found"):
        pb.update_pack_quantity("testuser", 99, 1)


def test_create_pack_logs_action(conn, tmp_path, capsys):
    log_file = tmp_path / "polybase.log"
    pb = Polybase(conn, str(log_file), False)
    pb.create_course("testuser", _course("CS101"))
    pack = pb.create_pack("testuser", "Pack", [CourseID("CS101", "Cours", 1)])
    lines = log_file.read_text(encoding="utf-8").splitlines()
    assert lines[-1].endswith(
        f"[testuser] CREATE PACK: created pack {pack.id} with 1 courses"
    )
    assert "CREATE PACK" in capsys.readouterr().out