# polybase

polybase keeps track of printed course handouts: lecture notes (`Cours`),
exercise sheets (`TD`), lab sheets (`TME`) and mementos (`Memento`). It stores
them in a SQLite database and can group them into packs. You can use it from
Python or from the `polybase` command.

## Installation

```
pip install .
```

No third-party libraries are needed.

## Command line

```
polybase [-db PATH] command [arguments]
```

The default database is `/var/lib/polybase/polybase.db`; use `-db` to pick
another file. The tables are created in it if they are missing.

| Command | What it does |
|---------|--------------|
| `create CODE KIND PART -n NAME -q QUANTITY [-t TOTAL] -s SEMESTER` | Add a course (the total defaults to the quantity) |
| `get CODE KIND PART` | Show one course |
| `update CODE KIND PART [-c CODE] [-k KIND] [-p PART] [-n NAME] [-q QTY] [-t TOTAL] [-s SEM]` | Change the given fields of a course |
| `delete CODE KIND PART` | Remove a course after you confirm with `y` |
| `list [-a] [-s SEM] [-c CODE] [-k KIND] [-p PART]` | List courses; `-a` includes hidden ones |
| `quantity CODE KIND PART DELTA` | Add to, or take from, the stock |
| `visibility CODE KIND PART [-s=false]` | Show or hide a course |
| `help [command]` | Show help |

`create`, `get`, `update`, `list`, `quantity` and `visibility` also take
`-json`. `polybase -h` prints help and `polybase -v` prints the version.

```
polybase -db ./stock.db create LU3IN005 TD 1 -n "Operating Systems" -q 30 -t 50 -s S1
polybase -db ./stock.db quantity LU3IN005 TD 1 -5
polybase -db ./stock.db list -s S1 -json
```

KIND is one of `TD`, `Cours`, `Memento`, `TME`. SEMESTER is `S1` or `S2`.
PART is between 1 and 999. The `quantity` command keeps the stock between 0
and the total. Courses are listed by semester (descending), then code, kind
and part.

The command appends each change to `/var/log/polybase/polybase.log` and echoes
that line; if the file cannot be written, the change still goes through.
On failure it prints `error: ...` to standard error and exits with status 1.

## Library

```python
import sqlite3

from polybase.courses import create_schema
from polybase.models import Course, CourseID, PartialCourse, PartialPack
from polybase.packs import Polybase

conn = sqlite3.connect("stock.db")
create_schema(conn)
pb = Polybase(conn, "", False)  # empty log path: nothing is logged

pb.create_course("alice", Course("LU3IN005", "TD", 1, 1, "Operating Systems", 30, 50, True, "S1"))
pb.update_course("alice", CourseID("LU3IN005", "TD", 1), PartialCourse(quantity=40))
pb.list_courses(show_hidden=True, semester="S1")

pack = pb.create_pack("alice", "Systems bundle", [CourseID("LU3IN005", "TD", 1)])
pb.update_pack("alice", pack.id, PartialPack(name="OS bundle"))
pb.update_pack_quantity("alice", pack.id, -1)
pb.list_packs()
```

`Polybase` offers the course operations of `CourseStore`
(`create_course`, `get_course`, `update_course`, `delete_course`,
`list_courses`, `update_course_quantity`, `update_course_shown`) and the pack
operations `create_pack`, `get_pack`, `update_pack`, `delete_pack`,
`list_packs` and `update_pack_quantity`.

- Creating a course always makes it visible, and every part of a course keeps
  `parts` equal to the highest part number of that code and kind.
- Renaming a course through `update_course` also updates the packs that hold it;
  deleting a course removes it from its packs.
- `update_pack_quantity` stops each course at zero when taking away, and fails
  without changing anything if adding would pass a course's total.

Errors are raised as `polybase.models.PolybaseError`. A missing course raises
`CourseNotFound`, a subclass of it. The helpers in `polybase.models`
(`validate_course`, `validate_course_id`, `validate_pack`,
`validate_quantity`, `validate_semester`, `clamp_quantity`) can be used on
their own.

## What it does not do

The `polybase` command only manages courses. Packs can be created, changed,
listed and deleted from Python, but the command has no pack subcommands.