"""Repository layer responsible for all database access."""

from __future__ import annotations

import json
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator, Optional, Sequence
from uuid import uuid4

from backend.domain.errors import ConflictError, InternalError, NotFoundError
from backend.domain.models import (
    Availability,
    Block,
    Booking,
    BookingStatus,
    Course,
    DayOfWeek,
    Meeting,
    ResourceKind,
    Room,
    Session,
    Teacher,
    Timetable,
    TimetableStatus,
)
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)


def _dump(values: Sequence[Any]) -> str:
    return json.dumps(list(values))


def _load(raw: Optional[str]) -> tuple[Any, ...]:
    if not raw:
        return ()
    return tuple(json.loads(raw))


def _row_to_room(row: sqlite3.Row) -> Room:
    return Room(
        room_id=str(row["room_id"]),
        name=str(row["name"]),
        capacity=int(row["capacity"]),
        room_type=str(row["room_type"]),
        equipment=_load(row["equipment"]),
    )


def _row_to_teacher(row: sqlite3.Row) -> Teacher:
    return Teacher(
        teacher_id=str(row["teacher_id"]),
        name=str(row["name"]),
        department=row["department"],
        qualifications=_load(row["qualifications"]),
        max_weekly_hours=float(row["max_weekly_hours"]),
        preferred_slots=_load(row["preferred_slots"]),
    )


def _row_to_course(row: sqlite3.Row) -> Course:
    return Course(
        course_id=str(row["course_id"]),
        code=str(row["code"]),
        name=str(row["name"]),
        credits=float(row["credits"]),
        weekly_hours=None if row["weekly_hours"] is None else float(row["weekly_hours"]),
        enrollment=int(row["enrollment"]),
        required_room_type=row["required_room_type"],
        required_equipment=_load(row["required_equipment"]),
        department=row["department"],
        student_group=row["student_group"],
        semester=None if row["semester"] is None else int(row["semester"]),
        prerequisites=_load(row["prerequisites"]),
    )


def _row_to_availability(row: sqlite3.Row) -> Availability:
    return Availability(
        availability_id=int(row["id"]),
        resource_id=str(row["resource_id"]),
        resource_kind=ResourceKind(row["resource_kind"]),
        day_of_week=DayOfWeek(row["day_of_week"]),
        start_time=str(row["start_time"]),
        end_time=str(row["end_time"]),
        is_active=bool(row["is_active"]),
    )


def _row_to_block(row: sqlite3.Row) -> Block:
    return Block(
        block_id=int(row["id"]),
        resource_id=str(row["resource_id"]),
        resource_kind=ResourceKind(row["resource_kind"]),
        date=str(row["date"]),
        start_time=str(row["start_time"]),
        end_time=str(row["end_time"]),
        reason=str(row["reason"] or ""),
    )


def _row_to_booking(row: sqlite3.Row) -> Booking:
    return Booking(
        booking_id=int(row["id"]),
        room_id=str(row["room_id"]),
        booked_by=str(row["booked_by"]),
        purpose=str(row["purpose"] or ""),
        date=str(row["date"]),
        start_time=str(row["start_time"]),
        end_time=str(row["end_time"]),
        status=BookingStatus(row["status"]),
    )


def _row_to_session(row: sqlite3.Row) -> Session:
    return Session(
        session_id=str(row["session_id"]),
        course_id=str(row["course_id"]),
        teacher_id=str(row["teacher_id"]),
        room_id=str(row["room_id"]),
        day_of_week=DayOfWeek(row["day_of_week"]),
        start_time=str(row["start_time"]),
        end_time=str(row["end_time"]),
        student_group=row["student_group"],
    )


_ACTIVE_SESSIONS_SQL = """
    SELECT s.*
    FROM TimetableSessions AS s
    INNER JOIN Timetables AS t ON t.timetable_id = s.timetable_id
    WHERE t.status = 'active'
      AND s.day_of_week = ?
      AND s.{column} = ?
    ORDER BY s.start_time ASC, s.session_id ASC;
"""


class WriteUnitOfWork:
    """Queries and inserts executed inside one immediate write transaction."""

    def __init__(self, connection: sqlite3.Connection) -> None:
        self._conn = connection

    def list_approved_bookings(self, room_id: str, date: str) -> list[Booking]:
        rows = self._conn.execute(
            """
            SELECT * FROM RoomBookings
            WHERE room_id = ? AND date = ? AND status = 'approved'
            ORDER BY start_time ASC, id ASC;
            """,
            (room_id, date),
        ).fetchall()
        return [_row_to_booking(row) for row in rows]

    def list_active_sessions(
        self,
        resource_kind: ResourceKind,
        resource_id: str,
        day: DayOfWeek,
    ) -> list[Session]:
        column = "teacher_id" if resource_kind is ResourceKind.TEACHER else "room_id"
        rows = self._conn.execute(
            _ACTIVE_SESSIONS_SQL.format(column=column),
            (day.value, resource_id),
        ).fetchall()
        return [_row_to_session(row) for row in rows]

    def insert_booking(
        self,
        room_id: str,
        booked_by: str,
        purpose: str,
        date: str,
        start_time: str,
        end_time: str,
    ) -> Booking:
        cursor = self._conn.execute(
            """
            INSERT INTO RoomBookings (room_id, booked_by, purpose, date, start_time, end_time, status)
            VALUES (?, ?, ?, ?, ?, ?, 'approved');
            """,
            (room_id, booked_by, purpose, date, start_time, end_time),
        )
        return Booking(
            booking_id=int(cursor.lastrowid),
            room_id=room_id,
            booked_by=booked_by,
            purpose=purpose,
            date=date,
            start_time=start_time,
            end_time=end_time,
            status=BookingStatus.APPROVED,
        )

    def list_meetings_for_teacher(self, teacher_id: str, date: str) -> list[Meeting]:
        rows = self._conn.execute(
            """
            SELECT m.id
            FROM Meetings AS m
            INNER JOIN MeetingParticipants AS p ON p.meeting_id = m.id
            WHERE p.teacher_id = ? AND m.date = ?
            ORDER BY m.start_time ASC, m.id ASC;
            """,
            (teacher_id, date),
        ).fetchall()
        return [_load_meeting(self._conn, int(row["id"])) for row in rows]

    def insert_meeting(
        self,
        title: str,
        date: str,
        start_time: str,
        end_time: str,
        participants: Sequence[str],
        created_by: str,
    ) -> Meeting:
        cursor = self._conn.execute(
            """
            INSERT INTO Meetings (title, date, start_time, end_time, created_by)
            VALUES (?, ?, ?, ?, ?);
            """,
            (title, date, start_time, end_time, created_by),
        )
        meeting_id = int(cursor.lastrowid)
        self._conn.executemany(
            "INSERT INTO MeetingParticipants (meeting_id, teacher_id) VALUES (?, ?);",
            [(meeting_id, teacher_id) for teacher_id in participants],
        )
        return Meeting(
            meeting_id=meeting_id,
            title=title,
            date=date,
            start_time=start_time,
            end_time=end_time,
            participants=list(participants),
            created_by=created_by,
        )


def _load_meeting(conn: sqlite3.Connection, meeting_id: int) -> Meeting:
    row = conn.execute("SELECT * FROM Meetings WHERE id = ?;", (meeting_id,)).fetchone()
    participants = [
        str(item["teacher_id"])
        for item in conn.execute(
            "SELECT teacher_id FROM MeetingParticipants WHERE meeting_id = ? ORDER BY teacher_id;",
            (meeting_id,),
        ).fetchall()
    ]
    return Meeting(
        meeting_id=int(row["id"]),
        title=str(row["title"]),
        date=str(row["date"]),
        start_time=str(row["start_time"]),
        end_time=str(row["end_time"]),
        participants=participants,
        created_by=str(row["created_by"]),
    )


class DataRepository:
    """Encapsulates SQLite access so business logic stays storage-agnostic."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._db_path = Path(self._settings.database_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._write_lock = threading.RLock()

    @property
    def database_path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        connection = sqlite3.connect(self._db_path, timeout=30.0)
        connection.row_factory = sqlite3.Row
        connection.execute("PRAGMA foreign_keys = ON;")
        return connection

    @contextmanager
    def write_transaction(self) -> Iterator[WriteUnitOfWork]:
        """Run check-then-insert work as one ``BEGIN IMMEDIATE`` transaction.

        The reserved lock is taken before the first read, so a second writer
        waits until this one commits and then sees its rows.
        """
        with self._write_lock:
            connection = sqlite3.connect(self._db_path, timeout=30.0, isolation_level=None)
            connection.row_factory = sqlite3.Row
            try:
                connection.execute("PRAGMA foreign_keys = ON;")
                connection.execute("BEGIN IMMEDIATE;")
                try:
                    yield WriteUnitOfWork(connection)
                except BaseException:
                    connection.execute("ROLLBACK;")
                    raise
                connection.execute("COMMIT;")
            finally:
                connection.close()

    def initialize_database(self) -> None:
        """Create all persistence artifacts before API startup."""
        try:
            with self._connect() as conn:
                cursor = conn.cursor()
                cursor.executescript(
                    """
                    CREATE TABLE IF NOT EXISTS Rooms (
                        room_id TEXT PRIMARY KEY,
                        name TEXT NOT NULL,
                        capacity INTEGER NOT NULL CHECK (capacity > 0),
                        room_type TEXT NOT NULL,
                        equipment TEXT NOT NULL DEFAULT '[]'
                    );

                    CREATE TABLE IF NOT EXISTS Teachers (
                        teacher_id TEXT PRIMARY KEY,
                        name TEXT NOT NULL,
                        department TEXT,
                        qualifications TEXT NOT NULL DEFAULT '[]',
                        max_weekly_hours REAL NOT NULL,
                        preferred_slots TEXT NOT NULL DEFAULT '[]'
                    );

                    CREATE TABLE IF NOT EXISTS Courses (
                        course_id TEXT PRIMARY KEY,
                        code TEXT NOT NULL UNIQUE,
                        name TEXT NOT NULL,
                        credits REAL NOT NULL,
                        weekly_hours REAL,
                        enrollment INTEGER NOT NULL,
                        required_room_type TEXT,
                        required_equipment TEXT NOT NULL DEFAULT '[]',
                        department TEXT,
                        student_group TEXT,
                        semester INTEGER,
                        prerequisites TEXT NOT NULL DEFAULT '[]'
                    );

                    CREATE TABLE IF NOT EXISTS Availability (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        resource_kind TEXT NOT NULL CHECK (resource_kind IN ('teacher', 'room')),
                        resource_id TEXT NOT NULL,
                        day_of_week TEXT NOT NULL,
                        start_time TEXT NOT NULL,
                        end_time TEXT NOT NULL,
                        is_active INTEGER NOT NULL DEFAULT 1 CHECK (is_active IN (0, 1))
                    );

                    CREATE UNIQUE INDEX IF NOT EXISTS idx_availability_active_resource_day
                    ON Availability(resource_kind, resource_id, day_of_week)
                    WHERE is_active = 1;

                    CREATE TABLE IF NOT EXISTS Blocks (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        resource_kind TEXT NOT NULL CHECK (resource_kind IN ('teacher', 'room')),
                        resource_id TEXT NOT NULL,
                        date TEXT NOT NULL,
                        start_time TEXT NOT NULL,
                        end_time TEXT NOT NULL,
                        reason TEXT
                    );

                    CREATE INDEX IF NOT EXISTS idx_blocks_resource_date
                    ON Blocks(resource_kind, resource_id, date);

                    CREATE TABLE IF NOT EXISTS RoomBookings (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        room_id TEXT NOT NULL,
                        booked_by TEXT NOT NULL,
                        purpose TEXT,
                        date TEXT NOT NULL,
                        start_time TEXT NOT NULL,
                        end_time TEXT NOT NULL,
                        status TEXT NOT NULL CHECK (status IN ('approved', 'cancelled')),
                        created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                        FOREIGN KEY (room_id) REFERENCES Rooms(room_id)
                    );

                    CREATE INDEX IF NOT EXISTS idx_bookings_room_date_status
                    ON RoomBookings(room_id, date, status);

                    CREATE TABLE IF NOT EXISTS Timetables (
                        timetable_id TEXT PRIMARY KEY,
                        name TEXT NOT NULL,
                        status TEXT NOT NULL CHECK (status IN ('draft', 'active', 'archived')),
                        algorithm TEXT,
                        quality_score REAL,
                        created_at DATETIME DEFAULT CURRENT_TIMESTAMP
                    );

                    CREATE TABLE IF NOT EXISTS TimetableSessions (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        timetable_id TEXT NOT NULL,
                        session_id TEXT NOT NULL,
                        course_id TEXT NOT NULL,
                        teacher_id TEXT NOT NULL,
                        room_id TEXT NOT NULL,
                        day_of_week TEXT NOT NULL,
                        start_time TEXT NOT NULL,
                        end_time TEXT NOT NULL,
                        student_group TEXT,
                        FOREIGN KEY (timetable_id) REFERENCES Timetables(timetable_id)
                    );

                    CREATE INDEX IF NOT EXISTS idx_sessions_timetable_day
                    ON TimetableSessions(timetable_id, day_of_week);

                    CREATE TABLE IF NOT EXISTS Meetings (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        title TEXT NOT NULL,
                        date TEXT NOT NULL,
                        start_time TEXT NOT NULL,
                        end_time TEXT NOT NULL,
                        created_by TEXT NOT NULL
                    );

                    CREATE TABLE IF NOT EXISTS MeetingParticipants (
                        meeting_id INTEGER NOT NULL,
                        teacher_id TEXT NOT NULL,
                        PRIMARY KEY (meeting_id, teacher_id),
                        FOREIGN KEY (meeting_id) REFERENCES Meetings(id)
                    );
                    """
                )
                conn.commit()
            logger.info("Database initialized at %s", self._db_path)
        except sqlite3.Error as exc:
            raise InternalError(f"Database initialization failed: {exc}") from exc

    def seed_demo_catalog_if_empty(self) -> None:
        """Seed a small deterministic catalogue only when no rooms exist."""
        try:
            with self._connect() as conn:
                cursor = conn.cursor()
                cursor.execute("SELECT COUNT(*) AS count FROM Rooms;")
                if int(cursor.fetchone()["count"]) > 0:
                    logger.info("Catalogue already present; skipping demo seed")
                    return
            rooms = [
                Room("R101", "Room 101", 40, "classroom", ("projector",)),
                Room("R102", "Room 102", 30, "classroom", ()),
                Room("R201", "Lecture Hall 201", 120, "lecture_hall", ("projector", "microphone")),
                Room("LAB1", "Computer Lab 1", 35, "lab", ("computers", "projector")),
            ]
            teachers = [
                Teacher("T-ADA", "Ada Byron", "CS", ("CS101", "CS201"), 18.0, ("Monday 09:00",)),
                Teacher("T-ALAN", "Alan Turing", "CS", ("CS201", "CS301"), 16.0, ()),
                Teacher("T-EMMY", "Emmy Noether", "MATH", ("MATH101", "MATH201"), 18.0, ()),
            ]
            courses = [
                Course("C-CS101", "CS101", "Programming I", 3.0, None, 35, "lab", ("computers",), "CS", "CS-Y1", 1),
                Course("C-CS201", "CS201", "Data Structures", 4.0, None, 30, None, (), "CS", "CS-Y2", 2, ("CS101",)),
                Course("C-CS301", "CS301", "Algorithms", 3.0, None, 30, None, (), "CS", "CS-Y3", 3, ("CS201",)),
                Course("C-MATH101", "MATH101", "Calculus I", 4.0, None, 100, "lecture_hall", (), "MATH", "CS-Y1", 1),
                Course("C-MATH201", "MATH201", "Linear Algebra", 3.0, None, 30, None, (), "MATH", "CS-Y2", 2),
            ]
            for room in rooms:
                self.upsert_room(room)
            for teacher in teachers:
                self.upsert_teacher(teacher)
            for course in courses:
                self.upsert_course(course)
            logger.info(
                "Demo catalogue seeded | rooms=%s | teachers=%s | courses=%s",
                len(rooms),
                len(teachers),
                len(courses),
            )
        except sqlite3.Error as exc:
            raise InternalError(f"Demo catalogue seeding failed: {exc}") from exc

    # --- Catalogue -------------------------------------------------------

    def upsert_room(self, room: Room) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO Rooms (room_id, name, capacity, room_type, equipment)
                VALUES (?, ?, ?, ?, ?);
                """,
                (room.room_id, room.name, room.capacity, room.room_type, _dump(room.equipment)),
            )
            conn.commit()

    def upsert_teacher(self, teacher: Teacher) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO Teachers (
                    teacher_id, name, department, qualifications, max_weekly_hours, preferred_slots
                )
                VALUES (?, ?, ?, ?, ?, ?);
                """,
                (
                    teacher.teacher_id,
                    teacher.name,
                    teacher.department,
                    _dump(teacher.qualifications),
                    teacher.max_weekly_hours,
                    _dump(teacher.preferred_slots),
                ),
            )
            conn.commit()

    def upsert_course(self, course: Course) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO Courses (
                    course_id, code, name, credits, weekly_hours, enrollment,
                    required_room_type, required_equipment, department,
                    student_group, semester, prerequisites
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
                """,
                (
                    course.course_id,
                    course.code,
                    course.name,
                    course.credits,
                    course.weekly_hours,
                    course.enrollment,
                    course.required_room_type,
                    _dump(course.required_equipment),
                    course.department,
                    course.student_group,
                    course.semester,
                    _dump(course.prerequisites),
                ),
            )
            conn.commit()

    def get_room(self, room_id: str) -> Optional[Room]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM Rooms WHERE room_id = ?;", (room_id,)).fetchone()
            return None if row is None else _row_to_room(row)

    def list_rooms(self) -> list[Room]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM Rooms ORDER BY room_id ASC;").fetchall()
            return [_row_to_room(row) for row in rows]

    def list_teachers(self) -> list[Teacher]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM Teachers ORDER BY teacher_id ASC;").fetchall()
            return [_row_to_teacher(row) for row in rows]

    def list_courses(self) -> list[Course]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM Courses ORDER BY code ASC;").fetchall()
            return [_row_to_course(row) for row in rows]

    # --- Availability and blocks -------------------------------------------

    def list_availability(
        self,
        resource_kind: ResourceKind,
        resource_id: str,
        day: Optional[DayOfWeek] = None,
        active_only: bool = True,
    ) -> list[Availability]:
        clauses = ["resource_kind = ?", "resource_id = ?"]
        params: list[Any] = [resource_kind.value, resource_id]
        if day is not None:
            clauses.append("day_of_week = ?")
            params.append(day.value)
        if active_only:
            clauses.append("is_active = 1")
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT * FROM Availability WHERE {' AND '.join(clauses)} ORDER BY start_time ASC, id ASC;",
                tuple(params),
            ).fetchall()
            return [_row_to_availability(row) for row in rows]

    def list_active_availability(self, resource_kind: ResourceKind) -> list[Availability]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM Availability
                WHERE resource_kind = ? AND is_active = 1
                ORDER BY resource_id ASC, day_of_week ASC, start_time ASC;
                """,
                (resource_kind.value,),
            ).fetchall()
            return [_row_to_availability(row) for row in rows]

    def get_availability(self, availability_id: int) -> Optional[Availability]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM Availability WHERE id = ?;",
                (availability_id,),
            ).fetchone()
            return None if row is None else _row_to_availability(row)

    def insert_availability(self, availability: Availability) -> Availability:
        try:
            with self._connect() as conn:
                cursor = conn.execute(
                    """
                    INSERT INTO Availability (
                        resource_kind, resource_id, day_of_week, start_time, end_time, is_active
                    )
                    VALUES (?, ?, ?, ?, ?, ?);
                    """,
                    (
                        availability.resource_kind.value,
                        availability.resource_id,
                        availability.day_of_week.value,
                        availability.start_time,
                        availability.end_time,
                        int(availability.is_active),
                    ),
                )
                conn.commit()
                availability_id = int(cursor.lastrowid)
        except sqlite3.IntegrityError as exc:
            raise ConflictError(
                f"Active availability already exists for {availability.resource_kind.value} "
                f"{availability.resource_id} on {availability.day_of_week.value}"
            ) from exc
        return Availability(
            availability_id=availability_id,
            resource_id=availability.resource_id,
            resource_kind=availability.resource_kind,
            day_of_week=availability.day_of_week,
            start_time=availability.start_time,
            end_time=availability.end_time,
            is_active=availability.is_active,
        )

    def update_availability(self, availability: Availability) -> Availability:
        try:
            with self._connect() as conn:
                cursor = conn.execute(
                    """
                    UPDATE Availability
                    SET day_of_week = ?, start_time = ?, end_time = ?, is_active = ?
                    WHERE id = ?;
                    """,
                    (
                        availability.day_of_week.value,
                        availability.start_time,
                        availability.end_time,
                        int(availability.is_active),
                        availability.availability_id,
                    ),
                )
                conn.commit()
                if cursor.rowcount == 0:
                    raise NotFoundError(f"Availability {availability.availability_id} not found")
        except sqlite3.IntegrityError as exc:
            raise ConflictError(
                f"Active availability already exists for {availability.resource_kind.value} "
                f"{availability.resource_id} on {availability.day_of_week.value}"
            ) from exc
        return availability

    def insert_block(self, block: Block) -> Block:
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO Blocks (resource_kind, resource_id, date, start_time, end_time, reason)
                VALUES (?, ?, ?, ?, ?, ?);
                """,
                (
                    block.resource_kind.value,
                    block.resource_id,
                    block.date,
                    block.start_time,
                    block.end_time,
                    block.reason,
                ),
            )
            conn.commit()
            block_id = int(cursor.lastrowid)
        return Block(
            block_id=block_id,
            resource_id=block.resource_id,
            resource_kind=block.resource_kind,
            date=block.date,
            start_time=block.start_time,
            end_time=block.end_time,
            reason=block.reason,
        )

    def list_blocks(self, resource_kind: ResourceKind, resource_id: str, date: str) -> list[Block]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM Blocks
                WHERE resource_kind = ? AND resource_id = ? AND date = ?
                ORDER BY start_time ASC, id ASC;
                """,
                (resource_kind.value, resource_id, date),
            ).fetchall()
            return [_row_to_block(row) for row in rows]

    def list_active_sessions(
        self,
        resource_kind: ResourceKind,
        resource_id: str,
        day: DayOfWeek,
    ) -> list[Session]:
        with self._connect() as conn:
            return WriteUnitOfWork(conn).list_active_sessions(resource_kind, resource_id, day)

    # --- Bookings ----------------------------------------------------------

    def get_booking(self, booking_id: int) -> Optional[Booking]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM RoomBookings WHERE id = ?;", (booking_id,)).fetchone()
            return None if row is None else _row_to_booking(row)

    def list_bookings(
        self,
        room_id: Optional[str] = None,
        status: Optional[BookingStatus] = None,
        date: Optional[str] = None,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
    ) -> list[Booking]:
        clauses: list[str] = []
        params: list[Any] = []
        if room_id is not None:
            clauses.append("room_id = ?")
            params.append(room_id)
        if status is not None:
            clauses.append("status = ?")
            params.append(status.value)
        if date is not None:
            clauses.append("date = ?")
            params.append(date)
        else:
            if start_date is not None:
                clauses.append("date >= ?")
                params.append(start_date)
            if end_date is not None:
                clauses.append("date <= ?")
                params.append(end_date)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT * FROM RoomBookings {where} ORDER BY date ASC, start_time ASC, id ASC;",
                tuple(params),
            ).fetchall()
            return [_row_to_booking(row) for row in rows]

    def mark_booking_cancelled(self, booking_id: int) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE RoomBookings SET status = 'cancelled' WHERE id = ? AND status = 'approved';",
                (booking_id,),
            )
            conn.commit()

    # --- Timetables ----------------------------------------------------------

    def save_timetable(
        self,
        name: str,
        sessions: Sequence[Session],
        algorithm: Optional[str],
        quality_score: Optional[float],
        status: TimetableStatus = TimetableStatus.DRAFT,
    ) -> str:
        """Persist a timetable and its sessions, returning the new id."""
        timetable_id = uuid4().hex
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO Timetables (timetable_id, name, status, algorithm, quality_score)
                VALUES (?, ?, ?, ?, ?);
                """,
                (timetable_id, name, status.value, algorithm, quality_score),
            )
            conn.executemany(
                """
                INSERT INTO TimetableSessions (
                    timetable_id, session_id, course_id, teacher_id, room_id,
                    day_of_week, start_time, end_time, student_group
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?);
                """,
                [
                    (
                        timetable_id,
                        session.session_id,
                        session.course_id,
                        session.teacher_id,
                        session.room_id,
                        session.day_of_week.value,
                        session.start_time,
                        session.end_time,
                        session.student_group,
                    )
                    for session in sessions
                ],
            )
            conn.commit()
        logger.info(
            "Timetable saved | timetable_id=%s | sessions=%s | status=%s | saved_at=%s",
            timetable_id,
            len(sessions),
            status.value,
            datetime.now(timezone.utc).isoformat(),
        )
        return timetable_id

    def get_timetable(self, timetable_id: str) -> Optional[Timetable]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM Timetables WHERE timetable_id = ?;",
                (timetable_id,),
            ).fetchone()
            if row is None:
                return None
            sessions = conn.execute(
                "SELECT * FROM TimetableSessions WHERE timetable_id = ? ORDER BY id ASC;",
                (timetable_id,),
            ).fetchall()
            return Timetable(
                timetable_id=str(row["timetable_id"]),
                name=str(row["name"]),
                status=TimetableStatus(row["status"]),
                schedule=[_row_to_session(item) for item in sessions],
                algorithm=row["algorithm"],
                quality_score=None if row["quality_score"] is None else float(row["quality_score"]),
            )

    def update_timetable_status(self, timetable_id: str, status: TimetableStatus) -> None:
        """Set a timetable's status; activating one archives any other active timetable."""
        with self._connect() as conn:
            if status is TimetableStatus.ACTIVE:
                conn.execute(
                    """
                    UPDATE Timetables SET status = 'archived'
                    WHERE status = 'active' AND timetable_id != ?;
                    """,
                    (timetable_id,),
                )
            conn.execute(
                "UPDATE Timetables SET status = ? WHERE timetable_id = ?;",
                (status.value, timetable_id),
            )
            conn.commit()

    # --- Meetings ------------------------------------------------------------

    def list_meetings(self, teacher_id: Optional[str] = None, date: Optional[str] = None) -> list[Meeting]:
        clauses: list[str] = []
        params: list[Any] = []
        if teacher_id is not None:
            clauses.append("id IN (SELECT meeting_id FROM MeetingParticipants WHERE teacher_id = ?)")
            params.append(teacher_id)
        if date is not None:
            clauses.append("date = ?")
            params.append(date)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT id FROM Meetings {where} ORDER BY date ASC, start_time ASC, id ASC;",
                tuple(params),
            ).fetchall()
            return [_load_meeting(conn, int(row["id"])) for row in rows]
