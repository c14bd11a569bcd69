import os
import tempfile
import unittest
from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import IntegrityError
from sqlalchemy.pool import StaticPool

from backend.db import (
    AssignmentRecord,
    DuplicateAssignmentError,
    InMemoryDbClient,
    SqlAlchemyDbClient,
    UserRecord,
)

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def record(assignment_id, title, user_id="alice", due="2024-06-01", **extra):
    return AssignmentRecord(
        id=assignment_id,
        user_id=user_id,
        title=title,
        subject="Math",
        type="homework",
        due_date=due,
        created_at=T0,
        updated_at=T0,
        **extra,
    )


class SqlAlchemyDbClientTests(unittest.TestCase):
    """
    Uses SQLite via SQLAlchemy URL for fast/local testing of the SQL client logic.
    """

    def setUp(self):
        self.db = SqlAlchemyDbClient("sqlite+pysqlite:///:memory:")
        self.db.upsert_user(UserRecord(id="alice", email="alice@example.com"))

    def tearDown(self):
        self.db.close()

    def test_upsert_user_creates_then_refreshes(self):
        later = T0 + timedelta(days=1)
        created = self.db.upsert_user(
            UserRecord(
                id="carol",
                email="carol@example.com",
                name="Carol",
                created_at=T0,
                updated_at=T0,
            )
        )
        self.assertEqual(created.created_at, T0)

        refreshed = self.db.upsert_user(
            UserRecord(
                id="carol",
                email="carol@school.edu",
                name="Carol D.",
                picture="https://example.com/c.png",
                created_at=later,
                updated_at=later,
            )
        )
        self.assertEqual(refreshed.created_at, T0)
        self.assertEqual(refreshed.updated_at, later)
        self.assertEqual(refreshed.email, "carol@school.edu")
        self.assertEqual(refreshed.picture, "https://example.com/c.png")
        self.assertEqual(self.db.get_user("carol").name, "Carol D.")

    def test_get_user_missing(self):
        self.assertIsNone(self.db.get_user("nobody"))

    def test_completed_stored_as_integer_read_as_bool(self):
        saved = self.db.insert_assignment(record("a1", "Essay", completed=True))
        self.assertIs(saved.completed, True)
        fetched = self.db.get_assignment("alice", "a1")
        self.assertIs(fetched.completed, True)
        self.assertEqual(fetched.created_at, T0)

    def test_get_assignment_is_scoped_by_user(self):
        self.db.upsert_user(UserRecord(id="bob", email="bob@example.com"))
        self.db.insert_assignment(record("a1", "Essay"))
        self.assertIsNone(self.db.get_assignment("bob", "a1"))
        self.assertFalse(self.db.delete_assignment("bob", "a1"))
        self.assertIsNone(self.db.save_assignment(record("a1", "Hijack", user_id="bob")))
        self.assertEqual(self.db.get_assignment("alice", "a1").title, "Essay")

    def test_assignment_requires_existing_user(self):
        with self.assertRaises(IntegrityError):
            self.db.insert_assignment(record("a1", "Orphan", user_id="ghost"))

    def test_duplicate_insert_is_reported_and_keeps_first_row(self):
        self.db.insert_assignment(record("a1", "First"))
        with self.assertRaises(DuplicateAssignmentError):
            self.db.insert_assignment(record("a1", "Second"))
        rows = self.db.list_assignments("alice")
        self.assertEqual([(r.id, r.title) for r in rows], [("a1", "First")])

    def test_replace_rolls_back_on_failure(self):
        self.db.insert_assignment(record("a1", "One"))
        self.db.insert_assignment(record("a2", "Two"))
        broken = record("b2", "Broken")
        broken.title = None  # violates NOT NULL on insert

        with self.assertRaises(IntegrityError):
            self.db.replace_assignments("alice", [record("b1", "Fresh"), broken])

        titles = [r.title for r in self.db.list_assignments("alice")]
        self.assertEqual(titles, ["One", "Two"])

    def test_replace_returns_new_set_in_order(self):
        self.db.insert_assignment(record("a1", "Old"))
        result = self.db.replace_assignments(
            "alice",
            [record("x", "Later", due="2024-07-01"), record("y", "Sooner", due="2024-06-15")],
        )
        self.assertEqual([r.title for r in result], ["Sooner", "Later"])
        self.assertIsNone(self.db.get_assignment("alice", "a1"))

    def test_replace_can_reuse_existing_ids(self):
        self.db.insert_assignment(record("a1", "Old"))
        result = self.db.replace_assignments("alice", [record("a1", "Renamed")])
        self.assertEqual([(r.id, r.title) for r in result], [("a1", "Renamed")])



class InMemoryDbClientTests(unittest.TestCase):
    def setUp(self):
        self.db = InMemoryDbClient()

    def test_duplicate_insert_is_reported_and_keeps_first_row(self):
        self.db.insert_assignment(record("a1", "First"))
        with self.assertRaises(DuplicateAssignmentError):
            self.db.insert_assignment(record("a1", "Second"))
        rows = self.db.list_assignments("alice")
        self.assertEqual([(r.id, r.title) for r in rows], [("a1", "First")])

    def test_same_id_for_another_user_is_not_a_duplicate(self):
        self.db.insert_assignment(record("a1", "Mine"))
        self.db.insert_assignment(record("a1", "Theirs", user_id="bob"))
        self.assertEqual(self.db.get_assignment("bob", "a1").title, "Theirs")


class SqliteEngineTests(unittest.TestCase):
    def test_memory_database_shares_one_connection(self):
        db = SqlAlchemyDbClient("sqlite+pysqlite:///:memory:")
        self.addCleanup(db.close)
        self.assertIsInstance(db.engine.pool, StaticPool)

    def test_file_database_uses_a_connection_pool(self):
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        path = os.path.join(tmpdir.name, "homework.db")
        db = SqlAlchemyDbClient(f"sqlite+pysqlite:///{path}")
        self.addCleanup(db.close)
        self.assertNotIsInstance(db.engine.pool, StaticPool)
        db.upsert_user(UserRecord(id="alice", email="alice@example.com"))
        db.insert_assignment(record("a1", "Essay"))
        self.assertEqual(db.get_assignment("alice", "a1").title, "Essay")


if __name__ == "__main__":
    unittest.main()
