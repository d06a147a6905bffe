"""
Tests for the SQLite goal store and database layer.
"""

import sqlite3
import unittest
from datetime import datetime, timezone
from unittest.mock import patch

from core.database import Database, format_timestamp, parse_timestamp
from goals.errors import ConstraintViolation, TransientStoreError, StoreError
from goals.models import GoalStatus

from goal_fixtures import GoalStoreTestCase, NOW, days


class TestTimestamps(unittest.TestCase):

    def test_fixed_width_utc_format(self):
        value = datetime(2025, 1, 9, 4, 59, 59, 999000, tzinfo=timezone.utc)
        self.assertEqual(format_timestamp(value), "2025-01-09T04:59:59.999000Z")
        self.assertEqual(parse_timestamp("2025-01-09T04:59:59.999000Z"), value)

    def test_plain_iso_is_accepted(self):
        self.assertEqual(
            parse_timestamp("2025-01-09T04:59:59+00:00"),
            datetime(2025, 1, 9, 4, 59, 59, tzinfo=timezone.utc)
        )

    def test_none_passthrough(self):
        self.assertIsNone(format_timestamp(None))
        self.assertIsNone(parse_timestamp(None))


class TestDatabase(GoalStoreTestCase):

    def test_initialize_is_repeatable(self):
        again = Database(self.db.db_path)
        self.assertTrue(again.initialize())
        self.assertTrue(again.initialized)

    def test_newer_schema_is_rejected(self):
        self.db.execute("INSERT INTO schema_version (version) VALUES (99)")
        self.assertFalse(Database(self.db.db_path).initialize())

    def test_stats(self):
        self.make_goal()
        stats = self.db.get_stats()
        self.assertEqual(stats["total_goals"], 1)
        self.assertEqual(stats["active_goals"], 1)
        self.assertEqual(stats["progress_links"], 0)


class TestGoalStoreCrud(GoalStoreTestCase):

    def test_create_goal_defaults(self):
        goal = self.make_goal(target=5)

        self.assertEqual(goal.status, GoalStatus.ACTIVE)
        self.assertEqual(goal.progress_count, 0)
        self.assertEqual(goal.bonus_count, 0)
        self.assertIsNone(goal.completed_at)
        self.assertEqual(goal.created_at, NOW)
        self.assertEqual(self.store.get_goal(goal.id), goal)

    def test_get_missing_goal(self):
        self.assertIsNone(self.store.get_goal(12345))

    def test_target_bounds_enforced_by_schema(self):
        with self.assertRaises(ConstraintViolation):
            self.make_goal(target=0)
        with self.assertRaises(ConstraintViolation):
            self.make_goal(target=10000)

    def test_bonus_check_constraint(self):
        goal = self.make_goal()
        with self.assertRaises(ConstraintViolation):
            with self.store.transaction(goal_id=goal.id) as conn:
                conn.execute("UPDATE reading_goals SET progress_count = 12 WHERE id = ?", (goal.id,))
        self.assertEqual(self.store.get_goal(goal.id).progress_count, 0)

    def test_completed_at_check_constraint(self):
        goal = self.make_goal()
        with self.assertRaises(ConstraintViolation):
            with self.store.transaction(goal_id=goal.id) as conn:
                conn.execute("UPDATE reading_goals SET status = 'completed' WHERE id = ?", (goal.id,))

    def test_constraint_violation_hides_sqlite_text(self):
        with self.assertRaises(ConstraintViolation) as ctx:
            self.make_goal(target=0)
        self.assertNotIn("CHECK", str(ctx.exception))
        self.assertIsInstance(ctx.exception.__cause__, sqlite3.IntegrityError)

    def test_delete_cascades_links(self):
        goal = self.make_goal()
        with self.store.transaction() as conn:
            self.store.insert_progress_link(conn, goal.id, "entry-1", "book-1", applied_at=NOW)

        self.assertTrue(self.store.delete_goal(goal.id))

        self.assertIsNone(self.store.get_goal(goal.id))
        self.assertEqual(self.store.get_links_for_goal(goal.id), [])
        self.assertEqual(self.db.get_stats()["progress_links"], 0)

    def test_update_goal_only_touches_active(self):
        goal = self.make_goal(target=1)
        with self.store.transaction() as conn:
            self.store.apply_counter_deltas(conn, [goal.id], 1, as_of=NOW)

        with self.store.transaction() as conn:
            updated = self.store.update_goal(conn, goal.id, 5, NOW + days(60), as_of=NOW)

        self.assertFalse(updated)
        self.assertEqual(self.store.get_goal(goal.id).target_count, 1)

    def test_update_goal_lowering_target_completes(self):
        goal = self.make_goal(target=5)
        with self.store.transaction() as conn:
            self.store.apply_counter_deltas(conn, [goal.id], 1, as_of=NOW)
            self.store.apply_counter_deltas(conn, [goal.id], 1, as_of=NOW)

        with self.store.transaction() as conn:
            self.assertTrue(self.store.update_goal(conn, goal.id, 1, goal.deadline_utc, as_of=NOW))

        done = self.store.get_goal(goal.id)
        self.assertEqual(done.status, GoalStatus.COMPLETED)
        self.assertEqual(done.bonus_count, 1)
        self.assertEqual(done.completed_at, NOW)


class TestProgressLinks(GoalStoreTestCase):

    def test_insert_is_idempotent(self):
        goal = self.make_goal()
        with self.store.transaction() as conn:
            first = self.store.insert_progress_link(conn, goal.id, "entry-1", "book-1", applied_at=NOW)
            second = self.store.insert_progress_link(conn, goal.id, "entry-1", "book-1", applied_at=NOW)

        self.assertTrue(first)
        self.assertFalse(second)
        self.assertEqual(len(self.store.get_links_for_goal(goal.id)), 1)

    def test_delete_by_entry_is_owner_scoped(self):
        mine = self.make_goal(owner_id="reader-1")
        theirs = self.make_goal(owner_id="reader-2")
        with self.store.transaction() as conn:
            self.store.insert_progress_link(conn, mine.id, "entry-1", "book-1", applied_at=NOW)
            self.store.insert_progress_link(conn, theirs.id, "entry-1", "book-1", applied_at=NOW)

        with self.store.transaction() as conn:
            removed = self.store.delete_progress_links_by_entry(conn, "entry-1", "reader-1")

        self.assertEqual(removed, [mine.id])
        self.assertEqual(len(self.store.get_links_for_goal(theirs.id)), 1)

    def test_find_active_goals_excludes_passed_deadlines(self):
        upcoming = self.make_goal(deadline=NOW + days(5))
        self.make_goal(deadline=NOW + days(1))

        with self.store.transaction() as conn:
            found = self.store.find_active_goals_for_owner(conn, "reader-1", NOW + days(1))

        self.assertEqual([goal.id for goal in found], [upcoming.id])

    def test_find_active_goals_includes_completed_but_not_expired(self):
        completed = self.make_goal(target=1)
        expired = self.make_goal(deadline=NOW - days(1))
        with self.store.transaction() as conn:
            self.store.apply_counter_deltas(conn, [completed.id], 1, as_of=NOW)
        self.store.expire_overdue_goals(NOW)

        with self.store.transaction() as conn:
            found = self.store.find_active_goals_for_owner(conn, "reader-1", NOW - days(2))

        self.assertEqual([goal.id for goal in found], [completed.id])
        self.assertNotIn(expired.id, [goal.id for goal in found])

    def test_counter_delta_never_goes_negative(self):
        goal = self.make_goal()
        with self.store.transaction() as conn:
            self.store.apply_counter_deltas(conn, [goal.id], -1, as_of=NOW)
        self.assertEqual(self.store.get_goal(goal.id).progress_count, 0)


class TestExpiration(GoalStoreTestCase):

    def test_expire_overdue_goals(self):
        overdue = self.make_goal(deadline=NOW - days(1))
        upcoming = self.make_goal(deadline=NOW + days(1))

        expired = self.store.expire_overdue_goals(NOW)

        self.assertEqual(expired, [overdue.id])
        self.assertEqual(self.store.get_goal(overdue.id).status, GoalStatus.EXPIRED)
        self.assertEqual(self.store.get_goal(upcoming.id).status, GoalStatus.ACTIVE)
        self.assertEqual(self.store.expire_overdue_goals(NOW), [])

    def test_completed_goals_never_expire(self):
        goal = self.make_goal(target=1, deadline=NOW + days(1))
        with self.store.transaction() as conn:
            self.store.apply_counter_deltas(conn, [goal.id], 1, as_of=NOW)

        self.assertEqual(self.store.expire_overdue_goals(NOW + days(2)), [])
        self.assertEqual(self.store.get_goal(goal.id).status, GoalStatus.COMPLETED)


class TestStoreErrors(GoalStoreTestCase):

    def test_non_transient_failure_hides_sqlite_text(self):
        goal = self.make_goal()
        self.db.execute("DROP TABLE reading_goal_progress")

        with self.assertRaises(StoreError) as ctx:
            self.store.get_links_for_goal(goal.id)

        self.assertNotIn("no such table", str(ctx.exception))
        self.assertEqual(ctx.exception.goal_id, goal.id)
        self.assertIsInstance(ctx.exception.__cause__, sqlite3.OperationalError)

    def test_store_error_is_not_transient(self):
        self.assertNotIsInstance(StoreError(), TransientStoreError)


class TestLargeIdLists(GoalStoreTestCase):

    def test_counter_deltas_span_several_statements(self):
        goals = [self.make_goal(target=2) for _ in range(5)]
        ids = [goal.id for goal in goals]

        with patch("goals.store.ID_CHUNK_SIZE", 2):
            with self.store.transaction() as conn:
                self.store.apply_counter_deltas(conn, ids, 1, as_of=NOW)
                self.store.apply_counter_deltas(conn, ids, 1, as_of=NOW)
                reloaded = self.store.get_goals_by_ids(conn, list(reversed(ids)))

        self.assertEqual([goal.id for goal in reloaded], sorted(ids))
        for goal in reloaded:
            self.assertEqual(goal.progress_count, 2)
            self.assertEqual(goal.status, GoalStatus.COMPLETED)

    def test_empty_id_list(self):
        with self.store.transaction() as conn:
            self.assertEqual(self.store.get_goals_by_ids(conn, []), [])
            self.store.apply_counter_deltas(conn, [], 1, as_of=NOW)


class TestLockContention(GoalStoreTestCase):

    def test_held_write_lock_surfaces_as_transient(self):
        blocker = sqlite3.connect(self.db.db_path, isolation_level=None)
        self.addCleanup(blocker.close)
        blocker.execute("BEGIN IMMEDIATE")

        try:
            with self.assertRaises(TransientStoreError):
                with self.store.transaction(owner_id="reader-1"):
                    pass
        finally:
            blocker.execute("ROLLBACK")

        with self.store.transaction(owner_id="reader-1"):
            pass


if __name__ == "__main__":
    unittest.main()
