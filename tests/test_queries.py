"""
Tests for the read path: effective status, ordering, filters and pagination.
"""

import unittest

from goals.engine import GoalProgressEngine
from goals.errors import NotFoundError, ValidationError
from goals.models import GoalStatus
from goals.queries import GoalQueryService, parse_status_filter

from goal_fixtures import GoalStoreTestCase, NOW, days


class TestParseStatusFilter(unittest.TestCase):

    def test_accepts_strings_and_enums(self):
        self.assertEqual(parse_status_filter("completed"), GoalStatus.COMPLETED)
        self.assertEqual(parse_status_filter("ACTIVE"), GoalStatus.ACTIVE)
        self.assertEqual(parse_status_filter(GoalStatus.EXPIRED), GoalStatus.EXPIRED)

    def test_empty_means_no_filter(self):
        self.assertIsNone(parse_status_filter(None))
        self.assertIsNone(parse_status_filter(""))

    def test_rejects_unknown_status(self):
        with self.assertRaises(ValidationError):
            parse_status_filter("paused")


class QueryTestCase(GoalStoreTestCase):

    def setUp(self):
        super().setUp()
        self.queries = GoalQueryService(self.store, clock=lambda: NOW)
        self.engine = GoalProgressEngine(self.store, clock=lambda: NOW)

    def make_mixed_goals(self):
        """One goal per effective status, plus a stale active one."""
        completed = self.make_goal(target=1, deadline=NOW + days(10), name="Completed")
        self.engine.apply_completion("reader-1", "entry-1", "book-1", NOW - days(1))
        active_late = self.make_goal(deadline=NOW + days(20), name="Active late")
        active_soon = self.make_goal(deadline=NOW + days(5), name="Active soon")
        stale = self.make_goal(deadline=NOW - days(2), name="Stale")
        return completed, active_late, active_soon, stale


class TestEffectiveStatus(QueryTestCase):

    def test_stale_active_goal_reads_as_expired(self):
        goal = self.make_goal(deadline=NOW - days(1))

        view = self.queries.get_goal("reader-1", goal.id)

        self.assertEqual(view.status, GoalStatus.EXPIRED)
        # Stored label is untouched by reads
        self.assertEqual(self.store.get_goal(goal.id).status, GoalStatus.ACTIVE)

    def test_goal_at_exact_deadline_is_expired(self):
        goal = self.make_goal(deadline=NOW)
        self.assertEqual(self.queries.get_goal("reader-1", goal.id).status, GoalStatus.EXPIRED)

    def test_as_of_override(self):
        goal = self.make_goal(deadline=NOW + days(1))
        self.assertEqual(self.queries.get_goal("reader-1", goal.id).status, GoalStatus.ACTIVE)
        self.assertEqual(
            self.queries.get_goal("reader-1", goal.id, as_of=NOW + days(2)).status,
            GoalStatus.EXPIRED
        )

    def test_other_owner_is_not_found(self):
        goal = self.make_goal(owner_id="reader-1")
        with self.assertRaises(NotFoundError):
            self.queries.get_goal("reader-2", goal.id)

    def test_missing_goal_is_not_found(self):
        with self.assertRaises(NotFoundError):
            self.queries.get_goal("reader-1", 999)


class TestGoalDetail(QueryTestCase):

    def test_detail_lists_counted_books(self):
        goal = self.make_goal()
        self.engine.apply_completion("reader-1", "entry-1", "book-a", NOW - days(1))
        self.engine.apply_completion("reader-1", "entry-2", "book-b", NOW - days(0.5))

        detail = self.queries.get_goal_detail("reader-1", goal.id)

        self.assertEqual(detail.goal.progress_count, 2)
        self.assertEqual(detail.book_ids, ["book-a", "book-b"])


class TestListGoals(QueryTestCase):

    def test_sorted_by_effective_status_then_deadline(self):
        completed, active_late, active_soon, stale = self.make_mixed_goals()

        page = self.queries.list_goals("reader-1")

        self.assertEqual(
            [goal.id for goal in page.goals],
            [active_soon.id, active_late.id, completed.id, stale.id]
        )
        self.assertEqual(
            [goal.status for goal in page.goals],
            [GoalStatus.ACTIVE, GoalStatus.ACTIVE, GoalStatus.COMPLETED, GoalStatus.EXPIRED]
        )
        self.assertEqual(page.total, 4)
        self.assertFalse(page.has_more)

    def test_filter_matches_effective_status(self):
        _, _, _, stale = self.make_mixed_goals()

        expired = self.queries.list_goals("reader-1", status="expired")
        active = self.queries.list_goals("reader-1", status=GoalStatus.ACTIVE)

        self.assertEqual([goal.id for goal in expired.goals], [stale.id])
        self.assertEqual(expired.total, 1)
        self.assertEqual(active.total, 2)

    def test_only_own_goals(self):
        self.make_goal(owner_id="reader-1")
        self.make_goal(owner_id="reader-2")
        self.assertEqual(self.queries.list_goals("reader-2").total, 1)

    def test_pagination(self):
        goals = [self.make_goal(deadline=NOW + days(i + 1)) for i in range(5)]

        first = self.queries.list_goals("reader-1", page=1, page_size=2)
        last = self.queries.list_goals("reader-1", page=3, page_size=2)

        self.assertEqual([goal.id for goal in first.goals], [goals[0].id, goals[1].id])
        self.assertTrue(first.has_more)
        self.assertEqual([goal.id for goal in last.goals], [goals[4].id])
        self.assertFalse(last.has_more)
        self.assertEqual(last.total, 5)

    def test_rejects_bad_paging(self):
        for page, page_size in ((0, 10), (1, 0), (1, 101)):
            with self.subTest(page=page, page_size=page_size):
                with self.assertRaises(ValidationError):
                    self.queries.list_goals("reader-1", page=page, page_size=page_size)


if __name__ == "__main__":
    unittest.main()
