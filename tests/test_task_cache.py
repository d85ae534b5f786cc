import logging

import pytest

from voicecal.agent.task_cache import (PreparationTask, TaskKey,
                                       TaskReconciliationCache, derive_key)
from voicecal.errors import StateConflict

TASKS = [
    {"task": "Book venue"},
    {"task": "Order cake"},
    {"task": "Send invites"},
]


class TestDeriveKey:

    def test_explicit_id_wins(self):
        assert derive_key({"id": 7, "task": "Book venue"}) == TaskKey("id", "7")

    def test_task_then_title(self):
        assert derive_key({"task": "Book venue", "title": "Venue"}) == TaskKey("task", "book venue")
        assert derive_key({"title": "Venue"}) == TaskKey("title", "venue")

    def test_composite_fallback(self):
        key = derive_key({"category": "Prep", "description": "Pack bag", "estimatedTime": "30 min"})
        assert key == TaskKey("fallback", "prep|pack bag|30 min")
        assert str(key) == "fallback:prep|pack bag|30 min"

    def test_case_and_whitespace_do_not_matter(self):
        assert derive_key({"task": "  Book Venue "}) == derive_key({"task": "book venue"})

    def test_blank_id_falls_through(self):
        assert derive_key({"id": "  ", "task": "Order cake"}) == TaskKey("task", "order cake")

    def test_model_and_dict_agree(self):
        model = PreparationTask.model_validate({"task": "Order cake", "suggestedDate": "2024-11-20"})
        assert derive_key(model) == derive_key({"task": "order cake"})

    @pytest.mark.parametrize("task", [None, {}, "Book venue", 3])
    def test_no_key_for_empty_or_foreign_input(self, task):
        assert derive_key(task) is None


class TestReconciliation:

    def test_scheduled_task_does_not_come_back(self, task_cache):
        task_cache.set_remaining_tasks("E1", TASKS)
        remaining = task_cache.mark_completed("E1", [{"task": "Order cake"}])
        assert [t["task"] for t in remaining] == ["Book venue", "Send invites"]

        regenerated = [{"task": "Book venue"}, {"task": "order cake "}, {"task": "Send invites"},
                       {"task": "Buy balloons"}]
        remaining = task_cache.set_remaining_tasks("E1", regenerated)
        assert [t["task"] for t in remaining] == ["Book venue", "Send invites", "Buy balloons"]
        assert task_cache.get_remaining_count("E1") == 3

    def test_mark_completed_is_idempotent(self, task_cache):
        task_cache.set_remaining_tasks("E1", TASKS)
        first = task_cache.mark_completed("E1", [{"task": "Book venue"}])
        second = task_cache.mark_completed("E1", [{"task": "Book venue"}])
        assert first == second
        assert task_cache.completed_keys("E1") == {TaskKey("task", "book venue")}

    def test_unknown_event_records_nothing(self, task_cache, caplog):
        with caplog.at_level(logging.WARNING, logger="voicecal.agent.task_cache"):
            assert task_cache.mark_completed("missing", [{"task": "Book venue"}]) is None
        assert not task_cache.has_entry("missing")
        assert "unknown event" in caplog.text

    def test_strict_mode_raises_state_conflict(self, task_cache):
        with pytest.raises(StateConflict):
            task_cache.mark_completed("missing", [{"task": "Book venue"}], strict=True)
        assert not task_cache.has_entry("missing")

    def test_absent_entry_differs_from_empty(self, task_cache):
        assert task_cache.get_remaining("E1") is None
        task_cache.set_remaining_tasks("E1", [])
        assert task_cache.get_remaining("E1") == []
        assert task_cache.has_entry("E1")

    def test_returned_lists_are_copies(self, task_cache):
        source = [{"task": "Book venue", "meta": {"n": 1}}]
        returned = task_cache.set_remaining_tasks("E1", source)
        source[0]["meta"]["n"] = 99
        returned[0]["task"] = "changed"
        stored = task_cache.get_remaining("E1")
        assert stored == [{"task": "Book venue", "meta": {"n": 1}}]
        stored.clear()
        assert task_cache.get_remaining_count("E1") == 1

    def test_pydantic_tasks_accepted(self, task_cache):
        tasks = [PreparationTask.model_validate({"id": "t1", "task": "Pack"}),
                 PreparationTask.model_validate({"id": "t2", "task": "Print tickets"})]
        task_cache.set_remaining_tasks("E1", tasks)
        remaining = task_cache.mark_completed("E1", [{"id": "T1"}])
        assert [t["id"] for t in remaining] == ["t2"]

    def test_non_mapping_tasks_skipped(self, task_cache):
        remaining = task_cache.set_remaining_tasks("E1", [{"task": "Pack"}, "stray"])
        assert remaining == [{"task": "Pack"}]

    def test_blank_event_id(self, task_cache):
        assert task_cache.set_remaining_tasks("", TASKS) == []
        assert task_cache.mark_completed(None, TASKS) is None
        assert task_cache.get_remaining(None) is None

    def test_event_ids_are_compared_as_strings(self, task_cache):
        task_cache.set_remaining_tasks(42, TASKS)
        assert task_cache.get_remaining_count("42") == 3


class TestCachedView:

    def test_remaining_tasks_served_from_cache(self, task_cache):
        task_cache.set_remaining_tasks("E1", TASKS)
        assert len(task_cache.cached_view("E1", linked_count=0)) == 3

    def test_all_scheduled_with_links_kept(self, task_cache):
        task_cache.set_remaining_tasks("E1", TASKS[:1])
        task_cache.mark_completed("E1", TASKS[:1])
        assert task_cache.cached_view("E1", linked_count=1) == []
        assert task_cache.has_entry("E1")

    def test_nothing_left_and_nothing_linked_is_stale(self, task_cache):
        task_cache.set_remaining_tasks("E1", TASKS[:1])
        task_cache.mark_completed("E1", TASKS[:1])
        assert task_cache.cached_view("E1", linked_count=0) is None
        assert not task_cache.has_entry("E1")

    def test_missing_entry(self, task_cache):
        assert task_cache.cached_view("nope", linked_count=3) is None

    def test_clear_and_clear_all(self, task_cache):
        task_cache.set_remaining_tasks("E1", TASKS)
        task_cache.set_remaining_tasks("E2", TASKS)
        task_cache.clear("E1")
        assert not task_cache.has_entry("E1") and task_cache.has_entry("E2")
        task_cache.clear_all()
        assert not task_cache.has_entry("E2")


def test_isolated_instances():
    first, second = TaskReconciliationCache(), TaskReconciliationCache()
    first.set_remaining_tasks("E1", TASKS)
    assert second.get_remaining("E1") is None
