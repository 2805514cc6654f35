from dataclasses import replace

from inputforge.core.diff.tree_diff import (
    diff,
    diff_flags,
    diff_tasks,
    diff_to_dict,
    summarize,
    walk,
)
from inputforge.core.model import Deliverable, Milestone, NextAction, PlanTree, Task


def _plan(*milestones):
    return PlanTree(description="p", milestones=tuple(milestones))


def _ms(title, *deliverables):
    return Milestone(title=title, deliverables=tuple(deliverables))


def _dl(title, *tasks):
    return Deliverable(title=title, tasks=tuple(tasks))


SAMPLE = _plan(
    _ms("Discovery", _dl("Research", Task(title="Interview users", estimate="2h"))),
    _ms("Build", _dl("API", Task(title="Endpoints"), Task(title="Auth", flagged=True))),
)


def test_diff_of_tree_with_itself_is_all_unchanged():
    entries = diff(SAMPLE, SAMPLE)
    assert all(e.status == "unchanged" for _, e in walk(entries))
    assert summarize(entries)["unchanged"] == 7


def test_milestone_added_and_removed():
    old = _plan(_ms("Discovery"), _ms("Build"))
    new = _plan(_ms("Build"), _ms("Launch"))
    entries = diff(old, new)
    by_title = {e.title: e.status for e in entries}
    assert by_title == {"Discovery": "removed", "Build": "unchanged", "Launch": "added"}


def test_diff_is_symmetric():
    old = _plan(_ms("Discovery"), _ms("Build"))
    new = _plan(_ms("Build"), _ms("Launch"))
    forward = {e.title: e.status for e in diff(old, new)}
    backward = {e.title: e.status for e in diff(new, old)}
    assert forward["Discovery"] == "removed" and backward["Discovery"] == "added"
    assert forward["Launch"] == "added" and backward["Launch"] == "removed"
    assert forward["Build"] == backward["Build"] == "unchanged"


def test_titles_match_case_insensitively():
    entries = diff(_plan(_ms("build")), _plan(_ms("BUILD")))
    assert [e.status for e in entries] == ["unchanged"]


def test_leaf_change_marks_ancestors_modified():
    new = _plan(
        _ms("Discovery", _dl("Research", Task(title="Interview users", estimate="4h"))),
        _ms("Build", _dl("API", Task(title="Endpoints"), Task(title="Auth", flagged=True))),
    )
    entries = diff(SAMPLE, new)
    assert [e.status for e in entries] == ["modified", "unchanged"]
    research = entries[0].children[0]
    assert research.status == "modified"
    assert research.children[0].status == "modified"


def test_task_fields_that_count_as_modified():
    base = Task(title="t", estimate="1h", notes="n", next_actions=(NextAction("a"),))

    def status(new):
        return diff_tasks([base], [new])[0].status

    assert status(replace(base)) == "unchanged"
    assert status(replace(base, estimate="2h")) == "modified"
    assert status(replace(base, notes="m")) == "modified"
    assert status(replace(base, flagged=True)) == "modified"
    assert status(replace(base, next_actions=())) == "modified"
    # Not part of the comparison.
    assert status(replace(base, context="@home")) == "unchanged"


def test_next_action_contents_are_compared_by_count_only():
    old = [Task(title="t", next_actions=(NextAction("a"),))]
    new = [Task(title="t", next_actions=(NextAction("b"),))]
    assert diff_tasks(old, new)[0].status == "unchanged"


def test_duplicate_titles_pair_in_order():
    old = [Task(title="Review", estimate="1h"), Task(title="Review", estimate="2h")]
    new = [Task(title="Review", estimate="1h"), Task(title="Review", estimate="3h")]
    statuses = [e.status for e in diff_tasks(old, new)]
    assert statuses == ["unchanged", "modified"]


def test_extra_duplicate_is_added():
    old = [Task(title="Review")]
    new = [Task(title="Review"), Task(title="review")]
    entries = diff_tasks(old, new)
    assert [e.status for e in entries] == ["unchanged", "added"]


def test_removed_subtree_has_no_children():
    entries = diff(SAMPLE, _plan())
    assert all(e.status == "removed" and e.children == [] for e in entries)


def test_flag_diff():
    fd = diff_flags(["budget", "timeline"], ["timeline", "staffing"])
    assert fd.kept == ["timeline"]
    assert fd.removed == ["budget"]
    assert fd.added == ["staffing"]


def test_summarize_and_dict_output():
    new = _plan(_ms("Build", _dl("API", Task(title="Endpoints"))), _ms("Launch"))
    entries = diff(SAMPLE, new)
    counts = summarize(entries)
    assert counts == {"added": 1, "removed": 2, "modified": 2, "unchanged": 1}

    payload = diff_to_dict(entries)
    assert payload[0]["title"] == "Discovery"
    assert payload[0]["new_title"] is None
    assert payload[1]["children"][0]["children"][1]["status"] == "removed"


def _flattened(entries, swap=False):
    flip = {"added": "removed", "removed": "added"} if swap else {}
    return sorted((depth, e.title.lower(), flip.get(e.status, e.status)) for depth, e in walk(entries))


def test_symmetry_holds_for_nested_changes():
    other = _plan(
        _ms("build", _dl("API", Task(title="Endpoints", notes="v2"), Task(title="Rate limits"))),
        _ms("Launch", _dl("Press", Task(title="Write release"))),
    )
    assert _flattened(diff(SAMPLE, other)) == _flattened(diff(other, SAMPLE), swap=True)
