"""Plan markdown parsing, rendering and single-line rewrites."""

from __future__ import annotations

import pytest

from agentscape.managers.plan_markdown import append_note, parse_plan, render_plan, rewrite_task_line
from agentscape.models.enums import TaskStatus
from agentscape.models.plan import PhaseInput
from agentscape.schema import STARTER_PLAN

SAMPLE = """# Plan: Quarterly report

Goal: Summarise Q3 revenue by region

## Analysis

- Spreadsheet: Finance 2025
- Key sheets: Revenue, Regions
- Target ranges:
  - Read: Revenue!A1:F200
  - Write: Summary!A1:D10
- Current state: raw exports only

## Questions for User

- Include refunds?

### Phase 1: Discovery
- [x] 1.1 Inspect sheets ✅ 2025-01-31
- [/] 1.2 Map regions
- [>] 1.3 Fetch FX rates — waiting on API key

### Phase 2: Build
- [!] 2.1 Draft pivot — check totals
- [ ] 2.2 Chart

## Notes

Started Monday.
"""


def test_parse_sample() -> None:
    plan = parse_plan(SAMPLE)

    assert plan.title == "Quarterly report"
    assert plan.goal == "Summarise Q3 revenue by region"
    assert plan.analysis is not None
    assert plan.analysis.spreadsheet == "Finance 2025"
    assert plan.analysis.key_sheets == ["Revenue", "Regions"]
    assert plan.analysis.target_ranges.read == ["Revenue!A1:F200"]
    assert plan.analysis.target_ranges.write == ["Summary!A1:D10"]
    assert plan.analysis.current_state == "raw exports only"
    assert plan.questions == ["Include refunds?"]
    assert [p.name for p in plan.phases] == ["Discovery", "Build"]
    assert plan.notes == "Started Monday."
    assert plan.raw == SAMPLE


def test_parse_tasks() -> None:
    tasks = {task.step: task for task in parse_plan(SAMPLE).tasks}

    assert [t.status for t in tasks.values()] == [
        TaskStatus.DONE,
        TaskStatus.DOING,
        TaskStatus.BLOCKED,
        TaskStatus.REVIEW,
        TaskStatus.TODO,
    ]
    assert tasks["1.1"].title == "Inspect sheets"
    assert tasks["1.1"].completed_date == "2025-01-31"
    assert tasks["1.3"].title == "Fetch FX rates"
    assert tasks["1.3"].blocked_reason == "waiting on API key"
    assert tasks["2.1"].review_note == "check totals"
    assert tasks["2.1"].phase == 2
    assert SAMPLE.split("\n")[tasks["2.2"].line] == "- [ ] 2.2 Chart"


def test_task_lines_outside_phases_are_ignored() -> None:
    raw = "# Plan: x\n\nGoal: y\n\n- [ ] 1.1 stray\n\n## Notes\n\n- [ ] 9.9 also stray\n"
    plan = parse_plan(raw)
    assert plan.tasks == []
    assert plan.notes == "- [ ] 9.9 also stray"


def test_parse_garbage_never_fails() -> None:
    plan = parse_plan("hello\n- [?] 1.1 odd\n### Phase x: bad")
    assert plan.title == ""
    assert plan.phases == []
    assert plan.analysis is None


def test_unknown_marker_reads_as_todo() -> None:
    plan = parse_plan("### Phase 1: A\n- [?] 1.1 odd\n")
    assert plan.tasks[0].status == TaskStatus.TODO


def test_render_round_trip() -> None:
    raw = render_plan("Clean data", "Remove duplicates", [PhaseInput(name="Scan", steps=["Find dupes", "Count"])])
    plan = parse_plan(raw)

    assert raw.startswith("# Plan: Clean data\n\nGoal: Remove duplicates\n\n## Analysis\n")
    assert raw.endswith("### Phase 1: Scan\n- [ ] 1.1 Find dupes\n- [ ] 1.2 Count\n\n## Notes\n\n")
    assert plan.title == "Clean data"
    assert [(t.step, t.title, t.status) for t in plan.tasks] == [
        ("1.1", "Find dupes", TaskStatus.TODO),
        ("1.2", "Count", TaskStatus.TODO),
    ]
    assert plan.questions == ["[Any clarifying questions]"]


def test_starter_plan_parses() -> None:
    plan = parse_plan(STARTER_PLAN)
    assert len(plan.phases) == 2
    assert [t.step for t in plan.tasks] == ["1.1", "1.2", "1.3", "2.1", "2.2", "2.3"]
    assert all(t.status == TaskStatus.TODO for t in plan.tasks)


@pytest.mark.parametrize(
    ("status", "annotation", "expected"),
    [
        (TaskStatus.DOING, None, "- [/] 1.3 Fetch FX rates"),
        (TaskStatus.DONE, None, "- [x] 1.3 Fetch FX rates ✅ 2025-02-03"),
        (TaskStatus.BLOCKED, "new\nreason", "- [>] 1.3 Fetch FX rates — new reason"),
        (TaskStatus.REVIEW, "looks off", "- [!] 1.3 Fetch FX rates — looks off"),
        (TaskStatus.REVIEW, None, "- [!] 1.3 Fetch FX rates"),
    ],
)
def test_rewrite_task_line(status: TaskStatus, annotation: str | None, expected: str) -> None:
    line = "- [>] 1.3 Fetch FX rates — waiting on API key"
    assert rewrite_task_line(line, status, annotation=annotation, today="2025-02-03") == expected


def test_rewrite_drops_old_completion_date() -> None:
    line = "- [x] 1.1 Inspect sheets ✅ 2025-01-31"
    assert rewrite_task_line(line, TaskStatus.DOING, today="2025-02-03") == "- [/] 1.1 Inspect sheets"


def test_append_note_at_end_of_section() -> None:
    updated = append_note(SAMPLE, "- Blocked on FX")
    assert updated.endswith("## Notes\n\nStarted Monday.\n- Blocked on FX\n")


def test_append_note_into_empty_section() -> None:
    raw = render_plan("t", "g", [PhaseInput(name="A", steps=["one"])])
    assert append_note(raw, "first").endswith("## Notes\n\nfirst\n")


def test_append_note_before_following_heading() -> None:
    raw = "# Plan: t\n\n## Notes\n\nold\n\n## Appendix\n\nx\n"
    assert append_note(raw, "new") == "# Plan: t\n\n## Notes\n\nold\nnew\n\n## Appendix\n\nx\n"


def test_append_note_creates_section() -> None:
    raw = "# Plan: t\n\n### Phase 1: A\n- [ ] 1.1 one\n\n"
    assert append_note(raw, "hello") == "# Plan: t\n\n### Phase 1: A\n- [ ] 1.1 one\n\n## Notes\n\nhello\n"
