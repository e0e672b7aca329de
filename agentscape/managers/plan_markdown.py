"""Plan markdown: parse, render and line-level rewrites.

Pure text functions with no I/O.  The document format::

    # Plan: <title>

    Goal: <goal>

    ## Analysis
    - Spreadsheet: ...
    - Key sheets: a, b
    - Target ranges:
      - Read: ...
      - Write: ...
    - Current state: ...

    ## Questions for User
    - ...

    ### Phase 1: <name>
    - [ ] 1.1 <title>
    - [x] 1.2 <title> ✅ 2025-01-31
    - [>] 1.3 <title> — <reason>

    ## Notes
    ...

Rewrites touch exactly one line and leave every other byte alone, so the
markdown stays diffable and hand-editable in the spreadsheet.
"""

from __future__ import annotations

import re

from agentscape.models.enums import TaskStatus
from agentscape.models.plan import Phase, PhaseInput, Plan, PlanAnalysis, PlanTask, TargetRanges

STATUS_CHARS: dict[TaskStatus, str] = {
    TaskStatus.TODO: " ",
    TaskStatus.DOING: "/",
    TaskStatus.DONE: "x",
    TaskStatus.BLOCKED: ">",
    TaskStatus.REVIEW: "!",
}
CHAR_STATUS: dict[str, TaskStatus] = {char: status for status, char in STATUS_CHARS.items()}

TASK_RE = re.compile(r"^- \[(.)\] (\d+\.\d+(?:\.\d+)?)\s+(.+)$")
PHASE_RE = re.compile(r"^### Phase (\d+): (.+)$")
HEADING_RE = re.compile(r"^#{1,6} ")

_MARKER_RE = re.compile(r"^- \[.\]")
_DONE_RE = re.compile(r" ?✅ (\d{4}-\d{2}-\d{2})")
_REASON_RE = re.compile(r" ?— (.+)$")

NOTES_HEADING = "## Notes"


# -- Parse ---------------------------------------------------------------------


def _parse_analysis(lines: list[str]) -> PlanAnalysis | None:
    spreadsheet = ""
    key_sheets: list[str] = []
    ranges = TargetRanges()
    current_state: str | None = None

    for line in lines:
        if line.startswith("Spreadsheet:"):
            spreadsheet = line.removeprefix("Spreadsheet:").strip()
        elif line.startswith("Key sheets:"):
            key_sheets = [s.strip() for s in line.removeprefix("Key sheets:").split(",") if s.strip()]
        elif line.startswith("Read:"):
            ranges.read.append(line.removeprefix("Read:").strip())
        elif line.startswith("Write:"):
            ranges.write.append(line.removeprefix("Write:").strip())
        elif line.startswith("Current state:"):
            current_state = line.removeprefix("Current state:").strip()

    if not spreadsheet:
        return None
    return PlanAnalysis(
        spreadsheet=spreadsheet,
        key_sheets=key_sheets,
        target_ranges=ranges,
        current_state=current_state,
    )


def _parse_task(index: int, phase: Phase, match: re.Match[str]) -> PlanTask:
    char, step, content = match.groups()
    status = CHAR_STATUS.get(char, TaskStatus.TODO)
    done = _DONE_RE.search(content)
    reason = _REASON_RE.search(content)
    title = _REASON_RE.sub("", _DONE_RE.sub("", content)).strip()
    return PlanTask(
        line=index,
        phase=phase.number,
        step=step,
        status=status,
        title=title,
        completed_date=done.group(1) if done else None,
        blocked_reason=reason.group(1).strip() if reason and status == TaskStatus.BLOCKED else None,
        review_note=reason.group(1).strip() if reason and status == TaskStatus.REVIEW else None,
    )


def parse_plan(raw: str) -> Plan:
    """Parse plan markdown.  Never fails; unknown lines are ignored."""
    title = ""
    goal = ""
    phases: list[Phase] = []
    current: Phase | None = None
    section: str | None = None
    analysis_lines: list[str] = []
    questions: list[str] = []
    notes: list[str] = []

    for index, line in enumerate(raw.split("\n")):
        if line.startswith("# Plan:"):
            title = line.removeprefix("# Plan:").strip()
            section = None
        elif line.startswith("Goal:") and section is None:
            goal = line.removeprefix("Goal:").strip()
        elif line.startswith("## Analysis"):
            section = "analysis"
        elif line.startswith("## Questions"):
            section = "questions"
        elif line.startswith(NOTES_HEADING):
            section = "notes"
        elif line.startswith("### Phase"):
            section = None
            if match := PHASE_RE.match(line):
                current = Phase(number=int(match.group(1)), name=match.group(2).strip())
                phases.append(current)
            else:
                current = None
        elif HEADING_RE.match(line):
            section = None
            current = None
        elif section == "analysis":
            stripped = line.strip()
            if stripped.startswith("- "):
                analysis_lines.append(stripped[2:])
        elif section == "questions":
            if line.startswith("- "):
                questions.append(line[2:].strip())
        elif section == "notes":
            notes.append(line)
        elif current is not None and (match := TASK_RE.match(line)):
            current.tasks.append(_parse_task(index, current, match))

    return Plan(
        title=title,
        goal=goal,
        analysis=_parse_analysis(analysis_lines) if analysis_lines else None,
        questions=questions or None,
        phases=phases,
        notes="\n".join(notes).strip(),
        raw=raw,
    )


# -- Render --------------------------------------------------------------------


def render_plan(title: str, goal: str, phases: list[PhaseInput]) -> str:
    """Canonical plan document with placeholder analysis and an empty Notes section."""
    blocks = []
    for number, phase in enumerate(phases, start=1):
        lines = [f"### Phase {number}: {phase.name}"]
        lines += [f"- [ ] {number}.{step} {text}" for step, text in enumerate(phase.steps, start=1)]
        blocks.append("\n".join(lines))

    return (
        f"# Plan: {title}\n\n"
        f"Goal: {goal}\n\n"
        "## Analysis\n\n"
        "- Spreadsheet: [spreadsheet name]\n"
        "- Key sheets: [sheet names]\n"
        "- Target ranges:\n"
        "  - Read: [ranges to read]\n"
        "  - Write: [ranges to write]\n"
        "- Current state: [description]\n\n"
        "## Questions for User\n\n"
        "- [Any clarifying questions]\n\n"
        + "\n\n".join(blocks)
        + f"\n\n{NOTES_HEADING}\n\n"
    )


# -- Rewrite -------------------------------------------------------------------


def rewrite_task_line(line: str, status: TaskStatus, *, annotation: str | None = None, today: str) -> str:
    """Set the status marker of one task line and replace its annotation.

    ``today`` (``YYYY-MM-DD``) is stamped for ``done``; ``annotation`` is
    appended for ``blocked`` / ``review`` when given.
    """
    new = _MARKER_RE.sub(f"- [{STATUS_CHARS[status]}]", line, count=1)
    new = re.sub(r" — .+$", "", new)
    new = re.sub(r" ✅ \d{4}-\d{2}-\d{2}", "", new)

    if status == TaskStatus.DONE:
        new += f" ✅ {today}"
    elif status in (TaskStatus.BLOCKED, TaskStatus.REVIEW) and annotation:
        new += " — " + " ".join(annotation.split())
    return new


def append_note(raw: str, line: str) -> str:
    """Add ``line`` at the end of the Notes section, creating the section if needed."""
    lines = raw.split("\n")
    start = next((i for i, text in enumerate(lines) if text.startswith(NOTES_HEADING)), None)
    if start is None:
        return raw.rstrip() + f"\n\n{NOTES_HEADING}\n\n{line}\n"

    end = next((i for i in range(start + 1, len(lines)) if HEADING_RE.match(lines[i])), len(lines))
    insert_at = end
    while insert_at - 1 > start and not lines[insert_at - 1].strip():
        insert_at -= 1
    # Keep the blank line under the heading
    if insert_at == start + 1 and insert_at < end:
        insert_at += 1
    lines.insert(insert_at, line)
    return "\n".join(lines)
