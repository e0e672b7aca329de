"""Persisted layout of a workspace: sheet names, markers, labels, seed content."""

from __future__ import annotations

# -- Workspace base ----------------------------------------------------------

AGENT_BASE_SHEET = "AGENT_BASE"

SYSTEM_MARKER = "AGENT.md Contents"
SYSTEM_MARKER_CELL = "A1"
SYSTEM_BODY_CELL = "A2"

PLAN_MARKER = "PLAN.md Contents"
PLAN_MARKER_CELL = "B1"
PLAN_BODY_CELL = "B2"

# -- File store --------------------------------------------------------------

FILE_STORE_SHEET = "AGENTSCAPE"

FILE_LABELS: tuple[str, ...] = (
    "FILE",
    "DESC",
    "TAGS",
    "Path",
    "CreatedTS",
    "UpdatedTS",
    "Status",
    "DependsOn",
    "ContextLen",
    "MaxCtxLen",
    "Hash",
    "MDContent",
)
FIELD_COUNT = len(FILE_LABELS)

# 0-based positions along a file's slot
FILE_IDX = 0
DESC_IDX = 1
TAGS_IDX = 2
PATH_IDX = 3
CREATED_IDX = 4
UPDATED_IDX = 5
STATUS_IDX = 6
DEPENDS_IDX = 7
CONTEXT_LEN_IDX = 8
MAX_CTX_IDX = 9
HASH_IDX = 10
CONTENT_IDX = 11

# Width of the detection read; anything wider is not inspected for layout
SCAN_COLUMNS = 26

AGENTS_FILE = "AGENTS.md"
PLAN_FILE = "PLAN.md"
RESERVED_FILES: tuple[str, ...] = (AGENTS_FILE, PLAN_FILE)

AGENTS_DESC = "Core agent identity and capabilities."
AGENTS_TAGS = ["system", "context"]
PLAN_DESC = "Active execution plan with phased tasks and progress tracking."
PLAN_TAGS = ["agent", "plan"]

# -- Seed content ------------------------------------------------------------

DEFAULT_AGENT_CONTEXT = """# Sheet Agent Context

## Persona
You are a spreadsheet automation agent.

## Core Tools
- read, write, append, search operations
- Planning system (getPlan, createPlan, task management)
- History logging

See documentation for full details."""

STARTER_PLAN = """# Plan: Getting Started

Goal: Learn the sheet agent system and complete first task

## Analysis

- Spreadsheet: [Your spreadsheet]
- Key sheets: [To be determined]
- Target ranges:
  - Read: [Ranges to be determined]
  - Write: [Ranges to be determined]
- Current state: Agent initialized, ready for first task

## Questions for User

- What spreadsheet task would you like to accomplish?
- Which sheets contain the data you want to work with?

### Phase 1: Orientation
- [ ] 1.1 List all sheets in the spreadsheet
- [ ] 1.2 Read headers from main sheet to understand structure
- [ ] 1.3 Confirm user's goal and create detailed plan

### Phase 2: Execution
- [ ] 2.1 Execute the planned task
- [ ] 2.2 Verify results with user
- [ ] 2.3 Complete and log the work

## Notes

This is a starter plan. Once you confirm your goal, I'll create a detailed plan with specific steps, ranges, and success criteria."""
