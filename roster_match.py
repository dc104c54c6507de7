#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
roster_match.py

Matching core for the ALLOPS / V2 driver reconciliation.

Input:
- Cell grids (rows of text cells) for the ALLOPS workforce roster and the
  V2 "Overlooked & Returned" sheet. Rows may be ragged.

Output:
- Master list: one row per matched Colleague ID, first-seen order.
- Corrections: (row, column, value) overwrites for stale supervisor names.

Matching rules:
- Header rows are found by label, not by position (banner rows are fine).
- Drivers match on normalized (first, last) only. No fuzzy matching.
- Duplicate roster keys: the later row wins.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from functools import reduce
from typing import Dict, Iterable, List, Optional, Sequence, Tuple


# -----------------
# Run configuration
# -----------------

ALLOPS_REQUIRED_HEADERS = [
    "preferred first name",
    "legal last name",
    "colleague id",
    "manager - name",
    "business area",
]

V2_REQUIRED_HEADERS = [
    "driver name",
    "supervisor name",
]

V2_SHEET_NAME = "Data"
MASTER_SHEET_NAME = "master list"

MASTER_HEADERS = [
    "Colleague ID",
    "First Name",
    "Last Name",
    "Supervisor Name",
]

KEY_SEPARATOR = "|"

Grid = Sequence[Sequence[str]]
HeaderMap = Dict[str, int]


# ------
# Errors
# ------

class ReconcileError(Exception):
    """Fatal error; aborts the whole run."""

    stage = "reconcile"


class WorkbookOpenError(ReconcileError):
    stage = "open workbook"


class SheetNotFound(ReconcileError):
    stage = "find sheet"


class HeaderNotFound(ReconcileError):
    stage = "detect header"


class StructuralAssertionError(ReconcileError):
    stage = "check header layout"


class OutputWriteError(ReconcileError):
    stage = "write output"


# -------------
# Data classes
# -------------

@dataclass(frozen=True)
class DriverRecord:
    first_name: str
    last_name: str
    colleague_id: str
    manager_name: str


@dataclass(frozen=True)
class Correction:
    row: int
    column: int
    value: str
    previous: str = ""


@dataclass(frozen=True)
class Collision:
    key: str
    replaced_id: str
    winner_id: str
    row: int


@dataclass
class RosterIndex:
    records: Dict[str, DriverRecord] = field(default_factory=dict)
    collisions: List[Collision] = field(default_factory=list)
    # grid rows missing first name, last name or colleague id
    skipped: List[int] = field(default_factory=list)

    @property
    def skipped_rows(self) -> int:
        return len(self.skipped)

    def get(self, key: str) -> Optional[DriverRecord]:
        return self.records.get(key)

    def __len__(self) -> int:
        return len(self.records)


@dataclass(frozen=True)
class RowOutcome:
    """What a single V2 row contributes; see match_row()."""
    row: int
    driver: str
    parsed: bool = True
    record: Optional[DriverRecord] = None
    correction: Optional[Correction] = None

    @property
    def matched(self) -> bool:
        return self.record is not None


@dataclass(frozen=True)
class ReconcileState:
    """
    Accumulator threaded through the V2 rows by reconcile_row().
    Never mutated: every step returns a new state.
    """
    master_list: Tuple[DriverRecord, ...] = ()
    seen_ids: frozenset = frozenset()
    corrections: Tuple[Correction, ...] = ()
    unmatched: Tuple[Tuple[int, str], ...] = ()
    blank_names: Tuple[Tuple[int, str], ...] = ()

    @property
    def skipped(self) -> Dict[str, int]:
        return {"blank_name": len(self.blank_names), "unmatched": len(self.unmatched)}


# ----------------
# Text primitives
# ----------------

def normalize(s: Optional[str]) -> str:
    """
    Canonical form used for every comparison (never for output values).
    """
    s = (s or "").lower().strip()
    s = s.replace("\u00A0", " ")  # NBSP
    s = s.replace("\n", " ").replace("\r", " ")
    return " ".join(s.split())


def cell(row: Sequence[str], idx: int) -> str:
    if idx < 0 or idx >= len(row):
        return ""
    v = row[idx]
    return "" if v is None else str(v).strip()


def roster_key(first: str, last: str) -> str:
    return normalize(first) + KEY_SEPARATOR + normalize(last)


# --------------------
# Header row detection
# --------------------

def header_map_for_row(row: Sequence[str]) -> HeaderMap:
    headers: HeaderMap = {}
    for c_idx, v in enumerate(row):
        n = normalize(v)
        if n:
            # repeated label: last column wins
            headers[n] = c_idx
    return headers


def find_header_row(grid: Grid, required: Iterable[str], sheet: str = "") -> Tuple[HeaderMap, int]:
    """
    Return (header map, row index) for the first row, top to bottom, whose
    cells contain every required label after normalization.
    """
    required_norm = [normalize(r) for r in required]

    for r_idx, row in enumerate(grid):
        headers = header_map_for_row(row)
        if all(req in headers for req in required_norm):
            return headers, r_idx

    raise HeaderNotFound(f"no valid header row found in {sheet!r} (required: {required_norm})")


def check_allops_layout(headers: HeaderMap) -> None:
    """
    ALLOPS exports always place "Manager - Name" before "Business Area".
    Anything else means the report format changed under us.
    """
    manager_col = headers[normalize("manager - name")]
    area_col = headers[normalize("business area")]
    if manager_col >= area_col:
        raise StructuralAssertionError(
            f"invalid ALLOPS header: 'manager - name' (column {manager_col}) "
            f"must come before 'business area' (column {area_col})"
        )


# ------------
# Name parsing
# ------------

def split_driver_name(full: Optional[str]) -> Tuple[str, str]:
    """
    "Last, First" or "First [Middle ...] Last" -> (first, last).
    ("", "") when both parts cannot be determined.
    """
    full = (full or "").strip()
    if not full:
        return "", ""

    if "," in full:
        parts = full.split(",")
        if len(parts) == 2:
            return parts[1].strip(), parts[0].strip()
        # more than one comma: fall through to whitespace tokens

    parts = full.split()
    if len(parts) < 2:
        return "", ""

    return parts[0], parts[-1]


# -------------
# Roster index
# -------------

def build_roster_index(grid: Grid, headers: HeaderMap, header_row: int) -> RosterIndex:
    first_col = headers[normalize("preferred first name")]
    last_col = headers[normalize("legal last name")]
    id_col = headers[normalize("colleague id")]
    manager_col = headers[normalize("manager - name")]

    index = RosterIndex()

    for r_idx in range(header_row + 1, len(grid)):
        row = grid[r_idx]

        first = cell(row, first_col)
        last = cell(row, last_col)
        colleague_id = cell(row, id_col)
        manager = cell(row, manager_col)

        if not first or not last or not colleague_id:
            index.skipped.append(r_idx)
            continue

        key = roster_key(first, last)
        previous = index.records.get(key)
        if previous is not None:
            index.collisions.append(
                Collision(key=key, replaced_id=previous.colleague_id, winner_id=colleague_id, row=r_idx)
            )

        index.records[key] = DriverRecord(
            first_name=first,
            last_name=last,
            colleague_id=colleague_id,
            manager_name=manager,
        )

    return index


# -----------
# Reconcile
# -----------

def match_row(r_idx: int, row: Sequence[str], headers: HeaderMap, index: RosterIndex) -> RowOutcome:
    """
    Look one V2 row up in the roster. The outcome carries the matched record
    (None when the name is blank/unparsable or unknown) and the supervisor
    correction, if the row's current value is stale.
    """
    driver_col = headers[normalize("driver name")]
    supervisor_col = headers[normalize("supervisor name")]

    driver = cell(row, driver_col)
    first, last = split_driver_name(driver)
    if not first or not last:
        return RowOutcome(row=r_idx, driver=driver, parsed=False)

    info = index.get(roster_key(first, last))
    if info is None:
        return RowOutcome(row=r_idx, driver=driver)

    fix = None
    current = cell(row, supervisor_col)
    if normalize(current) != normalize(info.manager_name):
        fix = Correction(row=r_idx, column=supervisor_col, value=info.manager_name, previous=current)

    return RowOutcome(row=r_idx, driver=driver, record=info, correction=fix)


def reconcile_row(
    state: ReconcileState,
    r_idx: int,
    row: Sequence[str],
    headers: HeaderMap,
    index: RosterIndex,
) -> ReconcileState:
    outcome = match_row(r_idx, row, headers, index)

    if not outcome.matched:
        skip = ((r_idx, outcome.driver),)
        if not outcome.parsed:
            return replace(state, blank_names=state.blank_names + skip)
        return replace(state, unmatched=state.unmatched + skip)

    info = outcome.record
    if info.colleague_id not in state.seen_ids:
        state = replace(
            state,
            master_list=state.master_list + (info,),
            seen_ids=state.seen_ids | {info.colleague_id},
        )

    if outcome.correction is not None:
        state = replace(state, corrections=state.corrections + (outcome.correction,))

    return state


def reconcile(grid: Grid, headers: HeaderMap, header_row: int, index: RosterIndex) -> ReconcileState:
    """
    Same result as folding reconcile_row() over every V2 row after the header
    row, accumulated in local lists so a full pass stays linear.
    """
    master_list: List[DriverRecord] = []
    seen_ids = set()
    corrections: List[Correction] = []
    unmatched: List[Tuple[int, str]] = []
    blank_names: List[Tuple[int, str]] = []

    for r_idx in range(header_row + 1, len(grid)):
        outcome = match_row(r_idx, grid[r_idx], headers, index)

        if not outcome.matched:
            skipped = unmatched if outcome.parsed else blank_names
            skipped.append((r_idx, outcome.driver))
            continue

        if outcome.record.colleague_id not in seen_ids:
            seen_ids.add(outcome.record.colleague_id)
            master_list.append(outcome.record)

        if outcome.correction is not None:
            corrections.append(outcome.correction)

    return ReconcileState(
        master_list=tuple(master_list),
        seen_ids=frozenset(seen_ids),
        corrections=tuple(corrections),
        unmatched=tuple(unmatched),
        blank_names=tuple(blank_names),
    )


def reconcile_fold(grid: Grid, headers: HeaderMap, header_row: int, index: RosterIndex) -> ReconcileState:
    rows = ((r_idx, grid[r_idx]) for r_idx in range(header_row + 1, len(grid)))
    return reduce(
        lambda state, item: reconcile_row(state, item[0], item[1], headers, index),
        rows,
        ReconcileState(),
    )


def master_list_rows(state: ReconcileState) -> List[List[str]]:
    return [
        [rec.colleague_id, rec.first_name, rec.last_name, rec.manager_name]
        for rec in state.master_list
    ]
