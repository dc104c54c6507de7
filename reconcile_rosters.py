#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
reconcile_rosters.py

Validate the V2 "Overlooked & Returned" workbook against the ALLOPS workforce export.

Input:
- ALLOPS workbook (first sheet unless --allops-sheet is given)
- V2 workbook, sheet "Data" (unless --v2-sheet is given)

Output:
- V2.Overlooked_and_Returned_VALIDATED.xlsx:
    - stale "Supervisor Name" cells on the V2 sheet replaced with the ALLOPS manager
    - a fresh "master list" sheet: Colleague ID | First Name | Last Name | Supervisor Name
- _reconciliation_report.csv (utf-8-sig): roster key collisions + unmatched V2 drivers

Logs:
- Console + logs/roster_reconcile.log

Dependencies:
- pandas
- openpyxl

Notes:
- Any fatal error (open, sheet, header, layout, save, report) aborts with exit code 1
  and nothing is written.
- V2 is opened twice: read-only with cached values for matching (what Excel
  shows), then a normal load for writing so untouched formulas survive.
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import Any, List, Optional, Sequence, Tuple

import openpyxl
import pandas as pd
from openpyxl.workbook.workbook import Workbook
from openpyxl.worksheet.worksheet import Worksheet

from roster_match import (
    ALLOPS_REQUIRED_HEADERS,
    MASTER_HEADERS,
    MASTER_SHEET_NAME,
    V2_REQUIRED_HEADERS,
    V2_SHEET_NAME,
    Correction,
    OutputWriteError,
    ReconcileError,
    ReconcileState,
    RosterIndex,
    SheetNotFound,
    WorkbookOpenError,
    build_roster_index,
    check_allops_layout,
    find_header_row,
    master_list_rows,
    reconcile,
)


DEFAULT_OUTPUT = "V2.Overlooked_and_Returned_VALIDATED.xlsx"
DEFAULT_REPORT = "_reconciliation_report.csv"

REPORT_COLUMNS = ["kind", "row", "key", "detail"]


# ----------
# Logging
# ----------

LOGGER_NAME = "roster_reconcile"
LOG_FORMAT = "%(asctime)s | %(levelname)-7s | %(message)s"


def setup_logging(debug: bool, log_dir: Path = Path("logs")) -> logging.Logger:
    """
    Console + <log_dir>/roster_reconcile.log. Calling again reuses the same
    handlers and only switches their level.
    """
    level = logging.DEBUG if debug else logging.INFO
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG)

    if logger.handlers:
        for handler in logger.handlers:
            handler.setLevel(level)
        return logger

    log_dir.mkdir(parents=True, exist_ok=True)
    fmt = logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    for handler in (
        logging.FileHandler(log_dir / f"{LOGGER_NAME}.log", encoding="utf-8"),
        logging.StreamHandler(sys.stdout),
    ):
        handler.setLevel(level)
        handler.setFormatter(fmt)
        logger.addHandler(handler)

    return logger


# -------------------------
# Workbook / sheet reading
# -------------------------

def open_workbook(path: Path, read_only: bool = False) -> Workbook:
    if not path.exists():
        raise WorkbookOpenError(f"file not found: {path}")
    try:
        return openpyxl.load_workbook(path, read_only=read_only, data_only=read_only)
    except Exception as e:
        raise WorkbookOpenError(f"failed to open {path.name}: {e}") from e


def get_sheet(wb: Workbook, sheet_name: Optional[str], file_label: str) -> Worksheet:
    if sheet_name is None:
        return wb.worksheets[0]
    if sheet_name not in wb.sheetnames:
        raise SheetNotFound(f"sheet {sheet_name!r} not found in {file_label} (sheets: {wb.sheetnames})")
    return wb[sheet_name]


def cell_text(v: Any) -> str:
    """
    Render a cell value the way it reads in Excel.
    Excel stores numeric IDs as floats: 10234.0 -> "10234".
    """
    if v is None:
        return ""
    if isinstance(v, float) and v.is_integer():
        return str(int(v))
    return str(v)


def sheet_to_grid(ws: Worksheet) -> List[List[str]]:
    # grid row i == worksheet row i + 1
    return [[cell_text(v) for v in row] for row in ws.iter_rows(min_row=1, values_only=True)]


# ---------------------
# Writing the results
# ---------------------

def apply_corrections(ws: Worksheet, corrections: Sequence[Correction], logger: logging.Logger) -> None:
    for fix in corrections:
        logger.debug(f"{ws.title}: row {fix.row + 1} supervisor {fix.previous!r} -> {fix.value!r}")
        ws.cell(row=fix.row + 1, column=fix.column + 1, value=fix.value)


def master_list_frame(state: ReconcileState) -> pd.DataFrame:
    return pd.DataFrame(master_list_rows(state), columns=MASTER_HEADERS)


def write_master_sheet(wb: Workbook, df: pd.DataFrame) -> Worksheet:
    if MASTER_SHEET_NAME in wb.sheetnames:
        wb.remove(wb[MASTER_SHEET_NAME])
    ws = wb.create_sheet(MASTER_SHEET_NAME)

    for c_idx, col_name in enumerate(df.columns.tolist(), start=1):
        ws.cell(row=1, column=c_idx, value=str(col_name))

    for r_idx, row in enumerate(df.itertuples(index=False), start=2):
        for c_idx, v in enumerate(row, start=1):
            ws.cell(row=r_idx, column=c_idx, value=v)

    return ws


def save_workbook(wb: Workbook, out_path: Path) -> None:
    """
    Save next to the target first, then move into place: a failed save
    must not leave a half-written workbook behind.
    """
    tmp_path = out_path.with_name(f"{out_path.stem}.partial{out_path.suffix}")
    try:
        wb.save(tmp_path)
        os.replace(tmp_path, out_path)
    except Exception as e:
        if tmp_path.exists():
            tmp_path.unlink()
        raise OutputWriteError(f"failed to save {out_path}: {e}") from e


def build_report(index: RosterIndex, state: ReconcileState) -> pd.DataFrame:
    rows = []
    for col in index.collisions:
        rows.append(
            dict(
                kind="collision",
                row=col.row + 1,
                key=col.key,
                detail=f"colleague id {col.replaced_id} replaced by {col.winner_id}",
            )
        )
    for r_idx, driver in state.unmatched:
        rows.append(dict(kind="unmatched", row=r_idx + 1, key=driver, detail="no ALLOPS match"))
    return pd.DataFrame(rows, columns=REPORT_COLUMNS)


def write_report(df: pd.DataFrame, report_path: Path) -> None:
    try:
        df.to_csv(report_path, index=False, encoding="utf-8-sig")
    except Exception as e:
        raise OutputWriteError(f"failed to write report {report_path}: {e}") from e


# -------------------
# Pipeline
# -------------------

def read_grid(path: Path, sheet_name: Optional[str]) -> Tuple[List[List[str]], str]:
    """
    Grid of the values the sheet shows (cached formula results, not formula text).
    """
    wb = open_workbook(path, read_only=True)
    try:
        ws = get_sheet(wb, sheet_name, path.name)
        return sheet_to_grid(ws), ws.title
    finally:
        wb.close()


def load_allops_index(
    allops_path: Path,
    sheet_name: Optional[str],
    logger: logging.Logger,
) -> RosterIndex:
    grid, title = read_grid(allops_path, sheet_name)

    headers, header_row = find_header_row(grid, ALLOPS_REQUIRED_HEADERS, title)
    logger.info(f"{allops_path.name} | {title}: chosen header_row_idx={header_row}")
    logger.debug(f"{allops_path.name} | {title}: headers={headers}")
    check_allops_layout(headers)

    index = build_roster_index(grid, headers, header_row)
    logger.info(f"{allops_path.name}: indexed drivers={len(index)} skipped_rows={index.skipped_rows}")
    for r_idx in index.skipped:
        logger.debug(f"{allops_path.name}: row {r_idx + 1} skipped (missing first name, last name or colleague id)")
    for col in index.collisions:
        logger.warning(
            f"{allops_path.name}: duplicate name key {col.key!r} at row {col.row + 1}; "
            f"colleague id {col.replaced_id} replaced by {col.winner_id}"
        )
    return index


def run(
    allops_path: Path,
    v2_path: Path,
    out_path: Path,
    report_path: Optional[Path],
    logger: logging.Logger,
    allops_sheet: Optional[str] = None,
    v2_sheet: str = V2_SHEET_NAME,
) -> ReconcileState:
    index = load_allops_index(allops_path, allops_sheet, logger)

    grid, _ = read_grid(v2_path, v2_sheet)

    headers, header_row = find_header_row(grid, V2_REQUIRED_HEADERS, v2_sheet)
    logger.info(f"{v2_path.name} | {v2_sheet}: chosen header_row_idx={header_row}")
    logger.debug(f"{v2_path.name} | {v2_sheet}: headers={headers}")

    state = reconcile(grid, headers, header_row, index)
    logger.info(
        f"{v2_path.name}: master_list={len(state.master_list)} corrections={len(state.corrections)} "
        f"skipped={state.skipped}"
    )
    for r_idx, driver in state.blank_names:
        logger.debug(f"{v2_path.name}: row {r_idx + 1} skipped (driver name {driver!r} has no first/last)")
    for r_idx, driver in state.unmatched:
        logger.debug(f"{v2_path.name}: row {r_idx + 1} driver {driver!r} not in ALLOPS")
    if state.unmatched:
        logger.warning(f"{v2_path.name}: {len(state.unmatched)} driver row(s) had no ALLOPS match")

    # second, writable load: keeps formulas in cells we do not touch
    wb = open_workbook(v2_path)
    ws = get_sheet(wb, v2_sheet, v2_path.name)
    apply_corrections(ws, state.corrections, logger)
    write_master_sheet(wb, master_list_frame(state))
    save_workbook(wb, out_path)

    if report_path is not None:
        try:
            write_report(build_report(index, state), report_path)
        except OutputWriteError:
            out_path.unlink()
            raise
        logger.info(f"Wrote reconciliation report: {report_path.resolve()}")

    return state


# -----
# Main
# -----

def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Correct V2 supervisor names from ALLOPS and build a deduplicated master list.")
    parser.add_argument("--allops", required=True, help="ALLOPS workforce file (.xlsx)")
    parser.add_argument("--v2", required=True, help="V2 Overlooked & Returned file (.xlsx)")
    parser.add_argument("--allops-sheet", default=None, help="ALLOPS sheet name (default: first sheet)")
    parser.add_argument("--v2-sheet", default=V2_SHEET_NAME, help=f"V2 sheet name (default: {V2_SHEET_NAME})")
    parser.add_argument("--out", default=DEFAULT_OUTPUT, help=f"Validated workbook to write (default: {DEFAULT_OUTPUT})")
    parser.add_argument("--report", default=DEFAULT_REPORT, help="Reconciliation report CSV (set to '-' to skip)")
    parser.add_argument("--debug", action="store_true", help="Enable DEBUG logging")
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = parse_args(argv)
    logger = setup_logging(args.debug)

    out_path = Path(args.out)
    report_path = None if args.report == "-" else Path(args.report)

    try:
        run(
            allops_path=Path(args.allops),
            v2_path=Path(args.v2),
            out_path=out_path,
            report_path=report_path,
            logger=logger,
            allops_sheet=args.allops_sheet,
            v2_sheet=args.v2_sheet,
        )
    except ReconcileError as e:
        logger.error(f"{e.stage} failed: {e}")
        sys.exit(1)

    logger.info("✔ Data validated")
    logger.info("✔ Supervisor names corrected")
    logger.info("✔ Master list deduplicated")
    logger.info(f"✔ Output: {out_path}")


if __name__ == "__main__":
    main()
