"""Grid and workbook builders shared by the reconciliation tests."""
from __future__ import annotations

import re
import zipfile
from pathlib import Path
from typing import Dict, List, Optional, Sequence
from xml.sax.saxutils import escape

import openpyxl

ALLOPS_HEADER: Sequence[str] = (
    "Preferred First Name",
    "Legal Last Name",
    "Colleague ID",
    "Manager - Name",
    "Business Area",
)

V2_HEADER: Sequence[str] = ("Driver Name", "Supervisor Name")


def allops_row(first: str, last: str, cid: str, manager: str, area: str = "East") -> List[str]:
    return [first, last, cid, manager, area]


def allops_grid(*rows: Sequence[str], banner: int = 0) -> List[List[str]]:
    """ALLOPS grid with ``banner`` title rows above the header."""
    grid: List[List[str]] = [[f"ALLOPS export {i}"] for i in range(banner)]
    grid.append(list(ALLOPS_HEADER))
    grid.extend(list(r) for r in rows)
    return grid


def v2_grid(*rows: Sequence[str]) -> List[List[str]]:
    return [list(V2_HEADER)] + [list(r) for r in rows]


def write_workbook(path: Path, sheets: Dict[str, Sequence[Sequence[Optional[object]]]]) -> Path:
    """Write ``{sheet name: rows}`` to an .xlsx, sheets in dict order."""
    wb = openpyxl.Workbook()
    wb.remove(wb.active)
    for name, rows in sheets.items():
        ws = wb.create_sheet(name)
        for row in rows:
            ws.append(list(row))
    wb.save(path)
    return path


def read_sheet(path: Path, sheet: str) -> List[List[object]]:
    wb = openpyxl.load_workbook(path)
    try:
        return [list(r) for r in wb[sheet].iter_rows(values_only=True)]
    finally:
        wb.close()


def set_cached_values(path: Path, sheet_index: int, values: Dict[str, str]) -> Path:
    """
    Give formula cells a stored result, as Excel does on save.
    openpyxl writes formulas with an empty <v>; ``values`` maps "A3" -> text.
    """
    member = f"xl/worksheets/sheet{sheet_index}.xml"
    with zipfile.ZipFile(path) as src:
        parts = {name: src.read(name) for name in src.namelist()}

    xml = parts[member].decode("utf-8")
    for coord, text in values.items():
        pattern = re.compile(rf'<c r="{coord}">(<f>.*?</f>)<v\s*(?:/>|></v>)')
        xml, n = pattern.subn(
            lambda m: f'<c r="{coord}" t="str">{m.group(1)}<v>{escape(text)}</v>',
            xml,
        )
        assert n == 1, f"no formula cell {coord} in {member}"
    parts[member] = xml.encode("utf-8")

    with zipfile.ZipFile(path, "w", zipfile.ZIP_DEFLATED) as dst:
        for name, data in parts.items():
            dst.writestr(name, data)
    return path
