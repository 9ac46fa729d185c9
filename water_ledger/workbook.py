"""
Excel workbook export and import.

The exported file carries two sheets: the colour-coded summary grid for people
and a flat Transactions sheet that re-imports without loss. Tabular data goes
through pandas; cell fills are read and written with openpyxl directly.
"""

import logging
import re
import zipfile
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Callable, List, Optional, Sequence

import openpyxl
import pandas as pd
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter
from openpyxl.utils.exceptions import InvalidFileException

from .config import Settings, load_settings
from .datatypes import Ledger, PaymentStatus
from .errors import InvalidImportShape
from .reporting import TRANSACTION_COLUMNS, SummaryTable, build_summary, build_transaction_rows

logger = logging.getLogger(__name__)

# Header fills per column kind
HEADER_FILLS = {
    'meter': '305496',
    'name': '305496',
    'month': '1F4E78',
    'total_consumption': 'FFF2CC',
    'total_revenue': 'DDEBF7',
    'unpaid_months': 'F8CBAD',
    'unpaid_total': 'F8CBAD',
}
_DARK_HEADERS = {'meter', 'name', 'month'}

SUMMARY_SHEET_FALLBACKS = ('Resume', 'Feuille1')
_SUMMARY_NAME = re.compile(r'resum|summary|sheet', re.IGNORECASE)


@dataclass
class GridCell:
    value: object
    fill: Optional[str] = None   # ARGB of a solid fill, e.g. 'FFC6EFCE'


@dataclass
class WorkbookTables:
    transactions: Optional[List[dict]] = None
    summary: Optional[List[List[GridCell]]] = None
    sheet_names: List[str] = field(default_factory=list)


def _solid(rgb: str) -> PatternFill:
    return PatternFill(start_color=rgb, end_color=rgb, fill_type='solid')


# -------------------- export --------------------

def write_workbook(ledger: Ledger, path: Path, settings: Optional[Settings] = None,
                   today: Optional[date] = None) -> Path:
    """Write the summary grid and the Transactions sheet to an .xlsx file"""
    settings = settings or load_settings()
    path = Path(path)
    summary = build_summary(ledger, today)
    df_tx = pd.DataFrame(build_transaction_rows(ledger), columns=TRANSACTION_COLUMNS)

    with pd.ExcelWriter(path, engine='openpyxl') as writer:
        summary.to_frame().to_excel(writer, sheet_name=settings.summary_sheet, index=False)
        df_tx.to_excel(writer, sheet_name=settings.transactions_sheet, index=False)
        _style_summary(writer.sheets[settings.summary_sheet], summary, settings)
        ws_tx = writer.sheets[settings.transactions_sheet]
        ws_tx.freeze_panes = 'A2'
        for i, name in enumerate(TRANSACTION_COLUMNS, start=1):
            ws_tx.column_dimensions[get_column_letter(i)].width = max(12, len(name) + 2)

    logger.info(f"Wrote {len(summary.rows)} customers and {len(df_tx)} months to {path}")
    return path


def _style_summary(ws, summary: SummaryTable, settings: Settings) -> None:
    ws.freeze_panes = 'A2'
    center = Alignment(horizontal='center', vertical='center')

    for pos, col in enumerate(summary.columns, start=1):
        cell = ws.cell(row=1, column=pos)
        cell.fill = _solid(HEADER_FILLS.get(col.kind, '305496'))
        cell.font = Font(bold=True, color='FFFFFFFF' if col.kind in _DARK_HEADERS else 'FF000000')
        cell.alignment = center
        ws.column_dimensions[get_column_letter(pos)].width = 26 if pos <= 2 else 14
        if col.kind in ('unpaid_months', 'unpaid_total'):
            ws.column_dimensions[get_column_letter(pos)].width = 22

    paid = _solid(settings.paid_fill)
    unpaid = _solid(settings.unpaid_fill)
    for r, row_status in enumerate(summary.statuses, start=2):
        for pos, status in row_status.items():
            cell = ws.cell(row=r, column=pos + 1)
            cell.fill = paid if status is PaymentStatus.PAID else unpaid
            cell.alignment = center
            cell.number_format = '0'
        ws.cell(row=r, column=2).font = Font(bold=True)


# -------------------- import --------------------

def _fill_rgb(cell) -> Optional[str]:
    fill = cell.fill
    if fill is None or fill.fill_type != 'solid':
        return None
    rgb = fill.fgColor.rgb if fill.fgColor is not None else None
    # theme and indexed colours do not carry an RGB string
    return rgb if isinstance(rgb, str) else None


def pick_transactions_sheet(names: List[str], settings: Settings,
                            accepts: Optional[Callable[[str], bool]] = None) -> Optional[str]:
    """
    The configured Transactions sheet, else the first other sheet that is not
    a known summary name and that `accepts(name)` (when given) takes for
    transaction rows.
    """
    if settings.transactions_sheet in names:
        return settings.transactions_sheet
    for name in names:
        if name == settings.summary_sheet or name in SUMMARY_SHEET_FALLBACKS:
            continue
        if accepts is None or accepts(name):
            return name
    return None


def pick_summary_sheet(names: List[str], settings: Settings,
                       exclude: Optional[str] = None) -> Optional[str]:
    candidates = [n for n in names if n != exclude]
    for name in (settings.summary_sheet,) + SUMMARY_SHEET_FALLBACKS:
        if name in candidates:
            return name
    for name in candidates:
        if _SUMMARY_NAME.search(name):
            return name
    return None


def _read_grid(ws) -> List[List[GridCell]]:
    grid = []
    for row in ws.iter_rows():
        cells = [GridCell(c.value, _fill_rgb(c)) for c in row]
        if any(c.value is not None for c in cells):
            grid.append(cells)
    return grid


def _header_row(ws) -> List[object]:
    for row in ws.iter_rows(max_row=1, values_only=True):
        return list(row)
    return []


def read_workbook(path: Path, settings: Optional[Settings] = None,
                  is_transactions_header: Optional[Callable[[Sequence], bool]] = None) -> WorkbookTables:
    """
    Load the Transactions rows and the summary grid of a workbook.

    Either may be None when the workbook lacks that sheet. When
    `is_transactions_header` is given, a sheet other than the configured
    Transactions sheet is only read as transaction rows if it accepts the
    sheet's first row; otherwise the sheet is left to the summary pass.
    """
    settings = settings or load_settings()
    path = Path(path)
    try:
        wb = openpyxl.load_workbook(path, data_only=True)
    except (zipfile.BadZipFile, InvalidFileException, KeyError, ValueError) as e:
        raise InvalidImportShape(f"Cannot read Excel file {path.name}: {e}") from e
    try:
        names = list(wb.sheetnames)
        accepts = None
        if is_transactions_header is not None:
            def accepts(name):
                return is_transactions_header(_header_row(wb[name]))
        tx_name = pick_transactions_sheet(names, settings, accepts)
        summary_name = pick_summary_sheet(names, settings, exclude=tx_name)
        logger.debug(f"{path.name}: sheets {names}, transactions={tx_name!r}, summary={summary_name!r}")

        tables = WorkbookTables(sheet_names=names)
        if tx_name is not None:
            try:
                df = pd.read_excel(path, sheet_name=tx_name, dtype=object, engine='openpyxl')
            except (zipfile.BadZipFile, InvalidFileException, KeyError, ValueError) as e:
                raise InvalidImportShape(f"Cannot read sheet {tx_name!r} of {path.name}: {e}") from e
            df = df.dropna(how='all')
            tables.transactions = df.to_dict('records')
            logger.info(f"Read {len(tables.transactions)} rows from sheet {tx_name!r}")
        if summary_name is not None:
            tables.summary = _read_grid(wb[summary_name])
            logger.info(f"Read {max(len(tables.summary) - 1, 0)} customer rows from sheet {summary_name!r}")
    finally:
        wb.close()
    return tables
