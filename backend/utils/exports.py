"""Tabular export formatters for dashboard downloads."""
import csv
import io
from datetime import datetime, timezone
from typing import List

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter


def _cell(value):
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value
    return value


def format_csv(data: List[dict]) -> io.StringIO:
    """Format data as CSV."""
    output = io.StringIO()

    if not data:
        output.write("No data available\n")
        return output

    writer = csv.DictWriter(output, fieldnames=data[0].keys())
    writer.writeheader()
    writer.writerows(data)

    output.seek(0)
    return output


def format_xlsx(data: List[dict], title: str, start: datetime, end: datetime) -> io.BytesIO:
    """Format data as an Excel workbook with a title block above the table."""
    output = io.BytesIO()

    wb = Workbook()
    ws = wb.active
    ws.title = title[:31]

    header_font = Font(bold=True, color="FFFFFF")
    header_fill = PatternFill(start_color="1E3A5F", end_color="1E3A5F", fill_type="solid")
    header_alignment = Alignment(horizontal="center", vertical="center")
    thin_border = Border(
        left=Side(style='thin'),
        right=Side(style='thin'),
        top=Side(style='thin'),
        bottom=Side(style='thin')
    )

    ws['A1'] = title
    ws['A1'].font = Font(bold=True, size=16)
    ws['A2'] = f"Period: {start.strftime('%d %b %Y')} - {end.strftime('%d %b %Y')}"
    ws['A2'].font = Font(italic=True, size=10)
    ws['A3'] = f"Generated: {datetime.now(timezone.utc).strftime('%d %b %Y %H:%M:%S')} UTC"
    ws['A3'].font = Font(size=9, color="666666")

    if not data:
        ws['A5'] = "No data available for this period"
        wb.save(output)
        output.seek(0)
        return output

    headers = list(data[0].keys())
    for col_idx, header in enumerate(headers, 1):
        cell = ws.cell(row=5, column=col_idx, value=header)
        cell.font = header_font
        cell.fill = header_fill
        cell.alignment = header_alignment
        cell.border = thin_border

    for row_idx, row_data in enumerate(data, 6):
        for col_idx, header in enumerate(headers, 1):
            cell = ws.cell(row=row_idx, column=col_idx, value=_cell(row_data.get(header, "")))
            cell.border = thin_border
            if header in ("revenue", "money_saved"):
                cell.number_format = '#,##0.00'

    for col_idx, header in enumerate(headers, 1):
        ws.column_dimensions[get_column_letter(col_idx)].width = max(14, len(header) + 4)

    wb.save(output)
    output.seek(0)
    return output
