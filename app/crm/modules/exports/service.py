"""
Spreadsheet exports (openpyxl). Each builder returns the .xlsx file as bytes.
"""

from __future__ import annotations

import logging
from io import BytesIO
from typing import Any, Iterable

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

from app.crm.access import customer_scope
from app.crm.constants import CUSTOMER_STATUSES, TRANSACTION_STATUSES
from app.crm.identity import Identity, require_authenticated
from app.crm.models import Customer
from app.crm.modules.analytics.service import get_customer_stats_by_affiliation, get_users_analysis_data
from app.crm.modules.customers.service import customer_amount_totals

logger = logging.getLogger(__name__)

XLSX_MIMETYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

_HEADER_FILL = PatternFill(start_color="DDEBF7", end_color="DDEBF7", fill_type="solid")
_HEADER_FONT = Font(bold=True, size=11)
_THIN = Side(style="thin")
_BORDER = Border(left=_THIN, right=_THIN, top=_THIN, bottom=_THIN)

# User text starting with these is stored as plain text, never as a formula.
_FORMULA_PREFIXES = ("=", "+", "-", "@")


def _build_sheet(title: str, headers: list[str], rows: Iterable[list[Any]], widths: list[int]) -> bytes:
    wb = Workbook()
    ws = wb.active
    ws.title = title

    for col_idx, header in enumerate(headers, 1):
        cell = ws.cell(row=1, column=col_idx, value=header)
        cell.fill = _HEADER_FILL
        cell.font = _HEADER_FONT
        cell.alignment = Alignment(horizontal="center", vertical="center")
        cell.border = _BORDER

    for row_idx, row in enumerate(rows, 2):
        for col_idx, value in enumerate(row, 1):
            cell = ws.cell(row=row_idx, column=col_idx, value=value)
            if isinstance(value, str) and value.startswith(_FORMULA_PREFIXES):
                cell.data_type = "s"
            cell.border = _BORDER
            if isinstance(value, (int, float)):
                cell.alignment = Alignment(horizontal="right", vertical="center")
            else:
                cell.alignment = Alignment(horizontal="left", vertical="center", wrap_text=True)

    for col_idx, width in enumerate(widths, 1):
        ws.column_dimensions[get_column_letter(col_idx)].width = width
    ws.row_dimensions[1].height = 22
    ws.freeze_panes = "A2"

    buf = BytesIO()
    wb.save(buf)
    return buf.getvalue()


def export_customers_xlsx(s, identity: Identity) -> bytes:
    require_authenticated(identity)
    customers = (
        s.query(Customer)
        .filter(customer_scope(identity))
        .order_by(Customer.submit_time.desc(), Customer.id.desc())
        .all()
    )
    amounts = customer_amount_totals(s, [c.id for c in customers])

    headers = ["客户名称", "手机号", "客户归属", "客户情况", "成交情况", "成交金额", "备注", "提交人", "提交时间"]
    rows = [
        [
            c.customer_name,
            c.phone_number,
            c.affiliation or "",
            c.customer_status,
            c.transaction_status,
            round(amounts.get(c.id, 0.0), 2),
            c.notes or "",
            c.submit_user,
            c.submit_time.strftime("%Y-%m-%d %H:%M:%S") if c.submit_time else "",
        ]
        for c in customers
    ]
    data = _build_sheet("客户列表", headers, rows, [16, 16, 16, 10, 10, 12, 40, 12, 20])
    logger.info("Customer export by %s (%s rows)", identity.username, len(rows))
    return data


def _breakdown_cells(row: dict[str, Any]) -> list[Any]:
    cells: list[Any] = [row["customers"]["count"]]
    for label in CUSTOMER_STATUSES:
        bucket = row["customers"][label]
        cells.append(f"{bucket['count']} ({bucket['percentage']}%)")
    for label in TRANSACTION_STATUSES:
        bucket = row["transactions"][label]
        cells.append(f"{bucket['count']} ({bucket['percentage']}%)")
    cells.append(row["transactions"]["total_amount"])
    return cells


def _breakdown_headers() -> list[str]:
    return ["客户数", *CUSTOMER_STATUSES, *TRANSACTION_STATUSES, "成交金额"]


def export_affiliation_stats_xlsx(s, identity: Identity) -> bytes:
    require_authenticated(identity)
    stats = get_customer_stats_by_affiliation(s, identity)
    headers = ["客户归属", "创建人", *_breakdown_headers()]
    rows = [[r["name"], r["submit_user"] or "", *_breakdown_cells(r)] for r in stats]
    widths = [18, 12] + [12] * (len(headers) - 2)
    return _build_sheet("归属统计", headers, rows, widths)


def export_users_analysis_xlsx(s, identity: Identity) -> bytes:
    stats = get_users_analysis_data(s, identity)
    headers = [
        "用户名",
        "邮箱",
        "角色",
        *_breakdown_headers(),
        "客均价值",
        "转化率(%)",
        "近7天新客户",
        "近7天成交额",
        "近30天新客户",
        "近30天成交额",
    ]
    rows = []
    for r in stats:
        perf = r["performance"]
        rows.append(
            [
                r["username"],
                r["email"],
                r["role"],
                *_breakdown_cells(r),
                perf["avg_customer_value"],
                perf["conversion_rate"],
                perf["recent_customers"],
                perf["recent_revenue"],
                perf["monthly_customers"],
                perf["monthly_revenue"],
            ]
        )
    widths = [14, 24, 10] + [12] * (len(headers) - 3)
    return _build_sheet("用户分析", headers, rows, widths)
