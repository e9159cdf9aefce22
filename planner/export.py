from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side

UNIT_HEADERS = [
    "Plan Unit",
    "Unit Type",
    "Driver",
    "Rigid / Horse Plate",
    "Trailer Plate",
    "Fleet Number",
    "Customers",
    "Items",
    "Capacity (kg)",
    "Used (kg)",
    "Utilisation %",
    "Ops Note",
]

UNASSIGNED_HEADERS = [
    "Item",
    "Order",
    "Customer",
    "Suburb",
    "Route",
    "Order Date",
    "Weight Left (kg)",
    "Description",
    "Reason",
]


def _style_header(sheet, headers):
    header_fill = PatternFill("solid", fgColor="1F4E78")
    header_font = Font(color="FFFFFF", bold=True)
    header_alignment = Alignment(horizontal="center", vertical="center")
    thin_side = Side(style="thin", color="FFCBD5E1")
    border = Border(left=thin_side, right=thin_side, top=thin_side, bottom=thin_side)
    for col_idx, _ in enumerate(headers, start=1):
        cell = sheet.cell(row=1, column=col_idx)
        cell.fill = header_fill
        cell.font = header_font
        cell.alignment = header_alignment
        cell.border = border
    sheet.freeze_panes = "A2"


def _unit_row(unit):
    front = unit.get("rigid") or unit.get("horse") or {}
    trailer = unit.get("trailer") or {}
    item_count = sum(
        len(order.get("items") or [])
        for customer in unit.get("customers") or []
        for order in customer.get("orders") or []
    )
    capacity = unit.get("capacity_kg") or 0
    used = unit.get("used_capacity_kg") or 0
    utilisation = round(used / capacity * 100, 1) if capacity else None
    return [
        unit.get("plan_unit_id"),
        unit.get("unit_type"),
        unit.get("driver_name") or "",
        front.get("plate") or "",
        trailer.get("plate") or "",
        front.get("fleet_number") or "",
        len(unit.get("customers") or []),
        item_count,
        capacity,
        used,
        utilisation,
        unit.get("ops_note") or "",
    ]


def build_plan_workbook(payload):
    """Workbook with a unit summary sheet and an unassigned-items sheet."""
    workbook = Workbook()
    units_sheet = workbook.active
    units_sheet.title = "Plan Units"
    units_sheet.append(UNIT_HEADERS)
    for unit in payload.get("assigned_units") or []:
        units_sheet.append(_unit_row(unit))
    _style_header(units_sheet, UNIT_HEADERS)
    for col, width in zip("ABCDEFGHIJKL", (12, 16, 24, 18, 18, 14, 11, 9, 14, 12, 14, 32)):
        units_sheet.column_dimensions[col].width = width

    bucket_sheet = workbook.create_sheet("Unassigned")
    bucket_sheet.append(UNASSIGNED_HEADERS)
    for row in payload.get("unassigned") or []:
        bucket_sheet.append(
            [
                row.get("item_id"),
                row.get("order_number") or row.get("order_id"),
                row.get("customer_name") or row.get("customer_id") or "",
                row.get("suburb_name") or "",
                row.get("route_name") or "",
                row.get("order_date") or "",
                row.get("weight_left"),
                row.get("description") or "",
                row.get("reason") or "",
            ]
        )
    _style_header(bucket_sheet, UNASSIGNED_HEADERS)
    bucket_sheet.auto_filter.ref = f"A1:I{max(bucket_sheet.max_row, 1)}"
    for col, width in zip("ABCDEFGHI", (16, 16, 28, 18, 18, 12, 16, 38, 44)):
        bucket_sheet.column_dimensions[col].width = width
    return workbook
