import json
import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

ROOT = Path(__file__).resolve().parent
DEFAULT_DB_PATH = str(ROOT / "data" / "db" / "app.db")
DB_PATH = Path(os.environ.get("APP_DB_PATH", DEFAULT_DB_PATH))
DB_PATH.parent.mkdir(parents=True, exist_ok=True)

PLAN_UNIT_COLUMNS = [
    "plan_id",
    "departure_date",
    "unit_key",
    "unit_type",
    "dispatch_unit_id",
    "rigid_id",
    "horse_id",
    "trailer_id",
    "driver_id",
    "driver_name",
    "rigid_plate",
    "rigid_fleet_number",
    "horse_plate",
    "horse_fleet_number",
    "trailer_plate",
    "trailer_fleet_number",
    "capacity_kg",
    "used_capacity_kg",
    "length_mm",
    "branch_id",
    "ops_note",
]

PLAN_UNIT_NUMERIC_COLUMNS = {"capacity_kg", "used_capacity_kg", "length_mm"}

LOAD_ITEM_COLUMNS = [
    "item_id",
    "load_id",
    "order_id",
    "order_number",
    "customer_id",
    "customer_name",
    "suburb_name",
    "route_id",
    "route_name",
    "branch_id",
    "order_date",
    "weight_kg",
    "description",
]

VEHICLE_COLUMNS = [
    "id",
    "vehicle_type",
    "plate",
    "fleet_number",
    "capacity",
    "length",
    "priority",
    "geozone",
    "branch_id",
]


def get_connection():
    timeout_sec_raw = os.environ.get("SQLITE_BUSY_TIMEOUT_SEC", "30")
    try:
        timeout_sec = max(float(timeout_sec_raw), 1.0)
    except (TypeError, ValueError):
        timeout_sec = 30.0
    timeout_ms = int(timeout_sec * 1000)

    connection = sqlite3.connect(DB_PATH, timeout=timeout_sec)
    connection.row_factory = sqlite3.Row
    connection.execute("PRAGMA journal_mode=WAL")
    connection.execute("PRAGMA synchronous=NORMAL")
    connection.execute(f"PRAGMA busy_timeout={timeout_ms}")
    return connection


def _chunked(values, size=900):
    if not values:
        return []
    return [values[i : i + size] for i in range(0, len(values), size)]


def _get_columns(connection, table_name):
    rows = connection.execute(f"PRAGMA table_info({table_name})").fetchall()
    return {row["name"] for row in rows}


def _ensure_column(connection, table_name, column_name, ddl):
    if column_name not in _get_columns(connection, table_name):
        connection.execute(f"ALTER TABLE {table_name} ADD COLUMN {column_name} {ddl}")


def _now():
    return datetime.utcnow().isoformat(timespec="seconds")


@contextmanager
def immediate_transaction():
    """One write transaction holding sqlite's reserved lock until it ends.

    Concurrent writers wait on the busy timeout, so trip counts and item
    claims read inside the block cannot be raced by another commit.
    """
    connection = get_connection()
    try:
        connection.execute("BEGIN IMMEDIATE")
        yield connection
        connection.commit()
    except Exception:
        connection.rollback()
        raise
    finally:
        connection.close()


def init_db():
    with get_connection() as connection:
        connection.execute(
            """
            CREATE TABLE IF NOT EXISTS branches (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL
            )
            """
        )
        connection.execute(
            """
            CREATE TABLE IF NOT EXISTS routes (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                branch_id TEXT
            )
            """
        )
        connection.execute(
            """
            CREATE TABLE IF NOT EXISTS drivers (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                branch_id TEXT
            )
            """
        )
        connection.execute(
            """
            CREATE TABLE IF NOT EXISTS vehicles (
                id TEXT PRIMARY KEY,
                vehicle_type TEXT NOT NULL,
                plate TEXT,
                fleet_number TEXT,
                capacity TEXT,
                length TEXT,
                priority INTEGER DEFAULT 0,
                geozone TEXT,
                branch_id TEXT
            )
            """
        )
        connection.execute(
            """
            CREATE TABLE IF NOT EXISTS dispatch_units (
                id INTEGER PRIMARY KEY,
                unit_type TEXT NOT NULL,
                rigid_id TEXT,
                horse_id TEXT,
                trailer_id TEXT,
                driver_id TEXT,
                branch_id TEXT,
                is_active INTEGER NOT NULL DEFAULT 1
            )
            """
        )
        connection.execute(
            """
            CREATE TABLE IF NOT EXISTS load_items (
                item_id TEXT PRIMARY KEY,
                load_id TEXT,
                order_id TEXT,
                order_number TEXT,
                customer_id TEXT,
                customer_name TEXT,
                suburb_name TEXT,
                route_id TEXT,
                route_name TEXT,
                branch_id TEXT,
                order_date TEXT,
                weight_kg REAL NOT NULL DEFAULT 0,
                description TEXT,
                created_at TEXT NOT NULL
            )
            """
        )
        connection.execute(
            """
            CREATE TABLE IF NOT EXISTS assignment_plans (
                id INTEGER PRIMARY KEY,
                departure_date TEXT NOT NULL,
                cutoff_date TEXT,
                scope_branch_id TEXT,
                scope_customer_id TEXT,
                notes TEXT,
                parameters_json TEXT,
                created_at TEXT NOT NULL
            )
            """
        )
        connection.execute(
            """
            CREATE TABLE IF NOT EXISTS assignment_plan_units (
                id INTEGER PRIMARY KEY,
                plan_id INTEGER NOT NULL,
                departure_date TEXT NOT NULL,
                unit_key TEXT NOT NULL,
                unit_type TEXT NOT NULL,
                dispatch_unit_id INTEGER,
                rigid_id TEXT,
                horse_id TEXT,
                trailer_id TEXT,
                driver_id TEXT,
                driver_name TEXT,
                rigid_plate TEXT,
                rigid_fleet_number TEXT,
                horse_plate TEXT,
                horse_fleet_number TEXT,
                trailer_plate TEXT,
                trailer_fleet_number TEXT,
                capacity_kg REAL NOT NULL DEFAULT 0,
                used_capacity_kg REAL NOT NULL DEFAULT 0,
                length_mm REAL NOT NULL DEFAULT 0,
                branch_id TEXT,
                ops_note TEXT,
                created_at TEXT NOT NULL
            )
            """
        )
        connection.execute(
            """
            CREATE TABLE IF NOT EXISTS assignment_plan_item_assignments (
                id INTEGER PRIMARY KEY,
                plan_id INTEGER NOT NULL,
                plan_unit_id INTEGER NOT NULL,
                load_id TEXT,
                order_id TEXT,
                item_id TEXT NOT NULL UNIQUE,
                assigned_weight_kg REAL NOT NULL,
                priority_note TEXT,
                created_at TEXT NOT NULL
            )
            """
        )
        connection.execute(
            """
            CREATE TABLE IF NOT EXISTS assignment_plan_unassigned_items (
                id INTEGER PRIMARY KEY,
                plan_id INTEGER NOT NULL,
                load_id TEXT,
                order_id TEXT,
                item_id TEXT,
                order_date TEXT,
                weight_left REAL,
                reason TEXT,
                created_at TEXT NOT NULL
            )
            """
        )
        connection.execute(
            "CREATE INDEX IF NOT EXISTS idx_plan_units_departure ON assignment_plan_units(departure_date)"
        )
        connection.execute(
            "CREATE INDEX IF NOT EXISTS idx_plan_units_plan ON assignment_plan_units(plan_id)"
        )
        connection.execute(
            "CREATE INDEX IF NOT EXISTS idx_assignments_plan_unit "
            "ON assignment_plan_item_assignments(plan_unit_id)"
        )
        connection.execute(
            "CREATE INDEX IF NOT EXISTS idx_bucket_plan ON assignment_plan_unassigned_items(plan_id)"
        )
        _ensure_column(connection, "assignment_plans", "parameters_json", "TEXT")
        _ensure_column(connection, "assignment_plan_units", "ops_note", "TEXT")
        connection.commit()


# Reference data -------------------------------------------------------------


def upsert_branch(branch_id, name):
    with get_connection() as connection:
        connection.execute(
            """
            INSERT INTO branches (id, name) VALUES (?, ?)
            ON CONFLICT(id) DO UPDATE SET name = excluded.name
            """,
            (branch_id, name),
        )
        connection.commit()


def list_branches():
    with get_connection() as connection:
        rows = connection.execute("SELECT id, name FROM branches ORDER BY name").fetchall()
        return [dict(row) for row in rows]


def upsert_route(route_id, name, branch_id=None):
    with get_connection() as connection:
        connection.execute(
            """
            INSERT INTO routes (id, name, branch_id) VALUES (?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET name = excluded.name, branch_id = excluded.branch_id
            """,
            (route_id, name, branch_id),
        )
        connection.commit()


def get_route_branch_map():
    with get_connection() as connection:
        rows = connection.execute("SELECT id, name, branch_id FROM routes").fetchall()
    return {
        row["id"]: {"branch_id": row["branch_id"], "route_name": row["name"]}
        for row in rows
    }


def upsert_driver(driver_id, name, branch_id=None):
    with get_connection() as connection:
        connection.execute(
            """
            INSERT INTO drivers (id, name, branch_id) VALUES (?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET name = excluded.name, branch_id = excluded.branch_id
            """,
            (driver_id, name, branch_id),
        )
        connection.commit()


# Fleet ----------------------------------------------------------------------


def upsert_vehicle(vehicle):
    params = tuple(vehicle.get(column) for column in VEHICLE_COLUMNS)
    updates = ", ".join(f"{column} = excluded.{column}" for column in VEHICLE_COLUMNS[1:])
    with get_connection() as connection:
        connection.execute(
            f"""
            INSERT INTO vehicles ({", ".join(VEHICLE_COLUMNS)})
            VALUES ({", ".join("?" for _ in VEHICLE_COLUMNS)})
            ON CONFLICT(id) DO UPDATE SET {updates}
            """,
            params,
        )
        connection.commit()


def add_dispatch_unit(unit):
    with get_connection() as connection:
        cursor = connection.execute(
            """
            INSERT INTO dispatch_units (
                unit_type, rigid_id, horse_id, trailer_id, driver_id, branch_id, is_active
            )
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                unit.get("unit_type"),
                unit.get("rigid_id"),
                unit.get("horse_id"),
                unit.get("trailer_id"),
                unit.get("driver_id"),
                unit.get("branch_id"),
                0 if unit.get("is_active") is False else 1,
            ),
        )
        connection.commit()
        return cursor.lastrowid


def list_dispatch_units(branch_id=None):
    """Active dispatch units joined with their vehicle pieces, driver and branch.

    Each piece is returned as prefixed columns (``rigid_capacity``,
    ``trailer_length``...) so that ``planner.fleet`` can shape the unit.
    """
    piece_columns = []
    joins = []
    for piece in ("rigid", "horse", "trailer"):
        alias = f"{piece[0]}v"
        piece_columns.extend(
            [
                f"{alias}.plate AS {piece}_plate",
                f"{alias}.fleet_number AS {piece}_fleet_number",
                f"{alias}.capacity AS {piece}_capacity",
                f"{alias}.length AS {piece}_length",
                f"{alias}.priority AS {piece}_priority",
                f"{alias}.geozone AS {piece}_geozone",
            ]
        )
        joins.append(f"LEFT JOIN vehicles {alias} ON {alias}.id = du.{piece}_id")

    query = f"""
        SELECT
            du.id AS dispatch_unit_id,
            du.unit_type,
            du.rigid_id,
            du.horse_id,
            du.trailer_id,
            du.driver_id,
            du.branch_id,
            d.name AS driver_name,
            b.name AS branch_name,
            {", ".join(piece_columns)}
        FROM dispatch_units du
        {" ".join(joins)}
        LEFT JOIN drivers d ON d.id = du.driver_id
        LEFT JOIN branches b ON b.id = du.branch_id
        WHERE du.is_active = 1
    """
    params = []
    if branch_id:
        query += " AND du.branch_id = ?"
        params.append(branch_id)
    query += " ORDER BY du.id"
    with get_connection() as connection:
        rows = connection.execute(query, params).fetchall()
        return [dict(row) for row in rows]


# Backlog --------------------------------------------------------------------


def upsert_load_items(items):
    if not items:
        return 0
    created_at = _now()
    updates = ", ".join(f"{column} = excluded.{column}" for column in LOAD_ITEM_COLUMNS[1:])
    rows = [
        tuple(item.get(column) for column in LOAD_ITEM_COLUMNS) + (created_at,)
        for item in items
    ]
    with get_connection() as connection:
        connection.executemany(
            f"""
            INSERT INTO load_items ({", ".join(LOAD_ITEM_COLUMNS)}, created_at)
            VALUES ({", ".join("?" for _ in LOAD_ITEM_COLUMNS)}, ?)
            ON CONFLICT(item_id) DO UPDATE SET {updates}
            """,
            rows,
        )
        connection.commit()
    return len(rows)


def list_backlog_items(cutoff_date, branch_id=None, customer_id=None):
    """Unassigned items up to the cutoff, oldest first then heaviest first."""
    query = """
        SELECT li.*, li.weight_kg AS weight_left
        FROM load_items li
        LEFT JOIN assignment_plan_item_assignments a ON a.item_id = li.item_id
        WHERE a.id IS NULL
    """
    params = []
    if cutoff_date:
        query += " AND li.order_date <= ?"
        params.append(cutoff_date)
    if branch_id:
        query += " AND li.branch_id = ?"
        params.append(branch_id)
    if customer_id:
        query += " AND li.customer_id = ?"
        params.append(customer_id)
    query += " ORDER BY li.order_date ASC, li.weight_kg DESC, li.item_id ASC"
    with get_connection() as connection:
        rows = connection.execute(query, params).fetchall()
        return [dict(row) for row in rows]


def get_load_items(item_ids, connection=None):
    cleaned = [str(value) for value in (item_ids or []) if value not in (None, "")]
    if not cleaned:
        return {}

    def _fetch(conn):
        found = {}
        for chunk in _chunked(cleaned):
            placeholders = ", ".join("?" for _ in chunk)
            rows = conn.execute(
                f"SELECT * FROM load_items WHERE item_id IN ({placeholders})",
                chunk,
            ).fetchall()
            for row in rows:
                found[row["item_id"]] = dict(row)
        return found

    if connection is not None:
        return _fetch(connection)
    with get_connection() as inner_connection:
        return _fetch(inner_connection)


# Plans ----------------------------------------------------------------------


def create_plan(plan, connection=None):
    params = (
        plan.get("departure_date"),
        plan.get("cutoff_date"),
        plan.get("scope_branch_id"),
        plan.get("scope_customer_id"),
        plan.get("notes"),
        json.dumps(plan.get("parameters") or {}),
        _now(),
    )
    sql = """
        INSERT INTO assignment_plans (
            departure_date,
            cutoff_date,
            scope_branch_id,
            scope_customer_id,
            notes,
            parameters_json,
            created_at
        )
        VALUES (?, ?, ?, ?, ?, ?, ?)
    """
    if connection is not None:
        return connection.execute(sql, params).lastrowid

    with get_connection() as inner_connection:
        cursor = inner_connection.execute(sql, params)
        inner_connection.commit()
        return cursor.lastrowid


def _decode_plan(row):
    plan = dict(row)
    raw = plan.pop("parameters_json", None)
    try:
        plan["parameters"] = json.loads(raw) if raw else {}
    except (TypeError, ValueError):
        plan["parameters"] = {}
    return plan


def get_plan(plan_id, connection=None):
    if connection is not None:
        row = connection.execute(
            "SELECT * FROM assignment_plans WHERE id = ?", (plan_id,)
        ).fetchone()
        return _decode_plan(row) if row else None
    with get_connection() as inner_connection:
        row = inner_connection.execute(
            "SELECT * FROM assignment_plans WHERE id = ?", (plan_id,)
        ).fetchone()
        return _decode_plan(row) if row else None


def list_plans(filters=None, limit=50, offset=0, descending=True):
    filters = filters or {}
    clauses = []
    params = []
    if filters.get("date_from"):
        clauses.append("departure_date >= ?")
        params.append(filters["date_from"])
    if filters.get("date_to"):
        clauses.append("departure_date <= ?")
        params.append(filters["date_to"])
    if filters.get("branch_id"):
        clauses.append("scope_branch_id = ?")
        params.append(filters["branch_id"])
    if filters.get("customer_id"):
        clauses.append("scope_customer_id = ?")
        params.append(filters["customer_id"])
    if filters.get("ids"):
        placeholders = ", ".join("?" for _ in filters["ids"])
        clauses.append(f"id IN ({placeholders})")
        params.extend(filters["ids"])

    query = "SELECT * FROM assignment_plans"
    if clauses:
        query += " WHERE " + " AND ".join(clauses)
    direction = "DESC" if descending else "ASC"
    query += f" ORDER BY departure_date {direction}, id {direction} LIMIT ? OFFSET ?"
    params.extend([int(limit), int(offset)])

    with get_connection() as connection:
        rows = connection.execute(query, params).fetchall()
        return [_decode_plan(row) for row in rows]


def get_plan_counts(plan_ids):
    """Units, assignments, bucket rows and assigned weight per plan id."""
    cleaned = [int(value) for value in plan_ids or []]
    counts = {
        plan_id: {"units": 0, "assignments": 0, "unassigned": 0, "assigned_weight_kg": 0.0}
        for plan_id in cleaned
    }
    if not cleaned:
        return counts
    with get_connection() as connection:
        for chunk in _chunked(cleaned):
            placeholders = ", ".join("?" for _ in chunk)
            for row in connection.execute(
                f"""
                SELECT plan_id, COUNT(*) AS total
                FROM assignment_plan_units
                WHERE plan_id IN ({placeholders})
                GROUP BY plan_id
                """,
                chunk,
            ):
                counts[row["plan_id"]]["units"] = row["total"]
            for row in connection.execute(
                f"""
                SELECT plan_id, COUNT(*) AS total, COALESCE(SUM(assigned_weight_kg), 0) AS weight
                FROM assignment_plan_item_assignments
                WHERE plan_id IN ({placeholders})
                GROUP BY plan_id
                """,
                chunk,
            ):
                counts[row["plan_id"]]["assignments"] = row["total"]
                counts[row["plan_id"]]["assigned_weight_kg"] = float(row["weight"])
            for row in connection.execute(
                f"""
                SELECT plan_id, COUNT(*) AS total
                FROM assignment_plan_unassigned_items
                WHERE plan_id IN ({placeholders})
                GROUP BY plan_id
                """,
                chunk,
            ):
                counts[row["plan_id"]]["unassigned"] = row["total"]
    return counts


def delete_plan(plan_id):
    with get_connection() as connection:
        connection.execute(
            "DELETE FROM assignment_plan_item_assignments WHERE plan_id = ?", (plan_id,)
        )
        connection.execute(
            "DELETE FROM assignment_plan_unassigned_items WHERE plan_id = ?", (plan_id,)
        )
        connection.execute("DELETE FROM assignment_plan_units WHERE plan_id = ?", (plan_id,))
        cursor = connection.execute("DELETE FROM assignment_plans WHERE id = ?", (plan_id,))
        connection.commit()
        return cursor.rowcount


# Plan units -----------------------------------------------------------------


def create_plan_unit(plan_unit, connection=None):
    params = tuple(
        (plan_unit.get(column) or 0) if column in PLAN_UNIT_NUMERIC_COLUMNS else plan_unit.get(column)
        for column in PLAN_UNIT_COLUMNS
    ) + (_now(),)
    sql = f"""
        INSERT INTO assignment_plan_units ({", ".join(PLAN_UNIT_COLUMNS)}, created_at)
        VALUES ({", ".join("?" for _ in PLAN_UNIT_COLUMNS)}, ?)
    """
    if connection is not None:
        return connection.execute(sql, params).lastrowid

    with get_connection() as inner_connection:
        cursor = inner_connection.execute(sql, params)
        inner_connection.commit()
        return cursor.lastrowid


def list_plan_units(plan_id, connection=None):
    sql = """
        SELECT *, id AS plan_unit_id FROM assignment_plan_units
        WHERE plan_id = ?
        ORDER BY unit_type ASC, id ASC
    """
    if connection is not None:
        return [dict(row) for row in connection.execute(sql, (plan_id,)).fetchall()]
    with get_connection() as inner_connection:
        return [dict(row) for row in inner_connection.execute(sql, (plan_id,)).fetchall()]


def get_plan_unit(plan_unit_id):
    with get_connection() as connection:
        row = connection.execute(
            "SELECT *, id AS plan_unit_id FROM assignment_plan_units WHERE id = ?", (plan_unit_id,)
        ).fetchone()
        return dict(row) if row else None


def find_plan_unit_by_key(plan_id, unit_key, connection=None):
    sql = "SELECT *, id AS plan_unit_id FROM assignment_plan_units WHERE plan_id = ? AND unit_key = ?"
    if connection is not None:
        row = connection.execute(sql, (plan_id, unit_key)).fetchone()
        return dict(row) if row else None
    with get_connection() as inner_connection:
        row = inner_connection.execute(sql, (plan_id, unit_key)).fetchone()
        return dict(row) if row else None


def update_plan_unit_note(plan_unit_id, ops_note):
    with get_connection() as connection:
        connection.execute(
            "UPDATE assignment_plan_units SET ops_note = ? WHERE id = ?",
            (ops_note, plan_unit_id),
        )
        connection.commit()


def delete_plan_unit(plan_unit_id):
    with get_connection() as connection:
        connection.execute("DELETE FROM assignment_plan_units WHERE id = ?", (plan_unit_id,))
        connection.commit()


def count_trips_by_vehicle(departure_date, connection=None):
    """Plan units already committed for the date, counted per unit key."""
    sql = """
        SELECT unit_key, COUNT(*) AS trips
        FROM assignment_plan_units
        WHERE departure_date = ?
        GROUP BY unit_key
    """
    if connection is not None:
        rows = connection.execute(sql, (departure_date,)).fetchall()
    else:
        with get_connection() as inner_connection:
            rows = inner_connection.execute(sql, (departure_date,)).fetchall()
    return {row["unit_key"]: int(row["trips"]) for row in rows}


def recalc_used_capacity(plan_id, connection=None):
    sql = """
        UPDATE assignment_plan_units
        SET used_capacity_kg = COALESCE(
            (
                SELECT SUM(a.assigned_weight_kg)
                FROM assignment_plan_item_assignments a
                WHERE a.plan_unit_id = assignment_plan_units.id
            ),
            0
        )
        WHERE plan_id = ?
    """
    if connection is not None:
        connection.execute(sql, (plan_id,))
        return
    with get_connection() as inner_connection:
        inner_connection.execute(sql, (plan_id,))
        inner_connection.commit()


# Assignments ----------------------------------------------------------------


def list_assigned_item_ids(item_ids, connection=None):
    cleaned = [str(value) for value in (item_ids or []) if value not in (None, "")]
    if not cleaned:
        return set()

    def _fetch(conn):
        found = set()
        for chunk in _chunked(cleaned):
            placeholders = ", ".join("?" for _ in chunk)
            rows = conn.execute(
                f"""
                SELECT item_id FROM assignment_plan_item_assignments
                WHERE item_id IN ({placeholders})
                """,
                chunk,
            ).fetchall()
            found.update(row["item_id"] for row in rows)
        return found

    if connection is not None:
        return _fetch(connection)
    with get_connection() as inner_connection:
        return _fetch(inner_connection)


def claim_item(assignment, connection=None):
    """Insert one assignment; returns its id, or None when the item is taken."""
    params = (
        assignment.get("plan_id"),
        assignment.get("plan_unit_id"),
        assignment.get("load_id"),
        assignment.get("order_id"),
        assignment.get("item_id"),
        assignment.get("assigned_weight_kg"),
        assignment.get("priority_note"),
        _now(),
    )
    sql = """
        INSERT INTO assignment_plan_item_assignments (
            plan_id,
            plan_unit_id,
            load_id,
            order_id,
            item_id,
            assigned_weight_kg,
            priority_note,
            created_at
        )
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(item_id) DO NOTHING
    """
    if connection is not None:
        cursor = connection.execute(sql, params)
        return cursor.lastrowid if cursor.rowcount else None

    with get_connection() as inner_connection:
        cursor = inner_connection.execute(sql, params)
        inner_connection.commit()
        return cursor.lastrowid if cursor.rowcount else None


def list_plan_assignments(plan_id, connection=None):
    """Assignments of a plan enriched with the item's descriptive fields."""
    sql = """
        SELECT
            a.id AS assignment_id,
            a.plan_unit_id,
            a.load_id,
            a.order_id,
            a.item_id,
            a.assigned_weight_kg,
            a.priority_note,
            li.customer_id,
            li.customer_name,
            li.suburb_name,
            li.route_name,
            li.order_date,
            li.description,
            li.order_number
        FROM assignment_plan_item_assignments a
        LEFT JOIN load_items li ON li.item_id = a.item_id
        WHERE a.plan_id = ?
        ORDER BY a.id ASC
    """
    if connection is not None:
        return [dict(row) for row in connection.execute(sql, (plan_id,)).fetchall()]
    with get_connection() as inner_connection:
        return [dict(row) for row in inner_connection.execute(sql, (plan_id,)).fetchall()]


def get_assignment(assignment_id):
    with get_connection() as connection:
        row = connection.execute(
            "SELECT * FROM assignment_plan_item_assignments WHERE id = ?", (assignment_id,)
        ).fetchone()
        return dict(row) if row else None


def count_unit_assignments(plan_unit_id):
    with get_connection() as connection:
        row = connection.execute(
            "SELECT COUNT(*) AS total FROM assignment_plan_item_assignments WHERE plan_unit_id = ?",
            (plan_unit_id,),
        ).fetchone()
        return int(row["total"])


def delete_assignment(assignment_id):
    with get_connection() as connection:
        cursor = connection.execute(
            "DELETE FROM assignment_plan_item_assignments WHERE id = ?", (assignment_id,)
        )
        connection.commit()
        return cursor.rowcount


def delete_unit_assignments(plan_unit_id, order_ids=None):
    """Remove assignments on one plan unit, optionally only those of ``order_ids``."""
    with get_connection() as connection:
        if not order_ids:
            cursor = connection.execute(
                "DELETE FROM assignment_plan_item_assignments WHERE plan_unit_id = ?",
                (plan_unit_id,),
            )
            connection.commit()
            return cursor.rowcount

        removed = 0
        for chunk in _chunked([str(value) for value in order_ids]):
            placeholders = ", ".join("?" for _ in chunk)
            cursor = connection.execute(
                f"""
                DELETE FROM assignment_plan_item_assignments
                WHERE plan_unit_id = ? AND order_id IN ({placeholders})
                """,
                [plan_unit_id, *chunk],
            )
            removed += cursor.rowcount
        connection.commit()
        return removed


def delete_plan_assignments(plan_id):
    with get_connection() as connection:
        cursor = connection.execute(
            "DELETE FROM assignment_plan_item_assignments WHERE plan_id = ?", (plan_id,)
        )
        connection.commit()
        return cursor.rowcount


# Unassigned bucket ----------------------------------------------------------


def replace_plan_bucket(plan_id, rows, connection=None):
    created_at = _now()
    params = [
        (
            plan_id,
            row.get("load_id"),
            row.get("order_id"),
            row.get("item_id"),
            row.get("order_date"),
            row.get("weight_left"),
            row.get("reason"),
            created_at,
        )
        for row in rows or []
    ]

    def _write(conn):
        conn.execute("DELETE FROM assignment_plan_unassigned_items WHERE plan_id = ?", (plan_id,))
        if params:
            conn.executemany(
                """
                INSERT INTO assignment_plan_unassigned_items (
                    plan_id, load_id, order_id, item_id, order_date, weight_left, reason, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                params,
            )

    if connection is not None:
        _write(connection)
        return len(params)
    with get_connection() as inner_connection:
        _write(inner_connection)
        inner_connection.commit()
    return len(params)


def delete_bucket_item(plan_id, item_id, connection=None):
    sql = "DELETE FROM assignment_plan_unassigned_items WHERE plan_id = ? AND item_id = ?"
    if connection is not None:
        connection.execute(sql, (plan_id, item_id))
        return
    with get_connection() as inner_connection:
        inner_connection.execute(sql, (plan_id, item_id))
        inner_connection.commit()


def list_plan_bucket(plan_id, connection=None):
    """Bucket rows for a plan, enriched with the item's descriptive fields."""
    sql = """
        SELECT
            b.id,
            b.plan_id,
            b.load_id,
            b.order_id,
            b.item_id,
            b.order_date,
            b.weight_left,
            b.reason,
            li.customer_id,
            li.customer_name,
            li.suburb_name,
            li.route_name,
            li.description,
            li.order_number
        FROM assignment_plan_unassigned_items b
        LEFT JOIN load_items li ON li.item_id = b.item_id
        WHERE b.plan_id = ?
        ORDER BY b.id ASC
    """
    if connection is not None:
        return [dict(row) for row in connection.execute(sql, (plan_id,)).fetchall()]
    with get_connection() as inner_connection:
        return [dict(row) for row in inner_connection.execute(sql, (plan_id,)).fetchall()]
