import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import db
from planner import importer


def main():
    parser = argparse.ArgumentParser(description="Import backlog items (CSV or XLSX) into SQLite.")
    parser.add_argument("file", help="Path to the backlog export")
    parser.add_argument(
        "--routes",
        help="Optional route reference sheet (route_id, route_name, branch_id, branch_name)",
    )
    args = parser.parse_args()

    paths = [Path(args.file)] + ([Path(args.routes)] if args.routes else [])
    missing = [str(path) for path in paths if not path.exists()]
    if missing:
        raise SystemExit(f"File not found: {', '.join(missing)}")

    db.init_db()
    if args.routes:
        with open(args.routes, "rb") as handle:
            routes = importer.import_routes(handle, args.routes)
        print(f"routes: {routes['imported']} imported, {len(routes['skipped'])} skipped")

    with open(args.file, "rb") as handle:
        summary = importer.import_backlog(handle, args.file)
    print(f"items: {summary['imported']} imported of {summary['total_rows']} rows")
    for row in summary["skipped"]:
        print(f"  skipped {row['item_id'] or '(blank)'}: {row['reason']}")


if __name__ == "__main__":
    main()
