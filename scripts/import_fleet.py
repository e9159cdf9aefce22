import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import db
from planner import importer


def main():
    parser = argparse.ArgumentParser(description="Import dispatch units and vehicles into SQLite.")
    parser.add_argument("file", help="Fleet sheet, one row per dispatch unit")
    args = parser.parse_args()
    path = Path(args.file)
    if not path.exists():
        raise SystemExit(f"File not found: {path}")

    db.init_db()
    with open(path, "rb") as handle:
        summary = importer.import_fleet(handle, path.name)
    print(f"units: {summary['imported']} imported of {summary['total_rows']} rows")
    for row in summary["skipped"]:
        print(f"  row {row['row']}: {row['reason']}")


if __name__ == "__main__":
    main()
