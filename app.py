import io
import logging
import os

from flask import Flask, Response, jsonify, request

import db
from planner import export, importer, plan_edits
from planner.orchestrator import run_auto_assign
from planner.plan_edits import PlanEditError

logger = logging.getLogger(__name__)

XLSX_MIMETYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

app = Flask(__name__)
app.config.update(
    MAX_CONTENT_LENGTH=int(os.environ.get("MAX_UPLOAD_MB", "16")) * 1024 * 1024,
)
app.json.sort_keys = False

db.init_db()


def _json_body():
    return request.get_json(silent=True) or {}


@app.errorhandler(PlanEditError)
def handle_plan_edit_error(exc):
    return jsonify({"error": exc.message}), exc.status_code


@app.route("/health")
def health():
    return jsonify({"ok": True, "db_path": str(db.DB_PATH)})


@app.route("/planner/auto-assign", methods=["POST"])
def auto_assign():
    payload = _json_body()
    try:
        result = run_auto_assign(payload)
    except Exception:
        logger.exception("Auto-assign failed")
        return jsonify({"error": "Auto-assign failed"}), 500
    return jsonify(result)


@app.route("/plans", methods=["POST"])
def create_plan():
    try:
        result = plan_edits.create_plan(_json_body())
    except PlanEditError:
        raise
    except Exception:
        logger.exception("Failed to create plan")
        return jsonify({"error": "Failed to create plan"}), 500
    return jsonify(result), 201


@app.route("/plans", methods=["GET"])
def list_plans():
    return jsonify(plan_edits.list_plans(request.args.to_dict()))


@app.route("/plans/<int:plan_id>", methods=["GET"])
def get_plan(plan_id):
    include_idle = str(request.args.get("include_idle") or "").strip().lower() in {"1", "true", "yes"}
    return jsonify(plan_edits.plan_payload(plan_id, include_idle=include_idle))


@app.route("/plans/<int:plan_id>", methods=["DELETE"])
def delete_plan(plan_id):
    return jsonify(plan_edits.delete_plan(plan_id))


@app.route("/plans/<int:plan_id>/units/<int:plan_unit_id>", methods=["GET"])
def get_plan_unit(plan_id, plan_unit_id):
    return jsonify(plan_edits.get_plan_unit(plan_id, plan_unit_id))


@app.route("/plans/<int:plan_id>/units", methods=["POST"])
def add_plan_unit(plan_id):
    try:
        result = plan_edits.add_idle_unit(plan_id, _json_body())
    except PlanEditError:
        raise
    except Exception:
        logger.exception("Failed to add unit to plan %s", plan_id)
        return jsonify({"error": "Failed to add unit"}), 500
    return jsonify(result)


@app.route("/plans/<int:plan_id>/units/<int:plan_unit_id>", methods=["DELETE"])
def remove_plan_unit(plan_id, plan_unit_id):
    return jsonify(plan_edits.remove_plan_unit(plan_id, plan_unit_id))


@app.route("/plans/<int:plan_id>/units/<int:plan_unit_id>/assignments", methods=["DELETE"])
def unassign_unit(plan_id, plan_unit_id):
    order_ids = _json_body().get("order_ids") or request.args.get("order_ids")
    return jsonify(plan_edits.unassign_unit(plan_id, plan_unit_id, order_ids))


@app.route("/plans/<int:plan_id>/units/<int:plan_unit_id>/note", methods=["PUT"])
def set_unit_note(plan_id, plan_unit_id):
    payload = _json_body()
    return jsonify(plan_edits.set_unit_note(plan_id, plan_unit_id, payload.get("ops_note")))


@app.route("/plans/<int:plan_id>/assignments", methods=["POST"])
def assign_items(plan_id):
    try:
        result = plan_edits.assign_items(plan_id, _json_body())
    except PlanEditError:
        raise
    except Exception:
        logger.exception("Failed to assign items on plan %s", plan_id)
        return jsonify({"error": "Failed to assign items"}), 500
    return jsonify(result)


@app.route("/plans/<int:plan_id>/assignments/<int:assignment_id>", methods=["DELETE"])
def unassign(plan_id, assignment_id):
    return jsonify(plan_edits.unassign(plan_id, assignment_id))


@app.route("/plans/<int:plan_id>/assignments", methods=["DELETE"])
def unassign_all(plan_id):
    return jsonify(plan_edits.unassign_all(plan_id))


@app.route("/plans/<int:plan_id>/export.xlsx")
def export_plan(plan_id):
    payload = plan_edits.plan_payload(plan_id)
    workbook = export.build_plan_workbook(payload)
    output = io.BytesIO()
    workbook.save(output)
    output.seek(0)
    filename = f"plan-{plan_id}-{payload['plan'].get('departure_date') or 'undated'}.xlsx"
    return Response(
        output.getvalue(),
        mimetype=XLSX_MIMETYPE,
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


def _handle_upload(import_fn, label):
    file = request.files.get("file")
    if not file or not getattr(file, "filename", ""):
        return jsonify({"error": "Please choose a CSV or XLSX file to upload."}), 400
    try:
        summary = import_fn(file.stream, file.filename)
    except ValueError as exc:
        return jsonify({"error": str(exc)}), 400
    except Exception:
        logger.exception("%s upload failed", label)
        return jsonify({"error": f"{label} upload failed"}), 500
    summary["filename"] = file.filename
    return jsonify(summary)


@app.route("/imports/backlog", methods=["POST"])
def import_backlog():
    return _handle_upload(importer.import_backlog, "Backlog")


@app.route("/imports/fleet", methods=["POST"])
def import_fleet():
    return _handle_upload(importer.import_fleet, "Fleet")


@app.route("/imports/routes", methods=["POST"])
def import_routes():
    return _handle_upload(importer.import_routes, "Routes")


if __name__ == "__main__":
    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app.run(debug=True)
