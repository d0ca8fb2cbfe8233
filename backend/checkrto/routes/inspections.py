# backend/checkrto/routes/inspections.py
"""
Inspection attempt API Routes

- POST /api/workshops/:wid/applications/:id/inspections      get-or-create an attempt
- GET  /api/workshops/:wid/inspections/:id                   attempt + derived result
- PUT  /api/workshops/:wid/inspections/:id                   global observations
- PUT  /api/workshops/:wid/inspections/:id/steps/:step_id    record one step
- POST /api/workshops/:wid/inspections/:id/steps/bulk        record many steps
- GET|POST /api/workshops/:wid/inspections/:id/steps/:step_id/observations

Step status values: "Apto" | "Condicional" | "Rechazado" | null (Unset).
"""

from flask import Blueprint, request, jsonify, current_app

from ..errors import CheckRTOError
from ..services import inspection_service
from . import error_response


inspections_bp = Blueprint("inspections", __name__, url_prefix="/api/workshops/<int:workshop_id>")


def _inspection_payload(inspection) -> dict:
    return {
        **inspection.to_dict(),
        "attempt_result": inspection_service.attempt_result(inspection.id),
    }


@inspections_bp.post("/applications/<int:application_id>/inspections")
def ensure_inspection_route(workshop_id: int, application_id: int):
    """
    Get-or-create the first (default) or second attempt.

    Request body:
        {"is_second": false}

    Calling it again returns the same attempt with its recorded steps intact.
    """
    data = request.get_json(silent=True) or {}
    try:
        inspection = inspection_service.ensure(
            application_id,
            bool(data.get("is_second", False)),
            workshop_id=workshop_id,
        )
        return jsonify({"inspection": _inspection_payload(inspection)}), 200
    except CheckRTOError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to ensure inspection")
        return jsonify({"error": "Internal server error"}), 500


@inspections_bp.get("/inspections/<int:inspection_id>")
def get_inspection_route(workshop_id: int, inspection_id: int):
    try:
        inspection = inspection_service.get_inspection(inspection_id, workshop_id=workshop_id)
        return jsonify({"inspection": _inspection_payload(inspection)}), 200
    except CheckRTOError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get inspection")
        return jsonify({"error": "Internal server error"}), 500


@inspections_bp.put("/inspections/<int:inspection_id>")
def update_inspection_route(workshop_id: int, inspection_id: int):
    data = request.get_json(silent=True) or {}
    try:
        inspection = inspection_service.set_global_observations(
            inspection_id,
            data.get("global_observations"),
            workshop_id=workshop_id,
        )
        return jsonify({"inspection": _inspection_payload(inspection)}), 200
    except CheckRTOError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update inspection")
        return jsonify({"error": "Internal server error"}), 500


@inspections_bp.put("/inspections/<int:inspection_id>/steps/<int:step_id>")
def record_step_route(workshop_id: int, inspection_id: int, step_id: int):
    """
    Request body:
        {"status": "Condicional", "observations": "luz de giro"}

    Error responses:
        400: unknown status, or step not part of this attempt
        409: the attempt's result is already written
    """
    data = request.get_json(silent=True) or {}
    try:
        inspection_service.record_step(
            inspection_id,
            step_id,
            data.get("status"),
            data.get("observations"),
            workshop_id=workshop_id,
        )
        inspection = inspection_service.get_inspection(inspection_id, workshop_id=workshop_id)
        return jsonify({"inspection": _inspection_payload(inspection)}), 200
    except CheckRTOError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to record inspection step")
        return jsonify({"error": "Internal server error"}), 500


@inspections_bp.post("/inspections/<int:inspection_id>/steps/bulk")
def record_steps_route(workshop_id: int, inspection_id: int):
    """
    Request body:
        {"steps": [{"step_id": 1, "status": "Apto"}, ...]}

    All-or-nothing: one bad item and no step is written.
    """
    data = request.get_json(silent=True) or {}
    try:
        inspection = inspection_service.record_steps(
            inspection_id,
            data.get("steps") or [],
            workshop_id=workshop_id,
        )
        return jsonify({"inspection": _inspection_payload(inspection)}), 200
    except CheckRTOError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to record inspection steps")
        return jsonify({"error": "Internal server error"}), 500


@inspections_bp.get("/inspections/<int:inspection_id>/steps/<int:step_id>/observations")
def list_step_observations_route(workshop_id: int, inspection_id: int, step_id: int):
    try:
        observations = inspection_service.list_step_observations(
            inspection_id, step_id, workshop_id=workshop_id
        )
        return jsonify({"observations": observations}), 200
    except CheckRTOError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list step observations")
        return jsonify({"error": "Internal server error"}), 500


@inspections_bp.post("/inspections/<int:inspection_id>/steps/<int:step_id>/observations")
def set_step_observations_route(workshop_id: int, inspection_id: int, step_id: int):
    """
    Request body:
        {"checked_ids": [3, 5]}  // replaces the ticked set
    """
    data = request.get_json(silent=True) or {}
    try:
        observations = inspection_service.set_step_observation_checks(
            inspection_id,
            step_id,
            data.get("checked_ids") or [],
            workshop_id=workshop_id,
        )
        return jsonify({"observations": observations}), 200
    except CheckRTOError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to set step observations")
        return jsonify({"error": "Internal server error"}), 500
