# backend/checkrto/routes/steps.py
"""
Step configuration API Routes

- GET /api/workshops/:wid/steps                          configured checklist
- PUT /api/workshops/:wid/steps                          replace the checklist
- GET|PUT /api/workshops/:wid/steps/:step_id/observations   canned observations

Changes apply to attempts created afterwards only.
"""

from flask import Blueprint, request, jsonify, current_app

from ..errors import CheckRTOError
from ..services import step_service
from ..services.workshop_service import require_workshop
from . import error_response


steps_bp = Blueprint("steps", __name__, url_prefix="/api/workshops/<int:workshop_id>/steps")


@steps_bp.get("")
def list_steps_route(workshop_id: int):
    try:
        require_workshop(workshop_id)
        include_inactive = (request.args.get("include_inactive") or "").lower() in ("1", "true", "yes")
        steps = step_service.get_steps(workshop_id, include_inactive=include_inactive)
        return jsonify({"steps": [s.to_dict() for s in steps], "count": len(steps)}), 200
    except CheckRTOError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list steps")
        return jsonify({"error": "Internal server error"}), 500


@steps_bp.put("")
def set_steps_route(workshop_id: int):
    """
    Request body:
        {"steps": [{"name": "Frenos", "order": 1, "description": "..."}, ...]}

    Steps missing from the list are deactivated, not deleted.
    """
    data = request.get_json(silent=True) or {}
    try:
        steps = step_service.set_steps(workshop_id, data.get("steps") or [])
        return jsonify({"steps": [s.to_dict() for s in steps], "count": len(steps)}), 200
    except CheckRTOError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to set steps")
        return jsonify({"error": "Internal server error"}), 500


@steps_bp.get("/<int:step_id>/observations")
def list_observations_route(workshop_id: int, step_id: int):
    try:
        step_service.require_step(step_id, workshop_id)
        observations = step_service.list_step_observations(step_id)
        return jsonify({"observations": [{"id": o.id, "description": o.description} for o in observations]}), 200
    except CheckRTOError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list step observations")
        return jsonify({"error": "Internal server error"}), 500


@steps_bp.put("/<int:step_id>/observations")
def set_observations_route(workshop_id: int, step_id: int):
    data = request.get_json(silent=True) or {}
    try:
        observations = step_service.set_step_observations(step_id, workshop_id, data.get("observations") or [])
        return jsonify({"observations": [{"id": o.id, "description": o.description} for o in observations]}), 200
    except CheckRTOError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to set step observations")
        return jsonify({"error": "Internal server error"}), 500
