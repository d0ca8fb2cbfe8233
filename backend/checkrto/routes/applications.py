# backend/checkrto/routes/applications.py
"""
Application Workflow API Routes

State transitions of an inspection application. The server computes every
status; clients only ask for the transition by name:
- POST /applications/:id/start                         Pendiente -> En curso
- POST /applications/:id/first-inspection/complete     En curso -> A Inspeccionar | Emitir CRT
- POST /applications/:id/second-inspection             -> Segunda Inspección
- POST /applications/:id/second-inspection/complete    -> Emitir CRT | Completado
- POST /applications/:id/send-to-certificate           A Inspeccionar -> Emitir CRT
- POST /applications/:id/complete                      Emitir CRT -> Completado
- POST /applications/:id/cancel                        -> Cancelado

All URLs are prefixed with /api/workshops/:workshop_id.
"""

from flask import Blueprint, request, jsonify, current_app

from ..errors import CheckRTOError
from ..services import inspection_service, workflow_service
from . import error_response, request_actor


applications_bp = Blueprint("applications", __name__, url_prefix="/api/workshops/<int:workshop_id>/applications")


def _application_response(application, status_code: int = 200):
    return jsonify({"application": application.to_dict()}), status_code


@applications_bp.post("")
def create_application_route(workshop_id: int):
    """
    Open a new application (Pendiente).

    Request body:
        {
            "license_plate": "AB123CD",
            "owner_ref": "...", "driver_ref": "...",
            "vehicle": {"brand": "...", "model": "...", "year": 2019}
        }
    """
    data = request.get_json(silent=True) or {}
    try:
        application = workflow_service.create_application(
            workshop_id,
            data.get("license_plate"),
            owner_ref=data.get("owner_ref"),
            driver_ref=data.get("driver_ref"),
            vehicle=data.get("vehicle"),
            actor=request_actor(data),
        )
        return _application_response(application, 201)
    except CheckRTOError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create application")
        return jsonify({"error": "Internal server error"}), 500


@applications_bp.get("")
def list_applications_route(workshop_id: int):
    try:
        applications = workflow_service.list_applications(
            workshop_id,
            status=request.args.get("status") or None,
            q=request.args.get("q") or None,
            limit=request.args.get("limit", type=int, default=200),
        )
        return jsonify({
            "applications": [a.to_dict() for a in applications],
            "count": len(applications),
        }), 200
    except CheckRTOError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list applications")
        return jsonify({"error": "Internal server error"}), 500


@applications_bp.get("/continuable")
def find_continuable_route(workshop_id: int):
    """
    "Continue application" search by plate.

    Error responses:
        404: no application awaiting a second inspection
        409: the plate already completed its second inspection
             (observed.result_2 carries the final result)
    """
    try:
        application = workflow_service.find_continuable(workshop_id, request.args.get("plate"))
        return _application_response(application)
    except CheckRTOError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to search continuable application")
        return jsonify({"error": "Internal server error"}), 500


@applications_bp.get("/<int:application_id>")
def get_application_route(workshop_id: int, application_id: int):
    try:
        application = workflow_service.get_application(application_id, workshop_id=workshop_id)
        return _application_response(application)
    except CheckRTOError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get application")
        return jsonify({"error": "Internal server error"}), 500


@applications_bp.get("/<int:application_id>/history")
def application_history_route(workshop_id: int, application_id: int):
    try:
        events = workflow_service.application_history(application_id, workshop_id=workshop_id)
        return jsonify({"events": [e.to_dict() for e in events], "count": len(events)}), 200
    except CheckRTOError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load application history")
        return jsonify({"error": "Internal server error"}), 500


@applications_bp.post("/<int:application_id>/start")
def start_application_route(workshop_id: int, application_id: int):
    data = request.get_json(silent=True) or {}
    try:
        application = workflow_service.start_application(
            application_id, workshop_id=workshop_id, actor=request_actor(data)
        )
        return _application_response(application)
    except CheckRTOError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to start application")
        return jsonify({"error": "Internal server error"}), 500


@applications_bp.post("/<int:application_id>/first-inspection/complete")
def complete_first_inspection_route(workshop_id: int, application_id: int):
    """
    Write the first result from the completed first attempt.

    Error responses:
        400: not En curso, or attempt incomplete
        409: first result already written
    """
    data = request.get_json(silent=True) or {}
    try:
        application = workflow_service.complete_first_inspection(
            application_id, workshop_id=workshop_id, actor=request_actor(data)
        )
        return _application_response(application)
    except CheckRTOError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to complete first inspection")
        return jsonify({"error": "Internal server error"}), 500


@applications_bp.post("/<int:application_id>/second-inspection")
def begin_second_inspection_route(workshop_id: int, application_id: int):
    """
    Start the conditional retry.

    Response:
        {"application": {...}, "inspection": {...}}  // second attempt, every step Unset

    Error responses:
        404: application not found
        400: first result not Condicional, status not eligible, window elapsed
        409: second result already written (AlreadyFinalized), or a concurrent start won
    """
    data = request.get_json(silent=True) or {}
    try:
        application = workflow_service.begin_second_inspection(
            application_id, workshop_id=workshop_id, actor=request_actor(data)
        )
        inspection = inspection_service.get_attempt(application.id, True)
        return jsonify({
            "application": application.to_dict(),
            "inspection": inspection.to_dict() if inspection else None,
        }), 200
    except CheckRTOError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to begin second inspection")
        return jsonify({"error": "Internal server error"}), 500


@applications_bp.post("/<int:application_id>/second-inspection/complete")
def complete_second_inspection_route(workshop_id: int, application_id: int):
    data = request.get_json(silent=True) or {}
    try:
        application = workflow_service.complete_second_inspection(
            application_id, workshop_id=workshop_id, actor=request_actor(data)
        )
        return _application_response(application)
    except CheckRTOError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to complete second inspection")
        return jsonify({"error": "Internal server error"}), 500


@applications_bp.post("/<int:application_id>/send-to-certificate")
def send_to_certificate_route(workshop_id: int, application_id: int):
    data = request.get_json(silent=True) or {}
    try:
        application = workflow_service.send_to_certificate(
            application_id, workshop_id=workshop_id, actor=request_actor(data)
        )
        return _application_response(application)
    except CheckRTOError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to send application to certificate")
        return jsonify({"error": "Internal server error"}), 500


@applications_bp.post("/<int:application_id>/complete")
def mark_completed_route(workshop_id: int, application_id: int):
    """Called by certificate issuance once the CRT has been printed."""
    data = request.get_json(silent=True) or {}
    try:
        application = workflow_service.mark_completed(
            application_id, workshop_id=workshop_id, actor=request_actor(data)
        )
        return _application_response(application)
    except CheckRTOError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to complete application")
        return jsonify({"error": "Internal server error"}), 500


@applications_bp.post("/<int:application_id>/cancel")
def cancel_application_route(workshop_id: int, application_id: int):
    """
    Request body:
        {"reason": "..."}  // optional, stored on the audit event
    """
    data = request.get_json(silent=True) or {}
    try:
        application = workflow_service.cancel_application(
            application_id,
            workshop_id=workshop_id,
            actor=request_actor(data),
            reason=data.get("reason"),
        )
        return _application_response(application)
    except CheckRTOError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to cancel application")
        return jsonify({"error": "Internal server error"}), 500


@applications_bp.post("/<int:application_id>/sticker")
def assign_application_sticker_route(workshop_id: int, application_id: int):
    """
    Bind a sticker to the application's vehicle.

    Request body:
        {"mode": "auto", "sticker_order_id": 2}
        {"mode": "manual", "prefix": "AA", "code": "0012", "suffix": ""}
    """
    data = request.get_json(silent=True) or {}
    try:
        sticker = workflow_service.assign_sticker(
            application_id,
            mode=data.get("mode", "auto"),
            workshop_id=workshop_id,
            prefix=data.get("prefix"),
            code=data.get("code"),
            suffix=data.get("suffix"),
            sticker_order_id=data.get("sticker_order_id"),
            actor=request_actor(data),
        )
        return jsonify({"sticker": sticker.to_dict()}), 200
    except CheckRTOError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to assign sticker to application")
        return jsonify({"error": "Internal server error"}), 500


@applications_bp.post("/<int:application_id>/sticker/reassign")
def reassign_application_sticker_route(workshop_id: int, application_id: int):
    data = request.get_json(silent=True) or {}
    try:
        sticker = workflow_service.reassign_sticker(
            application_id,
            workshop_id=workshop_id,
            sticker_order_id=data.get("sticker_order_id"),
            actor=request_actor(data),
        )
        return jsonify({"sticker": sticker.to_dict()}), 200
    except CheckRTOError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to reassign application sticker")
        return jsonify({"error": "Internal server error"}), 500


@applications_bp.delete("/<int:application_id>/sticker")
def release_application_sticker_route(workshop_id: int, application_id: int):
    """
    Query parameters:
        keep_unavailable (optional): "true" to void the sticker (No Disponible)
    """
    try:
        keep_unavailable = (request.args.get("keep_unavailable") or "").lower() in ("1", "true", "yes")
        sticker = workflow_service.release_sticker(
            application_id,
            keep_unavailable,
            workshop_id=workshop_id,
            actor=request_actor(),
        )
        return jsonify({"sticker": sticker.to_dict()}), 200
    except CheckRTOError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to release application sticker")
        return jsonify({"error": "Internal server error"}), 500
