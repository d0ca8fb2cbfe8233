# backend/checkrto/routes/stickers.py
"""
Sticker (oblea) API Routes

Registry and allocation endpoints, scoped to one workshop:
- GET  /api/workshops/:wid/stickers                 - List (filter status, q)
- GET  /api/workshops/:wid/stickers/available       - Disponible, oldest first
- GET  /api/workshops/:wid/stickers/summary         - Counts per status
- GET  /api/workshops/:wid/stickers/next-available  - Preview of auto-assign
- POST /api/workshops/:wid/stickers/:id/assign      - Bind a given sticker
- POST /api/workshops/:wid/stickers/assign-by-number
- POST /api/workshops/:wid/stickers/auto-assign
- POST /api/workshops/:wid/stickers/manual-assign
- POST /api/workshops/:wid/stickers/release
- POST /api/workshops/:wid/stickers/reassign
- PATCH /api/workshops/:wid/stickers/:id/status     - Administrative override
- GET|POST /api/workshops/:wid/sticker-orders       - Batches / intake

Domain errors map to HTTP through CheckRTOError.http_status
(404 not found, 400 invalid, 409 conflict / exhausted).
"""

from flask import Blueprint, request, jsonify, current_app

from ..errors import CheckRTOError, InvalidFormatError
from ..services import allocation_service, sticker_service, workflow_service
from ..services.vehicle_service import validate_plate
from ..services.workshop_service import require_workshop
from . import error_response, request_actor


stickers_bp = Blueprint("stickers", __name__, url_prefix="/api/workshops/<int:workshop_id>")


def _application_id(data: dict, workshop_id: int) -> int | None:
    """
    The optional application_id of a binding request.

    It must name an application of this workshop for the same plate.
    """
    application_id = data.get("application_id")
    if application_id is None:
        return None
    if isinstance(application_id, bool) or not isinstance(application_id, int):
        raise InvalidFormatError("application_id must be an integer", entity_type="application")

    application = workflow_service.get_application(application_id, workshop_id=workshop_id)
    plate = validate_plate(data.get("license_plate"))
    if application.license_plate != plate:
        raise InvalidFormatError(
            f"Application {application_id} is for plate '{application.license_plate}', not '{plate}'",
            entity_type="application",
            entity_id=application_id,
            observed=application.state(),
        )
    return application_id


@stickers_bp.get("/stickers")
def list_stickers_route(workshop_id: int):
    try:
        require_workshop(workshop_id)
        stickers = sticker_service.list_stickers(
            workshop_id,
            status=request.args.get("status") or None,
            q=request.args.get("q") or None,
            limit=request.args.get("limit", type=int, default=500),
        )
        return jsonify({
            "stickers": [s.to_dict() for s in stickers],
            "count": len(stickers),
        }), 200
    except CheckRTOError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list stickers")
        return jsonify({"error": "Internal server error"}), 500


@stickers_bp.get("/stickers/available")
def list_available_route(workshop_id: int):
    """
    Disponible stickers in intake order.

    Query parameters:
        sticker_order_id (optional): narrow to one batch
    """
    try:
        require_workshop(workshop_id)
        stickers = sticker_service.list_available(
            workshop_id,
            sticker_order_id=request.args.get("sticker_order_id", type=int),
        ).all()
        return jsonify({
            "stickers": [s.to_dict() for s in stickers],
            "count": len(stickers),
        }), 200
    except CheckRTOError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list available stickers")
        return jsonify({"error": "Internal server error"}), 500


@stickers_bp.get("/stickers/summary")
def sticker_summary_route(workshop_id: int):
    try:
        require_workshop(workshop_id)
        return jsonify({"summary": sticker_service.status_summary(workshop_id)}), 200
    except CheckRTOError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to summarize stickers")
        return jsonify({"error": "Internal server error"}), 500


@stickers_bp.get("/stickers/next-available")
def next_available_route(workshop_id: int):
    """
    The sticker auto-assign would try first. Nothing is reserved.

    Response:
        {"sticker": {...}}
    Error responses:
        409: no Disponible sticker left
    """
    try:
        sticker = allocation_service.preview_next(
            workshop_id,
            sticker_order_id=request.args.get("sticker_order_id", type=int),
        )
        return jsonify({"sticker": sticker.to_dict()}), 200
    except CheckRTOError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to preview next sticker")
        return jsonify({"error": "Internal server error"}), 500


@stickers_bp.post("/stickers/<int:sticker_id>/assign")
def assign_sticker_route(workshop_id: int, sticker_id: int):
    """
    Bind a specific sticker to a plate.

    Request body:
        {"license_plate": "AB123CD", "application_id": 7 (optional)}

    Error responses:
        404: sticker or application not in this workshop
        400: malformed plate, or application_id for another plate
        409: sticker no longer Disponible, or plate already holds a sticker
    """
    data = request.get_json(silent=True) or {}
    try:
        sticker = sticker_service.assign(
            sticker_id,
            data.get("license_plate"),
            workshop_id,
            application_id=_application_id(data, workshop_id),
            actor=request_actor(data),
        )
        return jsonify({"sticker": sticker.to_dict()}), 200
    except CheckRTOError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to assign sticker")
        return jsonify({"error": "Internal server error"}), 500


@stickers_bp.post("/stickers/assign-by-number")
def assign_by_number_route(workshop_id: int):
    data = request.get_json(silent=True) or {}
    try:
        sticker = sticker_service.assign_by_number(
            data.get("sticker_number"),
            data.get("license_plate"),
            workshop_id,
            application_id=_application_id(data, workshop_id),
            actor=request_actor(data),
        )
        return jsonify({"sticker": sticker.to_dict()}), 200
    except CheckRTOError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to assign sticker by number")
        return jsonify({"error": "Internal server error"}), 500


@stickers_bp.post("/stickers/auto-assign")
def auto_assign_route(workshop_id: int):
    """
    Assign the oldest Disponible sticker to a plate.

    Request body:
        {"license_plate": "...", "application_id": 7, "sticker_order_id": 2}
    """
    data = request.get_json(silent=True) or {}
    try:
        sticker = allocation_service.auto_assign(
            workshop_id,
            data.get("license_plate"),
            application_id=_application_id(data, workshop_id),
            sticker_order_id=data.get("sticker_order_id"),
            actor=request_actor(data),
        )
        return jsonify({"sticker": sticker.to_dict()}), 200
    except CheckRTOError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to auto-assign sticker")
        return jsonify({"error": "Internal server error"}), 500


@stickers_bp.post("/stickers/manual-assign")
def manual_assign_route(workshop_id: int):
    """
    Assign the sticker the operator has in hand, typed as prefix + code (+ suffix).

    Request body:
        {"license_plate": "...", "prefix": "AA-", "code": "0012", "suffix": ""}
    """
    data = request.get_json(silent=True) or {}
    try:
        sticker = allocation_service.manual_assign(
            workshop_id,
            data.get("license_plate"),
            data.get("prefix"),
            data.get("code"),
            data.get("suffix"),
            application_id=_application_id(data, workshop_id),
            actor=request_actor(data),
        )
        return jsonify({"sticker": sticker.to_dict()}), 200
    except CheckRTOError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to manually assign sticker")
        return jsonify({"error": "Internal server error"}), 500


@stickers_bp.post("/stickers/release")
def release_route(workshop_id: int):
    """
    Request body:
        {"license_plate": "...", "keep_unavailable": false}
    """
    data = request.get_json(silent=True) or {}
    try:
        sticker = sticker_service.release(
            data.get("license_plate"),
            bool(data.get("keep_unavailable", False)),
            workshop_id=workshop_id,
            actor=request_actor(data),
        )
        return jsonify({"sticker": sticker.to_dict()}), 200
    except CheckRTOError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to release sticker")
        return jsonify({"error": "Internal server error"}), 500


@stickers_bp.post("/stickers/reassign")
def reassign_route(workshop_id: int):
    data = request.get_json(silent=True) or {}
    try:
        sticker = allocation_service.reassign(
            workshop_id,
            data.get("license_plate"),
            sticker_order_id=data.get("sticker_order_id"),
            actor=request_actor(data),
        )
        return jsonify({"sticker": sticker.to_dict()}), 200
    except CheckRTOError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to reassign sticker")
        return jsonify({"error": "Internal server error"}), 500


@stickers_bp.patch("/stickers/<int:sticker_id>/status")
def set_status_route(workshop_id: int, sticker_id: int):
    """
    Administrative status override.

    Request body:
        {"status": "Disponible" | "No Disponible"}

    Error responses:
        400: unknown status, or "En Uso" (only assign may set it)
    """
    data = request.get_json(silent=True) or {}
    try:
        sticker = sticker_service.set_status(
            sticker_id,
            workshop_id,
            data.get("status"),
            actor=request_actor(data),
        )
        return jsonify({"sticker": sticker.to_dict()}), 200
    except CheckRTOError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to set sticker status")
        return jsonify({"error": "Internal server error"}), 500


@stickers_bp.get("/sticker-orders")
def list_sticker_orders_route(workshop_id: int):
    try:
        require_workshop(workshop_id)
        orders = sticker_service.list_sticker_orders(workshop_id)
        return jsonify({"sticker_orders": orders, "count": len(orders)}), 200
    except CheckRTOError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list sticker orders")
        return jsonify({"error": "Internal server error"}), 500


@stickers_bp.post("/sticker-orders")
def register_sticker_order_route(workshop_id: int):
    """
    Intake of a delivered batch.

    Request body, either explicit numbers:
        {"name": "Lote 12", "numbers": ["AA0001", "AA0002"]}
    or a sequential range:
        {"name": "Lote 12", "prefix": "AA", "start": 1, "count": 100, "pad": 4}
    """
    data = request.get_json(silent=True) or {}
    try:
        numbers = data.get("numbers")
        if numbers is None:
            try:
                start = int(data.get("start", 1))
                count = int(data.get("count", 0))
                pad = int(data.get("pad", 0))
            except (TypeError, ValueError):
                raise InvalidFormatError("start, count and pad must be integers", entity_type="sticker_order")
            numbers = sticker_service.build_sticker_numbers(data.get("prefix") or "", start, count, pad=pad)

        order = sticker_service.register_stickers(
            workshop_id,
            numbers,
            name=data.get("name"),
            actor=request_actor(data),
        )
        return jsonify({"sticker_order": order.to_dict()}), 201
    except CheckRTOError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to register sticker order")
        return jsonify({"error": "Internal server error"}), 500
