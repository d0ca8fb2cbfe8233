"""
Shared helpers for the CheckRTO blueprints.

Authentication is handled outside the core; the operator name recorded in
the audit trail comes from the X-Actor header or an "actor" body field.
"""

from flask import jsonify, request

from ..errors import CheckRTOError


def error_response(e: CheckRTOError):
    """JSON body and HTTP status for a domain error."""
    return jsonify(e.to_dict()), e.http_status


def request_actor(data: dict | None = None) -> str | None:
    actor = request.headers.get("X-Actor")
    if not actor and data:
        actor = data.get("actor")
    return (actor or "").strip() or None
