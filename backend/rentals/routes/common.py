# Overview: Shared request parsing and response helpers for API routes.

import json

from flask import jsonify, request

from ..errors import RentalsError, ValidationError


def error_response(exc: RentalsError):
    return jsonify(exc.to_dict()), exc.status_code


def server_error():
    return jsonify({"error": "Internal server error", "code": "internal_error"}), 500


def _load_json_field(raw: str, name: str):
    try:
        return json.loads(raw)
    except ValueError:
        raise ValidationError(f"{name} must be valid JSON")


def parse_mutation_request() -> tuple[dict, list, str | None]:
    """
    Read a mutation payload from JSON or multipart form data.

    Multipart layout:
    - data: JSON object with the record fields (or plain form fields)
    - existing_attachments: JSON list of attachment descriptors to keep
    - files / attachments: uploaded files
    - reason: optional note for approval requests

    Returns (payload, files, reason).
    """
    if request.mimetype == "multipart/form-data":
        raw = request.form.get("data")
        if raw:
            payload = _load_json_field(raw, "data")
        else:
            payload = {
                k: v for k, v in request.form.items()
                if k not in ("existing_attachments", "reason")
            }
        if not isinstance(payload, dict):
            raise ValidationError("data must be a JSON object")

        existing = request.form.get("existing_attachments")
        if existing is not None:
            payload["attachments"] = _load_json_field(existing, "existing_attachments")

        files = request.files.getlist("files") + request.files.getlist("attachments")
        embedded_reason = payload.pop("reason", None)
        reason = request.form.get("reason") or embedded_reason
        return payload, files, reason

    payload = request.get_json(silent=True)
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    payload = dict(payload)
    reason = payload.pop("reason", None)
    return payload, [], reason


def mutation_response(outcome, *, created: bool = False):
    """202 when deferred to approval, 201 for a direct create, 200 otherwise."""
    if outcome.deferred:
        return jsonify(outcome.to_dict()), 202
    return jsonify(outcome.to_dict()), 201 if created else 200
