# Overview: Shared JSON error responses and query parsing for the API blueprints.

from flask import jsonify

from ..services.errors import EngineError, ValidationError


def engine_error_response(e: EngineError):
    return jsonify(e.to_dict()), e.http_status


def internal_error_response():
    return jsonify({"error": "Internal server error"}), 500


def query_int(args, name: str, default=None):
    """Optional integer query parameter."""
    raw = args.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an integer")
