from flask import Blueprint, jsonify, request

from security.password_policy import password_strength, validate_comprehensive
from security.services import current_security


password_bp = Blueprint("password", __name__, url_prefix="/security/password")


@password_bp.post("/strength")
def check_password_strength():
    data = request.get_json(silent=True) or {}
    password = data.get("password") or ""
    return jsonify(password_strength(password).to_dict()), 200


@password_bp.post("/validate")
def validate():
    data = request.get_json(silent=True) or {}
    password = data.get("password") or ""
    if not isinstance(password, str):
        return jsonify(error="Invalid password"), 400
    user_id = data.get("user_id")
    if user_id is not None and not isinstance(user_id, (str, int)):
        return jsonify(error="Invalid user_id"), 400

    services = current_security()
    result = validate_comprehensive(
        password,
        str(user_id) if user_id is not None else None,
        check_breach_db=bool(data.get("check_breach")),
        check_password_history=bool(data.get("check_history")),
        require_minimum_strength=bool(data.get("require_minimum_strength", True)),
        breach_client=services.breach_client,
        history_store=services.history_store,
        history_limit=services.history_limit,
    )

    if not result.is_valid:
        return jsonify(error="Password does not meet policy", details=result.errors,
                       warnings=result.warnings, strength=result.strength.to_dict()), 400
    return jsonify(result.to_dict()), 200
