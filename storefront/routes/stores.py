from flask import Blueprint, current_app, jsonify, request
from flask_jwt_extended import jwt_required

from storefront.billing import FeatureLimitGate, SubscriptionStore
from storefront.errors import ValidationFailure
from storefront.security import current_user_id
from storefront.services import StoreService

bp = Blueprint("stores", __name__, url_prefix="/api/stores")


def _service():
    settings = current_app.config["RECONCILER_SETTINGS"]
    return StoreService(FeatureLimitGate(SubscriptionStore(), settings.free_plan_code))


def _json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationFailure("Request body must be a JSON object")
    return data


@bp.route("", methods=["GET"])
@jwt_required()
def list_stores():
    """All stores of the caller, or one store when ``?id=`` is given."""
    service = _service()
    store_id = request.args.get("id")
    if store_id:
        return jsonify(service.get_store(current_user_id(), store_id).to_dict()), 200
    return jsonify([store.to_dict() for store in service.list_stores(current_user_id())]), 200


@bp.route("", methods=["POST"])
@jwt_required()
def create_store():
    store = _service().create_store(current_user_id(), _json_body())
    return jsonify(store.to_dict()), 201


@bp.route("", methods=["PUT"])
@jwt_required()
def update_store():
    data = _json_body()
    store_id = data.pop("id", None)
    if not store_id:
        raise ValidationFailure("Store id is required")
    store = _service().update_store(current_user_id(), store_id, data)
    return jsonify(store.to_dict()), 200


@bp.route("", methods=["DELETE"])
@jwt_required()
def delete_store():
    store_id = request.args.get("id")
    if not store_id:
        raise ValidationFailure("Store id is required")
    _service().delete_store(current_user_id(), store_id)
    return jsonify({"success": True}), 200
