from flask import jsonify
from . import bp
from menuqr.extensions import db
from menuqr.models import Restaurant
from menuqr.security.access import menu_is_servable


@bp.get("/<int:restaurant_id>/status")
def menu_status(restaurant_id: int):
    """Whether the restaurant's published menu may be shown to diners."""
    restaurant = db.session.get(Restaurant, restaurant_id)
    if restaurant is None:
        return jsonify({"error": "not_found"}), 404

    servable = menu_is_servable(restaurant)
    body = {"restaurant_id": restaurant.id, "servable": servable}
    if not servable:
        body["reason"] = "subscription_expired"
    return jsonify(body)
