"""
Forecast selection routes.

Stores which Salesforce deals a manager includes in their forecast.
Nothing here talks to Salesforce; the dashboard posts the deals it got
from the team deals endpoint.
"""
import logging
from flask import Blueprint, jsonify, request

from forecast.models import db, ForecastDeal
from forecast.services.forecast import summarize_deals

logger = logging.getLogger(__name__)

forecast_bp = Blueprint('forecast', __name__, url_prefix='/api/forecast')


def _selection(manager_id: str):
    return ForecastDeal.query.filter_by(
        manager_id=manager_id
    ).order_by(ForecastDeal.close_date, ForecastDeal.amount.desc()).all()


def _selection_response(manager_id: str):
    deals = _selection(manager_id)
    included = [d for d in deals if d.included_in_forecast]
    return jsonify({
        "success": True,
        "manager_id": manager_id,
        "deals": [d.to_dict() for d in deals],
        "summary": summarize_deals(included),
    })


@forecast_bp.route('/<manager_id>', methods=['GET'])
def get_forecast(manager_id: str):
    """Get the saved forecast selection for a manager."""
    return _selection_response(manager_id)


@forecast_bp.route('/<manager_id>', methods=['POST', 'PUT'])
def save_forecast(manager_id: str):
    """Replace the manager's forecast selection with the posted deals."""
    data = request.get_json(silent=True)
    if not isinstance(data, dict) or not isinstance(data.get('deals'), list):
        return jsonify({"success": False, "error": "Body must be an object with a 'deals' list"}), 400

    rows = []
    seen = set()
    for item in data['deals']:
        if not isinstance(item, dict):
            return jsonify({"success": False, "error": "Each deal must be an object"}), 400
        try:
            row = ForecastDeal.from_deal_json(manager_id, item)
        except (TypeError, ValueError) as e:
            return jsonify({"success": False, "error": f"Invalid deal: {e}"}), 400
        if row.deal_id in seen:
            continue
        seen.add(row.deal_id)
        rows.append(row)

    ForecastDeal.query.filter_by(manager_id=manager_id).delete()
    db.session.add_all(rows)
    db.session.commit()
    logger.info(f"Saved {len(rows)} forecast deals for manager {manager_id}")

    return _selection_response(manager_id)


@forecast_bp.route('/<manager_id>', methods=['DELETE'])
def clear_forecast(manager_id: str):
    """Remove every saved deal for a manager."""
    deleted = ForecastDeal.query.filter_by(manager_id=manager_id).delete()
    db.session.commit()
    logger.info(f"Cleared {deleted} forecast deals for manager {manager_id}")
    return jsonify({"success": True, "deleted": deleted})
