"""
Salesforce deals routes.

Single action-dispatched endpoint used by the dashboard:
- getTeamDeals (managerId): team roster, open deals, total count
- getManagers: users who manage at least one active user
- getDealDetails (dealId): one deal with line items

Every request authenticates (or reuses the cached token when enabled),
then parses and validates the action, runs it and returns JSON. Any error becomes
``{"error": ..., "timestamp": ...}`` with status 500. CORS headers are
set on every response; pre-flight requests never authenticate.

Also serves the connection status and token-cache controls.
"""
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Any, Callable, Optional

from flask import Blueprint, Response, current_app, jsonify, request

from forecast.config import (
    CREDENTIAL_ENV_VARS,
    DEFAULT_API_VERSION,
    DEFAULT_LOGIN_URL,
    DEFAULT_REQUEST_TIMEOUT,
    DEFAULT_TOKEN_TTL_SECONDS,
)
from forecast.errors import SalesforceError, ValidationError
from forecast.services.forecast import (
    PROBABILITY_BUCKETS,
    filter_deals,
    summarize_deals,
    unique_stages,
)
from forecast.services.sf_api import get_deal_details, get_team_deals, list_managers
from forecast.services.sf_auth import Session, clear_token_cache, get_auth_status, get_session

logger = logging.getLogger(__name__)

deals_bp = Blueprint('deals', __name__)

ALLOW_ORIGIN = '*'
ALLOW_METHODS = 'POST, GET, OPTIONS'
ALLOW_HEADERS = 'Content-Type, Authorization'


class Action(Enum):
    """Actions accepted by the deals endpoint."""
    GET_TEAM_DEALS = 'getTeamDeals'
    GET_MANAGERS = 'getManagers'
    GET_DEAL_DETAILS = 'getDealDetails'

    @classmethod
    def parse(cls, value) -> 'Action':
        try:
            return cls(value)
        except ValueError:
            raise ValidationError('Invalid action specified')


REQUIRED_PARAMS = {
    Action.GET_TEAM_DEALS: ('managerId',),
    Action.GET_MANAGERS: (),
    Action.GET_DEAL_DETAILS: ('dealId',),
}

PARAM_LABELS = {
    'managerId': 'Manager ID',
    'dealId': 'Deal ID',
}


@deals_bp.after_request
def add_cors_headers(response):
    """Every deals response is readable cross-origin."""
    response.headers['Access-Control-Allow-Origin'] = ALLOW_ORIGIN
    return response


def _request_params() -> Dict[str, Any]:
    """Query string parameters, falling back to a JSON or form body."""
    params: Dict[str, Any] = {}
    if request.method == 'POST':
        body = request.get_json(silent=True)
        if isinstance(body, dict):
            params.update(body)
        else:
            params.update(request.form.to_dict())
    params.update(request.args.to_dict())
    return params


def _validate(action: Action, params: Dict[str, Any]):
    for name in REQUIRED_PARAMS[action]:
        value = params.get(name)
        if value is None or not str(value).strip():
            raise ValidationError(f'{PARAM_LABELS.get(name, name)} is required')

    if action is Action.GET_TEAM_DEALS:
        probability = params.get('probability')
        if probability and probability != 'all' and probability not in PROBABILITY_BUCKETS:
            raise ValidationError(
                f"Invalid probability filter '{probability}' (expected all, high, medium or low)"
            )


def _api_options() -> Dict[str, Any]:
    config = current_app.config
    return {
        'api_version': config.get('SALESFORCE_API_VERSION', DEFAULT_API_VERSION),
        'timeout': config.get('SALESFORCE_REQUEST_TIMEOUT', DEFAULT_REQUEST_TIMEOUT),
    }


def _open_session() -> Session:
    config = current_app.config
    return get_session(
        config.get('SALESFORCE_CREDENTIALS'),
        login_url=config.get('SALESFORCE_LOGIN_URL', DEFAULT_LOGIN_URL),
        timeout=config.get('SALESFORCE_REQUEST_TIMEOUT', DEFAULT_REQUEST_TIMEOUT),
        use_cache=config.get('SALESFORCE_TOKEN_CACHE', False),
        ttl_seconds=config.get('SALESFORCE_TOKEN_TTL_SECONDS', DEFAULT_TOKEN_TTL_SECONDS),
    )


def _text_param(params: Dict[str, Any], name: str) -> Optional[str]:
    """Optional filter value as a string (JSON bodies may carry numbers)."""
    value = params.get(name)
    return None if value is None else str(value)


def _handle_team_deals(session: Session, params: Dict[str, Any]) -> Dict[str, Any]:
    team_deals = get_team_deals(session, str(params['managerId']).strip(), **_api_options())
    deals = filter_deals(
        team_deals.deals,
        search=_text_param(params, 'search'),
        stage=_text_param(params, 'stage'),
        probability=_text_param(params, 'probability'),
    )
    result = team_deals.to_dict()
    result['deals'] = [d.to_dict() for d in deals]
    result['summary'] = summarize_deals(deals)
    result['stages'] = unique_stages(team_deals.deals)
    return result


def _handle_managers(session: Session, params: Dict[str, Any]) -> Dict[str, Any]:
    managers = list_managers(session, **_api_options())
    return {'managers': [m.to_dict() for m in managers]}


def _handle_deal_details(session: Session, params: Dict[str, Any]) -> Dict[str, Any]:
    deal = get_deal_details(session, str(params['dealId']).strip(), **_api_options())
    return {'deal': deal.to_dict()}


HANDLERS: Dict[Action, Callable[[Session, Dict[str, Any]], Dict[str, Any]]] = {
    Action.GET_TEAM_DEALS: _handle_team_deals,
    Action.GET_MANAGERS: _handle_managers,
    Action.GET_DEAL_DETAILS: _handle_deal_details,
}


def _preflight() -> Response:
    response = Response(status=204)
    response.headers.pop('Content-Type', None)
    response.headers['Access-Control-Allow-Methods'] = ALLOW_METHODS
    response.headers['Access-Control-Allow-Headers'] = ALLOW_HEADERS
    return response


def _error_response(error: Exception):
    timestamp = datetime.now(timezone.utc).isoformat(timespec='milliseconds').replace('+00:00', 'Z')
    return jsonify({'error': str(error), 'timestamp': timestamp}), 500


@deals_bp.route('/functions/salesforce-deals', methods=['GET', 'POST', 'OPTIONS'])
@deals_bp.route('/api/salesforce/deals', methods=['GET', 'POST', 'OPTIONS'])
def salesforce_deals():
    """Dispatch one Salesforce deals action."""
    if request.method == 'OPTIONS':
        return _preflight()

    try:
        params = _request_params()

        # Authenticate first: a missing credential fails every action
        session = _open_session()

        action = Action.parse(params.get('action'))
        _validate(action, params)
        result = HANDLERS[action](session, params)
        return jsonify(result)

    except SalesforceError as e:
        logger.warning(f"Salesforce API error ({type(e).__name__}): {e}")
        return _error_response(e)
    except Exception as e:
        logger.exception("Unexpected error handling Salesforce deals request")
        return _error_response(e)


@deals_bp.route('/api/salesforce/status')
def salesforce_status():
    """Connection configuration and token cache status."""
    config = current_app.config
    credentials = config.get('SALESFORCE_CREDENTIALS')
    missing = credentials.missing_fields() if credentials else list(CREDENTIAL_ENV_VARS.values())

    status = get_auth_status()
    if status.get("expires_on"):
        status["expires_on"] = status["expires_on"].isoformat()
    if status.get("last_refresh"):
        status["last_refresh"] = status["last_refresh"].isoformat()

    status.update({
        "credentials_configured": credentials is not None and not missing,
        "missing_credentials": missing,
        "token_cache_enabled": bool(config.get('SALESFORCE_TOKEN_CACHE', False)),
        "login_url": config.get('SALESFORCE_LOGIN_URL', DEFAULT_LOGIN_URL),
        "api_version": config.get('SALESFORCE_API_VERSION', DEFAULT_API_VERSION),
    })
    return jsonify(status)


@deals_bp.route('/api/salesforce/token/clear', methods=['POST'])
def clear_token():
    """Clear the cached Salesforce token."""
    clear_token_cache()
    return jsonify({"success": True, "message": "Token cache cleared"})
