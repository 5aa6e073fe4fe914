"""
Services module for the forecast dashboard.
Contains Salesforce access and forecast logic separate from routes.
"""

from forecast.services.sf_auth import (
    Session,
    authenticate,
    get_session,
    clear_token_cache,
    get_auth_status,
)

from forecast.services.sf_api import (
    ResultSet,
    TeamDeals,
    execute_query,
    resolve_team,
    get_team_deals,
    list_managers,
    get_deal_details,
)

from forecast.services.records import (
    Person,
    Opportunity,
    LineItem,
)

from forecast.services.forecast import (
    forecast_value,
    probability_bucket,
    summarize_deals,
    filter_deals,
    unique_stages,
)

__all__ = [
    # Auth
    'Session',
    'authenticate',
    'get_session',
    'clear_token_cache',
    'get_auth_status',
    # Queries
    'ResultSet',
    'TeamDeals',
    'execute_query',
    'resolve_team',
    'get_team_deals',
    'list_managers',
    'get_deal_details',
    # Records
    'Person',
    'Opportunity',
    'LineItem',
    # Forecast
    'forecast_value',
    'probability_bucket',
    'summarize_deals',
    'filter_deals',
    'unique_stages',
]
