"""
Salesforce REST API Client.

This module provides functions to query Salesforce for:
- A manager's team (direct reports plus the manager)
- Open opportunities owned by a team
- The directory of users who manage someone
- A single opportunity with its line items

All reads go through execute_query(), which runs one SOQL query against
the REST query endpoint. No retries: any failure ends the request.
"""

import logging
from dataclasses import dataclass, replace
from typing import Optional, Dict, Any, List, Iterable, Tuple
from urllib.parse import quote

import requests

from forecast.config import DEFAULT_API_VERSION, DEFAULT_REQUEST_TIMEOUT
from forecast.errors import DecodeError, NotFoundError, QueryError
from forecast.services.records import Opportunity, Person
from forecast.services.sf_auth import Session, invalidate_session

logger = logging.getLogger(__name__)

# Row caps for each query shape
DEAL_ROW_LIMIT = 1000
TEAM_ROW_LIMIT = 2000
MANAGER_ROW_LIMIT = 2000

USER_FIELDS = "Id, Name, Email, Title, Department"

DEAL_FIELDS = (
    "Id, Name, Amount, CloseDate, StageName, Probability, "
    "AccountId, Account.Name, OwnerId, Owner.Name, Owner.Email, "
    "CreatedDate, LastModifiedDate, Type, LeadSource, Description"
)

DEAL_DETAIL_FIELDS = (
    "Id, Name, Amount, CloseDate, StageName, Probability, "
    "AccountId, Account.Name, Account.Type, Account.Industry, "
    "OwnerId, Owner.Name, Owner.Email, Owner.Phone, "
    "CreatedDate, LastModifiedDate, Type, LeadSource, "
    "Description, NextStep, ForecastCategoryName, "
    "(SELECT Id, Name, Quantity, UnitPrice, TotalPrice FROM OpportunityLineItems)"
)


@dataclass(frozen=True)
class ResultSet:
    """One page of query results. total_size may exceed len(records)."""

    records: List[Any]
    total_size: int


@dataclass(frozen=True)
class TeamDeals:
    """A manager's team roster with the team's open deals."""

    team_members: Tuple[Person, ...]
    deals: Tuple[Opportunity, ...]
    total_records: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "teamMembers": [p.to_dict() for p in self.team_members],
            "deals": [d.to_dict() for d in self.deals],
            "totalRecords": self.total_records,
        }


def _get_headers(token: str) -> Dict[str, str]:
    return {
        "Authorization": f"Bearer {token}",
        "Accept": "application/json",
        "Content-Type": "application/json",
    }


def soql_quote(value: str) -> str:
    """Quote a value as a SOQL string literal."""
    escaped = str(value).replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"


def _compact(soql: str) -> str:
    return " ".join(soql.split())


def build_query_url(instance_url: str, soql: str, api_version: str = DEFAULT_API_VERSION) -> str:
    """Build the REST query URL with the SOQL percent-encoded in ``q``."""
    return f"{instance_url.rstrip('/')}/services/data/{api_version}/query?q={quote(soql, safe='')}"


def execute_query(
    session: Session,
    soql: str,
    api_version: str = DEFAULT_API_VERSION,
    timeout: int = DEFAULT_REQUEST_TIMEOUT,
) -> ResultSet:
    """
    Run one SOQL query and return the first page of results.

    Args:
        session: Authenticated session.
        soql: The query text; sent as a URL parameter, never a body.

    Returns:
        ResultSet with records and totalSize as reported by Salesforce.

    Raises:
        QueryError: On a non-success response (carries the body).
        DecodeError: If the response is not a query result.
    """
    soql = _compact(soql)
    url = build_query_url(session.instance_url, soql, api_version)
    logger.debug(f"Querying Salesforce: {soql}")

    response = requests.get(url, headers=_get_headers(session.access_token), timeout=timeout)

    if not response.ok:
        body = response.text
        if response.status_code == 401:
            invalidate_session(session)
        logger.warning(f"Salesforce query failed with HTTP {response.status_code}: {body[:200]}")
        raise QueryError(
            f"Salesforce query failed: {body}",
            status_code=response.status_code,
            body=body,
        )

    try:
        data = response.json()
    except ValueError:
        raise DecodeError("Salesforce query returned invalid JSON",
                          status_code=response.status_code, body=response.text)

    if not isinstance(data, dict) or not isinstance(data.get("records"), list):
        raise DecodeError("Salesforce query result has no 'records' list",
                          status_code=response.status_code, body=response.text)

    records = data["records"]
    total_size = data.get("totalSize", len(records))
    if isinstance(total_size, bool) or not isinstance(total_size, int):
        raise DecodeError("Salesforce query result has a non-integer 'totalSize'",
                          status_code=response.status_code, body=response.text)

    return ResultSet(records=records, total_size=total_size)


# =============================================================================
# Query builders
# =============================================================================

def build_reports_query(manager_id: str) -> str:
    return (
        f"SELECT {USER_FIELDS} FROM User "
        f"WHERE ManagerId = {soql_quote(manager_id)} AND IsActive = true "
        f"LIMIT {TEAM_ROW_LIMIT}"
    )


def build_manager_query(manager_id: str) -> str:
    return f"SELECT {USER_FIELDS} FROM User WHERE Id = {soql_quote(manager_id)} LIMIT 1"


def build_team_deals_query(owner_ids: Iterable[str]) -> str:
    id_list = ", ".join(soql_quote(i) for i in owner_ids)
    return (
        f"SELECT {DEAL_FIELDS} FROM Opportunity "
        f"WHERE OwnerId IN ({id_list}) AND IsClosed = false "
        f"ORDER BY CloseDate ASC, Amount DESC "
        f"LIMIT {DEAL_ROW_LIMIT}"
    )


def build_managers_query() -> str:
    return (
        "SELECT Manager.Id, Manager.Name, Manager.Email, Manager.Title FROM User "
        "WHERE ManagerId != null AND IsActive = true AND Manager.IsActive = true "
        f"ORDER BY Manager.Name LIMIT {MANAGER_ROW_LIMIT}"
    )


def build_deal_detail_query(deal_id: str) -> str:
    return f"SELECT {DEAL_DETAIL_FIELDS} FROM Opportunity WHERE Id = {soql_quote(deal_id)} LIMIT 1"


# =============================================================================
# Team and deal lookups
# =============================================================================

def _deal_sort_key(deal: Opportunity):
    # Close date ascending, then amount descending; missing values last
    return (
        deal.close_date is None,
        deal.close_date or "",
        deal.amount is None,
        -(deal.amount or 0.0),
    )


def sort_deals(deals: Iterable[Opportunity]) -> List[Opportunity]:
    """Order deals by close date ascending, larger amount first on ties."""
    return sorted(deals, key=_deal_sort_key)


def dedupe_people(people: Iterable[Person]) -> List[Person]:
    """Drop repeated ids, keeping the first occurrence in order."""
    seen = set()
    unique = []
    for person in people:
        if person.id in seen:
            continue
        seen.add(person.id)
        unique.append(person)
    return unique


def resolve_team(
    session: Session,
    manager_id: str,
    api_version: str = DEFAULT_API_VERSION,
    timeout: int = DEFAULT_REQUEST_TIMEOUT,
) -> List[Person]:
    """
    Get a manager's active direct reports followed by the manager.

    The two lists never share an id, so nothing is deduplicated here.

    Raises:
        NotFoundError: If manager_id does not match any user.
    """
    reports = execute_query(session, build_reports_query(manager_id), api_version, timeout)
    manager = execute_query(session, build_manager_query(manager_id), api_version, timeout)

    if not manager.records:
        raise NotFoundError(f"Manager {manager_id} not found")

    team = [Person.from_record(r) for r in reports.records]
    team.extend(Person.from_record(r) for r in manager.records)
    logger.info(f"Resolved team for manager {manager_id}: {len(team)} members")
    return team


def get_team_deals(
    session: Session,
    manager_id: str,
    api_version: str = DEFAULT_API_VERSION,
    timeout: int = DEFAULT_REQUEST_TIMEOUT,
) -> TeamDeals:
    """
    Get every open opportunity owned by the manager or a direct report.

    Returns:
        TeamDeals with the deduplicated roster, deals ordered by close date
        ascending then amount descending, and Salesforce's total count.
    """
    team = dedupe_people(resolve_team(session, manager_id, api_version, timeout))
    team_ids = [p.id for p in team]

    result = execute_query(session, build_team_deals_query(team_ids), api_version, timeout)
    decoded = [Opportunity.from_record(r) for r in result.records]

    id_set = set(team_ids)
    deals = [d for d in decoded if d.owner_id in id_set]
    if len(deals) != len(decoded):
        logger.warning(
            f"Dropped {len(decoded) - len(deals)} deals not owned by team of manager {manager_id}"
        )

    if result.total_size > len(result.records):
        logger.warning(
            f"Team deals for manager {manager_id} truncated: "
            f"{len(result.records)} of {result.total_size} returned"
        )

    return TeamDeals(
        team_members=tuple(team),
        deals=tuple(sort_deals(deals)),
        total_records=result.total_size,
    )


def list_managers(
    session: Session,
    api_version: str = DEFAULT_API_VERSION,
    timeout: int = DEFAULT_REQUEST_TIMEOUT,
) -> List[Person]:
    """
    Get all active users who manage at least one active user.

    Salesforce returns one row per report, so managers are deduplicated
    by id keeping the name order of the query.
    """
    result = execute_query(session, build_managers_query(), api_version, timeout)
    managers = dedupe_people(Person.from_manager_row(r) for r in result.records)
    logger.info(f"Found {len(managers)} managers from {len(result.records)} rows")
    return managers


def get_deal_details(
    session: Session,
    deal_id: str,
    api_version: str = DEFAULT_API_VERSION,
    timeout: int = DEFAULT_REQUEST_TIMEOUT,
) -> Opportunity:
    """
    Fetch one opportunity with extended fields and line items.

    Raises:
        NotFoundError: If no opportunity has this id.
    """
    result = execute_query(session, build_deal_detail_query(deal_id), api_version, timeout)
    if not result.records:
        raise NotFoundError(f"Deal {deal_id} not found")

    deal = Opportunity.from_record(result.records[0])
    if deal.line_items is None:
        deal = replace(deal, line_items=())
    return deal
