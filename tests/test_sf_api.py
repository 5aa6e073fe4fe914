"""
Tests for the Salesforce query client.

Tests query execution, team resolution, team deal aggregation, the
manager directory and deal details. All HTTP calls are mocked.
"""
from unittest.mock import patch
from urllib.parse import unquote

import pytest

from conftest import deal_record, make_response, query_response, user_record
from forecast.errors import DecodeError, NotFoundError, QueryError
from forecast.services.sf_api import (
    DEAL_ROW_LIMIT,
    build_deal_detail_query,
    build_managers_query,
    build_query_url,
    build_team_deals_query,
    execute_query,
    get_deal_details,
    get_team_deals,
    list_managers,
    resolve_team,
    soql_quote,
)


def _soql_from_call(call):
    """Decode the SOQL text from a mocked requests.get call."""
    url = call[0][0]
    return unquote(url.split('?q=', 1)[1])


class TestQueryHelpers:
    """Tests for SOQL quoting and URL building."""

    def test_soql_quote_plain(self):
        assert soql_quote('005A') == "'005A'"

    def test_soql_quote_escapes_quotes(self):
        """Single quotes and backslashes cannot break out of the literal."""
        assert soql_quote("x' OR Id != '") == "'x\\' OR Id != \\''"
        assert soql_quote('a\\b') == "'a\\\\b'"

    def test_build_query_url_percent_encodes(self):
        """The query goes in the q parameter, fully percent-encoded."""
        url = build_query_url('https://acme.my.salesforce.com/', "SELECT Id FROM User WHERE Id = '1'", 'v58.0')
        assert url.startswith('https://acme.my.salesforce.com/services/data/v58.0/query?q=')
        assert 'SELECT%20Id%20FROM%20User' in url
        assert '%27' in url
        assert ' ' not in url

    def test_team_deals_query_shape(self):
        soql = build_team_deals_query(['005A', '005B'])
        assert "OwnerId IN ('005A', '005B')" in soql
        assert 'IsClosed = false' in soql
        assert 'ORDER BY CloseDate ASC, Amount DESC' in soql
        assert f'LIMIT {DEAL_ROW_LIMIT}' in soql
        for field in ('Account.Name', 'Owner.Email', 'LeadSource', 'Description', 'LastModifiedDate'):
            assert field in soql

    def test_managers_query_shape(self):
        soql = build_managers_query()
        assert soql.startswith('SELECT Manager.Id, Manager.Name')
        assert 'Manager.IsActive = true' in soql
        assert 'ORDER BY Manager.Name' in soql

    def test_deal_detail_query_includes_line_items(self):
        soql = build_deal_detail_query('006X')
        assert 'FROM OpportunityLineItems' in soql
        assert 'NextStep' in soql
        assert 'ForecastCategoryName' in soql
        assert "WHERE Id = '006X'" in soql


class TestExecuteQuery:
    """Tests for execute_query."""

    @patch('forecast.services.sf_api.requests')
    def test_returns_result_set(self, mock_requests, session):
        mock_requests.get.return_value = query_response([{'Id': '1'}], total_size=5)

        result = execute_query(session, 'SELECT Id FROM User')

        assert result.records == [{'Id': '1'}]
        assert result.total_size == 5

    @patch('forecast.services.sf_api.requests')
    def test_uses_bearer_token_and_get(self, mock_requests, session):
        """Queries are GETs with the session's bearer token, no body."""
        mock_requests.get.return_value = query_response([])

        execute_query(session, 'SELECT   Id\n  FROM User', api_version='v60.0', timeout=10)

        args, kwargs = mock_requests.get.call_args
        assert args[0].startswith('https://acme.my.salesforce.com/services/data/v60.0/query?q=')
        assert kwargs['headers']['Authorization'] == 'Bearer 00Dxx!token'
        assert kwargs['timeout'] == 10
        assert 'data' not in kwargs and 'json' not in kwargs
        assert _soql_from_call(mock_requests.get.call_args) == 'SELECT Id FROM User'
        mock_requests.post.assert_not_called()

    @patch('forecast.services.sf_api.requests')
    def test_error_carries_body(self, mock_requests, session):
        body = '[{"message":"unexpected token: FROM","errorCode":"MALFORMED_QUERY"}]'
        mock_requests.get.return_value = make_response(400, text=body)

        with pytest.raises(QueryError) as exc_info:
            execute_query(session, 'SELECT FROM')

        assert exc_info.value.body == body
        assert exc_info.value.status_code == 400
        assert not isinstance(exc_info.value, DecodeError)
        assert mock_requests.get.call_count == 1

    @patch('forecast.services.sf_api.invalidate_session')
    @patch('forecast.services.sf_api.requests')
    def test_unauthorized_drops_cached_token(self, mock_requests, mock_invalidate, session):
        mock_requests.get.return_value = make_response(401, text='Session expired or invalid')

        with pytest.raises(QueryError):
            execute_query(session, 'SELECT Id FROM User')

        mock_invalidate.assert_called_once_with(session)

    @patch('forecast.services.sf_api.requests')
    def test_unexpected_shape_is_decode_error(self, mock_requests, session):
        mock_requests.get.return_value = make_response(200, {'value': []})

        with pytest.raises(DecodeError):
            execute_query(session, 'SELECT Id FROM User')

    @patch('forecast.services.sf_api.requests')
    def test_invalid_json_is_decode_error(self, mock_requests, session):
        response = make_response(200, text='<html>')
        response.json.side_effect = ValueError('No JSON')
        mock_requests.get.return_value = response

        with pytest.raises(DecodeError):
            execute_query(session, 'SELECT Id FROM User')


class TestResolveTeam:
    """Tests for resolve_team."""

    @patch('forecast.services.sf_api.requests')
    def test_reports_then_manager(self, mock_requests, session):
        mock_requests.get.side_effect = [
            query_response([user_record('005R1', 'Rita Report'), user_record('005R2', 'Rob Report')]),
            query_response([user_record('005M', 'Mary Manager', title='VP Sales')]),
        ]

        team = resolve_team(session, '005M')

        assert [p.id for p in team] == ['005R1', '005R2', '005M']
        assert team[-1].title == 'VP Sales'
        reports_soql = _soql_from_call(mock_requests.get.call_args_list[0])
        manager_soql = _soql_from_call(mock_requests.get.call_args_list[1])
        assert "ManagerId = '005M'" in reports_soql
        assert 'IsActive = true' in reports_soql
        assert "WHERE Id = '005M'" in manager_soql

    @patch('forecast.services.sf_api.requests')
    def test_no_reports(self, mock_requests, session):
        mock_requests.get.side_effect = [
            query_response([]),
            query_response([user_record('005M', 'Mary Manager')]),
        ]

        team = resolve_team(session, '005M')

        assert [p.id for p in team] == ['005M']

    @patch('forecast.services.sf_api.requests')
    def test_unknown_manager(self, mock_requests, session):
        mock_requests.get.side_effect = [query_response([]), query_response([])]

        with pytest.raises(NotFoundError):
            resolve_team(session, '005NOPE')


class TestGetTeamDeals:
    """Tests for get_team_deals."""

    @patch('forecast.services.sf_api.requests')
    def test_aggregates_team_and_deals(self, mock_requests, session):
        mock_requests.get.side_effect = [
            query_response([user_record('005R1', 'Rita Report')]),
            query_response([user_record('005M', 'Mary Manager')]),
            query_response([
                deal_record('006A', '005R1', close_date='2024-06-01', amount=100),
                deal_record('006B', '005M', close_date='2024-05-01', amount=50),
            ], total_size=2),
        ]

        result = get_team_deals(session, '005M')

        assert [p.id for p in result.team_members] == ['005R1', '005M']
        assert [d.id for d in result.deals] == ['006B', '006A']
        assert result.total_records == 2

        deals_soql = _soql_from_call(mock_requests.get.call_args_list[2])
        assert "OwnerId IN ('005R1', '005M')" in deals_soql

    @patch('forecast.services.sf_api.requests')
    def test_deals_ordered_by_close_date_then_amount(self, mock_requests, session):
        """Close date ascending, larger amount first on the same date."""
        mock_requests.get.side_effect = [
            query_response([]),
            query_response([user_record('005M', 'Mary Manager')]),
            query_response([
                deal_record('A', '005M', close_date='2024-06-01', amount=100),
                deal_record('B', '005M', close_date='2024-06-01', amount=200),
                deal_record('C', '005M', close_date='2024-05-01', amount=1),
            ]),
        ]

        result = get_team_deals(session, '005M')

        assert [d.id for d in result.deals] == ['C', 'B', 'A']

    @patch('forecast.services.sf_api.requests')
    def test_deals_only_owned_by_team(self, mock_requests, session):
        mock_requests.get.side_effect = [
            query_response([user_record('005R1', 'Rita Report')]),
            query_response([user_record('005M', 'Mary Manager')]),
            query_response([
                deal_record('006A', '005R1'),
                deal_record('006X', '005OUTSIDER'),
            ]),
        ]

        result = get_team_deals(session, '005M')

        team_ids = {p.id for p in result.team_members}
        assert all(d.owner_id in team_ids for d in result.deals)
        assert [d.id for d in result.deals] == ['006A']

    @patch('forecast.services.sf_api.requests')
    def test_team_member_ids_unique(self, mock_requests, session):
        """Repeated users across the two team queries appear once."""
        mock_requests.get.side_effect = [
            query_response([user_record('005R1', 'Rita Report'), user_record('005R1', 'Rita Report')]),
            query_response([user_record('005M', 'Mary Manager')]),
            query_response([]),
        ]

        result = get_team_deals(session, '005M')

        ids = [p.id for p in result.team_members]
        assert ids == ['005R1', '005M']
        deals_soql = _soql_from_call(mock_requests.get.call_args_list[2])
        assert deals_soql.count("'005R1'") == 1

    @patch('forecast.services.sf_api.requests')
    def test_manager_without_reports(self, mock_requests, session):
        mock_requests.get.side_effect = [
            query_response([]),
            query_response([user_record('005M', 'Mary Manager')]),
            query_response([deal_record('006M', '005M')]),
        ]

        result = get_team_deals(session, '005M')

        assert len(result.team_members) == 1
        assert result.team_members[0].id == '005M'
        assert [d.owner_id for d in result.deals] == ['005M']

    @patch('forecast.services.sf_api.requests')
    def test_total_records_may_exceed_returned(self, mock_requests, session):
        mock_requests.get.side_effect = [
            query_response([]),
            query_response([user_record('005M', 'Mary Manager')]),
            query_response([deal_record('006A', '005M')], total_size=1500),
        ]

        result = get_team_deals(session, '005M')

        assert result.total_records == 1500
        assert len(result.deals) == 1

    @patch('forecast.services.sf_api.requests')
    def test_query_failure_propagates(self, mock_requests, session):
        """A failed deals query fails the whole call, no partial result."""
        mock_requests.get.side_effect = [
            query_response([]),
            query_response([user_record('005M', 'Mary Manager')]),
            make_response(500, text='boom'),
        ]

        with pytest.raises(QueryError):
            get_team_deals(session, '005M')

    @patch('forecast.services.sf_api.requests')
    def test_to_dict_shape(self, mock_requests, session):
        mock_requests.get.side_effect = [
            query_response([]),
            query_response([user_record('005M', 'Mary Manager')]),
            query_response([deal_record('006A', '005M', amount=1000, probability=40)]),
        ]

        data = get_team_deals(session, '005M').to_dict()

        assert set(data) == {'teamMembers', 'deals', 'totalRecords'}
        assert data['teamMembers'][0]['displayName'] == 'Mary Manager'
        deal = data['deals'][0]
        assert deal['winProbability'] == 40
        assert deal['accountName'] == 'Acme Corp'
        assert 'lineItems' not in deal
        assert 'forecastValue' not in deal


class TestListManagers:
    """Tests for list_managers."""

    @patch('forecast.services.sf_api.requests')
    def test_dedupes_by_manager_id(self, mock_requests, session):
        """A manager of three reports appears exactly once."""
        m1 = {'Id': 'M1', 'Name': 'Alice Manager', 'Email': 'alice@example.com', 'Title': 'Director'}
        m2 = {'Id': 'M2', 'Name': 'Bob Manager', 'Email': 'bob@example.com', 'Title': None}
        mock_requests.get.return_value = query_response([
            {'Manager': m1}, {'Manager': m1}, {'Manager': m2}, {'Manager': m1},
        ])

        managers = list_managers(session)

        assert [m.id for m in managers] == ['M1', 'M2']
        assert managers[0].title == 'Director'

    @patch('forecast.services.sf_api.requests')
    def test_empty_directory(self, mock_requests, session):
        mock_requests.get.return_value = query_response([])

        assert list_managers(session) == []

    @patch('forecast.services.sf_api.requests')
    def test_row_without_manager_is_decode_error(self, mock_requests, session):
        mock_requests.get.return_value = query_response([{'Id': '005X'}])

        with pytest.raises(DecodeError):
            list_managers(session)


class TestGetDealDetails:
    """Tests for get_deal_details."""

    @patch('forecast.services.sf_api.requests')
    def test_returns_deal_with_line_items(self, mock_requests, session):
        record = deal_record('006A', '005M')
        record.update({
            'NextStep': 'Send proposal',
            'ForecastCategoryName': 'Pipeline',
            'Account': {'Name': 'Acme Corp', 'Type': 'Customer', 'Industry': 'Manufacturing'},
            'Owner': {'Name': 'Mary Manager', 'Email': 'mary@example.com', 'Phone': '555-0100'},
            'OpportunityLineItems': {
                'totalSize': 1,
                'done': True,
                'records': [{'Id': '00k1', 'Name': 'Widget', 'Quantity': 10.0,
                             'UnitPrice': 25.0, 'TotalPrice': 250.0}],
            },
        })
        mock_requests.get.return_value = query_response([record])

        deal = get_deal_details(session, '006A')

        assert deal.id == '006A'
        assert deal.next_step == 'Send proposal'
        assert deal.forecast_category == 'Pipeline'
        assert deal.account_industry == 'Manufacturing'
        assert deal.owner_phone == '555-0100'
        assert len(deal.line_items) == 1
        data = deal.to_dict()
        assert data['lineItems'][0] == {
            'id': '00k1', 'name': 'Widget', 'quantity': 10.0, 'unitPrice': 25.0, 'totalPrice': 250.0,
        }

    @patch('forecast.services.sf_api.requests')
    def test_no_line_items(self, mock_requests, session):
        """An empty child subquery comes back as null."""
        record = deal_record('006A', '005M')
        record['OpportunityLineItems'] = None
        mock_requests.get.return_value = query_response([record])

        deal = get_deal_details(session, '006A')

        assert deal.line_items == ()
        assert deal.to_dict()['lineItems'] == []

    @patch('forecast.services.sf_api.requests')
    def test_unknown_deal_is_not_found(self, mock_requests, session):
        """Zero rows is a NotFoundError, not an empty success."""
        mock_requests.get.return_value = query_response([])

        with pytest.raises(NotFoundError):
            get_deal_details(session, '006NOPE')
