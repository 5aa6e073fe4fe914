"""
Pytest configuration and fixtures for the forecast dashboard tests.
"""
import os
import tempfile
from unittest.mock import MagicMock

import pytest

from forecast.config import SalesforceCredentials
from forecast.services.sf_auth import Session, clear_token_cache


TEST_CREDENTIALS = SalesforceCredentials(
    client_id='test-client-id',
    client_secret='test-client-secret',
    username='svc@example.com',
    password='hunter2',
    security_token='TOKEN123',
)


def make_response(status_code=200, json_data=None, text=None):
    """Build a mock requests.Response."""
    response = MagicMock()
    response.status_code = status_code
    response.ok = 200 <= status_code < 400
    response.json.return_value = json_data
    response.text = text if text is not None else ('' if json_data is None else str(json_data))
    return response


def query_response(records, total_size=None):
    """Mock response for a SOQL query page."""
    return make_response(200, {
        'totalSize': len(records) if total_size is None else total_size,
        'done': True,
        'records': records,
    })


def auth_response(instance_url='https://acme.my.salesforce.com', token='00Dxx!token'):
    """Mock response for a successful token exchange."""
    return make_response(200, {
        'access_token': token,
        'instance_url': instance_url,
        'id': 'https://login.salesforce.com/id/00Dxx/005xx',
        'token_type': 'Bearer',
        'issued_at': '1718000000000',
        'signature': 'sig',
    })


def user_record(user_id, name, email=None, title=None, department=None):
    return {
        'attributes': {'type': 'User', 'url': f'/services/data/v58.0/sobjects/User/{user_id}'},
        'Id': user_id,
        'Name': name,
        'Email': email or f'{name.split()[0].lower()}@example.com',
        'Title': title,
        'Department': department,
    }


def deal_record(deal_id, owner_id, close_date='2024-06-01', amount=1000.0, probability=50,
                stage='Prospecting', name=None, account_name='Acme Corp', owner_name='Owner'):
    return {
        'attributes': {'type': 'Opportunity'},
        'Id': deal_id,
        'Name': name or f'Deal {deal_id}',
        'Amount': amount,
        'CloseDate': close_date,
        'StageName': stage,
        'Probability': probability,
        'AccountId': '001A',
        'Account': {'attributes': {'type': 'Account'}, 'Name': account_name},
        'OwnerId': owner_id,
        'Owner': {'attributes': {'type': 'User'}, 'Name': owner_name, 'Email': 'owner@example.com'},
        'CreatedDate': '2024-01-02T10:00:00.000+0000',
        'LastModifiedDate': '2024-02-03T10:00:00.000+0000',
        'Type': 'New Business',
        'LeadSource': 'Web',
        'Description': None,
    }


@pytest.fixture(autouse=True)
def reset_token_cache():
    """Every test starts without a cached Salesforce token."""
    clear_token_cache()
    yield
    clear_token_cache()


@pytest.fixture
def session():
    return Session(access_token='00Dxx!token', instance_url='https://acme.my.salesforce.com')


@pytest.fixture
def app():
    """Create application for testing with an isolated database."""
    from forecast import create_app

    db_fd, db_path = tempfile.mkstemp(suffix='.db')
    flask_app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f'sqlite:///{db_path}',
        'SALESFORCE_CREDENTIALS': TEST_CREDENTIALS,
        'SALESFORCE_LOGIN_URL': 'https://login.salesforce.com',
        'SALESFORCE_TOKEN_CACHE': False,
    })

    yield flask_app

    with flask_app.app_context():
        from forecast.models import db
        db.session.remove()
        db.engine.dispose()
    os.close(db_fd)

    # Windows may keep the file locked; it will be cleaned up by OS temp cleanup
    try:
        os.unlink(db_path)
    except (PermissionError, OSError):
        pass


@pytest.fixture
def client(app):
    return app.test_client()
