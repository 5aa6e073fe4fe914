"""
Decoded Salesforce records.

Each query shape (User, Manager row, Opportunity, OpportunityLineItem) has
an explicit ``from_record`` that checks the fields it needs and raises
DecodeError when Salesforce returns something else. ``to_dict`` produces
the JSON shape served to the dashboard.
"""
from dataclasses import dataclass
from typing import Optional, Dict, Any, Tuple

from forecast.errors import DecodeError


def _require_mapping(record: Any, what: str) -> Dict[str, Any]:
    if not isinstance(record, dict):
        raise DecodeError(f"Expected {what} record to be an object, got {type(record).__name__}")
    return record


def _str(record: Dict[str, Any], key: str, what: str, required: bool = False) -> Optional[str]:
    value = record.get(key)
    if value is None:
        if required:
            raise DecodeError(f"{what} record is missing required field '{key}'")
        return None
    if not isinstance(value, str):
        raise DecodeError(f"{what} field '{key}' should be a string, got {type(value).__name__}")
    return value


def _number(record: Dict[str, Any], key: str, what: str) -> Optional[float]:
    value = record.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise DecodeError(f"{what} field '{key}' should be a number, got {type(value).__name__}")
    return float(value)


def _nested(record: Dict[str, Any], key: str, what: str) -> Dict[str, Any]:
    """Relationship fields (Account, Owner, Manager) are null or an object."""
    value = record.get(key)
    if value is None:
        return {}
    return _require_mapping(value, f"{what}.{key}")


@dataclass(frozen=True)
class Person:
    """A Salesforce user: team member, manager or deal owner."""

    id: str
    display_name: str
    email: Optional[str] = None
    title: Optional[str] = None
    department: Optional[str] = None

    @classmethod
    def from_record(cls, record: Any) -> "Person":
        record = _require_mapping(record, "User")
        return cls(
            id=_str(record, "Id", "User", required=True),
            display_name=_str(record, "Name", "User") or "",
            email=_str(record, "Email", "User"),
            title=_str(record, "Title", "User"),
            department=_str(record, "Department", "User"),
        )

    @classmethod
    def from_manager_row(cls, record: Any) -> "Person":
        """Decode a ``SELECT Manager.* FROM User`` row."""
        record = _require_mapping(record, "Manager row")
        manager = record.get("Manager")
        if manager is None:
            raise DecodeError("Manager row is missing the 'Manager' relationship")
        return cls.from_record(_require_mapping(manager, "Manager"))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "displayName": self.display_name,
            "email": self.email,
            "title": self.title,
            "department": self.department,
        }


@dataclass(frozen=True)
class LineItem:
    """A product line on an opportunity."""

    id: str
    name: Optional[str]
    quantity: Optional[float]
    unit_price: Optional[float]
    total_price: Optional[float]

    @classmethod
    def from_record(cls, record: Any) -> "LineItem":
        record = _require_mapping(record, "OpportunityLineItem")
        what = "OpportunityLineItem"
        return cls(
            id=_str(record, "Id", what, required=True),
            name=_str(record, "Name", what),
            quantity=_number(record, "Quantity", what),
            unit_price=_number(record, "UnitPrice", what),
            total_price=_number(record, "TotalPrice", what),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "quantity": self.quantity,
            "unitPrice": self.unit_price,
            "totalPrice": self.total_price,
        }


@dataclass(frozen=True)
class Opportunity:
    """An open (or detailed) Salesforce opportunity."""

    id: str
    name: str
    amount: Optional[float]
    close_date: Optional[str]
    stage: Optional[str]
    win_probability: int
    account_id: Optional[str]
    owner_id: str
    created_at: Optional[str] = None
    last_modified_at: Optional[str] = None
    account_name: Optional[str] = None
    owner_name: Optional[str] = None
    owner_email: Optional[str] = None
    type: Optional[str] = None
    lead_source: Optional[str] = None
    description: Optional[str] = None
    next_step: Optional[str] = None
    forecast_category: Optional[str] = None
    account_type: Optional[str] = None
    account_industry: Optional[str] = None
    owner_phone: Optional[str] = None
    line_items: Optional[Tuple[LineItem, ...]] = None

    @classmethod
    def from_record(cls, record: Any) -> "Opportunity":
        what = "Opportunity"
        record = _require_mapping(record, what)
        account = _nested(record, "Account", what)
        owner = _nested(record, "Owner", what)

        probability = _number(record, "Probability", what)
        win_probability = int(round(probability)) if probability is not None else 0
        win_probability = max(0, min(100, win_probability))

        line_items = None
        if "OpportunityLineItems" in record:
            line_items = _decode_line_items(record.get("OpportunityLineItems"))

        return cls(
            id=_str(record, "Id", what, required=True),
            name=_str(record, "Name", what) or "",
            amount=_number(record, "Amount", what),
            close_date=_str(record, "CloseDate", what),
            stage=_str(record, "StageName", what),
            win_probability=win_probability,
            account_id=_str(record, "AccountId", what),
            owner_id=_str(record, "OwnerId", what, required=True),
            created_at=_str(record, "CreatedDate", what),
            last_modified_at=_str(record, "LastModifiedDate", what),
            account_name=_str(account, "Name", "Account"),
            owner_name=_str(owner, "Name", "Owner"),
            owner_email=_str(owner, "Email", "Owner"),
            type=_str(record, "Type", what),
            lead_source=_str(record, "LeadSource", what),
            description=_str(record, "Description", what),
            next_step=_str(record, "NextStep", what),
            forecast_category=_str(record, "ForecastCategoryName", what),
            account_type=_str(account, "Type", "Account"),
            account_industry=_str(account, "Industry", "Account"),
            owner_phone=_str(owner, "Phone", "Owner"),
            line_items=line_items,
        )

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "name": self.name,
            "amount": self.amount,
            "closeDate": self.close_date,
            "stage": self.stage,
            "winProbability": self.win_probability,
            "accountId": self.account_id,
            "accountName": self.account_name,
            "ownerId": self.owner_id,
            "ownerName": self.owner_name,
            "ownerEmail": self.owner_email,
            "createdAt": self.created_at,
            "lastModifiedAt": self.last_modified_at,
            "type": self.type,
            "leadSource": self.lead_source,
            "description": self.description,
            "nextStep": self.next_step,
            "forecastCategory": self.forecast_category,
        }
        if self.line_items is not None:
            data["accountType"] = self.account_type
            data["accountIndustry"] = self.account_industry
            data["ownerPhone"] = self.owner_phone
            data["lineItems"] = [item.to_dict() for item in self.line_items]
        return data


def _decode_line_items(value: Any) -> Tuple[LineItem, ...]:
    # Child relationship subqueries come back as null when empty,
    # otherwise as a nested {totalSize, done, records} result.
    if value is None:
        return ()
    value = _require_mapping(value, "OpportunityLineItems")
    records = value.get("records")
    if not isinstance(records, list):
        raise DecodeError("OpportunityLineItems subquery result has no 'records' list")
    return tuple(LineItem.from_record(r) for r in records)
