"""
Database models for the forecast dashboard.
Stores the deals each manager has selected for their forecast.
"""
from datetime import datetime, timezone, date
from typing import Optional
from flask_sqlalchemy import SQLAlchemy

# This will be initialized by the app factory
db = SQLAlchemy()


def utc_now():
    """Return current UTC time with timezone info."""
    return datetime.now(timezone.utc)


class ForecastDeal(db.Model):
    """A Salesforce opportunity a manager included in their forecast.

    Holds a snapshot of the deal fields at selection time. The forecast
    amount is always derived from amount and win probability.
    """
    __tablename__ = 'forecast_deals'

    id = db.Column(db.Integer, primary_key=True)
    deal_id = db.Column(db.String(18), nullable=False)  # Salesforce Opportunity Id
    manager_id = db.Column(db.String(18), nullable=False, index=True)  # Salesforce User Id
    user_id = db.Column(db.Integer, nullable=False, default=1)  # Single user system
    deal_name = db.Column(db.String(255), nullable=False)
    account_name = db.Column(db.String(255), nullable=True)
    owner_name = db.Column(db.String(255), nullable=True)
    amount = db.Column(db.Float, nullable=True)
    win_probability = db.Column(db.Integer, default=0, nullable=False)
    close_date = db.Column(db.Date, nullable=True)
    stage = db.Column(db.String(100), nullable=True)
    included_in_forecast = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=utc_now, nullable=False)
    updated_at = db.Column(db.DateTime, default=utc_now, onupdate=utc_now, nullable=False)

    __table_args__ = (
        db.UniqueConstraint('manager_id', 'deal_id', name='unique_manager_deal'),
    )

    @property
    def forecast_amount(self) -> float:
        return (self.amount or 0.0) * (self.win_probability or 0) / 100

    @classmethod
    def from_deal_json(cls, manager_id: str, data: dict, user_id: int = 1) -> 'ForecastDeal':
        """Build a row from a deal as served by the team deals endpoint.

        Raises:
            ValueError: If the deal has no id or malformed numbers/dates.
        """
        deal_id = str(data.get('id') or '').strip()
        if not deal_id:
            raise ValueError('Each deal needs an id')

        amount = data.get('amount')
        probability = data.get('winProbability')
        close_date: Optional[date] = None
        if data.get('closeDate'):
            close_date = date.fromisoformat(str(data['closeDate'])[:10])

        return cls(
            deal_id=deal_id,
            manager_id=manager_id,
            user_id=user_id,
            deal_name=data.get('name') or deal_id,
            account_name=data.get('accountName'),
            owner_name=data.get('ownerName'),
            amount=float(amount) if amount is not None else None,
            win_probability=max(0, min(100, int(probability or 0))),
            close_date=close_date,
            stage=data.get('stage'),
            included_in_forecast=bool(data.get('includedInForecast', True)),
        )

    def to_dict(self) -> dict:
        return {
            'id': self.deal_id,
            'name': self.deal_name,
            'accountName': self.account_name,
            'ownerName': self.owner_name,
            'amount': self.amount,
            'winProbability': self.win_probability,
            'closeDate': self.close_date.isoformat() if self.close_date else None,
            'stage': self.stage,
            'forecastAmount': round(self.forecast_amount, 2),
            'includedInForecast': self.included_in_forecast,
            'updatedAt': self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self) -> str:
        return f'<ForecastDeal manager={self.manager_id} deal={self.deal_id} included={self.included_in_forecast}>'
