"""
Forecast calculations over deal lists.

Summary figures and filters used by the team deals view and the saved
forecast selection. Works on anything exposing ``amount`` and
``win_probability`` (decoded opportunities or saved ForecastDeal rows).
"""
from typing import Optional, Dict, Any, Iterable, List

HIGH_PROBABILITY = 70
MEDIUM_PROBABILITY = 30

PROBABILITY_BUCKETS = ("high", "medium", "low")


def forecast_value(amount: Optional[float], probability: Optional[int]) -> float:
    """Probability-weighted amount. Missing values count as zero."""
    return (amount or 0.0) * (probability or 0) / 100


def probability_bucket(probability: Optional[int]) -> str:
    """Classify a win probability as 'high' (>=70), 'medium' (30-69) or 'low'."""
    probability = probability or 0
    if probability >= HIGH_PROBABILITY:
        return "high"
    if probability >= MEDIUM_PROBABILITY:
        return "medium"
    return "low"


def summarize_deals(deals: Iterable[Any]) -> Dict[str, Any]:
    """
    Summary cards for a list of deals.

    Returns:
        Dict with deal_count, pipeline_value, forecast_value,
        average_deal_size and average_probability (rounded to int).
    """
    deals = list(deals)
    count = len(deals)
    if not count:
        return {
            "deal_count": 0,
            "pipeline_value": 0.0,
            "forecast_value": 0.0,
            "average_deal_size": 0.0,
            "average_probability": 0,
        }

    pipeline = sum(d.amount or 0.0 for d in deals)
    weighted = sum(forecast_value(d.amount, d.win_probability) for d in deals)
    probability_total = sum(d.win_probability or 0 for d in deals)

    return {
        "deal_count": count,
        "pipeline_value": round(pipeline, 2),
        "forecast_value": round(weighted, 2),
        "average_deal_size": round(pipeline / count, 2),
        "average_probability": int(round(probability_total / count)),
    }


def unique_stages(deals: Iterable[Any]) -> List[str]:
    """Distinct stage names in first-appearance order."""
    stages = []
    for deal in deals:
        if deal.stage and deal.stage not in stages:
            stages.append(deal.stage)
    return stages


def _is_unset(value: Optional[str]) -> bool:
    return value is None or value.strip() == "" or value.strip().lower() == "all"


def filter_deals(
    deals: Iterable[Any],
    search: Optional[str] = None,
    stage: Optional[str] = None,
    probability: Optional[str] = None,
) -> List[Any]:
    """
    Filter deals by search text, stage and probability bucket.

    Search is case-insensitive over deal, account and owner names.
    A filter that is None, blank or 'all' is ignored.
    """
    result = list(deals)

    if not _is_unset(search):
        term = search.strip().lower()
        result = [
            d for d in result
            if term in (d.name or "").lower()
            or term in (d.account_name or "").lower()
            or term in (d.owner_name or "").lower()
        ]

    if not _is_unset(stage):
        result = [d for d in result if d.stage == stage]

    if not _is_unset(probability):
        bucket = probability.strip().lower()
        result = [d for d in result if probability_bucket(d.win_probability) == bucket]

    return result
