"""Annual dividend projection from current holdings and future contributions."""

from decimal import Decimal
from typing import Optional

from pie_pilot.models import PieData


def estimate_annual_dividend(
    pies: Optional[list[PieData]],
    monthly_budget: Decimal = Decimal("0"),
) -> Decimal:
    """
    Project yearly dividend income.

    Each instrument contributes its current value times its yield, plus the
    yield on its proportional share of a year of monthly contributions.

    Args:
        pies: Pies with enriched holdings
        monthly_budget: Monthly contribution

    Returns:
        Estimated annual dividend (0 when there are no holdings)
    """
    if not pies:
        return Decimal("0")

    annual_budget = Decimal(str(monthly_budget)) * 12
    instruments = [i for pie in pies for i in pie.instruments]
    total_value = sum((i.current_value for i in instruments), Decimal("0"))

    total_dividend = Decimal("0")
    for instrument in instruments:
        rate = instrument.dividend_yield / Decimal("100")
        total_dividend += instrument.current_value * rate
        if total_value > 0:
            budget_share = annual_budget * instrument.current_value / total_value
            total_dividend += budget_share * rate

    return total_dividend
