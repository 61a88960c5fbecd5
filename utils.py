"""
Utility Functions
Caller-side helpers: price parsing, holdings construction and display formatting
"""

import io
import re
import math
import logging
from typing import Dict, List, Optional, Union

import pandas as pd

from calculations import compute_returns
from exceptions import InvalidInputError
from models import Holding, PricePoint, RiskMetrics

logger = logging.getLogger(__name__)

PERCENT_METRICS = {
    'volatility', 'var_95', 'cvar_95', 'max_drawdown', 'alpha',
    'tracking_error', 'annualized_return', 'benchmark_return',
}


def _is_missing(value) -> bool:
    return value is None or (isinstance(value, float) and math.isnan(value))


def format_percentage(value: float, decimals: int = 2, with_sign: bool = False) -> str:
    """Format a number as percentage"""
    if _is_missing(value):
        return '--'

    if with_sign and value > 0:
        return f'+{value:.{decimals}f}%'
    return f'{value:.{decimals}f}%'


def format_number(value: float, decimals: int = 2) -> str:
    """Format a number with commas"""
    if _is_missing(value):
        return '--'
    return f'{value:,.{decimals}f}'


def format_ratio(value: Optional[float], decimals: int = 2) -> str:
    """Format a ratio, showing undefined and infinite values explicitly"""
    if _is_missing(value):
        return 'n/a'
    if math.isinf(value):
        return '∞' if value > 0 else '-∞'
    return format_number(value, decimals)


def validate_ticker_format(ticker: str) -> bool:
    """
    Validate ticker symbol format
    """
    if not ticker:
        return False

    clean_ticker = ticker.upper().strip()

    # alphanumeric, 1-10 characters, may contain dots and hyphens
    pattern = r'^[A-Z0-9][A-Z0-9\.\-]{0,9}$'
    return bool(re.match(pattern, clean_ticker))


def parse_prices_csv(file_content: Union[str, bytes, io.StringIO, io.BytesIO]) -> pd.DataFrame:
    """
    Parse long-format price history from CSV content

    Expected columns: date, ticker, close
    """
    try:
        if isinstance(file_content, bytes):
            file_content = io.BytesIO(file_content)
        elif isinstance(file_content, str):
            file_content = io.StringIO(file_content)

        df = pd.read_csv(file_content)

        # Standardize column names
        df.columns = df.columns.str.lower().str.strip().str.replace(' ', '_')

        required = ['date', 'ticker', 'close']
        for col in required:
            if col not in df.columns:
                raise InvalidInputError(f"Missing required column: {col}")

        df['ticker'] = df['ticker'].str.upper().str.strip()
        invalid = sorted(t for t in df['ticker'].dropna().unique() if not validate_ticker_format(t))
        if invalid:
            raise InvalidInputError(f"Invalid ticker symbols: {', '.join(invalid)}")

        df['date'] = pd.to_datetime(df['date']).dt.date
        df['close'] = pd.to_numeric(df['close'], errors='coerce')

        return df.dropna(subset=required)[required]

    except Exception as e:
        logger.error(f"Error parsing prices CSV: {e}")
        raise


def holdings_from_prices(
    prices: pd.DataFrame,
    weights: Dict[str, float],
    sectors: Optional[Dict[str, str]] = None
) -> List[Holding]:
    """
    Build holdings with aligned return series from long-format prices

    Prices are pivoted to one column per ticker and restricted to the dates
    every weighted ticker has a close, so all return series share a length.
    """
    sectors = sectors or {}
    missing = [t for t in weights if t not in set(prices['ticker'])]
    if missing:
        raise InvalidInputError(f"No prices for: {', '.join(missing)}")

    prices_pivot = prices.pivot(index='date', columns='ticker', values='close')
    prices_pivot = prices_pivot[list(weights)].sort_index().ffill().dropna()

    if len(prices_pivot) < 2:
        raise InvalidInputError("Fewer than two common dates across tickers")

    holdings = []
    for ticker, weight in weights.items():
        column = prices_pivot[ticker]
        holdings.append(Holding(
            symbol=ticker,
            weight=weight,
            returns=compute_returns(column.values),
            price_history=tuple(
                PricePoint(date=d, close=float(c)) for d, c in column.items()
            ),
            sector=sectors.get(ticker),
        ))

    logger.info(f"Built {len(holdings)} holdings over {len(prices_pivot)} dates")
    return holdings


def metrics_to_frame(metrics: RiskMetrics) -> pd.DataFrame:
    """Tabulate risk metrics with display strings"""
    rows = []

    for name, value in metrics.to_dict().items():
        if name in PERCENT_METRICS:
            display = format_percentage(None if _is_missing(value) else value * 100)
        else:
            display = format_ratio(value)
        rows.append({'metric': name, 'value': value, 'display': display})

    return pd.DataFrame(rows)
