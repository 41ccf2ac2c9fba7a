"""
Historical bar loading.

CSV files carry one bar per row with a header of
date,open,high,low,close,volume and an optional symbol column. Files
without a symbol column are attributed to the given symbol or, failing
that, to the file stem.
"""

import logging
from collections import defaultdict
from datetime import date
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

import pandas as pd
from pydantic import ValidationError

from ..exceptions import BacktestError
from ..models.backtest import Bar

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ("date", "open", "high", "low", "close")


def load_bars_csv(path: Union[str, Path], symbol: Optional[str] = None) -> Dict[str, List[Bar]]:
    """Read a bar CSV into per-symbol lists sorted by date."""
    file_path = Path(path)
    if not file_path.exists():
        raise BacktestError(f"Bar file not found: {path}")

    # Prices stay strings until they become Decimals
    try:
        df = pd.read_csv(file_path, dtype=str, keep_default_na=False, skipinitialspace=True)
    except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError) as e:
        raise BacktestError(f"{file_path.name}: cannot parse CSV ({e})") from e

    df.columns = [str(c).strip().lower() for c in df.columns]
    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        raise BacktestError(f"{file_path.name}: missing columns {', '.join(missing)}")

    bars: Dict[str, List[Bar]] = defaultdict(list)
    for line_no, row in enumerate(df.to_dict("records"), start=2):
        row = {k: str(v).strip() for k, v in row.items()}
        row_symbol = row.get("symbol") or symbol or file_path.stem.upper()
        try:
            bar = Bar(
                symbol=row_symbol,
                date=date.fromisoformat(row["date"][:10]),
                open=Decimal(row["open"]),
                high=Decimal(row["high"]),
                low=Decimal(row["low"]),
                close=Decimal(row["close"]),
                volume=int(float(row.get("volume") or 0)),
            )
        except (ValueError, InvalidOperation, ValidationError) as e:
            raise BacktestError(f"{file_path.name}:{line_no}: invalid bar ({e})") from e
        bars[row_symbol].append(bar)

    for series in bars.values():
        series.sort(key=lambda b: b.date)

    logger.info(f"Loaded {sum(len(s) for s in bars.values())} bars for {len(bars)} symbols from {file_path}")
    return dict(bars)


def load_bars(paths: Iterable[Union[str, Path]]) -> Dict[str, List[Bar]]:
    """Load and merge several bar files."""
    merged: Dict[str, List[Bar]] = defaultdict(list)
    for path in paths:
        for sym, series in load_bars_csv(path).items():
            merged[sym].extend(series)
    for series in merged.values():
        series.sort(key=lambda b: b.date)
    return dict(merged)
