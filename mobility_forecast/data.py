"""
Panel loading and schema validation.

The cleaned daily panel is produced upstream (ingestion, county-name
normalization and area computation happen elsewhere). This module only checks
that what arrives conforms to the schema and puts it in canonical order.
"""

from pathlib import Path
from typing import Optional

import pandas as pd

from .config import DATA_PROCESSED
from .errors import SchemaError
from .logging_config import get_logger

logger = get_logger(__name__)

# ============================================================================
# Schema Constants
# ============================================================================

COUNTY_COL = "county"
DATE_COL = "date"
CASES_COL = "cases"
DENSITY_COL = "pop_density"

MOBILITY_COLS = (
    "retail_recreation",
    "grocery_pharmacy",
    "workplaces",
    "residential",
)

REQUIRED_COLUMNS = (COUNTY_COL, DATE_COL, CASES_COL, DENSITY_COL) + MOBILITY_COLS

# Processed panel file name
PROCESSED_PANEL_FILE = "county_panel.csv"


def validate_panel(df: pd.DataFrame) -> pd.DataFrame:
    """
    Check schema conformance and return a canonical copy of the panel.

    Parameters
    ----------
    df : pd.DataFrame
        Daily county panel with columns county, date, cases, pop_density and the
        four mobility percent-change indicators.

    Returns
    -------
    pd.DataFrame
        Copy with normalized tz-naive dates, float features, integer cases,
        sorted by (county, date).

    Raises
    ------
    SchemaError
        Missing columns, unparseable dates, non-numeric or negative cases,
        non-positive density, or duplicate (county, date) rows. Nothing is
        processed partially: the first violation aborts.
    """
    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        raise SchemaError(f"Panel is missing required columns: {missing}", missing_columns=missing)

    df = df.loc[:, list(REQUIRED_COLUMNS)].copy()

    if df[COUNTY_COL].isna().any():
        raise SchemaError("County identifier must not be missing", column=COUNTY_COL)
    df[COUNTY_COL] = df[COUNTY_COL].astype(str)

    dates = pd.to_datetime(df[DATE_COL], errors="coerce")
    if dates.isna().any():
        raise SchemaError(
            f"{int(dates.isna().sum())} date values could not be parsed",
            column=DATE_COL,
        )
    if getattr(dates.dt, "tz", None) is not None:
        dates = dates.dt.tz_localize(None)
    df[DATE_COL] = dates.dt.normalize()

    if not pd.api.types.is_numeric_dtype(df[CASES_COL]) or pd.api.types.is_bool_dtype(df[CASES_COL]):
        raise SchemaError("Case counts must be numeric", column=CASES_COL)
    cases = df[CASES_COL]
    if cases.isna().any():
        raise SchemaError("Case counts must not be missing", column=CASES_COL)
    if (cases < 0).any():
        raise SchemaError("Case counts must be non-negative", column=CASES_COL)
    if not (cases == cases.round()).all():
        raise SchemaError("Case counts must be whole numbers", column=CASES_COL)
    df[CASES_COL] = cases.astype("int64")

    for col in (DENSITY_COL,) + MOBILITY_COLS:
        if not pd.api.types.is_numeric_dtype(df[col]) or pd.api.types.is_bool_dtype(df[col]):
            raise SchemaError(f"Column {col} must be numeric", column=col)
        df[col] = df[col].astype(float)

    # Missing density is a feature-builder decision; a present one must be positive.
    density = df[DENSITY_COL]
    if (density.notna() & (density <= 0)).any():
        raise SchemaError("Population density must be positive", column=DENSITY_COL)

    dupes = df.duplicated(subset=[COUNTY_COL, DATE_COL])
    if dupes.any():
        raise SchemaError(
            f"Found {int(dupes.sum())} duplicate (county, date) rows",
            details={"n_duplicates": int(dupes.sum())},
        )

    df = df.sort_values([COUNTY_COL, DATE_COL]).reset_index(drop=True)

    assert pd.api.types.is_datetime64_any_dtype(df[DATE_COL])
    return df


def load_panel(path: Optional[Path] = None) -> pd.DataFrame:
    """
    Load the cleaned panel from CSV and validate it.

    Parameters
    ----------
    path : Path, optional
        CSV file. If None, uses DATA_PROCESSED / PROCESSED_PANEL_FILE.
    """
    if path is None:
        path = DATA_PROCESSED / PROCESSED_PANEL_FILE
    path = Path(path)

    logger.info(f"Loading panel from {path}")
    df = pd.read_csv(path, dtype={COUNTY_COL: str})
    df = validate_panel(df)
    logger.info(
        f"Loaded {len(df):,} county-days for {df[COUNTY_COL].nunique()} counties "
        f"({df[DATE_COL].min().date()} .. {df[DATE_COL].max().date()})"
    )
    return df
