"""
Load engine inputs from delimited files and write results back out.

Files are .csv (comma) or .tsv (tab) with snake_case headers:
- products:     sku, current_stock, cost_price[, minimum_stock, maximum_stock, lead_time_days]
- sales:        sku, date, units_sold[, revenue, promotion_flag]
- availability: sku, date, minutes_in_stock
"""
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

import pandas as pd
import yaml
from pydantic import ValidationError

from stock_coverage.schemas import (
    Product,
    SalesHistory,
    StockAvailability,
    StockCoverageInput,
    StockCoverageResult,
)

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

PRODUCT_COLUMNS = ['sku', 'current_stock', 'cost_price']
SALES_COLUMNS = ['sku', 'date', 'units_sold']
AVAILABILITY_COLUMNS = ['sku', 'date', 'minutes_in_stock']

OPTIONAL_PRODUCT_COLUMNS = ['minimum_stock', 'maximum_stock', 'lead_time_days']
OPTIONAL_SALES_COLUMNS = ['revenue', 'promotion_flag']

TRUE_VALUES = {'1', 'true', 't', 'yes', 'y'}


def validate_file_exists(filepath: Path, file_description: str = "File") -> Path:
    """
    Validate that a file exists and has a supported extension.

    Raises:
    -------
    FileNotFoundError
        If the file does not exist
    ValueError
        If the extension is not .csv or .tsv
    """
    if not filepath.exists():
        raise FileNotFoundError(f"{file_description} not found: {filepath}")
    if filepath.suffix.lower() not in ('.csv', '.tsv'):
        raise ValueError(
            f"Invalid file format: {filepath.suffix}\n"
            f"Allowed formats: .csv, .tsv"
        )
    return filepath


def validate_dataframe_columns(df: pd.DataFrame, required_columns: List[str], df_name: str = "DataFrame") -> None:
    """
    Validate that a DataFrame contains required columns.

    Raises:
    -------
    ValueError
        If required columns are missing
    """
    missing_cols = set(required_columns) - set(df.columns)
    if missing_cols:
        raise ValueError(
            f"{df_name} is missing required columns: {sorted(missing_cols)}\n"
            f"Available columns: {list(df.columns)}"
        )


def read_table(filepath: PathLike, required_columns: List[str], description: str) -> pd.DataFrame:
    """
    Read a .csv/.tsv file, normalize headers and check required columns.

    SKUs are always read as strings so codes like '00123' survive.
    """
    filepath = validate_file_exists(Path(filepath), description)
    sep = '\t' if filepath.suffix.lower() == '.tsv' else ','

    try:
        df = pd.read_csv(filepath, sep=sep, dtype={'sku': str})
    except (OSError, pd.errors.ParserError, UnicodeDecodeError) as e:
        logger.error(f"Error loading {description.lower()} from {filepath}: {e}")
        raise ValueError(f"Failed to load {description.lower()}: {e}") from e

    df.columns = [str(col).strip().lower() for col in df.columns]
    validate_dataframe_columns(df, required_columns, description)

    df['sku'] = df['sku'].astype(str).str.strip()
    logger.info(f"Loaded {len(df)} rows from {filepath.name}")
    return df


def _parse_dates(df: pd.DataFrame, description: str) -> pd.DataFrame:
    """Parse the date column, dropping rows that fail to parse."""
    df = df.copy()
    df['date'] = pd.to_datetime(df['date'], errors='coerce')

    invalid_dates = int(df['date'].isna().sum())
    if invalid_dates > 0:
        logger.warning(f"[WARNING] {invalid_dates}/{len(df)} {description.lower()} rows have invalid dates and will be removed")
        df = df[df['date'].notna()].copy()

    df['date'] = df['date'].dt.date
    return df


def _parse_flag(value: Any) -> bool:
    if pd.isna(value):
        return False
    if isinstance(value, str):
        return value.strip().lower() in TRUE_VALUES
    return bool(value)


def _optional(value: Any) -> Any:
    return None if pd.isna(value) else value


def _build_records(df: pd.DataFrame, model, description: str, columns: Iterable[str]) -> Dict[str, list]:
    """Validate each row into `model`, grouped by SKU."""
    grouped: Dict[str, list] = {}
    for row in df.to_dict(orient='records'):
        values = {col: row[col] for col in columns if col in row}
        try:
            record = model(**values)
        except ValidationError as e:
            raise ValueError(f"Invalid {description.lower()} row for SKU {row['sku']}: {e}") from e
        grouped.setdefault(row['sku'], []).append(record)
    return grouped


def load_products(filepath: PathLike) -> List[Product]:
    """Load product master rows."""
    df = read_table(filepath, PRODUCT_COLUMNS, "Products file")

    duplicates = df['sku'].duplicated(keep='last')
    if duplicates.any():
        logger.warning(f"Dropping {int(duplicates.sum())} duplicate product rows (keeping last)")
        df = df[~duplicates]

    products = []
    for row in df.to_dict(orient='records'):
        values = {col: row[col] for col in PRODUCT_COLUMNS}
        for col in OPTIONAL_PRODUCT_COLUMNS:
            if col in row and _optional(row[col]) is not None:
                values[col] = int(row[col]) if col == 'lead_time_days' else row[col]
        values['cost_price'] = str(values['cost_price'])
        try:
            products.append(Product(**values))
        except ValidationError as e:
            raise ValueError(f"Invalid product row for SKU {row['sku']}: {e}") from e
    return products


def load_sales(filepath: PathLike) -> Dict[str, List[SalesHistory]]:
    """Load sales rows grouped by SKU."""
    df = _parse_dates(read_table(filepath, SALES_COLUMNS, "Sales file"), "Sales")
    if 'promotion_flag' in df.columns:
        df['promotion_flag'] = df['promotion_flag'].map(_parse_flag)
    if 'revenue' in df.columns:
        df['revenue'] = df['revenue'].fillna(0).astype(str)
    return _build_records(df, SalesHistory, "Sales", ['date', 'units_sold'] + OPTIONAL_SALES_COLUMNS)


def load_availability(filepath: PathLike) -> Dict[str, List[StockAvailability]]:
    """Load stock availability rows grouped by SKU."""
    df = _parse_dates(read_table(filepath, AVAILABILITY_COLUMNS, "Availability file"), "Availability")
    return _build_records(df, StockAvailability, "Availability", ['date', 'minutes_in_stock'])


def load_inputs_from_csv(
    products_path: PathLike,
    sales_path: PathLike,
    availability_path: Optional[PathLike] = None,
    as_of: Optional[datetime] = None
) -> List[StockCoverageInput]:
    """
    Assemble one StockCoverageInput per product.

    Parameters:
    -----------
    products_path : str or Path
        Products file
    sales_path : str or Path
        Sales history file
    availability_path : str or Path, optional
        Stock availability file; days without rows count as fully available
    as_of : datetime, optional
        Reference instant stored on every input as current_date

    Returns:
    --------
    List[StockCoverageInput]
        In products file order. Products without sales still get an input
        (the calculator reports them as insufficient data).
    """
    products = load_products(products_path)
    sales = load_sales(sales_path)
    availability = load_availability(availability_path) if availability_path else {}

    known = {p.sku for p in products}
    orphaned = (set(sales) | set(availability)) - known
    if orphaned:
        logger.warning(f"Ignoring records for {len(orphaned)} SKUs missing from products file")

    inputs = [
        StockCoverageInput(
            product=product,
            sales_history=tuple(sales.get(product.sku, ())),
            stock_availability=tuple(availability.get(product.sku, ())),
            current_date=as_of,
        )
        for product in products
    ]
    logger.info(f"Prepared inputs for {len(inputs)} SKUs")
    return inputs


def load_config_file(filepath: PathLike) -> Dict[str, Any]:
    """
    Load partial calculation config overrides from a YAML file.

    An empty file means no overrides.

    Raises:
    -------
    ValueError
        If the document is not a mapping
    """
    with open(filepath, 'r') as f:
        config = yaml.safe_load(f)

    if config is None:
        return {}
    if not isinstance(config, dict):
        raise ValueError(f"Config file must contain a mapping, got {type(config).__name__}: {filepath}")
    return config


def results_to_frame(results: Iterable[StockCoverageResult]) -> pd.DataFrame:
    """Flatten results into one row per SKU."""
    rows = [result.to_dict(flat=True) for result in results]
    if not rows:
        return pd.DataFrame(columns=['sku'])
    return pd.DataFrame(rows).set_index('sku')


def write_results(results: Iterable[StockCoverageResult], filepath: PathLike) -> Tuple[Path, int]:
    """
    Write flattened results to .csv/.tsv (by extension).

    Returns:
    --------
    Tuple[Path, int]
        Written path and number of rows
    """
    filepath = Path(filepath)
    frame = results_to_frame(results)
    sep = '\t' if filepath.suffix.lower() == '.tsv' else ','
    filepath.parent.mkdir(parents=True, exist_ok=True)
    frame.to_csv(filepath, sep=sep)
    logger.info(f"Wrote {len(frame)} results to {filepath}")
    return filepath, len(frame)
