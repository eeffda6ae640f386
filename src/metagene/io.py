"""
Reading inputs and writing results.

Tables are read from CSV, TSV or Excel files, chosen by file extension.
Results are written with pandas, to CSV or to Excel through openpyxl.
"""
import logging
from os import PathLike
from pathlib import Path
from typing import Literal, Union

import pandas as pd

from .errors import MissingFileError, ValidationError

logger = logging.getLogger(__name__)

EXCEL_SUFFIXES = (".xlsx", ".xls")
TSV_SUFFIXES = (".tsv", ".txt", ".tab")


def _read_table(path: Union[PathLike, str], **kwargs) -> pd.DataFrame:
    path = Path(path)
    if not path.exists():
        raise MissingFileError(f"File not found: {path}")

    suffix = path.suffix.lower()
    if suffix in EXCEL_SUFFIXES:
        return pd.read_excel(path, sheet_name=0, header=0, engine='openpyxl', **kwargs)
    if suffix in TSV_SUFFIXES:
        return pd.read_csv(path, sep='\t', **kwargs)
    if suffix == '.csv':
        return pd.read_csv(path, **kwargs)
    raise ValidationError(f"Unsupported table format '{suffix}' for {path}. Use csv, tsv or xlsx.")


def load_design_matrix(path: Union[PathLike, str]) -> pd.DataFrame:
    """
    Load a design matrix.

    The first column holds the alignment file identifiers; every other
    column is a design group with values 0 (unused), 1 (input) or
    2 (control).

    Parameters
    ----------
    path : PathLike or str
        CSV, TSV or Excel file.

    Returns
    -------
    pd.DataFrame
        Index = identifiers, columns = design groups.
    """
    df = _read_table(path, index_col=0)
    df.index = df.index.astype(str)
    df.index.name = 'source'
    logger.info(f"Loaded design matrix with {df.shape[0]} sources x {df.shape[1]} groups from {path}")
    return df


def load_region_table(path: Union[PathLike, str]) -> pd.DataFrame:
    """
    Load already-parsed regions from a table.

    The table needs ``sequence_name``, ``start`` and ``end`` columns
    (0-based, half-open). ``strand`` and ``name`` are optional; any other
    column is kept as region metadata.
    """
    df = _read_table(path)
    if 'start' in df.columns and 'end' in df.columns:
        df['start'] = df['start'].astype(int)
        df['end'] = df['end'].astype(int)
    logger.info(f"Loaded {len(df)} regions from {path}")
    return df


def load_region_metadata(path: Union[PathLike, str]) -> pd.DataFrame:
    """Load per-region metadata (one row per region, in region order)."""
    df = _read_table(path, dtype=str)
    logger.info(f"Loaded region metadata with columns {list(df.columns)} from {path}")
    return df


def write_results(
    df: pd.DataFrame,
    path: Union[PathLike, str],
    format: Literal['excel', 'csv'] = 'excel',
    index: bool = False,
) -> Path:
    """
    Write a result table.

    Parameters
    ----------
    df : pd.DataFrame
        Table to write.
    path : PathLike or str
        Output file; the extension is set from ``format``.
    format : {'excel', 'csv'}, default 'excel'
        Output format.
    index : bool, default False
        Also write the index.

    Returns
    -------
    Path
        Written file.
    """
    if format not in ('excel', 'csv'):
        raise ValidationError(f"Unknown format '{format}'. Use 'excel' or 'csv'.")
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    if format == 'excel':
        path = path.with_suffix('.xlsx')
        df.to_excel(path, index=index)
    else:
        path = path.with_suffix('.csv')
        df.to_csv(path, index=index)
    logger.info(f"Wrote {len(df)} rows to {path}")
    return path
