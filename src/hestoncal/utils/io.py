import pandas as pd
from pathlib import Path
from typing import Union
import logging

logger = logging.getLogger(__name__)


def read_csv(path: Union[str, Path], **kwargs) -> pd.DataFrame:
    """
    Read a CSV file with error handling.

    Args:
        path: Path to the CSV file
        **kwargs: Additional arguments for pd.read_csv

    Returns:
        DataFrame containing the data
    """
    try:
        df = pd.read_csv(path, **kwargs)
    except Exception as e:
        logger.error(f"Error reading CSV file {path}: {e}")
        raise
    logger.debug(f"Read {len(df)} rows from {path}")
    return df


def write_csv(df: pd.DataFrame, path: Union[str, Path], **kwargs) -> None:
    """
    Write a DataFrame to CSV, creating parent directories as needed.

    Args:
        df: DataFrame to write
        path: Output path for the CSV file
        **kwargs: Additional arguments for df.to_csv
    """
    try:
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        df.to_csv(path, index=False, **kwargs)
        logger.info(f"Successfully wrote {len(df)} rows to {path}")
    except Exception as e:
        logger.error(f"Error writing CSV file {path}: {e}")
        raise
