"""
Utility functions for the Favorita forecast error report.
"""

import os
import zipfile
from pathlib import Path
from typing import Optional

KAGGLE_COMPETITION = "favorita-grocery-sales-forecasting"


def get_project_root() -> Path:
    """Get project root directory."""
    return Path(__file__).parent.parent


def get_data_dir(subdir: str = "raw") -> Path:
    """Get data directory path."""
    return get_project_root() / "data" / subdir


def get_plots_dir() -> Path:
    """Get plots directory path."""
    return get_project_root() / "plots"


def get_reports_dir() -> Path:
    """Get directory where report tables and markdown are written."""
    return get_project_root() / "reports"


def download_favorita_reference(data_dir: Optional[Path] = None) -> bool:
    """
    Download the store and item reference tables from Kaggle.

    Requires kaggle API credentials (~/.kaggle/kaggle.json) and the
    competition rules accepted on the website.
    """
    if data_dir is None:
        data_dir = get_data_dir("raw")

    data_dir = Path(data_dir)
    data_dir.mkdir(parents=True, exist_ok=True)

    required_files = ["stores.csv", "items.csv"]
    existing = [f for f in required_files if (data_dir / f).exists()]

    if len(existing) == len(required_files):
        print("Reference files already exist!")
        return True

    print(f"Found {len(existing)}/{len(required_files)} reference files. Downloading...")

    try:
        import kaggle
        import py7zr
        kaggle.api.authenticate()

        for filename in required_files:
            if (data_dir / filename).exists():
                continue
            kaggle.api.competition_download_file(
                competition=KAGGLE_COMPETITION,
                file_name=f"{filename}.7z",
                path=str(data_dir),
                quiet=False
            )

        # Kaggle wraps single-file downloads in a zip around the .7z archive
        for zip_file in data_dir.glob("*.zip"):
            print(f"Extracting {zip_file.name}...")
            with zipfile.ZipFile(zip_file, 'r') as zip_ref:
                zip_ref.extractall(data_dir)
            zip_file.unlink()

        for archive in data_dir.glob("*.csv.7z"):
            print(f"Extracting {archive.name}...")
            with py7zr.SevenZipFile(archive, mode='r') as z:
                z.extractall(path=data_dir)
            archive.unlink()

        missing = [f for f in required_files if not (data_dir / f).exists()]
        if missing:
            print(f"Still missing after download: {', '.join(missing)}")
            return False

        print("Download complete!")
        return True

    except Exception as e:
        print(f"Error downloading data: {e}")
        print("\nManual download instructions:")
        print(f"1. Go to https://www.kaggle.com/competitions/{KAGGLE_COMPETITION}/data")
        print("2. Download stores.csv and items.csv (accept the competition rules first)")
        print(f"3. Extract them to: {data_dir}")
        return False


def check_data_files(data_dir: Optional[Path] = None) -> dict:
    """Check which report inputs are present."""
    if data_dir is None:
        data_dir = get_data_dir("raw")

    data_dir = Path(data_dir)

    expected_files = {
        "stores.csv": "Store metadata (city, state, type, cluster)",
        "items.csv": "Item metadata (family, class, perishable)",
        "validation.csv": "Actual unit sales for the validation window",
        "predictions.csv": "Model predictions for the validation window",
        "feature_importance.csv": "Gain/cover/frequency table from the booster",
        "workspace.joblib": "Saved workspace snapshot (alternative to the files above)",
    }

    status = {}
    for filename, description in expected_files.items():
        filepath = data_dir / filename
        if filepath.exists():
            size_mb = filepath.stat().st_size / (1024 * 1024)
            status[filename] = f"EXISTS ({size_mb:.1f} MB) - {description}"
        else:
            status[filename] = f"MISSING - {description}"

    return status


def print_memory_usage(df, name: str = "DataFrame"):
    """Print memory usage of a DataFrame."""
    mem_usage = df.memory_usage(deep=True).sum() / (1024 * 1024)
    print(f"{name}: {len(df):,} rows, {len(df.columns)} columns, {mem_usage:.1f} MB")


if __name__ == "__main__":
    print("Checking report inputs...")
    status = check_data_files()
    for filename, info in status.items():
        print(f"  {filename}: {info}")

    print("\nTo download the reference tables, run:")
    print("  from src.utils import download_favorita_reference")
    print("  download_favorita_reference()")

    if os.environ.get("KAGGLE_USERNAME"):
        download_favorita_reference()
