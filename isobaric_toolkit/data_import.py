"""
Data Import Module for the Isobaric Workflow Toolkit

Functions for loading the serialized observation/study-design bundle that
every component study starts from.
"""

import os
import re
import pandas as pd
from typing import Dict, Iterable, List, Optional, Set, Tuple

from .validation import (
    DataValidationError,
    QUALITY_FLAG_COLUMNS,
    validate_observation_columns,
    validate_study_design,
)


def _standardize_observations(observations: pd.DataFrame) -> pd.DataFrame:
    """Coerce key columns to consistent dtypes after loading."""
    result = observations.copy()
    for col in ["Run", "Channel", "Protein", "Peptide"]:
        result[col] = result[col].astype(str)
    result["Intensity"] = result["Intensity"].astype(float)

    for flag in QUALITY_FLAG_COLUMNS:
        if flag in result.columns:
            result[flag] = result[flag].fillna(False).astype(bool)

    return result


def _standardize_design(design: pd.DataFrame) -> pd.DataFrame:
    result = design.copy()
    for col in ["Run", "Channel", "Condition"]:
        result[col] = result[col].astype(str)
    return result.reset_index(drop=True)


def load_data_bundle(bundle_path: str) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """
    Load a serialized bundle with the observation table and study design.

    The bundle is a pickled dict with the keys 'observations' (long-format
    PSM table) and 'design' (Run, Channel, Condition, BioReplicate).

    Parameters:
    -----------
    bundle_path : str
        Path to the pickled bundle

    Returns:
    --------
    observations : pd.DataFrame
        Long-format observation table
    design : pd.DataFrame
        Study design table

    Raises:
    -------
    FileNotFoundError: If the bundle does not exist
    DataValidationError: If the bundle or one of its tables is malformed
    """
    print("=== LOADING DATA BUNDLE ===\n")

    if not os.path.exists(bundle_path):
        raise FileNotFoundError(f"Data bundle not found: {bundle_path}")

    bundle = pd.read_pickle(bundle_path)

    if not isinstance(bundle, dict):
        raise DataValidationError(
            f"Data bundle must be a dict, got {type(bundle).__name__}"
        )
    missing_keys = [key for key in ("observations", "design") if key not in bundle]
    if missing_keys:
        raise DataValidationError(f"Data bundle is missing tables: {missing_keys}")

    observations, design = bundle["observations"], bundle["design"]
    validate_observation_columns(observations)
    validate_study_design(design)

    observations = _standardize_observations(observations)
    design = _standardize_design(design)

    print(f"✓ Loaded observations: {observations.shape}")
    print(f"✓ Loaded study design: {design.shape}")
    print(
        f"  Runs: {observations['Run'].nunique()}, "
        f"proteins: {observations['Protein'].nunique()}, "
        f"peptides: {observations['Peptide'].nunique()}"
    )
    print("\nData loading completed successfully!")

    return observations, design


def load_psm_data(
    observation_file: str, design_file: str
) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """
    Load the observation table and study design from two CSV files.

    Parameters:
    -----------
    observation_file : str
        Path to the long-format observation CSV
    design_file : str
        Path to the study design CSV

    Returns:
    --------
    observations, design : pd.DataFrame
    """
    print("=== LOADING PSM DATA ===\n")

    for file_path, file_type in [(observation_file, "observation"), (design_file, "design")]:
        if not os.path.exists(file_path):
            raise FileNotFoundError(f"{file_type.title()} file not found: {file_path}")

    observations = pd.read_csv(
        observation_file, dtype={"Run": str, "Channel": str, "Protein": str, "Peptide": str}
    )
    print(f"✓ Loaded observations: {observations.shape}")

    design = pd.read_csv(design_file, dtype={"Run": str, "Channel": str, "Condition": str})
    print(f"✓ Loaded study design: {design.shape}")

    validate_observation_columns(observations)
    validate_study_design(design)

    print("\nData loading completed successfully!")
    return _standardize_observations(observations), _standardize_design(design)


def save_data_bundle(
    observations: pd.DataFrame, design: pd.DataFrame, bundle_path: str
) -> str:
    """Write observations and design as a bundle readable by load_data_bundle()."""
    validate_observation_columns(observations)
    validate_study_design(design)
    pd.to_pickle({"observations": observations, "design": design}, bundle_path)
    print(f"Data bundle written to: {bundle_path}")
    return bundle_path


def get_channels(design: pd.DataFrame) -> List[str]:
    """
    Return the reporter channel labels in design order.

    Channels are shared across runs in an isobaric experiment; the order is
    that of first appearance in the design.
    """
    return list(dict.fromkeys(design["Channel"].astype(str)))


def derive_spiked_proteins(
    proteins: Iterable[str],
    pattern: Optional[str] = None,
    explicit: Optional[Iterable[str]] = None,
) -> Set[str]:
    """
    Build the ground-truth spiked-protein set.

    Parameters:
    -----------
    proteins : iterable of str
        Protein identifiers present in the data
    pattern : str, optional
        Regular expression matching spiked protein ids (e.g. 'ups')
    explicit : iterable of str, optional
        Explicitly listed spiked protein ids

    Returns:
    --------
    set of protein ids
    """
    proteins = set(map(str, proteins))
    spiked = set()

    if explicit:
        spiked.update(str(p) for p in explicit)

    if pattern:
        regex = re.compile(pattern, flags=re.IGNORECASE)
        spiked.update(p for p in proteins if regex.search(p))

    absent = spiked - proteins
    if absent:
        print(f"Note: {len(absent)} spiked proteins are not present in the data")

    return spiked & proteins


def summarize_bundle(observations: pd.DataFrame, design: pd.DataFrame) -> Dict[str, int]:
    """Return basic counts for a loaded bundle."""
    return {
        "n_observations": len(observations),
        "n_runs": observations["Run"].nunique(),
        "n_channels": len(get_channels(design)),
        "n_proteins": observations["Protein"].nunique(),
        "n_peptides": observations["Peptide"].nunique(),
        "n_conditions": design["Condition"].nunique(),
    }
