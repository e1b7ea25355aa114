"""
Data Validation Module for the Isobaric Workflow Toolkit

Functions for validating observation tables and study designs, and the
exception types raised when an input or a model cannot be used.
"""

import pandas as pd
from typing import Dict, List, Optional


REQUIRED_OBSERVATION_COLUMNS = [
    "Run",
    "Channel",
    "Protein",
    "Peptide",
    "Charge",
    "RetentionTime",
    "Intensity",
]

REQUIRED_DESIGN_COLUMNS = ["Run", "Channel", "Condition", "BioReplicate"]

QUALITY_FLAG_COLUMNS = ["PTM", "IsolationInterferenceOK", "SharedPeptide"]


class DataValidationError(Exception):
    """Raised when an input table is malformed or misses required columns."""
    def __init__(self, message):
        super().__init__(message)


class DesignError(Exception):
    """Raised when the study design is inconsistent with itself or the data."""
    def __init__(self, message):
        super().__init__(message)


class ConvergenceError(Exception):
    """Raised when an iterative normalization does not converge."""
    def __init__(self, message, n_iterations=None, deviation=None):
        super().__init__(message)
        self.n_iterations = n_iterations
        self.deviation = deviation


class RankDeficiencyError(Exception):
    """Raised when the fixed-effect design of a linear model is not estimable."""
    def __init__(self, message):
        super().__init__(message)


def validate_observation_columns(
    observations: pd.DataFrame, required: Optional[List[str]] = None
) -> None:
    """
    Check that a long-format observation table carries the required columns.

    Parameters:
    -----------
    observations : pd.DataFrame
        Long-format PSM table (one row per PSM per channel)
    required : list, optional
        Columns to require. Defaults to REQUIRED_OBSERVATION_COLUMNS

    Raises:
    -------
    DataValidationError: If columns are missing or intensities are not numeric
    """
    required = required or REQUIRED_OBSERVATION_COLUMNS

    missing = [col for col in required if col not in observations.columns]
    if missing:
        raise DataValidationError(
            f"Observation table is missing required columns: {missing}. "
            f"Available columns: {list(observations.columns)}"
        )

    if "Intensity" in required and not pd.api.types.is_numeric_dtype(
        observations["Intensity"]
    ):
        raise DataValidationError(
            f"Column 'Intensity' must be numeric, got {observations['Intensity'].dtype}"
        )

    if len(observations) == 0:
        raise DataValidationError("Observation table is empty")


def validate_study_design(design: pd.DataFrame) -> None:
    """
    Check the study design table.

    Every (Run, Channel) pair must map to exactly one condition.
    """
    missing = [col for col in REQUIRED_DESIGN_COLUMNS if col not in design.columns]
    if missing:
        raise DataValidationError(
            f"Study design is missing required columns: {missing}"
        )

    if design[["Run", "Channel", "Condition"]].isna().any().any():
        raise DesignError("Study design has missing Run, Channel or Condition values")

    conditions_per_channel = design.groupby(["Run", "Channel"])["Condition"].nunique()
    ambiguous = conditions_per_channel[conditions_per_channel > 1]
    if len(ambiguous) > 0:
        examples = [f"{run}:{channel}" for run, channel in ambiguous.index[:5]]
        raise DesignError(
            f"{len(ambiguous)} channels map to more than one condition: {examples}"
        )

    duplicated = design.duplicated(subset=["Run", "Channel"])
    if duplicated.any():
        raise DesignError(
            f"Study design lists {duplicated.sum()} (Run, Channel) pairs more than once"
        )


def validate_design_consistency(
    observations: pd.DataFrame, design: pd.DataFrame, verbose: bool = True
) -> Dict:
    """
    Validate that every run/channel observed in the data has a design row.

    Parameters:
    -----------
    observations : pd.DataFrame
        Long-format observation table
    design : pd.DataFrame
        Study design table
    verbose : bool, default True
        Whether to print the validation summary

    Returns:
    --------
    Dict with keys is_valid, errors, warnings, diagnostics

    Raises:
    -------
    DesignError: If observed channels have no design entry
    """
    results = {"is_valid": True, "errors": [], "warnings": [], "diagnostics": {}}

    if verbose:
        print("STUDY DESIGN / DATA CONSISTENCY VALIDATION")
        print("=" * 50)

    observed = set(
        map(tuple, observations[["Run", "Channel"]].drop_duplicates().astype(str).values)
    )
    designed = set(map(tuple, design[["Run", "Channel"]].astype(str).values))

    undesigned = sorted(observed - designed)
    unobserved = sorted(designed - observed)

    if undesigned:
        results["is_valid"] = False
        results["errors"].append(
            f"{len(undesigned)} run/channel pairs in the data have no design entry: "
            f"{undesigned[:5]}{'...' if len(undesigned) > 5 else ''}"
        )
    if unobserved:
        results["warnings"].append(
            f"{len(unobserved)} design entries have no observations: "
            f"{unobserved[:5]}{'...' if len(unobserved) > 5 else ''}"
        )

    results["diagnostics"] = {
        "n_runs": observations["Run"].nunique(),
        "n_channels_observed": len(observed),
        "n_channels_designed": len(designed),
        "conditions": sorted(design["Condition"].astype(str).unique().tolist()),
    }

    if verbose:
        diag = results["diagnostics"]
        print(f"  Runs: {diag['n_runs']}")
        print(f"  Run/channel pairs observed: {diag['n_channels_observed']}")
        print(f"  Conditions: {diag['conditions']}")
        for warning in results["warnings"]:
            print(f"  Warning: {warning}")
        for error in results["errors"]:
            print(f"  ERROR: {error}")
        if results["is_valid"]:
            print("✓ Study design is consistent with the data")

    if not results["is_valid"]:
        raise DesignError("; ".join(results["errors"]))

    return results


def generate_design_diagnostic_report(design: pd.DataFrame) -> str:
    """Describe the condition/replicate layout of each run as plain text."""
    lines = ["STUDY DESIGN DIAGNOSTIC REPORT", "=" * 40]
    for run, run_design in design.groupby("Run", sort=True):
        lines.append(f"Run {run}: {len(run_design)} channels")
        for condition, cond_design in run_design.groupby("Condition", sort=True):
            channels = ", ".join(cond_design["Channel"].astype(str))
            lines.append(f"  {condition}: {channels}")
    counts = design["Condition"].value_counts().sort_index()
    lines.append("Samples per condition:")
    for condition, count in counts.items():
        lines.append(f"  {condition}: {count}")
    return "\n".join(lines)
