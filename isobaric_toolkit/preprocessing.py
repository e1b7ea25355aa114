"""
Data Preprocessing Module for the Isobaric Workflow Toolkit

Explicit reshaping between the long observation format and the canonical
channel table, unit transforms, and PSM quality filters.
"""

import pandas as pd
import numpy as np
from typing import List, Optional

from .validation import DataValidationError, DesignError, QUALITY_FLAG_COLUMNS


PSM_KEY_COLUMNS = ["Run", "Protein", "Peptide", "Charge", "RetentionTime"]


def make_sample_id(run, channel) -> str:
    """Sample identifier used as column name in protein matrices."""
    return f"{run}:{channel}"


def get_id_columns(data: pd.DataFrame, channels: List[str]) -> List[str]:
    """Return the non-channel columns of a channel table, in order."""
    return [col for col in data.columns if col not in channels]


def to_channel_table(long_data: pd.DataFrame, channels: List[str]) -> pd.DataFrame:
    """
    Pivot a long-format observation table into the canonical channel table.

    One row per PSM and run, identifier columns first, then one intensity
    column per reporter channel (in the order given).

    Parameters:
    -----------
    long_data : pd.DataFrame
        Long-format table (one row per PSM per channel)
    channels : List[str]
        Reporter channel labels, in output order

    Returns:
    --------
    pd.DataFrame : Channel table

    Raises:
    -------
    DataValidationError: If a PSM has more than one intensity for a channel
    """
    data = long_data.copy()
    data["Channel"] = data["Channel"].astype(str)

    if "PSM" not in data.columns:
        # Identify spectra by run, peptide, charge and retention time
        psm_index = data.groupby(PSM_KEY_COLUMNS, sort=False, dropna=False).ngroup()
        data["PSM"] = "PSM" + psm_index.astype(str)
    else:
        data["PSM"] = data["PSM"].astype(str)

    duplicated = data.duplicated(subset=["Run", "PSM", "Channel"])
    if duplicated.any():
        raise DataValidationError(
            f"{duplicated.sum()} observations duplicate a (Run, PSM, Channel) entry; "
            "cannot pivot to one intensity per channel"
        )

    unknown_channels = sorted(set(data["Channel"]) - set(channels))
    if unknown_channels:
        print(f"Warning: dropping observations from channels not in design: {unknown_channels}")
        data = data[data["Channel"].isin(channels)]

    meta_columns = ["Protein", "Peptide", "Charge", "RetentionTime"] + [
        flag for flag in QUALITY_FLAG_COLUMNS if flag in data.columns
    ]
    metadata = data.groupby(["Run", "PSM"], sort=False)[meta_columns].first()

    intensities = data.pivot(index=["Run", "PSM"], columns="Channel", values="Intensity")
    intensities = intensities.reindex(columns=channels)
    intensities.columns.name = None

    wide = metadata.join(intensities, how="left").reset_index()
    wide = wide[["Run", "PSM"] + meta_columns + list(channels)]
    wide = wide.sort_values(["Run", "Protein", "Peptide", "Charge"], kind="mergesort")

    return wide.reset_index(drop=True)


def to_long_table(
    data: pd.DataFrame, channels: List[str], value_name: str = "Intensity"
) -> pd.DataFrame:
    """
    Melt a channel table back into long format (one row per row x channel).

    Parameters:
    -----------
    data : pd.DataFrame
        Channel table
    channels : List[str]
        Reporter channel columns to melt
    value_name : str
        Name of the value column in the result
    """
    id_columns = get_id_columns(data, channels)
    long_data = data.melt(
        id_vars=id_columns, value_vars=list(channels), var_name="Channel", value_name=value_name
    )
    long_data["Channel"] = long_data["Channel"].astype(str)
    return long_data


def to_design_long_table(
    data: pd.DataFrame,
    channels: List[str],
    design: pd.DataFrame,
    value_name: str = "Value",
) -> pd.DataFrame:
    """
    Melt a channel table and attach Sample, Condition and BioReplicate.

    Rows with missing values are dropped.
    """
    long_data = to_long_table(data, channels, value_name=value_name)
    long_data["Run"] = long_data["Run"].astype(str)

    sample_design = build_sample_design(design)
    long_data = long_data.merge(
        sample_design[["Run", "Channel", "Sample", "Condition", "BioReplicate"]],
        on=["Run", "Channel"],
        how="inner",
    )
    return long_data.dropna(subset=[value_name]).reset_index(drop=True)


def apply_unit_transform(
    data: pd.DataFrame, channels: List[str], scale: str = "log2"
) -> pd.DataFrame:
    """
    Map raw reporter intensities to the analysis scale.

    Parameters:
    -----------
    data : pd.DataFrame
        Channel table with raw intensities
    channels : List[str]
        Reporter channel columns
    scale : str
        'log2' (non-positive intensities become missing) or 'raw' (copy)

    Returns:
    --------
    pd.DataFrame : Transformed channel table
    """
    result = data.copy()

    if scale == "raw":
        return result
    if scale != "log2":
        raise ValueError(f"Unknown unit scale: {scale}. Use 'log2' or 'raw'")

    values = result[channels].astype(float)
    n_nonpositive = int((values <= 0).sum().sum())
    if n_nonpositive:
        print(f"  -> {n_nonpositive} non-positive intensities set to missing before log2")
    result[channels] = np.log2(values.where(values > 0))

    return result


def back_transform(data: pd.DataFrame, channels: List[str], scale: str) -> pd.DataFrame:
    """Return raw-scale values for a channel table on the given scale."""
    if scale == "raw":
        return data.copy()
    result = data.copy()
    result[channels] = np.power(2.0, result[channels].astype(float))
    return result


# =============================================================================
# PSM quality filters
# =============================================================================


def filter_isolation_interference(data: pd.DataFrame) -> pd.DataFrame:
    """Keep PSMs whose isolation interference is acceptable."""
    if "IsolationInterferenceOK" not in data.columns:
        print("  Note: no IsolationInterferenceOK column, isolation filter skipped")
        return data.copy()
    return data[data["IsolationInterferenceOK"].astype(bool)].reset_index(drop=True)


def filter_missing_channels(
    data: pd.DataFrame, channels: List[str], treat_nonpositive_as_missing: bool = True
) -> pd.DataFrame:
    """Keep rows quantified in every reporter channel."""
    values = data[channels]
    complete = values.notna().all(axis=1)
    if treat_nonpositive_as_missing:
        complete &= (values > 0).all(axis=1)
    return data[complete].reset_index(drop=True)


def filter_shared_peptides(data: pd.DataFrame) -> pd.DataFrame:
    """Drop PSMs of peptides shared between protein groups."""
    if "SharedPeptide" not in data.columns:
        print("  Note: no SharedPeptide column, shared peptide filter skipped")
        return data.copy()
    return data[~data["SharedPeptide"].astype(bool)].reset_index(drop=True)


def filter_ptm(data: pd.DataFrame) -> pd.DataFrame:
    """Drop PSMs carrying a post-translational modification."""
    if "PTM" not in data.columns:
        print("  Note: no PTM column, PTM filter skipped")
        return data.copy()
    return data[~data["PTM"].astype(bool)].reset_index(drop=True)


def filter_one_hit_wonders(data: pd.DataFrame) -> pd.DataFrame:
    """Drop proteins identified by a single distinct peptide across all runs."""
    peptides_per_protein = data.groupby("Protein")["Peptide"].nunique()
    keep = peptides_per_protein[peptides_per_protein > 1].index
    return data[data["Protein"].isin(keep)].reset_index(drop=True)


def resolve_duplicate_psms(data: pd.DataFrame, channels: List[str]) -> pd.DataFrame:
    """
    Keep one PSM per run, peptide and charge: the most intense one.

    Total intensity is the sum over reporter channels, ignoring missing values.
    """
    result = data.copy()
    result["_total_intensity"] = result[channels].sum(axis=1, skipna=True)
    result = result.sort_values("_total_intensity", ascending=False, kind="mergesort")
    result = result.drop_duplicates(subset=["Run", "Peptide", "Charge"], keep="first")
    result = result.drop(columns="_total_intensity")
    result = result.sort_values(["Run", "Protein", "Peptide", "Charge"], kind="mergesort")
    return result.reset_index(drop=True)


def apply_quality_filters(data: pd.DataFrame, channels: List[str], config) -> pd.DataFrame:
    """
    Apply the PSM quality filters switched on in the configuration.

    Parameters:
    -----------
    data : pd.DataFrame
        Raw-scale channel table
    channels : List[str]
        Reporter channel columns
    config : WorkflowConfig
        Configuration with the filter switches

    Returns:
    --------
    pd.DataFrame : Filtered channel table
    """
    print("Applying PSM quality filters...")
    print(f"  Starting with {len(data)} PSMs, {data['Protein'].nunique()} proteins")

    steps = []
    if config.require_isolation_ok:
        steps.append(("isolation interference", filter_isolation_interference))
    if config.remove_missing_channels:
        steps.append(("missing channels", lambda d: filter_missing_channels(d, channels)))
    if config.remove_shared_peptides:
        steps.append(("shared peptides", filter_shared_peptides))
    if config.remove_ptm:
        steps.append(("PTM peptides", filter_ptm))
    if config.resolve_duplicate_psms:
        steps.append(("duplicate PSMs", lambda d: resolve_duplicate_psms(d, channels)))
    if config.remove_one_hit_wonders:
        steps.append(("one-hit-wonder proteins", filter_one_hit_wonders))

    filtered = data
    for description, step in steps:
        before = len(filtered)
        filtered = step(filtered)
        removed = before - len(filtered)
        if removed:
            print(f"  Removed {removed} PSMs ({description})")

    if len(filtered) == 0:
        raise DataValidationError("No PSMs remain after quality filtering")

    print(f"✓ {len(filtered)} PSMs, {filtered['Protein'].nunique()} proteins remain")
    return filtered


def subsample_proteins(
    data: pd.DataFrame, n_proteins: Optional[int], seed: int = 42
) -> pd.DataFrame:
    """
    Keep a random subset of proteins for faster iteration.

    Parameters:
    -----------
    data : pd.DataFrame
        Table with a Protein column
    n_proteins : int or None
        Number of proteins to keep. None keeps all
    seed : int
        Seed for the random generator
    """
    if n_proteins is None:
        return data.copy()

    proteins = np.sort(data["Protein"].unique())
    if n_proteins >= len(proteins):
        return data.copy()

    rng = np.random.default_rng(seed)
    chosen = rng.choice(proteins, size=n_proteins, replace=False)
    print(f"Subsampled {n_proteins} of {len(proteins)} proteins (seed {seed})")
    return data[data["Protein"].isin(chosen)].reset_index(drop=True)


# =============================================================================
# Sample-level views
# =============================================================================


def build_sample_design(design: pd.DataFrame) -> pd.DataFrame:
    """Return the study design with a Sample id column ('Run:Channel')."""
    sample_design = design.copy()
    sample_design["Run"] = sample_design["Run"].astype(str)
    sample_design["Channel"] = sample_design["Channel"].astype(str)
    sample_design["Condition"] = sample_design["Condition"].astype(str)
    sample_design["Sample"] = [
        make_sample_id(run, channel)
        for run, channel in zip(sample_design["Run"], sample_design["Channel"])
    ]
    return sample_design


def to_protein_matrix(data: pd.DataFrame, channels: List[str]) -> pd.DataFrame:
    """
    Pivot a protein-level channel table to a protein x sample matrix.

    Parameters:
    -----------
    data : pd.DataFrame
        Channel table with exactly one row per (Run, Protein)
    channels : List[str]
        Reporter channel columns

    Returns:
    --------
    pd.DataFrame : Index 'Protein', one column per 'Run:Channel' sample

    Raises:
    -------
    DesignError: If the table is not summarized to one row per (Run, Protein)
    """
    if data.duplicated(subset=["Run", "Protein"]).any():
        raise DesignError(
            "Protein matrix requires one row per (Run, Protein); summarize the table first"
        )

    long_data = data[["Run", "Protein"] + list(channels)].melt(
        id_vars=["Run", "Protein"], var_name="Channel", value_name="Value"
    )
    long_data["Sample"] = [
        make_sample_id(run, channel)
        for run, channel in zip(long_data["Run"], long_data["Channel"])
    ]

    matrix = long_data.pivot(index="Protein", columns="Sample", values="Value")

    runs = list(dict.fromkeys(data["Run"].astype(str)))
    ordered = [make_sample_id(run, channel) for run in runs for channel in channels]
    matrix = matrix.reindex(columns=[s for s in ordered if s in matrix.columns])
    matrix.columns.name = None

    return matrix
