"""
Summarization Module for the Isobaric Workflow Toolkit

Collapses repeated measurements in a channel table: PSMs roll up into
peptides within a run, then peptides roll up into proteins within a run.
"""

import pandas as pd
from typing import List


SUMMARIZATION_METHODS = ("median", "mean")


def aggregate_channel_table(
    data: pd.DataFrame, channels: List[str], group_columns: List[str], method: str = "median"
) -> pd.DataFrame:
    """
    Aggregate reporter channels over rows sharing the same group key.

    Missing values are ignored by the aggregation; a group without any
    value in a channel stays missing.

    Parameters:
    -----------
    data : pd.DataFrame
        Channel table
    channels : List[str]
        Reporter channel columns
    group_columns : List[str]
        Columns identifying one output row
    method : str
        'median' or 'mean'

    Returns:
    --------
    pd.DataFrame : One row per group, group columns then channels
    """
    if method not in SUMMARIZATION_METHODS:
        raise ValueError(
            f"Unknown summarization method: {method}. Use one of {SUMMARIZATION_METHODS}"
        )

    grouped = data.groupby(group_columns, sort=True)[list(channels)]
    aggregated = grouped.median() if method == "median" else grouped.mean()

    return aggregated.reset_index()[list(group_columns) + list(channels)]


def summarize(data: pd.DataFrame, channels: List[str], method: str = "median") -> pd.DataFrame:
    """
    Two-stage summarization to one row per (Run, Protein).

    PSMs are first aggregated into peptides (per Run, Protein, Peptide),
    then peptides into proteins (per Run, Protein), using the same function
    in both stages. Applying it to an already summarized table returns the
    same table. Median aggregation does not preserve row-sum constraints
    (e.g. after CONSTANd) the way mean aggregation does.

    Parameters:
    -----------
    data : pd.DataFrame
        PSM- or peptide-level channel table
    channels : List[str]
        Reporter channel columns
    method : str
        'median' or 'mean'

    Returns:
    --------
    pd.DataFrame : Protein-level channel table with columns Run, Protein, channels
    """
    print(f"Summarizing with {method} (PSM -> peptide -> protein)...")

    if "Peptide" in data.columns:
        peptide_level = aggregate_channel_table(
            data, channels, ["Run", "Protein", "Peptide"], method
        )
        print(f"  {len(data)} rows -> {len(peptide_level)} peptides")
    else:
        peptide_level = data

    protein_level = aggregate_channel_table(peptide_level, channels, ["Run", "Protein"], method)
    print(f"✓ {len(protein_level)} run/protein rows")

    return protein_level


def count_measurements(data: pd.DataFrame) -> pd.DataFrame:
    """Number of PSMs and distinct peptides behind each (Run, Protein)."""
    grouped = data.groupby(["Run", "Protein"], sort=True)
    counts = pd.DataFrame(
        {
            "n_psms": grouped.size(),
            "n_peptides": grouped["Peptide"].nunique(),
        }
    )
    return counts.reset_index()
