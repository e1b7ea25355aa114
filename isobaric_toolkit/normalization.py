"""
Data Normalization Module for the Isobaric Workflow Toolkit

Functions for removing systematic per-channel and per-run bias from channel
tables. All functions return a new table of the same shape as their input;
normalization is applied independently per run unless stated otherwise.
"""

import warnings
import pandas as pd
import numpy as np
from typing import Dict, Any, List, Optional, Tuple
from statsmodels.formula.api import mixedlm

from .validation import ConvergenceError, RankDeficiencyError


def get_normalization_characteristics() -> Dict[str, Dict[str, Any]]:
    """
    Get characteristics of each normalization method.

    Returns:
    --------
    Dict[str, Dict[str, Any]]
        Dictionary with normalization method characteristics
    """
    return {
        "median_sweep": {
            "input_scale": "any",
            "log_scale_output": False,
            "description": "Median sweeping - subtract (log) or divide (raw) row and column medians",
        },
        "constand": {
            "input_scale": "raw",
            "log_scale_output": False,
            "description": "CONSTANd - iterative proportional fitting of row and column means",
        },
        "nomad": {
            "input_scale": "log2",
            "log_scale_output": True,
            "description": "NOMAD - ANOVA removal of run and run:channel effects",
        },
        "mixed_model": {
            "input_scale": "log2",
            "log_scale_output": True,
            "description": "Mixed-model residuals (REML) plus intercept",
        },
        "none": {
            "input_scale": "any",
            "log_scale_output": False,
            "description": "No normalization applied",
        },
    }


def is_normalization_log_scale(normalization_method: str) -> bool:
    """
    Check if a normalization method always produces log-scale values.

    Unknown methods are assumed to preserve the input scale.
    """
    characteristics = get_normalization_characteristics()
    method_lower = normalization_method.lower()

    if method_lower in characteristics:
        return characteristics[method_lower]["log_scale_output"]
    return False


def _sweep_mode(scale: str) -> str:
    if scale in ("log2", "additive"):
        return "additive"
    if scale in ("raw", "multiplicative"):
        return "multiplicative"
    raise ValueError(
        f"Unknown sweep scale: {scale}. Use 'log2'/'additive' or 'raw'/'multiplicative'"
    )


def median_sweep(
    data: pd.DataFrame,
    channels: List[str],
    axis: str = "both",
    scale: str = "log2",
) -> pd.DataFrame:
    """
    Median sweeping - remove row and/or column medians per run.

    On the log scale medians are subtracted (additive sweep), on the raw
    scale values are divided by them (multiplicative sweep). Rows are swept
    by their median across channels, columns by their median across the rows
    of the same run. With axis='both' rows are swept first, then columns.

    Parameters:
    -----------
    data : pd.DataFrame
        Channel table (must contain a Run column)
    channels : List[str]
        Reporter channel columns
    axis : str
        'rows', 'columns' or 'both'
    scale : str
        'log2'/'additive' or 'raw'/'multiplicative'

    Returns:
    --------
    pd.DataFrame : Swept channel table with the same structure as input
    """
    if axis not in ("rows", "columns", "both"):
        raise ValueError(f"axis must be 'rows', 'columns' or 'both', got '{axis}'")
    mode = _sweep_mode(scale)

    print(f"Applying {mode} median sweeping ({axis})...")

    result = data.copy()
    values = result[channels].astype(float)

    for run, index in result.groupby("Run", sort=False).groups.items():
        block = values.loc[index]

        if axis in ("rows", "both"):
            row_medians = block.median(axis=1, skipna=True)
            if mode == "additive":
                block = block.sub(row_medians, axis=0)
            else:
                block = block.div(row_medians, axis=0)

        if axis in ("columns", "both"):
            column_medians = block.median(axis=0, skipna=True)
            if mode == "additive":
                block = block.sub(column_medians, axis=1)
            else:
                block = block.div(column_medians, axis=1)

        values.loc[index] = block

    result[channels] = values
    print(f"Median sweeping completed for {result['Run'].nunique()} runs")

    return result


def run_column_medians(data: pd.DataFrame, channels: List[str]) -> pd.DataFrame:
    """Per-run channel medians (index Run, one column per channel)"""
    return data.groupby("Run", sort=False)[list(channels)].median()


def sweep_columns(
    data: pd.DataFrame,
    channels: List[str],
    column_medians: pd.DataFrame,
    scale: str = "log2",
) -> pd.DataFrame:
    """
    Remove given per-run channel medians from a channel table.

    Lets column medians estimated on one table (e.g. protein level) be
    removed from another table of the same runs (e.g. PSM level).
    """
    mode = _sweep_mode(scale)
    result = data.copy()
    offsets = column_medians.reindex(result["Run"]).to_numpy(dtype=float)
    values = result[channels].to_numpy(dtype=float)

    result[channels] = values - offsets if mode == "additive" else values / offsets
    return result


def constand_normalize(
    data: pd.DataFrame,
    channels: List[str],
    max_iterations: int = 50,
    tolerance: float = 1e-5,
    target: float = 1.0,
) -> pd.DataFrame:
    """
    CONSTANd - iterative proportional fitting of a raw-scale intensity matrix.

    Per run, rows and columns are alternately rescaled until all row means
    and all column means equal the target. Row sums are then all equal
    (number of channels x target) and column sums are all equal (number of
    rows x target). Convergence is measured after each row step as half the
    L1 distance between the column means and the target.

    Parameters:
    -----------
    data : pd.DataFrame
        Raw-scale channel table (must contain a Run column)
    channels : List[str]
        Reporter channel columns
    max_iterations : int
        Iteration cap per run
    tolerance : float
        Convergence threshold on the column-mean deviation
    target : float
        Value the row and column means are fitted to

    Returns:
    --------
    pd.DataFrame : Normalized channel table

    Raises:
    -------
    ConvergenceError: If a run does not converge within max_iterations
    ValueError: If the data contain negative intensities or a run has a
        channel without any positive intensity
    """
    print("Starting CONSTANd normalization...")

    result = data.copy()
    values = result[channels].to_numpy(dtype=float, copy=True)

    if np.nanmin(values) < 0:
        raise ValueError("CONSTANd requires raw-scale (non-negative) intensities")

    for run, positions in result.groupby("Run", sort=False).indices.items():
        matrix = values[positions]

        # Rows without any positive intensity cannot be scaled
        usable = np.nansum(matrix, axis=1) > 0
        if not usable.all():
            print(f"  Run {run}: {(~usable).sum()} rows without signal set to missing")
        block = matrix[usable]

        empty_channels = [
            channel
            for channel, has_signal in zip(channels, np.nansum(block, axis=0) > 0)
            if not has_signal
        ]
        if empty_channels:
            raise ValueError(
                f"CONSTANd cannot scale run {run}: channels {empty_channels} have no "
                "positive intensity"
            )

        converged = False
        deviation = np.inf
        for iteration in range(1, max_iterations + 1):
            row_means = np.nanmean(block, axis=1)
            block = block / row_means[:, None] * target

            column_means = np.nanmean(block, axis=0)
            deviation = np.nansum(np.abs(column_means - target)) / 2
            if deviation < tolerance:
                converged = True
                break

            block = block / column_means[None, :] * target

        if not converged:
            raise ConvergenceError(
                f"CONSTANd did not converge for run {run} after {max_iterations} "
                f"iterations (deviation {deviation:.2e} > tolerance {tolerance:.0e})",
                n_iterations=max_iterations,
                deviation=deviation,
            )

        normalized = np.full_like(matrix, np.nan)
        normalized[usable] = block
        values[positions] = normalized
        print(f"  Run {run}: converged after {iteration} iterations")

    result[channels] = values
    print(f"CONSTANd normalization completed for {result['Run'].nunique()} runs")

    return result


def _flatten_channel_table(
    data: pd.DataFrame, channels: List[str]
) -> Tuple[np.ndarray, pd.DataFrame]:
    """
    Flatten a channel table row-major into one value per row x channel.

    Returns the value vector and a frame of per-value keys.
    """
    n_channels = len(channels)
    values = data[channels].to_numpy(dtype=float).ravel()
    keys = pd.DataFrame(
        {
            "Run": np.repeat(data["Run"].astype(str).to_numpy(), n_channels),
            "Channel": np.tile(np.asarray(channels, dtype=str), len(data)),
            "Protein": np.repeat(data["Protein"].astype(str).to_numpy(), n_channels),
            "Peptide": np.repeat(data["Peptide"].astype(str).to_numpy(), n_channels),
        }
    )
    return values, keys


def nomad_normalize(
    data: pd.DataFrame,
    channels: List[str],
    max_iterations: int = 100,
    tolerance: float = 1e-8,
) -> pd.DataFrame:
    """
    NOMAD-style ANOVA normalization of log-scale values.

    The additive model

        y = mu + peptide + run + run:channel + error

    is fitted by backfitting group means (one factor at a time until the
    effect estimates settle). Run and run:channel effects are technical and
    are removed; the peptide effect and the residual stay in the data.

    Parameters:
    -----------
    data : pd.DataFrame
        Log-scale channel table
    channels : List[str]
        Reporter channel columns
    max_iterations : int
        Backfitting iteration cap
    tolerance : float
        Largest allowed change of any effect between iterations

    Returns:
    --------
    pd.DataFrame : Normalized channel table

    Raises:
    -------
    ConvergenceError: If backfitting does not settle within max_iterations
    """
    print("Starting NOMAD normalization...")

    values, keys = _flatten_channel_table(data, channels)
    observed = ~np.isnan(values)

    factor_keys = {
        "peptide": (keys["Protein"] + "|" + keys["Peptide"])[observed].to_numpy(),
        "run": keys["Run"][observed].to_numpy(),
        "run_channel": (keys["Run"] + "|" + keys["Channel"])[observed].to_numpy(),
    }

    y = values[observed]
    residual = y - y.mean()
    effects = {name: np.zeros_like(y) for name in factor_keys}

    converged = False
    for iteration in range(1, max_iterations + 1):
        max_change = 0.0
        for name, key in factor_keys.items():
            partial = residual + effects[name]
            updated = pd.Series(partial).groupby(key).transform("mean").to_numpy()
            max_change = max(max_change, float(np.max(np.abs(updated - effects[name]))))
            effects[name] = updated
            residual = partial - updated
        if max_change < tolerance:
            converged = True
            break

    if not converged:
        raise ConvergenceError(
            f"NOMAD backfitting did not converge after {max_iterations} iterations "
            f"(largest effect change {max_change:.2e})",
            n_iterations=max_iterations,
            deviation=max_change,
        )

    normalized = np.full_like(values, np.nan)
    normalized[observed] = y - effects["run"] - effects["run_channel"]

    result = data.copy()
    result[channels] = normalized.reshape(len(data), len(channels))
    print(f"NOMAD normalization converged after {iteration} iterations")

    return result


def _random_effect_structure(
    keys: pd.DataFrame, random_effect: str
) -> Tuple[pd.Series, Optional[Dict[str, str]]]:
    """Return the grouping series and variance-component formula for mixedlm."""
    peptide = keys["Protein"] + "|" + keys["Peptide"]

    if random_effect == "protein":
        return keys["Protein"], None
    if random_effect == "protein:run":
        return keys["Protein"] + "|" + keys["Run"], None
    if random_effect == "peptide":
        return peptide, None
    if random_effect == "peptide:run":
        return peptide + "|" + keys["Run"], None
    if random_effect == "protein+peptide":
        return keys["Protein"], {"Peptide": "0 + C(PeptideKey)"}

    raise ValueError(
        f"Unknown random effect: {random_effect}. Use 'protein', 'protein:run', "
        "'peptide', 'peptide:run' or 'protein+peptide'"
    )


def mixed_model_normalize(
    data: pd.DataFrame, channels: List[str], random_effect: str = "protein"
) -> pd.DataFrame:
    """
    Normalize by mixed-model residualization of log-scale values.

    Fits, by restricted maximum likelihood,

        Value ~ Run + Channel-within-Run + (1 | random effect)

    and returns residuals plus the intercept as normalized values. The
    random-effect variants are 'protein', 'protein:run', 'peptide',
    'peptide:run' and 'protein+peptide' (protein intercept with a peptide
    variance component).

    Parameters:
    -----------
    data : pd.DataFrame
        Log-scale channel table
    channels : List[str]
        Reporter channel columns
    random_effect : str
        Random-effect specification

    Returns:
    --------
    pd.DataFrame : Normalized channel table

    Raises:
    -------
    RankDeficiencyError: If run/channel fixed effects are not estimable
    ConvergenceError: If no optimizer can fit the model
    """
    print("Starting mixed-model normalization...")

    values, keys = _flatten_channel_table(data, channels)
    observed = ~np.isnan(values)

    model_data = keys[observed].reset_index(drop=True)
    model_data["Value"] = values[observed]
    model_data["PeptideKey"] = model_data["Protein"] + "|" + model_data["Peptide"]

    if model_data["Run"].nunique() > 1:
        formula = "Value ~ C(Run) + C(Run):C(Channel)"
    else:
        formula = "Value ~ C(Channel)"

    groups, vc_formula = _random_effect_structure(model_data, random_effect)
    print(f"  Model: {formula} + (1|{random_effect})")

    model = mixedlm(formula, model_data, groups=groups, vc_formula=vc_formula)

    exog = model.exog
    rank = np.linalg.matrix_rank(exog)
    if rank < exog.shape[1]:
        raise RankDeficiencyError(
            f"Fixed-effect design is rank deficient (rank {rank} < {exog.shape[1]} columns); "
            "check for channels missing from a run"
        )

    fitted_model = None
    with warnings.catch_warnings():
        warnings.filterwarnings("ignore", category=UserWarning)
        warnings.filterwarnings("ignore", category=RuntimeWarning)
        warnings.filterwarnings("ignore", message=".*convergence.*")

        for method in ["lbfgs", "bfgs", "nm", "powell"]:
            try:
                fitted_model = model.fit(reml=True, method=method)
                break
            except (ValueError, RuntimeError, np.linalg.LinAlgError):
                continue

    if fitted_model is None:
        raise ConvergenceError("Mixed-model normalization failed with all optimizers")

    normalized = np.full_like(values, np.nan)
    normalized[observed] = (
        np.asarray(fitted_model.resid) + fitted_model.fe_params["Intercept"]
    )

    result = data.copy()
    result[channels] = normalized.reshape(len(data), len(channels))
    print(f"Mixed-model normalization completed ({int(observed.sum())} values)")

    return result


def calculate_normalization_stats(
    original: pd.DataFrame, normalized: pd.DataFrame, channels: List[str]
) -> pd.DataFrame:
    """
    Compare per-run channel medians and spreads before and after normalization.

    Returns one row per (Run, Channel) with the median and IQR of both tables.
    """
    rows = []
    for run in original["Run"].unique():
        before = original.loc[original["Run"] == run, channels]
        after = normalized.loc[normalized["Run"] == run, channels]
        for channel in channels:
            rows.append(
                {
                    "Run": run,
                    "Channel": channel,
                    "median_before": before[channel].median(),
                    "median_after": after[channel].median(),
                    "iqr_before": before[channel].quantile(0.75) - before[channel].quantile(0.25),
                    "iqr_after": after[channel].quantile(0.75) - after[channel].quantile(0.25),
                }
            )
    return pd.DataFrame(rows)
