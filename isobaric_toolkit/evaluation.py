"""
Evaluation Module for the Isobaric Workflow Toolkit

Scoring of DEA results against a known set of spiked proteins, plus
precision and fold-change accuracy summaries used to compare workflow
variants.
"""

import pandas as pd
import numpy as np
from typing import Dict, Iterable, List, Optional
from sklearn.metrics import confusion_matrix, roc_auc_score

from .statistical_analysis import contrast_column, get_result_contrasts


def _safe_ratio(numerator, denominator):
    return numerator / denominator if denominator > 0 else np.nan


def confusion_matrix_by_contrast(
    results_df: pd.DataFrame,
    spiked_proteins: Iterable[str],
    q_value_threshold: float = 0.05,
) -> pd.DataFrame:
    """
    2x2 confusion counts per contrast.

    A protein is called significant when its adjusted p-value is below the
    threshold; a missing adjusted p-value counts as not significant. The
    truth label is membership in the spiked-protein set.

    Parameters:
    -----------
    results_df : pd.DataFrame
        DEA result table indexed by protein
    spiked_proteins : iterable of str
        Ground-truth set of differentially abundant proteins
    q_value_threshold : float
        Significance threshold on adjusted p-values

    Returns:
    --------
    pd.DataFrame : One row per contrast with TP, FP, TN, FN
    """
    spiked = set(map(str, spiked_proteins))
    truth = np.array([str(protein) in spiked for protein in results_df.index], dtype=bool)

    rows = []
    for contrast in get_result_contrasts(results_df):
        q_values = results_df[contrast_column("adj.P.Val", contrast)].to_numpy(dtype=float)
        # NaN < threshold is False, so missing results count as not significant
        called = np.nan_to_num(q_values, nan=np.inf) < q_value_threshold

        tn, fp, fn, tp = confusion_matrix(truth, called, labels=[False, True]).ravel()
        rows.append({"contrast": contrast, "TP": int(tp), "FP": int(fp), "TN": int(tn), "FN": int(fn)})

    return pd.DataFrame(rows, columns=["contrast", "TP", "FP", "TN", "FN"])


def compute_classification_metrics(tp: int, fp: int, tn: int, fn: int) -> Dict[str, float]:
    """
    Accuracy, sensitivity, specificity, PPV and NPV from confusion counts.

    Any metric whose denominator is zero is NaN.
    """
    total = tp + fp + tn + fn
    return {
        "accuracy": _safe_ratio(tp + tn, total),
        "sensitivity": _safe_ratio(tp, tp + fn),
        "specificity": _safe_ratio(tn, tn + fp),
        "ppv": _safe_ratio(tp, tp + fp),
        "npv": _safe_ratio(tn, tn + fn),
    }


def score_variants(
    results_by_variant: Dict[str, pd.DataFrame],
    spiked_proteins: Iterable[str],
    q_value_threshold: float = 0.05,
) -> pd.DataFrame:
    """
    Score every workflow variant against the spiked-protein set.

    Returns a tidy table with one row per (variant, contrast): confusion
    counts, classification metrics and, where both classes are present and
    p-values are available, the ROC AUC of -log10 p.

    Parameters:
    -----------
    results_by_variant : dict
        Mapping of variant name to DEA result table
    spiked_proteins : iterable of str
        Ground-truth spiked proteins
    q_value_threshold : float
        Significance threshold on adjusted p-values

    Returns:
    --------
    pd.DataFrame : Scores per variant and contrast
    """
    spiked = set(map(str, spiked_proteins))
    rows = []

    for variant_name, results_df in results_by_variant.items():
        counts = confusion_matrix_by_contrast(results_df, spiked, q_value_threshold)
        truth = np.array([str(protein) in spiked for protein in results_df.index], dtype=bool)

        for _, count_row in counts.iterrows():
            contrast = count_row["contrast"]
            metrics = compute_classification_metrics(
                count_row["TP"], count_row["FP"], count_row["TN"], count_row["FN"]
            )

            p_values = results_df[contrast_column("P.Value", contrast)].to_numpy(dtype=float)
            valid = ~np.isnan(p_values)
            auc = np.nan
            if valid.any() and len(np.unique(truth[valid])) == 2:
                scores = -np.log10(np.clip(p_values[valid], 1e-300, 1.0))
                auc = roc_auc_score(truth[valid], scores)

            rows.append(
                {
                    "variant": variant_name,
                    "contrast": contrast,
                    **count_row.drop("contrast").to_dict(),
                    **metrics,
                    "roc_auc": auc,
                    "n_tested": int(valid.sum()),
                }
            )

    return pd.DataFrame(rows)


def display_scores(scores_df: pd.DataFrame) -> None:
    """Print a per-variant comparison of confusion counts and metrics"""
    if scores_df is None or len(scores_df) == 0:
        print("No scores to display")
        return

    print("=" * 60)
    print("WORKFLOW VARIANT COMPARISON")
    print("=" * 60)

    display_cols = ["variant", "contrast", "TP", "FP", "TN", "FN", "sensitivity", "ppv", "roc_auc"]
    print(scores_df[display_cols].to_string(index=False, float_format=lambda v: f"{v:.3f}"))


def compute_cv_by_condition(
    protein_matrix: pd.DataFrame,
    sample_design: pd.DataFrame,
    scale: str = "log2",
) -> pd.DataFrame:
    """
    Coefficient of variation (%) of each protein within each condition.

    Log-scale values are converted back to intensities first, since a CV of
    log values has no meaning.

    Parameters:
    -----------
    protein_matrix : pd.DataFrame
        Protein x sample matrix
    sample_design : pd.DataFrame
        Design with Sample and Condition columns
    scale : str
        Scale of the matrix values ('log2' or 'raw')

    Returns:
    --------
    pd.DataFrame : Protein x condition CV table (percent)
    """
    values = 2 ** protein_matrix if scale == "log2" else protein_matrix
    design = sample_design.drop_duplicates("Sample").set_index("Sample")

    cvs = {}
    for condition, samples in design.groupby("Condition").groups.items():
        samples = [s for s in samples if s in values.columns]
        if len(samples) < 2:  # Need at least 2 samples to calculate CV
            continue
        group = values[samples]
        cvs[condition] = (
            group.std(axis=1) / group.mean(axis=1) * 100
        ).replace([np.inf, -np.inf], np.nan)

    return pd.DataFrame(cvs, index=protein_matrix.index)


def _condition_value(condition) -> Optional[float]:
    try:
        return float(condition)
    except (TypeError, ValueError):
        return None


def fold_change_accuracy(
    results_df: pd.DataFrame,
    spiked_proteins: Iterable[str],
    reference_condition: str,
) -> pd.DataFrame:
    """
    Compare spiked proteins' estimated log2 fold changes to the expected ratio.

    Only meaningful when condition labels are spike-in concentrations: the
    expected logFC of contrast c is log2(c / reference). Contrasts with
    non-numeric labels, and results without fold changes, are skipped.

    Returns:
    --------
    pd.DataFrame : One row per contrast with expected logFC, mean estimate,
    bias and RMSE over spiked proteins
    """
    spiked = [p for p in results_df.index if str(p) in set(map(str, spiked_proteins))]
    reference_value = _condition_value(reference_condition)

    columns = ["contrast", "expected_logFC", "mean_logFC", "bias", "rmse", "n_proteins"]
    rows: List[Dict] = []
    if reference_value is None or reference_value <= 0 or not spiked:
        return pd.DataFrame(rows, columns=columns)

    for contrast in get_result_contrasts(results_df):
        contrast_value = _condition_value(contrast)
        if contrast_value is None or contrast_value <= 0:
            continue

        estimates = results_df.loc[spiked, contrast_column("logFC", contrast)].dropna()
        if len(estimates) == 0:
            continue

        expected = np.log2(contrast_value / reference_value)
        errors = estimates - expected
        rows.append(
            {
                "contrast": contrast,
                "expected_logFC": expected,
                "mean_logFC": estimates.mean(),
                "bias": errors.mean(),
                "rmse": float(np.sqrt(np.mean(errors ** 2))),
                "n_proteins": len(estimates),
            }
        )

    return pd.DataFrame(rows, columns=columns)
