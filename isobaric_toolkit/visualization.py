"""
Visualization Module for the Isobaric Workflow Toolkit

Static figures comparing the DEA results of workflow variants.
"""

import pandas as pd
import numpy as np
import matplotlib.pyplot as plt
import seaborn as sns
from typing import Dict, Iterable, Optional, Tuple
from sklearn.decomposition import PCA
from sklearn.preprocessing import StandardScaler

from .statistical_analysis import contrast_column, get_result_contrasts


def _resolve_contrast(results_df: pd.DataFrame, contrast: Optional[str]) -> Optional[str]:
    contrasts = get_result_contrasts(results_df)
    if contrast is None:
        return contrasts[0] if contrasts else None
    return str(contrast) if str(contrast) in contrasts else None


def _has_fold_change(results_df: pd.DataFrame, contrast: str) -> bool:
    column = contrast_column("logFC", contrast)
    return column in results_df.columns and results_df[column].notna().any()


def _grid(n_panels: int, panel_size: Tuple[float, float] = (5, 4)):
    n_cols = min(n_panels, 3)
    n_rows = int(np.ceil(n_panels / n_cols))
    fig, axes = plt.subplots(
        n_rows,
        n_cols,
        figsize=(panel_size[0] * n_cols, panel_size[1] * n_rows),
        squeeze=False,
    )
    # Hide unused panels
    for ax in axes.flat[n_panels:]:
        ax.set_visible(False)
    return fig, axes.flat


def plot_volcano_comparison(
    results_by_variant: Dict[str, pd.DataFrame],
    contrast: Optional[str] = None,
    spiked_proteins: Optional[Iterable[str]] = None,
    q_value_threshold: float = 0.05,
) -> None:
    """
    Volcano plots of one contrast, one panel per workflow variant.

    Spiked proteins are highlighted in red. Variants without fold changes
    (rank-based tests) are drawn against their test statistic instead.

    Parameters:
    -----------
    results_by_variant : dict
        Mapping of variant name to DEA result table
    contrast : str, optional
        Contrast to show. Defaults to each table's first contrast
    spiked_proteins : iterable of str, optional
        Proteins to highlight
    q_value_threshold : float
        Significance threshold drawn as a horizontal line
    """
    if not results_by_variant:
        print("No data to plot")
        return

    spiked = set(map(str, spiked_proteins or []))
    fig, axes = _grid(len(results_by_variant))

    for ax, (variant_name, results_df) in zip(axes, results_by_variant.items()):
        shown = _resolve_contrast(results_df, contrast)
        if shown is None:
            ax.set_title(f"{variant_name}\n(contrast not available)")
            continue

        p_values = results_df[contrast_column("P.Value", shown)]
        neg_log10_p = -np.log10(p_values.clip(lower=1e-300))

        if _has_fold_change(results_df, shown):
            x_values = results_df[contrast_column("logFC", shown)]
            x_label = "Log2 Fold Change"
        else:
            x_values = results_df[contrast_column("t", shown)]
            x_label = "Test statistic (no fold change)"

        is_spiked = np.array([str(p) in spiked for p in results_df.index], dtype=bool)
        ax.scatter(x_values[~is_spiked], neg_log10_p[~is_spiked], c="gray", alpha=0.5, s=15, label="Background")
        if is_spiked.any():
            ax.scatter(x_values[is_spiked], neg_log10_p[is_spiked], c="red", alpha=0.8, s=20, label="Spiked")

        significant = results_df[contrast_column("adj.P.Val", shown)] < q_value_threshold
        if significant.any():
            # P-value at the significance boundary
            boundary = p_values[significant].max()
            ax.axhline(y=-np.log10(boundary), color="black", linestyle="--", alpha=0.5)

        ax.set_title(f"{variant_name} ({shown})")
        ax.set_xlabel(x_label)
        ax.set_ylabel("-Log10 P-value")
        ax.spines["top"].set_visible(False)
        ax.spines["right"].set_visible(False)
        ax.grid(True, alpha=0.3)
        ax.legend(loc="upper left", fontsize=8)

    plt.tight_layout()
    plt.show()


def _fold_change_long_table(
    results_by_variant: Dict[str, pd.DataFrame],
    contrast: Optional[str],
    spiked: set,
) -> pd.DataFrame:
    frames = []
    for variant_name, results_df in results_by_variant.items():
        shown = _resolve_contrast(results_df, contrast)
        if shown is None or not _has_fold_change(results_df, shown):
            print(f"  {variant_name}: no fold changes, skipped")
            continue
        frames.append(
            pd.DataFrame(
                {
                    "variant": variant_name,
                    "logFC": results_df[contrast_column("logFC", shown)].to_numpy(),
                    "Protein set": [
                        "Spiked" if str(p) in spiked else "Background" for p in results_df.index
                    ],
                }
            )
        )
    if not frames:
        return pd.DataFrame(columns=["variant", "logFC", "Protein set"])
    return pd.concat(frames, ignore_index=True).dropna(subset=["logFC"])


def plot_fold_change_violin(
    results_by_variant: Dict[str, pd.DataFrame],
    contrast: Optional[str] = None,
    spiked_proteins: Optional[Iterable[str]] = None,
    expected_log_fc: Optional[float] = None,
    figsize: Tuple[int, int] = (12, 6),
) -> None:
    """
    Violin plots of estimated log2 fold changes per variant, split by spiked
    versus background proteins.
    """
    spiked = set(map(str, spiked_proteins or []))
    long_data = _fold_change_long_table(results_by_variant, contrast, spiked)

    if len(long_data) == 0:
        print("No fold changes to plot")
        return

    fig, ax = plt.subplots(figsize=figsize)
    sns.violinplot(data=long_data, x="variant", y="logFC", hue="Protein set", cut=0, ax=ax)

    ax.axhline(y=0, color="black", linestyle="-", alpha=0.5)
    if expected_log_fc is not None:
        ax.axhline(y=expected_log_fc, color="red", linestyle="--", alpha=0.7, label="Expected")

    ax.set_xlabel("Workflow variant")
    ax.set_ylabel("Log2 Fold Change")
    ax.set_title(f"Fold change distributions{f' ({contrast})' if contrast else ''}")
    ax.tick_params(axis="x", rotation=45)
    ax.grid(True, alpha=0.3, axis="y")

    plt.tight_layout()
    plt.show()


def plot_fold_change_scatter(
    results_first: pd.DataFrame,
    results_second: pd.DataFrame,
    name_first: str = "Variant 1",
    name_second: str = "Variant 2",
    contrast: Optional[str] = None,
    spiked_proteins: Optional[Iterable[str]] = None,
    figsize: Tuple[int, int] = (7, 7),
) -> None:
    """
    Scatter of the fold changes two variants estimate for the same proteins.
    """
    first = _resolve_contrast(results_first, contrast)
    second = _resolve_contrast(results_second, contrast)

    if first is None or second is None:
        print("Contrast not available in both result tables")
        return
    if not (_has_fold_change(results_first, first) and _has_fold_change(results_second, second)):
        print("Fold-change scatter needs fold changes from both variants (rank tests have none)")
        return

    merged = pd.concat(
        [
            results_first[contrast_column("logFC", first)].rename("first"),
            results_second[contrast_column("logFC", second)].rename("second"),
        ],
        axis=1,
        join="inner",
    ).dropna()

    if len(merged) == 0:
        print("No shared proteins with fold changes")
        return

    spiked = set(map(str, spiked_proteins or []))
    is_spiked = np.array([str(p) in spiked for p in merged.index], dtype=bool)

    fig, ax = plt.subplots(figsize=figsize)
    ax.scatter(merged.loc[~is_spiked, "first"], merged.loc[~is_spiked, "second"], c="gray", alpha=0.5, s=15, label="Background")
    if is_spiked.any():
        ax.scatter(merged.loc[is_spiked, "first"], merged.loc[is_spiked, "second"], c="red", alpha=0.8, s=20, label="Spiked")

    limits = [merged.min().min(), merged.max().max()]
    ax.plot(limits, limits, color="black", linestyle="--", alpha=0.5)

    correlation = merged["first"].corr(merged["second"])
    ax.set_xlabel(f"{name_first} Log2 Fold Change")
    ax.set_ylabel(f"{name_second} Log2 Fold Change")
    ax.set_title(f"{name_first} vs {name_second} (r = {correlation:.3f})")
    ax.legend()
    ax.grid(True, alpha=0.3)

    plt.tight_layout()
    plt.show()

    print(f"Fold-change correlation ({len(merged)} proteins): {correlation:.3f}")


def plot_pvalue_histograms(
    results_by_variant: Dict[str, pd.DataFrame],
    contrast: Optional[str] = None,
    bins: int = 20,
) -> None:
    """P-value histograms, one panel per variant"""
    if not results_by_variant:
        print("No data to plot")
        return

    fig, axes = _grid(len(results_by_variant), panel_size=(4, 3))
    for ax, (variant_name, results_df) in zip(axes, results_by_variant.items()):
        shown = _resolve_contrast(results_df, contrast)
        if shown is None:
            ax.set_title(f"{variant_name}\n(contrast not available)")
            continue
        p_values = results_df[contrast_column("P.Value", shown)].dropna()
        ax.hist(p_values, bins=bins, range=(0, 1), color="steelblue", edgecolor="black", alpha=0.7)
        ax.set_title(f"{variant_name} ({shown})")
        ax.set_xlabel("P-value")
        ax.set_ylabel("Proteins")

    plt.tight_layout()
    plt.show()


def plot_pca(
    protein_matrix: pd.DataFrame,
    sample_design: pd.DataFrame,
    color_by: str = "Condition",
    figsize: Tuple[int, int] = (10, 8),
) -> None:
    """
    PCA of samples from a protein x sample matrix.

    Proteins with any missing value are left out. Points are colored by a
    design column (Condition or Run).
    """
    complete_data = protein_matrix.dropna()

    if len(complete_data) < 2:
        print("No complete data available for PCA")
        return

    # Samples as rows
    scaled_data = StandardScaler().fit_transform(complete_data.T)
    pca = PCA(n_components=2)
    pca_result = pca.fit_transform(scaled_data)

    design = sample_design.drop_duplicates("Sample").set_index("Sample")
    groups = [
        str(design.loc[sample, color_by]) if sample in design.index else "Unknown"
        for sample in complete_data.columns
    ]
    unique_groups = list(dict.fromkeys(groups))
    colors = sns.color_palette("tab10", n_colors=len(unique_groups))

    fig, ax = plt.subplots(figsize=figsize)
    for color, group in zip(colors, unique_groups):
        group_indices = [i for i, g in enumerate(groups) if g == group]
        ax.scatter(
            pca_result[group_indices, 0],
            pca_result[group_indices, 1],
            color=color,
            label=group,
            alpha=0.7,
            s=100,
            edgecolors="black",
            linewidth=0.5,
        )

    ax.set_xlabel(f"PC1 ({pca.explained_variance_ratio_[0]:.1%} variance)")
    ax.set_ylabel(f"PC2 ({pca.explained_variance_ratio_[1]:.1%} variance)")
    ax.set_title(f"Principal Component Analysis (by {color_by})")
    ax.legend()
    ax.grid(True, alpha=0.3)

    plt.tight_layout()
    plt.show()

    print("PCA summary:")
    print(f"PC1 explains {pca.explained_variance_ratio_[0]:.1%} of variance")
    print(f"PC2 explains {pca.explained_variance_ratio_[1]:.1%} of variance")


def plot_cv_distribution(
    cv_table: pd.DataFrame,
    title: str = "Within-condition CV",
    figsize: Tuple[int, int] = (10, 6),
) -> None:
    """
    Box plots of per-protein coefficients of variation for each condition.

    Parameters:
    -----------
    cv_table : pd.DataFrame
        Protein x condition CV table from compute_cv_by_condition()
    """
    long_data = cv_table.melt(var_name="Condition", value_name="CV").dropna()

    if len(long_data) == 0:
        print("No CV values to plot")
        return

    fig, ax = plt.subplots(figsize=figsize)
    sns.boxplot(data=long_data, x="Condition", y="CV", ax=ax, color="lightsteelblue")

    ax.set_ylabel("CV (%)")
    ax.set_title(title)
    ax.grid(True, alpha=0.3, axis="y")

    plt.tight_layout()
    plt.show()

    print("Median CV by condition:")
    for condition, median_cv in long_data.groupby("Condition")["CV"].median().items():
        print(f"  {condition}: {median_cv:.1f}%")
