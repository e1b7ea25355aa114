"""
Statistical Analysis Module for the Isobaric Workflow Toolkit

Differential expression of proteins between each condition and a reference
condition. Every test returns a result table indexed by protein with, for
each non-reference condition c, the columns

    logFC_c, t_c, P.Value_c, adj.P.Val_c

where adj.P.Val_c is the Benjamini-Hochberg adjustment of P.Value_c within
that contrast. Rank-based tests have no fold change and store NaN in logFC_c.
The t_c column holds each test's own statistic (moderated t, Mann-Whitney
U, mean difference, ROTS d, or the mixed-model t/z value).
"""

import itertools
import warnings
import pandas as pd
import numpy as np
from math import comb
from scipy import special
from scipy.stats import mannwhitneyu, t as t_dist
from statsmodels.formula.api import mixedlm, ols
from statsmodels.stats.multitest import multipletests

from .validation import DesignError


RESULT_FIELDS = ("logFC", "t", "P.Value", "adj.P.Val")


def contrast_column(field, contrast):
    """Name of the result column holding `field` for one contrast"""
    return f"{field}_{contrast}"


def _condition_sort_key(condition):
    try:
        return (0, float(condition), str(condition))
    except (TypeError, ValueError):
        return (1, 0.0, str(condition))


def get_contrasts(sample_design, reference):
    """
    Non-reference conditions, in numeric order where labels are numeric.

    Raises DesignError if the reference condition is not in the design.
    """
    conditions = sample_design["Condition"].astype(str).unique().tolist()
    reference = str(reference)
    if reference not in conditions:
        raise DesignError(
            f"Reference condition '{reference}' not found in design conditions {sorted(conditions)}"
        )
    contrasts = [c for c in conditions if c != reference]
    return sorted(contrasts, key=_condition_sort_key)


def get_result_contrasts(results_df):
    """Contrasts present in a DEA result table"""
    prefix = "P.Value_"
    return [col[len(prefix):] for col in results_df.columns if col.startswith(prefix)]


def _align_design(protein_matrix, sample_design):
    """Restrict the matrix to samples with a design entry; return values and conditions"""
    design = sample_design.drop_duplicates("Sample").set_index("Sample")
    samples = [s for s in protein_matrix.columns if s in design.index]

    if len(samples) < len(protein_matrix.columns):
        print(
            f"  Filtered to {len(samples)} samples with design entries "
            f"(from {len(protein_matrix.columns)} total)"
        )
    if not samples:
        raise DesignError("No protein matrix columns match the sample design")

    values = protein_matrix[samples].to_numpy(dtype=float, copy=True)
    conditions = design.loc[samples, "Condition"].astype(str).to_numpy()
    return values, conditions


def _log_fold_change(condition_mean, reference_mean, scale):
    """Log2 fold change of condition over reference on the analysis scale"""
    condition_mean = np.asarray(condition_mean, dtype=float)
    reference_mean = np.asarray(reference_mean, dtype=float)

    if scale == "log2":
        return condition_mean - reference_mean

    with np.errstate(divide="ignore", invalid="ignore"):
        ratio = condition_mean / reference_mean
        log_fc = np.log2(ratio)
    return np.where((condition_mean > 0) & (reference_mean > 0), log_fc, np.nan)


def _empty_results(index, contrasts, test_method):
    results = pd.DataFrame(index=index)
    results.index.name = "Protein"
    for contrast in contrasts:
        for field in RESULT_FIELDS:
            results[contrast_column(field, contrast)] = np.nan
    results["test_method"] = test_method
    return results


# =============================================================================
# Moderated t-test (empirical Bayes)
# =============================================================================


def _trigamma_inverse(x):
    """Solve trigamma(y) = x for y by Newton iteration"""
    if x > 1e7:
        return 1.0 / np.sqrt(x)
    if x < 1e-6:
        return 1.0 / x

    y = 0.5 + 1.0 / x
    for _ in range(50):
        tri = special.polygamma(1, y)
        dif = tri * (1.0 - tri / x) / special.polygamma(2, y)
        y = y + dif
        if -dif / y < 1e-8:
            break
    return y


def fit_f_distribution(variances, df):
    """
    Moment estimate of the prior for residual variances.

    The variances are modelled as scaled F-distributed: s2 ~ s0^2 * F(df, df0).
    Returns (df0, s0^2); df0 is infinite when the observed spread of log
    variances is no larger than expected from sampling alone.

    Parameters:
    -----------
    variances : np.ndarray
        Positive residual variances
    df : np.ndarray
        Residual degrees of freedom of each variance
    """
    variances = np.asarray(variances, dtype=float)
    df = np.broadcast_to(np.asarray(df, dtype=float), variances.shape)

    if len(variances) < 2:
        return 0.0, np.nan

    # Guard against exact zeros dominating the log scale
    variances = np.maximum(variances, 1e-5 * np.median(variances))

    z = np.log(variances)
    e = z - special.digamma(df / 2) + np.log(df / 2)
    e_mean = np.mean(e)
    e_var = np.var(e, ddof=1) - np.mean(special.polygamma(1, df / 2))

    if e_var > 0:
        df_prior = 2 * _trigamma_inverse(e_var)
        s2_prior = np.exp(e_mean + special.digamma(df_prior / 2) - np.log(df_prior / 2))
    else:
        df_prior = np.inf
        s2_prior = np.exp(e_mean)

    return df_prior, s2_prior


def squeeze_variances(variances, df, df_prior, s2_prior):
    """
    Posterior variances shrunk towards the prior.

    A fit without residual degrees of freedom carries no variance
    information of its own and gets the prior variance.
    """
    variances = np.asarray(variances, dtype=float)
    df = np.asarray(df, dtype=float)

    if df_prior == 0 or not np.isfinite(s2_prior):
        return variances.copy()

    no_residual_df = df == 0
    if np.isinf(df_prior):
        return np.where(np.isfinite(variances) | no_residual_df, s2_prior, np.nan)
    with np.errstate(invalid="ignore"):
        posterior = (df_prior * s2_prior + df * variances) / (df_prior + df)
    return np.where(no_residual_df, s2_prior, posterior)


def _fit_reference_coded_model(values, conditions, levels):
    """
    Least-squares fit of every protein against a reference-coded design.

    Column 0 of the design is the intercept (reference mean), column j the
    difference of level j from the reference.

    Returns coefficients, unscaled standard deviations, residual variances
    and residual degrees of freedom.
    """
    n_proteins = values.shape[0]
    n_levels = len(levels)

    design = np.zeros((len(conditions), n_levels))
    design[:, 0] = 1.0
    for j, level in enumerate(levels[1:], start=1):
        design[:, j] = conditions == level

    coefficients = np.full((n_proteins, n_levels), np.nan)
    stdev_unscaled = np.full((n_proteins, n_levels), np.nan)
    sigma2 = np.full(n_proteins, np.nan)
    df_residual = np.full(n_proteins, np.nan)

    observed = ~np.isnan(values)
    complete = observed.all(axis=1)

    if complete.any() and np.linalg.matrix_rank(design) == n_levels:
        xtx_inv = np.linalg.inv(design.T @ design)
        y = values[complete]
        coef = y @ design @ xtx_inv
        residuals = y - coef @ design.T
        df_res = design.shape[0] - n_levels
        coefficients[complete] = coef
        stdev_unscaled[complete] = np.sqrt(np.diag(xtx_inv))
        df_residual[complete] = df_res
        if df_res > 0:
            sigma2[complete] = np.sum(residuals ** 2, axis=1) / df_res

    for i in np.where(~complete)[0]:
        mask = observed[i]
        sub_design = design[mask]
        df_res = mask.sum() - n_levels
        if mask.sum() == 0 or np.linalg.matrix_rank(sub_design) < n_levels:
            continue
        xtx_inv = np.linalg.inv(sub_design.T @ sub_design)
        y = values[i, mask]
        coef = xtx_inv @ sub_design.T @ y
        coefficients[i] = coef
        stdev_unscaled[i] = np.sqrt(np.diag(xtx_inv))
        df_residual[i] = df_res
        if df_res > 0:
            residuals = y - sub_design @ coef
            sigma2[i] = np.sum(residuals ** 2) / df_res

    return coefficients, stdev_unscaled, sigma2, df_residual


def run_moderated_t_test(protein_matrix, sample_design, reference, scale="log2"):
    """
    Moderated t-test of every condition against the reference.

    A linear model with one coefficient per condition is fitted to each
    protein; residual variances are shrunk towards a common prior estimated
    from all proteins (empirical Bayes), and t-statistics use the posterior
    variance with the prior degrees of freedom added.

    Parameters:
    -----------
    protein_matrix : pd.DataFrame
        Protein x sample values on the analysis scale
    sample_design : pd.DataFrame
        Design with Sample and Condition columns
    reference : str
        Reference condition
    scale : str
        'log2' or 'raw'; fold changes are reported as log2 ratios either way

    Returns:
    --------
    pd.DataFrame : DEA result table
    """
    print("Running moderated t-test analysis...")

    contrasts = get_contrasts(sample_design, reference)
    values, conditions = _align_design(protein_matrix, sample_design)
    levels = [str(reference)] + contrasts

    coefficients, stdev_unscaled, sigma2, df_residual = _fit_reference_coded_model(
        values, conditions, levels
    )

    usable = np.isfinite(sigma2) & (sigma2 > 0) & (df_residual > 0)
    df_prior, s2_prior = fit_f_distribution(sigma2[usable], df_residual[usable])
    posterior = squeeze_variances(sigma2, df_residual, df_prior, s2_prior)

    df_pooled = np.nansum(df_residual[usable])
    df_total = np.minimum(df_residual + df_prior, df_pooled)

    if np.isinf(df_prior):
        print(f"  EB prior: d0=Inf (full shrinkage), s0^2={s2_prior:.6f}")
    elif df_prior > 0:
        print(f"  EB prior: d0={df_prior:.2f}, s0^2={s2_prior:.6f}")
    else:
        print("  EB prior: not estimable, using unmoderated variances")

    results = _empty_results(protein_matrix.index, contrasts, "Moderated t-test")
    results["AveExpr"] = np.nanmean(values, axis=1) if values.size else np.nan
    reference_mean = coefficients[:, 0]

    for j, contrast in enumerate(contrasts, start=1):
        with np.errstate(divide="ignore", invalid="ignore"):
            t_stat = coefficients[:, j] / (stdev_unscaled[:, j] * np.sqrt(posterior))
        p_value = 2 * t_dist.sf(np.abs(t_stat), df_total)

        results[contrast_column("logFC", contrast)] = _log_fold_change(
            reference_mean + coefficients[:, j], reference_mean, scale
        )
        results[contrast_column("t", contrast)] = t_stat
        results[contrast_column("P.Value", contrast)] = p_value

    results["df_total"] = df_total
    results = apply_multiple_testing_correction(results, contrasts)

    print(f"✓ Moderated t-test completed for {len(results)} proteins")
    return results


# =============================================================================
# Rank-based test
# =============================================================================


def run_rank_test(protein_matrix, sample_design, reference, scale="log2"):
    """
    Mann-Whitney U test of each condition against the reference.

    Rank tests are scale-free, so no fold change is reported: the logFC
    columns hold NaN.
    """
    print("Running Mann-Whitney U rank test analysis...")

    contrasts = get_contrasts(sample_design, reference)
    values, conditions = _align_design(protein_matrix, sample_design)
    reference_mask = conditions == str(reference)

    results = _empty_results(protein_matrix.index, contrasts, "Mann-Whitney U")
    n_proteins = len(protein_matrix)

    for contrast in contrasts:
        contrast_mask = conditions == contrast
        statistics = np.full(n_proteins, np.nan)
        p_values = np.full(n_proteins, np.nan)

        for i in range(n_proteins):
            group0 = values[i, reference_mask]
            group1 = values[i, contrast_mask]
            group0 = group0[~np.isnan(group0)]
            group1 = group1[~np.isnan(group1)]

            if len(group0) < 2 or len(group1) < 2:
                continue

            try:
                statistic, p_value = mannwhitneyu(group1, group0, alternative="two-sided")
            except ValueError:
                continue
            statistics[i] = statistic
            p_values[i] = p_value

        results[contrast_column("t", contrast)] = statistics
        results[contrast_column("P.Value", contrast)] = p_values

    results = apply_multiple_testing_correction(results, contrasts)

    print(f"✓ Mann-Whitney U test completed for {len(results)} proteins")
    return results


# =============================================================================
# Permutation test
# =============================================================================


def _group_mean_differences(values, labels):
    """
    Difference of group means (group 1 minus group 0) for every labeling.

    values: proteins x samples (NaN allowed); labels: labelings x samples
    boolean, True for group 1. Returns proteins x labelings.
    """
    observed = ~np.isnan(values)
    filled = np.where(observed, values, 0.0)
    labels = labels.astype(float)

    total_sum = filled.sum(axis=1, keepdims=True)
    total_count = observed.sum(axis=1, keepdims=True)

    sum1 = filled @ labels.T
    count1 = observed.astype(float) @ labels.T

    with np.errstate(divide="ignore", invalid="ignore"):
        mean1 = sum1 / count1
        mean0 = (total_sum - sum1) / (total_count - count1)
    return mean1 - mean0


def run_permutation_test(
    protein_matrix, sample_design, reference, scale="log2", n_permutations=1000, seed=42
):
    """
    Two-group permutation test of each condition against the reference.

    The statistic is the difference of condition means. When the number of
    distinct labelings does not exceed n_permutations the null distribution
    is enumerated exactly; otherwise n_permutations random relabelings are
    drawn from a generator seeded with `seed` and p = (b + 1) / (m + 1).
    """
    print("Running permutation test analysis...")

    contrasts = get_contrasts(sample_design, reference)
    values, conditions = _align_design(protein_matrix, sample_design)

    results = _empty_results(protein_matrix.index, contrasts, "Permutation test")
    rng = np.random.default_rng(seed)

    for contrast in contrasts:
        selected = (conditions == str(reference)) | (conditions == contrast)
        sub_values = values[:, selected]
        is_condition = conditions[selected] == contrast
        n_samples = len(is_condition)
        n_condition = int(is_condition.sum())

        n_labelings = comb(n_samples, n_condition)
        exact = n_labelings <= n_permutations

        if exact:
            labelings = np.zeros((n_labelings, n_samples), dtype=bool)
            for k, chosen in enumerate(itertools.combinations(range(n_samples), n_condition)):
                labelings[k, list(chosen)] = True
        else:
            labelings = np.array(
                [rng.permutation(is_condition) for _ in range(n_permutations)], dtype=bool
            )
        print(
            f"  {contrast} vs {reference}: "
            f"{'exact' if exact else 'Monte-Carlo'} null with {len(labelings)} labelings"
        )

        observed_diff = _group_mean_differences(sub_values, is_condition[None, :])[:, 0]
        null_diffs = _group_mean_differences(sub_values, labelings)

        # Tolerance keeps ties from floating-point noise in the null count
        tolerance = 1e-12 * np.maximum(1.0, np.abs(observed_diff))
        exceed = (np.abs(null_diffs) >= (np.abs(observed_diff) - tolerance)[:, None]).sum(axis=1)

        if exact:
            p_values = exceed / len(labelings)
        else:
            p_values = (exceed + 1) / (len(labelings) + 1)
        p_values = np.where(np.isfinite(observed_diff), p_values, np.nan)

        observed_data = ~np.isnan(sub_values)
        with np.errstate(invalid="ignore"):
            mean1 = np.nanmean(np.where(is_condition, sub_values, np.nan), axis=1)
            mean0 = np.nanmean(np.where(~is_condition, sub_values, np.nan), axis=1)
        mean1[~(observed_data & is_condition).any(axis=1)] = np.nan
        mean0[~(observed_data & ~is_condition).any(axis=1)] = np.nan

        results[contrast_column("logFC", contrast)] = _log_fold_change(mean1, mean0, scale)
        results[contrast_column("t", contrast)] = observed_diff
        results[contrast_column("P.Value", contrast)] = p_values

    results = apply_multiple_testing_correction(results, contrasts)

    print(f"✓ Permutation test completed for {len(results)} proteins")
    return results


# =============================================================================
# Reproducibility-optimized test statistic (ROTS)
# =============================================================================


def _difference_and_se(values, group1, group0):
    """Mean difference and its standard error for two column subsets"""
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", category=RuntimeWarning)
        x1 = values[:, group1]
        x0 = values[:, group0]
        n1 = np.sum(~np.isnan(x1), axis=1)
        n0 = np.sum(~np.isnan(x0), axis=1)
        difference = np.nanmean(x1, axis=1) - np.nanmean(x0, axis=1)
        var1 = np.nanvar(x1, axis=1, ddof=1)
        var0 = np.nanvar(x0, axis=1, ddof=1)
        se = np.sqrt(var1 / n1 + var0 / n0)
    return difference, se


def _rots_statistic(difference, se, a1, a2):
    with np.errstate(divide="ignore", invalid="ignore"):
        d = difference / (a1 + a2 * se)
    return np.where(np.isfinite(d), d, np.nan)


def _top_list_overlaps(d_first, d_second, top_sizes):
    """Fraction of shared proteins between the top-k lists of two statistics"""
    n = len(d_first)
    score_first = np.nan_to_num(np.abs(d_first), nan=-1.0)
    score_second = np.nan_to_num(np.abs(d_second), nan=-1.0)

    rank_first = np.empty(n, dtype=int)
    rank_first[np.argsort(-score_first, kind="mergesort")] = np.arange(n)
    rank_second = np.empty(n, dtype=int)
    rank_second[np.argsort(-score_second, kind="mergesort")] = np.arange(n)

    # A protein is in both top-k lists iff its worse rank is below k
    worse_rank = np.maximum(rank_first, rank_second)
    in_both = np.cumsum(np.bincount(worse_rank, minlength=n))
    return in_both[np.asarray(top_sizes) - 1] / np.asarray(top_sizes)


def run_rots_test(
    protein_matrix,
    sample_design,
    reference,
    scale="log2",
    n_bootstraps=100,
    top_k=None,
    seed=42,
):
    """
    Reproducibility-optimized test statistic of each condition against the reference.

    The statistic d = (m1 - m0) / (a1 + a2 * s) uses a1 and a2 chosen to
    maximise the reproducibility of top-ranked protein lists: for each
    candidate (a1 from quantiles of s with a2 = 1, or the fold-change
    statistic a1 = 1, a2 = 0) and top-list size k, the overlap between the
    top-k lists of paired bootstrap datasets is compared to that of paired
    label-permuted datasets. The parameters with the largest reproducibility
    Z-score are used; p-values come from the pooled permutation null.

    Parameters:
    -----------
    protein_matrix : pd.DataFrame
        Protein x sample values on the analysis scale
    sample_design : pd.DataFrame
        Design with Sample and Condition columns
    reference : str
        Reference condition
    scale : str
        'log2' or 'raw'
    n_bootstraps : int
        Number of bootstrap (and permutation) dataset pairs
    top_k : int, optional
        Largest top-list size considered. Defaults to a quarter of the proteins
    seed : int
        Seed for resampling

    Returns:
    --------
    pd.DataFrame : DEA result table (parameters in results.attrs['rots_parameters'])
    """
    print("Running ROTS analysis...")

    contrasts = get_contrasts(sample_design, reference)
    values, conditions = _align_design(protein_matrix, sample_design)
    n_proteins = values.shape[0]

    results = _empty_results(protein_matrix.index, contrasts, "ROTS")
    rng = np.random.default_rng(seed)
    parameters = {}

    max_k = top_k if top_k is not None else max(1, n_proteins // 4)
    max_k = int(min(max(max_k, 1), n_proteins))
    top_sizes = np.unique(np.linspace(1, max_k, num=min(max_k, 20)).astype(int))

    for contrast in contrasts:
        group1 = np.where(conditions == contrast)[0]
        group0 = np.where(conditions == str(reference))[0]
        pooled = np.concatenate([group1, group0])

        difference, se = _difference_and_se(values, group1, group0)
        finite_se = se[np.isfinite(se)]
        if len(finite_se) == 0:
            print(f"  {contrast} vs {reference}: no estimable standard errors, skipped")
            continue

        quantiles = np.concatenate([np.arange(0, 0.21, 0.01), np.arange(0.25, 1.0, 0.05)])
        candidates = [(float(a1), 1.0) for a1 in np.quantile(finite_se, quantiles)]
        candidates.append((1.0, 0.0))

        # Paired bootstrap datasets and paired permuted datasets
        bootstrap_pairs, null_pairs = [], []
        for _ in range(n_bootstraps):
            pair = []
            for _ in range(2):
                boot1 = rng.choice(group1, size=len(group1), replace=True)
                boot0 = rng.choice(group0, size=len(group0), replace=True)
                pair.append(_difference_and_se(values, boot1, boot0))
            bootstrap_pairs.append(pair)

            pair = []
            for _ in range(2):
                shuffled = rng.permutation(pooled)
                pair.append(
                    _difference_and_se(values, shuffled[: len(group1)], shuffled[len(group1):])
                )
            null_pairs.append(pair)

        best = (-np.inf, candidates[-1], int(top_sizes[-1]))
        for a1, a2 in candidates:
            reproducibility = np.array(
                [
                    _top_list_overlaps(
                        _rots_statistic(*first, a1, a2), _rots_statistic(*second, a1, a2), top_sizes
                    )
                    for first, second in bootstrap_pairs
                ]
            )
            null_reproducibility = np.array(
                [
                    _top_list_overlaps(
                        _rots_statistic(*first, a1, a2), _rots_statistic(*second, a1, a2), top_sizes
                    )
                    for first, second in null_pairs
                ]
            )
            spread = reproducibility.std(axis=0, ddof=1)
            with np.errstate(divide="ignore", invalid="ignore"):
                z_scores = (reproducibility.mean(axis=0) - null_reproducibility.mean(axis=0)) / spread
            z_scores = np.where(np.isfinite(z_scores), z_scores, -np.inf)
            k_index = int(np.argmax(z_scores))
            if z_scores[k_index] > best[0]:
                best = (float(z_scores[k_index]), (a1, a2), int(top_sizes[k_index]))

        z_best, (a1, a2), k_best = best
        print(
            f"  {contrast} vs {reference}: a1={a1:.4g}, a2={a2:g}, k={k_best}, "
            f"reproducibility Z={z_best:.2f}"
        )
        parameters[contrast] = {"a1": a1, "a2": a2, "top_k": k_best, "z": z_best}

        d_observed = _rots_statistic(difference, se, a1, a2)
        null_d = np.concatenate(
            [_rots_statistic(*pair[0], a1, a2) for pair in null_pairs]
        )
        null_d = np.sort(np.abs(null_d[np.isfinite(null_d)]))

        # Share of null statistics at least as extreme as each observed one
        exceed = len(null_d) - np.searchsorted(null_d, np.abs(d_observed), side="left")
        p_values = (exceed + 1) / (len(null_d) + 1)
        p_values = np.where(np.isfinite(d_observed), p_values, np.nan)

        with warnings.catch_warnings():
            warnings.simplefilter("ignore", category=RuntimeWarning)
            mean1 = np.nanmean(values[:, group1], axis=1)
            mean0 = np.nanmean(values[:, group0], axis=1)

        results[contrast_column("logFC", contrast)] = _log_fold_change(mean1, mean0, scale)
        results[contrast_column("t", contrast)] = d_observed
        results[contrast_column("P.Value", contrast)] = p_values

    results = apply_multiple_testing_correction(results, contrasts)
    results.attrs["rots_parameters"] = parameters

    print(f"✓ ROTS completed for {len(results)} proteins")
    return results


# =============================================================================
# Mixed-model contrasts
# =============================================================================


RANDOM_EFFECT_COLUMNS = {"sample": "Sample", "peptide": "Peptide", "run": "Run"}


def _fit_protein_model(protein_df, formula, group_column):
    """
    Fit one protein's model with a random intercept, falling back to OLS.

    Returns (fitted model, model label, fallback reason or None).
    """
    group_sizes = protein_df[group_column].value_counts()

    if len(group_sizes) < 2 or group_sizes.max() < 2:
        reason = "fewer than two measurements per random-effect group"
        return ols(formula, protein_df).fit(), "OLS", reason

    fitted_model = None
    with warnings.catch_warnings():
        warnings.filterwarnings("ignore", category=UserWarning)
        warnings.filterwarnings("ignore", category=RuntimeWarning)
        warnings.filterwarnings("ignore", message=".*convergence.*")
        warnings.filterwarnings("ignore", message=".*singular.*")

        model = mixedlm(formula, protein_df, groups=protein_df[group_column])
        for method in ["lbfgs", "bfgs", "nm", "powell"]:
            try:
                candidate = model.fit(reml=True, method=method)
            except (ValueError, RuntimeError, np.linalg.LinAlgError):
                continue
            if candidate.converged and np.all(np.isfinite(candidate.bse_fe)):
                fitted_model = candidate
                break

    if fitted_model is None:
        return ols(formula, protein_df).fit(), "OLS", "random effect not estimable"
    return fitted_model, "MixedLM", None


def run_mixed_model_test(
    long_data, reference, random_effect="sample", scale="log2"
):
    """
    Per-protein mixed-model contrasts of each condition against the reference.

    For each protein the repeated measurements (PSMs or peptides per sample)
    are modelled as

        Value ~ condition indicators [+ Run] + (1 | random effect)

    with a random intercept by sample, peptide or run, fitted by REML. When
    the random effect cannot be estimated (too few repeated measurements,
    optimizer failure) the protein falls back to fixed-effect OLS inference;
    the model used is recorded in the 'model_used' column.

    Parameters:
    -----------
    long_data : pd.DataFrame
        Long table with Protein, Peptide, Run, Sample, Condition and Value
    reference : str
        Reference condition
    random_effect : str
        'sample', 'peptide' or 'run'
    scale : str
        'log2' or 'raw'

    Returns:
    --------
    pd.DataFrame : DEA result table
    """
    if random_effect not in RANDOM_EFFECT_COLUMNS:
        raise ValueError(
            f"Unknown random effect: {random_effect}. Use one of {list(RANDOM_EFFECT_COLUMNS)}"
        )
    group_column = RANDOM_EFFECT_COLUMNS[random_effect]

    contrasts = get_contrasts(long_data, reference)
    indicator_names = {contrast: f"cond_{i}" for i, contrast in enumerate(contrasts)}
    include_run = random_effect != "run" and long_data["Run"].nunique() > 1

    model_desc = "Value ~ " + " + ".join(contrasts)
    if include_run:
        model_desc += " + Run"
    model_desc += f" + (1|{group_column})"

    print("Running mixed-model contrast analysis...")
    print(f"  Model: {model_desc}")

    proteins = list(dict.fromkeys(long_data["Protein"]))
    results = _empty_results(pd.Index(proteins), contrasts, "Mixed-effects model")
    results["model_used"] = "failed"
    results["n_obs"] = 0

    data = long_data.copy()
    data["Condition"] = data["Condition"].astype(str)
    for contrast, name in indicator_names.items():
        data[name] = (data["Condition"] == contrast).astype(float)

    n_fallback = 0
    for i, (protein, protein_df) in enumerate(data.groupby("Protein", sort=False)):
        if (i + 1) % 200 == 0:
            print(f"  Processed {i + 1}/{len(proteins)} proteins...")

        protein_df = protein_df.dropna(subset=["Value"])
        present = [c for c in contrasts if protein_df[indicator_names[c]].sum() > 0]
        if (protein_df["Condition"] == str(reference)).sum() == 0 or not present:
            continue

        formula = "Value ~ " + " + ".join(indicator_names[c] for c in present)
        if include_run and protein_df["Run"].nunique() > 1:
            formula += " + C(Run)"

        try:
            fitted_model, model_used, reason = _fit_protein_model(
                protein_df, formula, group_column
            )
        except (ValueError, np.linalg.LinAlgError) as e:
            if i < 3:
                print(f"  Protein {protein} failed: {e}")
            continue

        if reason is not None:
            n_fallback += 1
            if n_fallback <= 3:
                print(f"  Protein {protein}: {reason}, using fixed-effect inference")

        if model_used == "OLS" and fitted_model.df_resid <= 0:
            continue

        params = fitted_model.params
        p_values = fitted_model.pvalues
        t_values = fitted_model.tvalues

        for contrast in present:
            name = indicator_names[contrast]
            if scale == "log2":
                log_fc = params[name]
            else:
                log_fc = _log_fold_change(
                    protein_df.loc[protein_df["Condition"] == contrast, "Value"].mean(),
                    protein_df.loc[protein_df["Condition"] == str(reference), "Value"].mean(),
                    scale,
                )
            results.loc[protein, contrast_column("logFC", contrast)] = float(log_fc)
            results.loc[protein, contrast_column("t", contrast)] = t_values[name]
            results.loc[protein, contrast_column("P.Value", contrast)] = p_values[name]

        results.loc[protein, "model_used"] = model_used
        results.loc[protein, "n_obs"] = len(protein_df)

    if n_fallback:
        print(f"  {n_fallback} proteins used fixed-effect inference (random effect not estimable)")

    results = apply_multiple_testing_correction(results, contrasts)

    print(f"✓ Mixed-model analysis completed for {len(results)} proteins")
    return results


# =============================================================================
# Multiple testing correction and reporting
# =============================================================================


def apply_multiple_testing_correction(results_df, contrasts=None, method="fdr_bh"):
    """
    Adjust p-values independently per contrast.

    Missing p-values stay missing and do not count towards the number of tests.

    Parameters:
    -----------
    results_df : pd.DataFrame
        DEA result table with P.Value_<contrast> columns
    contrasts : list, optional
        Contrasts to correct. Defaults to all contrasts in the table
    method : str
        Method name understood by statsmodels multipletests (default 'fdr_bh')
    """
    if contrasts is None:
        contrasts = get_result_contrasts(results_df)

    for contrast in contrasts:
        p_column = contrast_column("P.Value", contrast)
        q_column = contrast_column("adj.P.Val", contrast)

        if p_column not in results_df.columns:
            print(f"Warning: No {p_column} column found for correction")
            continue

        p_values = results_df[p_column].astype(float)
        valid = p_values.notna()
        adjusted = pd.Series(np.nan, index=results_df.index)

        if valid.any():
            _, adj_p_values, _, _ = multipletests(p_values[valid], method=method)
            adjusted[valid] = adj_p_values

        results_df[q_column] = adjusted

    return results_df


def results_to_long(results_df):
    """Reshape a DEA result table to one row per protein and contrast"""
    frames = []
    for contrast in get_result_contrasts(results_df):
        frame = pd.DataFrame(
            {
                "Protein": results_df.index,
                "Contrast": contrast,
                **{
                    field: results_df[contrast_column(field, contrast)].to_numpy()
                    if contrast_column(field, contrast) in results_df.columns
                    else np.nan
                    for field in RESULT_FIELDS
                },
            }
        )
        frames.append(frame)

    if not frames:
        return pd.DataFrame(columns=["Protein", "Contrast"] + list(RESULT_FIELDS))
    return pd.concat(frames, ignore_index=True)


def display_analysis_summary(results_df, q_value_threshold=0.05, label_top_n=10):
    """
    Print a summary of a DEA result table and return the counts per contrast

    Parameters:
    -----------
    results_df : pd.DataFrame
        DEA result table
    q_value_threshold : float
        Significance threshold on adjusted p-values
    label_top_n : int
        Number of top proteins listed per contrast

    Returns:
    --------
    dict
        Per-contrast summary statistics
    """
    if results_df is None or len(results_df) == 0:
        print("⚠️ No differential analysis results available")
        return {}

    print("=" * 60)
    print("STATISTICAL ANALYSIS SUMMARY")
    print("=" * 60)

    method = results_df["test_method"].iloc[0] if "test_method" in results_df.columns else "unknown"
    print(f"  Method: {method}")
    print(f"  Total proteins analyzed: {len(results_df):,}")

    summary = {}
    for contrast in get_result_contrasts(results_df):
        p_values = results_df[contrast_column("P.Value", contrast)]
        q_values = results_df[contrast_column("adj.P.Val", contrast)]
        n_significant = int((q_values < q_value_threshold).sum())

        print(f"\n  Contrast {contrast}:")
        print(f"    Proteins with valid p-values: {int(p_values.notna().sum()):,}")
        print(f"    Significant (q < {q_value_threshold}): {n_significant:,}")

        top = results_df.nsmallest(label_top_n, contrast_column("P.Value", contrast))
        display_cols = [
            contrast_column(field, contrast)
            for field in ("logFC", "P.Value", "adj.P.Val")
        ]
        if len(top) > 0:
            print(top[display_cols].to_string())

        summary[contrast] = {
            "valid_results": int(p_values.notna().sum()),
            "significant": n_significant,
        }

    return summary
