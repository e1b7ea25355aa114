"""
Workflow Pipeline Module for the Isobaric Workflow Toolkit

A workflow variant bundles one choice for each pipeline stage:

    unit transform -> normalization -> summarization -> DEA

Each stage is a small strategy object so that component studies can swap
one stage while holding the others at their defaults. Variants never share
state: every run starts from its own copy of the filtered channel table.
"""

import numpy as np
import pandas as pd
from dataclasses import dataclass
from typing import Dict, List, Optional

from .data_import import get_channels
from .normalization import (
    constand_normalize,
    median_sweep,
    mixed_model_normalize,
    nomad_normalize,
    run_column_medians,
    sweep_columns,
)
from .preprocessing import (
    apply_unit_transform,
    build_sample_design,
    to_design_long_table,
    to_protein_matrix,
)
from .statistical_analysis import (
    run_mixed_model_test,
    run_moderated_t_test,
    run_permutation_test,
    run_rank_test,
    run_rots_test,
)
from .summarization import summarize


COMPONENTS = ("unit", "normalization", "summarization", "dea")


# =============================================================================
# Normalization strategies
# =============================================================================


class Normalizer:
    """Base normalization strategy (identity)

    normalize() runs on the PSM-level channel table before summarization;
    normalize_summarized() runs after summarization and may also adjust the
    PSM-level table so both stay on the same footing.
    """

    name = "none"

    def normalize(self, data, channels, scale):
        return data

    def normalize_summarized(self, summarized, psm_data, channels, scale):
        return summarized, psm_data

    def __repr__(self):
        return f"{type(self).__name__}()"


class MedianSweepNormalizer(Normalizer):
    """Row sweep of PSMs, then column sweep at protein level"""

    name = "median_sweep"

    def normalize(self, data, channels, scale):
        return median_sweep(data, channels, axis="rows", scale=scale)

    def normalize_summarized(self, summarized, psm_data, channels, scale):
        column_medians = run_column_medians(summarized, channels)
        return (
            sweep_columns(summarized, channels, column_medians, scale),
            sweep_columns(psm_data, channels, column_medians, scale),
        )


def _to_raw(data, channels, scale):
    if scale == "raw":
        return data
    result = data.copy()
    result[channels] = 2 ** result[channels]
    return result


def _from_raw(data, channels, scale):
    if scale == "raw":
        return data
    result = data.copy()
    values = result[channels].to_numpy(dtype=float)
    with np.errstate(divide="ignore", invalid="ignore"):
        result[channels] = np.where(values > 0, np.log2(values), np.nan)
    return result


class ConstandNormalizer(Normalizer):
    """CONSTANd on raw intensities; log-scale input is converted and converted back"""

    name = "constand"

    def __init__(self, max_iterations=50, tolerance=1e-5):
        self.max_iterations = max_iterations
        self.tolerance = tolerance

    def normalize(self, data, channels, scale):
        raw = _to_raw(data, channels, scale)
        normalized = constand_normalize(
            raw, channels, max_iterations=self.max_iterations, tolerance=self.tolerance
        )
        return _from_raw(normalized, channels, scale)

    def __repr__(self):
        return f"ConstandNormalizer(max_iterations={self.max_iterations}, tolerance={self.tolerance})"


class NomadNormalizer(Normalizer):
    """NOMAD ANOVA normalization; raw input is normalized on the log scale"""

    name = "nomad"

    def normalize(self, data, channels, scale):
        log_data = _from_raw(data, channels, "log2") if scale == "raw" else data
        normalized = nomad_normalize(log_data, channels)
        return _to_raw(normalized, channels, "log2") if scale == "raw" else normalized


class MixedModelNormalizer(Normalizer):
    """Mixed-model residualization; raw input is normalized on the log scale"""

    name = "mixed_model"

    def __init__(self, random_effect="protein"):
        self.random_effect = random_effect

    def normalize(self, data, channels, scale):
        log_data = _from_raw(data, channels, "log2") if scale == "raw" else data
        normalized = mixed_model_normalize(log_data, channels, random_effect=self.random_effect)
        return _to_raw(normalized, channels, "log2") if scale == "raw" else normalized

    def __repr__(self):
        return f"MixedModelNormalizer(random_effect='{self.random_effect}')"


# =============================================================================
# Summarization strategies
# =============================================================================


class Summarizer:
    name = "base"

    def summarize(self, data, channels):
        raise NotImplementedError


class AggregateSummarizer(Summarizer):
    """Two-stage PSM -> peptide -> protein aggregation"""

    def __init__(self, method="median"):
        self.method = method
        self.name = method

    def summarize(self, data, channels):
        return summarize(data, channels, method=self.method)

    def __repr__(self):
        return f"AggregateSummarizer(method='{self.method}')"


# =============================================================================
# DEA strategies
# =============================================================================


@dataclass
class DeaInput:
    """Everything a DEA strategy may need from the upstream stages"""

    protein_matrix: pd.DataFrame
    sample_design: pd.DataFrame
    normalized_psms: pd.DataFrame
    channels: List[str]
    design: pd.DataFrame
    reference: str
    scale: str


class DeaTest:
    name = "base"

    def test(self, dea_input):
        raise NotImplementedError

    def __repr__(self):
        return f"{type(self).__name__}()"


class ModeratedTTest(DeaTest):
    name = "moderated_t"

    def test(self, dea_input):
        return run_moderated_t_test(
            dea_input.protein_matrix,
            dea_input.sample_design,
            dea_input.reference,
            scale=dea_input.scale,
        )


class RankTest(DeaTest):
    name = "rank"

    def test(self, dea_input):
        return run_rank_test(
            dea_input.protein_matrix,
            dea_input.sample_design,
            dea_input.reference,
            scale=dea_input.scale,
        )


class PermutationTest(DeaTest):
    name = "permutation"

    def __init__(self, n_permutations=1000, seed=42):
        self.n_permutations = n_permutations
        self.seed = seed

    def test(self, dea_input):
        return run_permutation_test(
            dea_input.protein_matrix,
            dea_input.sample_design,
            dea_input.reference,
            scale=dea_input.scale,
            n_permutations=self.n_permutations,
            seed=self.seed,
        )


class RotsTest(DeaTest):
    name = "rots"

    def __init__(self, n_bootstraps=100, top_k=None, seed=42):
        self.n_bootstraps = n_bootstraps
        self.top_k = top_k
        self.seed = seed

    def test(self, dea_input):
        return run_rots_test(
            dea_input.protein_matrix,
            dea_input.sample_design,
            dea_input.reference,
            scale=dea_input.scale,
            n_bootstraps=self.n_bootstraps,
            top_k=self.top_k,
            seed=self.seed,
        )


class MixedModelTest(DeaTest):
    """Mixed-model contrasts on the normalized, unsummarized measurements"""

    name = "mixed_model"

    def __init__(self, random_effect="sample"):
        self.random_effect = random_effect

    def test(self, dea_input):
        long_data = to_design_long_table(
            dea_input.normalized_psms, dea_input.channels, dea_input.design
        )
        return run_mixed_model_test(
            long_data,
            dea_input.reference,
            random_effect=self.random_effect,
            scale=dea_input.scale,
        )

    def __repr__(self):
        return f"MixedModelTest(random_effect='{self.random_effect}')"


# =============================================================================
# Variants
# =============================================================================


@dataclass
class WorkflowVariant:
    """One complete workflow: unit scale plus a strategy per stage"""

    name: str
    unit_scale: str = "log2"
    normalizer: Optional[Normalizer] = None
    summarizer: Optional[Summarizer] = None
    dea_test: Optional[DeaTest] = None

    def __post_init__(self):
        if self.normalizer is None:
            self.normalizer = MedianSweepNormalizer()
        if self.summarizer is None:
            self.summarizer = AggregateSummarizer("median")
        if self.dea_test is None:
            self.dea_test = ModeratedTTest()

    def describe(self):
        return (
            f"{self.name}: unit={self.unit_scale}, normalization={self.normalizer.name}, "
            f"summarization={self.summarizer.name}, dea={self.dea_test.name}"
        )


def run_variant(
    variant: WorkflowVariant,
    channel_table: pd.DataFrame,
    design: pd.DataFrame,
    config,
) -> pd.DataFrame:
    """
    Run one workflow variant on a filtered raw-intensity channel table.

    Parameters:
    -----------
    variant : WorkflowVariant
        Stage choices
    channel_table : pd.DataFrame
        Quality-filtered, raw-scale PSM channel table
    design : pd.DataFrame
        Study design
    config : WorkflowConfig
        Workflow configuration (reference condition)

    Returns:
    --------
    pd.DataFrame : DEA result table
    """
    print(f"\n--- Variant {variant.describe()} ---")

    channels = get_channels(design)
    scale = variant.unit_scale

    data = apply_unit_transform(channel_table.copy(), channels, scale)
    normalized = variant.normalizer.normalize(data, channels, scale)
    summarized = variant.summarizer.summarize(normalized, channels)
    summarized, normalized = variant.normalizer.normalize_summarized(
        summarized, normalized, channels, scale
    )

    dea_input = DeaInput(
        protein_matrix=to_protein_matrix(summarized, channels),
        sample_design=build_sample_design(design),
        normalized_psms=normalized,
        channels=channels,
        design=design,
        reference=str(config.reference_condition),
        scale=scale,
    )
    return variant.dea_test.test(dea_input)


def run_variants(
    variants: List[WorkflowVariant],
    channel_table: pd.DataFrame,
    design: pd.DataFrame,
    config,
) -> Dict[str, pd.DataFrame]:
    """Run every variant on its own copy of the data; returns name -> results"""
    names = [variant.name for variant in variants]
    if len(set(names)) != len(names):
        raise ValueError(f"Variant names must be unique, got {names}")

    print("=" * 60)
    print(f"RUNNING {len(variants)} WORKFLOW VARIANTS")
    print("=" * 60)

    results = {}
    for variant in variants:
        results[variant.name] = run_variant(variant, channel_table.copy(), design, config)

    print(f"\n✓ Completed {len(results)} workflow variants")
    return results


def build_component_variants(component: str, config) -> List[WorkflowVariant]:
    """
    Named variants of one component study.

    The studied stage takes each of its alternatives while the others stay
    at the defaults (median sweeping, median summarization, moderated
    t-test). Outside the unit study every variant works on
    config.unit_scale.

    Parameters:
    -----------
    component : str
        'unit', 'normalization', 'summarization' or 'dea'
    config : WorkflowConfig
        Supplies the unit scale, seeds and method parameters
    """
    if component == "unit":
        return [
            WorkflowVariant("log2", unit_scale="log2"),
            WorkflowVariant("raw", unit_scale="raw"),
        ]

    unit = config.unit_scale

    if component == "normalization":
        return [
            WorkflowVariant("median_sweep", unit_scale=unit, normalizer=MedianSweepNormalizer()),
            WorkflowVariant(
                "constand",
                unit_scale=unit,
                normalizer=ConstandNormalizer(
                    max_iterations=config.constand_max_iterations,
                    tolerance=config.constand_tolerance,
                ),
            ),
            WorkflowVariant("nomad", unit_scale=unit, normalizer=NomadNormalizer()),
            WorkflowVariant(
                "mixed_model",
                unit_scale=unit,
                normalizer=MixedModelNormalizer(config.normalization_random_effect),
            ),
        ]

    if component == "summarization":
        return [
            WorkflowVariant("median", unit_scale=unit, summarizer=AggregateSummarizer("median")),
            WorkflowVariant("mean", unit_scale=unit, summarizer=AggregateSummarizer("mean")),
        ]

    if component == "dea":
        return [
            WorkflowVariant("moderated_t", unit_scale=unit, dea_test=ModeratedTTest()),
            WorkflowVariant("rank", unit_scale=unit, dea_test=RankTest()),
            WorkflowVariant(
                "permutation",
                unit_scale=unit,
                dea_test=PermutationTest(
                    n_permutations=config.n_permutations, seed=config.random_seed
                ),
            ),
            WorkflowVariant(
                "rots",
                unit_scale=unit,
                dea_test=RotsTest(
                    n_bootstraps=config.rots_bootstraps,
                    top_k=config.rots_top_k,
                    seed=config.random_seed,
                ),
            ),
            WorkflowVariant(
                "mixed_model",
                unit_scale=unit,
                dea_test=MixedModelTest(config.mixed_model_random_effect),
            ),
        ]

    raise ValueError(f"Unknown component: {component}. Use one of {COMPONENTS}")
