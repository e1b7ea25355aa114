"""
Component Study Driver for the Isobaric Workflow Toolkit

One call runs a complete component study: load and filter the data, run
every variant of the studied stage (or reload them from the cache), and
score the results against the spiked proteins.
"""

import warnings
import pandas as pd
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

from .config import WorkflowConfig
from .data_import import derive_spiked_proteins, get_channels, load_data_bundle
from .evaluation import display_scores, fold_change_accuracy, score_variants
from .export import load_intermediate_tables, save_intermediate_tables
from .pipeline import build_component_variants, run_variants
from .preprocessing import apply_quality_filters, subsample_proteins, to_channel_table
from .validation import validate_design_consistency


@dataclass
class ComponentStudy:
    """Outcome of one component study"""

    component: str
    config: WorkflowConfig
    results: Dict[str, pd.DataFrame]
    scores: pd.DataFrame
    channels: List[str]
    design: pd.DataFrame
    spiked_proteins: Set[str]
    fold_change_accuracy: Dict[str, pd.DataFrame] = field(default_factory=dict)

    @property
    def variant_names(self) -> List[str]:
        return list(self.results)


def prepare_channel_table(
    observations: pd.DataFrame, design: pd.DataFrame, config: WorkflowConfig
) -> pd.DataFrame:
    """Pivot, quality-filter and optionally subsample the observations."""
    validate_design_consistency(observations, design)
    channels = get_channels(design)

    channel_table = to_channel_table(observations, channels)
    filtered = apply_quality_filters(channel_table, channels, config)
    return subsample_proteins(filtered, config.subsample_proteins, config.random_seed)


def run_component_study(
    config: WorkflowConfig,
    component: str,
    observations: Optional[pd.DataFrame] = None,
    design: Optional[pd.DataFrame] = None,
) -> ComponentStudy:
    """
    Run (or reload) all variants of one workflow component and score them.

    Parameters:
    -----------
    config : WorkflowConfig
        Study configuration; data_path is read unless tables are passed
    component : str
        'unit', 'normalization', 'summarization' or 'dea'
    observations, design : pd.DataFrame, optional
        Already loaded tables, used instead of config.data_path

    Returns:
    --------
    ComponentStudy
    """
    config.validate()

    print("=" * 60)
    print(f"COMPONENT STUDY: {component.upper()}")
    print("=" * 60)

    if observations is None or design is None:
        if config.data_path is None:
            raise ValueError("config.data_path must be set when no tables are passed")
        observations, design = load_data_bundle(config.data_path)

    channels = get_channels(design)
    filtered = prepare_channel_table(observations, design, config)

    spiked = derive_spiked_proteins(
        filtered["Protein"].unique(),
        pattern=config.spiked_protein_pattern,
        explicit=config.spiked_proteins,
    )
    if not spiked:
        warnings.warn(
            "No spiked proteins found in the data; sensitivity and PPV will be undefined",
            UserWarning,
        )
    print(f"Ground truth: {len(spiked)} spiked proteins")

    variants = build_component_variants(component, config)

    if config.load_intermediates:
        payload = load_intermediate_tables(config.output_suffix, config.output_dir)
        results = payload["results"]
        expected = [variant.name for variant in variants]
        if payload.get("component", component) != component or list(results) != expected:
            raise ValueError(
                f"Cached results for suffix '{config.output_suffix}' belong to the "
                f"'{payload.get('component', 'unknown')}' study with variants {list(results)}, "
                f"not to the '{component}' study ({expected})"
            )
    else:
        results = run_variants(variants, filtered, design, config)

    scores = score_variants(results, spiked, config.q_value_threshold)
    accuracy = {
        name: fold_change_accuracy(results_df, spiked, config.reference_condition)
        for name, results_df in results.items()
    }

    if config.save_intermediates and not config.load_intermediates:
        save_intermediate_tables(
            results,
            config.output_suffix,
            config.output_dir,
            extra_tables={"scores": scores, "component": component},
        )

    display_scores(scores)

    return ComponentStudy(
        component=component,
        config=config,
        results=results,
        scores=scores,
        channels=channels,
        design=design,
        spiked_proteins=spiked,
        fold_change_accuracy=accuracy,
    )
