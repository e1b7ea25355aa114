"""
Isobaric Workflow Toolkit
=========================

A Python library for comparing workflow components of isobaric-labeling
(TMT) quantitative proteomics on spike-in benchmark data. A workflow is the
four-stage pipeline unit transform -> normalization -> summarization ->
differential expression analysis (DEA), scored against the known set of
spiked proteins. Each component study swaps one stage while holding the
others at their defaults and compares the variants side by side.

QUICK START EXAMPLE:
-------------------
    import isobaric_toolkit as itk

    # 1. Configure the study
    config = itk.WorkflowConfig(
        data_path='spike_in_bundle.pkl',
        reference_condition='0.125',
        spiked_protein_pattern='ups',
    )

    # 2. Run every normalization variant and score it
    study = itk.run_component_study(config, 'normalization')

    # 3. Compare the variants
    print(study.scores)
    itk.plot_volcano_comparison(study.results, spiked_proteins=study.spiked_proteins)
    itk.export_variant_results(study.results, study.scores)

MODULE OVERVIEW:
===============

config
    Purpose: Immutable workflow configuration threaded through every stage
    Key functions: WorkflowConfig(), WorkflowConfig.validate()
    Use when: Setting up a component study

data_import
    Purpose: Load the observation/study-design bundle
    Key functions: load_data_bundle(), load_psm_data(), derive_spiked_proteins()
    Use when: Starting analysis

preprocessing
    Purpose: Long <-> channel-table pivots, unit transforms, PSM quality filters
    Key functions: to_channel_table(), apply_unit_transform(), apply_quality_filters()
    Use when: Preparing PSM data for normalization

normalization
    Purpose: Remove run and channel bias
    Key functions: median_sweep(), constand_normalize(), nomad_normalize(), mixed_model_normalize()
    Use when: Correcting loading differences between channels

summarization
    Purpose: Roll PSMs up to peptides and proteins
    Key functions: summarize()
    Use when: Building protein-level tables for DEA

statistical_analysis
    Purpose: Differential expression against a reference condition
    Key functions: run_moderated_t_test(), run_rank_test(), run_permutation_test(),
                   run_rots_test(), run_mixed_model_test()
    Use when: Testing proteins for abundance changes

evaluation
    Purpose: Confusion matrices and metrics against the spiked proteins
    Key functions: score_variants(), confusion_matrix_by_contrast()
    Use when: Comparing workflow variants

pipeline
    Purpose: Stage strategies, workflow variants and component studies
    Key functions: WorkflowVariant(), run_variants(), build_component_variants()
    Use when: Assembling custom workflows

workflow
    Purpose: One-call component study driver
    Key functions: run_component_study()
    Use when: Reproducing a full component comparison

visualization / export
    Purpose: Comparison figures, CSV export, result caching, config records
    Key functions: plot_volcano_comparison(), export_variant_results(), export_timestamped_config()

TYPICAL WORKFLOW:
================
1. itk.load_data_bundle() → Load observations and study design
2. itk.validate_design_consistency() → Check every run/channel has a design row
3. itk.to_channel_table() / itk.apply_quality_filters() → Pivot and filter PSMs
4. itk.build_component_variants() → Choose the variants to compare
5. itk.run_variants() → Run each variant on its own copy of the data
6. itk.score_variants() → Score against the spiked proteins
7. itk.plot_volcano_comparison() → Visualize
8. itk.export_variant_results() → Export for reproducibility

ERROR HANDLING:
==============
- DataValidationError: Malformed or missing input columns
- DesignError: Study design inconsistent with itself or the data
- ConvergenceError: CONSTANd or NOMAD did not converge
- RankDeficiencyError: Mixed-model fixed effects not estimable
"""

# =============================================================================
# MODULE IMPORTS - Core functionality organized by analysis stage
# =============================================================================

from . import config                # Workflow configuration
from . import validation            # Data validation and error types
from . import data_import           # Data loading
from . import preprocessing         # Pivots, transforms and PSM filters
from . import normalization         # Normalization methods
from . import summarization         # PSM -> peptide -> protein summarization
from . import statistical_analysis  # Differential expression tests
from . import evaluation            # Scoring against spiked proteins
from . import pipeline              # Workflow variants
from . import export                # Results export and caching
from . import visualization         # Comparison plots
from . import workflow              # Component study driver

__version__ = "1.0.0"
__author__ = "Michael MacCoss Lab, University of Washington"

# =============================================================================
# CONVENIENCE IMPORTS - Most commonly used functions available at top level
# =============================================================================

# CONFIGURATION
from .config import WorkflowConfig

# DATA LOADING
from .data_import import (
    load_data_bundle,         # Main function: Load observations + study design
    load_psm_data,            # Load the same tables from two CSV files
    get_channels,             # Reporter channel labels in design order
    derive_spiked_proteins,   # Ground-truth spiked-protein set
)

# PREPROCESSING
from .preprocessing import (
    to_channel_table,         # Long -> channel table pivot
    to_long_table,            # Channel table -> long melt
    apply_unit_transform,     # log2 or raw scale
    apply_quality_filters,    # PSM filters driven by the config
    to_protein_matrix,        # Protein x sample matrix for DEA
)

# NORMALIZATION
from .normalization import (
    median_sweep,             # Most common: row/column median sweeping
    constand_normalize,       # Row and column mean fitting on raw intensities
    nomad_normalize,          # ANOVA removal of run and run:channel effects
    mixed_model_normalize,    # Mixed-model residuals plus intercept
)

# SUMMARIZATION
from .summarization import summarize

# STATISTICAL ANALYSIS
from .statistical_analysis import (
    run_moderated_t_test,     # Default: empirical Bayes moderated t-test
    run_rank_test,            # Mann-Whitney U (no fold change)
    run_permutation_test,     # Exact or Monte-Carlo permutation test
    run_rots_test,            # Reproducibility-optimized statistic
    run_mixed_model_test,     # Per-protein mixed model with OLS fallback
    apply_multiple_testing_correction,
    display_analysis_summary,
)

# EVALUATION
from .evaluation import (
    confusion_matrix_by_contrast,
    compute_classification_metrics,
    score_variants,           # Main function: Score all variants
)

# PIPELINE AND WORKFLOW
from .pipeline import WorkflowVariant, run_variant, run_variants, build_component_variants
from .workflow import ComponentStudy, run_component_study

# DATA VALIDATION
from .validation import (
    validate_design_consistency,  # RECOMMENDED: Validate before analysis
    DataValidationError,
    DesignError,
    ConvergenceError,
    RankDeficiencyError,
)

# DATA EXPORT
from .export import (
    save_intermediate_tables,
    load_intermediate_tables,
    export_variant_results,
    export_timestamped_config,
)

# VISUALIZATION
from .visualization import (
    plot_volcano_comparison,  # Main results plot: one volcano per variant
    plot_fold_change_violin,
    plot_fold_change_scatter,
    plot_pvalue_histograms,
    plot_pca,
    plot_cv_distribution,
)

# =============================================================================
# PUBLIC API - All functions available for import
# =============================================================================

__all__ = [
    # MODULES
    "config",
    "validation",
    "data_import",
    "preprocessing",
    "normalization",
    "summarization",
    "statistical_analysis",
    "evaluation",
    "pipeline",
    "export",
    "visualization",
    "workflow",

    # CONFIGURATION
    "WorkflowConfig",

    # DATA LOADING
    "load_data_bundle",
    "load_psm_data",
    "get_channels",
    "derive_spiked_proteins",

    # PREPROCESSING
    "to_channel_table",
    "to_long_table",
    "apply_unit_transform",
    "apply_quality_filters",
    "to_protein_matrix",

    # NORMALIZATION
    "median_sweep",
    "constand_normalize",
    "nomad_normalize",
    "mixed_model_normalize",

    # SUMMARIZATION
    "summarize",

    # STATISTICAL ANALYSIS
    "run_moderated_t_test",
    "run_rank_test",
    "run_permutation_test",
    "run_rots_test",
    "run_mixed_model_test",
    "apply_multiple_testing_correction",
    "display_analysis_summary",

    # EVALUATION
    "confusion_matrix_by_contrast",
    "compute_classification_metrics",
    "score_variants",

    # PIPELINE AND WORKFLOW
    "WorkflowVariant",
    "run_variant",
    "run_variants",
    "build_component_variants",
    "ComponentStudy",
    "run_component_study",

    # VALIDATION
    "validate_design_consistency",
    "DataValidationError",
    "DesignError",
    "ConvergenceError",
    "RankDeficiencyError",

    # EXPORT
    "save_intermediate_tables",
    "load_intermediate_tables",
    "export_variant_results",
    "export_timestamped_config",

    # VISUALIZATION
    "plot_volcano_comparison",
    "plot_fold_change_violin",
    "plot_fold_change_scatter",
    "plot_pvalue_histograms",
    "plot_pca",
    "plot_cv_distribution",
]
