"""
Export Module for the Isobaric Workflow Toolkit

Caching of intermediate DEA results between sessions, CSV export of the
per-variant results and scores, and timestamped configuration records.
"""

import os
import pandas as pd
from datetime import datetime
from typing import Dict, Any, Optional, List

from .statistical_analysis import results_to_long


def intermediate_results_path(output_suffix: str, output_dir: str = ".") -> str:
    """Location of the cached intermediate results for an output suffix"""
    return os.path.join(output_dir, f"intermediate_results_{output_suffix}.pkl")


def save_intermediate_tables(
    results_by_variant: Dict[str, pd.DataFrame],
    output_suffix: str,
    output_dir: str = ".",
    extra_tables: Optional[Dict[str, Any]] = None,
) -> str:
    """
    Cache the DEA results of a component study.

    Parameters:
    -----------
    results_by_variant : dict
        Mapping of variant name to DEA result table
    output_suffix : str
        Key distinguishing this study's cache from others
    output_dir : str
        Directory for the cache file
    extra_tables : dict, optional
        Further objects stored next to the results (e.g. scores)

    Returns:
    --------
    str
        Path to the cache file
    """
    os.makedirs(output_dir, exist_ok=True)
    path = intermediate_results_path(output_suffix, output_dir)

    payload = {"results": dict(results_by_variant)}
    if extra_tables:
        payload.update(extra_tables)

    pd.to_pickle(payload, path)
    print(f"Intermediate results saved to: {path}")
    return path


def load_intermediate_tables(output_suffix: str, output_dir: str = ".") -> Dict[str, Any]:
    """
    Load cached results written by save_intermediate_tables().

    Raises:
    -------
    FileNotFoundError: If no cache exists for the suffix
    """
    path = intermediate_results_path(output_suffix, output_dir)
    if not os.path.exists(path):
        raise FileNotFoundError(
            f"No intermediate results for suffix '{output_suffix}' at {path}; "
            "run the study with load_intermediates=False first"
        )

    payload = pd.read_pickle(path)
    print(f"Loaded intermediate results for {len(payload['results'])} variants from: {path}")
    return payload


def export_variant_results(
    results_by_variant: Dict[str, pd.DataFrame],
    scores: Optional[pd.DataFrame] = None,
    output_prefix: str = "isobaric_study",
    output_dir: str = ".",
) -> Dict[str, str]:
    """
    Export each variant's DEA results and the variant scores as CSV.

    Results are written in long format (one row per protein and contrast)
    with the protein as a proper column.

    Returns:
    --------
    dict
        Mapping of exported item to file path
    """
    print("Exporting workflow variant results...")
    os.makedirs(output_dir, exist_ok=True)
    exported_files = {}

    for variant_name, results_df in results_by_variant.items():
        results_file = os.path.join(output_dir, f"{output_prefix}_{variant_name}_results.csv")
        results_to_long(results_df).to_csv(results_file, index=False)
        exported_files[variant_name] = results_file
        print(f"  {variant_name}: {len(results_df)} proteins -> {results_file}")

    if scores is not None:
        scores_file = os.path.join(output_dir, f"{output_prefix}_scores.csv")
        scores.to_csv(scores_file, index=False)
        exported_files["scores"] = scores_file
        print(f"  Scores -> {scores_file}")

    print(f"✓ Exported {len(exported_files)} files")
    return exported_files


CONFIG_SECTIONS = [
    (
        1,
        "INPUT FILES AND OUTPUT",
        ["data_path", "output_suffix", "output_dir", "load_intermediates", "save_intermediates"],
    ),
    (2, "EXPERIMENTAL DESIGN", ["reference_condition", "unit_scale", "subsample_proteins"]),
    (
        3,
        "PSM QUALITY FILTERS",
        [
            "require_isolation_ok",
            "remove_missing_channels",
            "remove_shared_peptides",
            "remove_ptm",
            "remove_one_hit_wonders",
            "resolve_duplicate_psms",
        ],
    ),
    (
        4,
        "NORMALIZATION PARAMETERS",
        ["constand_max_iterations", "constand_tolerance", "normalization_random_effect"],
    ),
    (
        5,
        "DIFFERENTIAL EXPRESSION PARAMETERS",
        [
            "mixed_model_random_effect",
            "n_permutations",
            "rots_bootstraps",
            "rots_top_k",
            "random_seed",
        ],
    ),
    (
        6,
        "SCORING",
        ["q_value_threshold", "spiked_proteins", "spiked_protein_pattern"],
    ),
]


def export_timestamped_config(
    config,
    output_prefix: Optional[str] = None,
    analysis_description: str = "Isobaric workflow component study",
    computed_values: Optional[Dict[str, Any]] = None,
) -> str:
    """
    Export a workflow configuration as a timestamped Python file.

    Parameters:
    -----------
    config : WorkflowConfig or dict
        Configuration to record
    output_prefix : str, optional
        Prefix for the filename (defaults to the output directory and suffix)
    analysis_description : str
        Description of the analysis
    computed_values : dict, optional
        Additional computed values to include as comments

    Returns:
    --------
    str
        Path to the exported configuration file
    """
    config_dict = config if isinstance(config, dict) else config.to_dict()

    if output_prefix is None:
        output_prefix = os.path.join(
            config_dict.get("output_dir", "."), config_dict.get("output_suffix", "default")
        )

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    config_file = f"{output_prefix}_config_{timestamp}.py"

    print(f"Exporting analysis configuration to: {config_file}")

    with open(config_file, "w", encoding="utf-8") as f:
        f.write(
            "# =============================================================================\n"
        )
        f.write("# ISOBARIC WORKFLOW CONFIGURATION\n")
        f.write(f"# Generated: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}\n")
        f.write(f"# Analysis: {analysis_description}\n")
        f.write(
            "# =============================================================================\n\n"
        )

        for section_num, section_name, param_names in CONFIG_SECTIONS:
            _write_config_section(f, section_name, config_dict, param_names, section_num)

        if computed_values:
            f.write(
                "# =============================================================================\n"
            )
            f.write("# COMPUTED VALUES (for reference)\n")
            f.write(
                "# =============================================================================\n"
            )
            for key, value in computed_values.items():
                f.write(f"# {key}: {value}\n")

    return config_file


def _write_config_section(
    file_handle,
    section_name: str,
    config_dict: Dict[str, Any],
    param_names: List[str],
    section_number: int = 1,
) -> None:
    file_handle.write(
        "# =============================================================================\n"
    )
    file_handle.write(f"# {section_number}. {section_name}\n")
    file_handle.write(
        "# =============================================================================\n"
    )

    for param in param_names:
        if param in config_dict:
            file_handle.write(f"{param} = {repr(config_dict[param])}\n")

    file_handle.write("\n")


def read_config_record(config_file: str) -> Dict[str, Any]:
    """
    Read the parameters back from a file written by export_timestamped_config().

    The record is plain Python assignments; they are executed in an empty
    namespace and returned as a dict suitable for WorkflowConfig.from_dict().
    """
    namespace: Dict[str, Any] = {}
    with open(config_file, "r", encoding="utf-8") as f:
        exec(f.read(), {}, namespace)
    return namespace
