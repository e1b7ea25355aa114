"""
Pytest configuration and fixtures for isobaric_toolkit tests
"""

import pytest
import pandas as pd
import numpy as np

from isobaric_toolkit.config import WorkflowConfig


CHANNELS = ["126", "127N", "127C", "128N"]


@pytest.fixture
def channels():
    return list(CHANNELS)


@pytest.fixture
def study_design():
    """Two runs of four channels: two reference (A) and two treated (B) per run"""
    rows = []
    for run in ["Run1", "Run2"]:
        for i, channel in enumerate(CHANNELS):
            rows.append(
                {
                    "Run": run,
                    "Channel": channel,
                    "Condition": "A" if i < 2 else "B",
                    "BioReplicate": f"{'A' if i < 2 else 'B'}{i % 2 + 1}",
                }
            )
    return pd.DataFrame(rows)


@pytest.fixture
def psm_observations():
    """
    Long-format PSM observations with realistic structure.

    12 proteins with 3 peptides each, one PSM per peptide and run; the three
    'ups' proteins are twofold up in condition B. Run 2 is loaded 1.5x heavier
    and channel 127C carries a loading bias.
    """
    rng = np.random.default_rng(42)
    channel_bias = {"126": 1.0, "127N": 1.0, "127C": 1.3, "128N": 1.0}
    run_bias = {"Run1": 1.0, "Run2": 1.5}

    rows = []
    for p in range(12):
        protein = f"ups{p}_HUMAN" if p < 3 else f"P{p:05d}"
        abundance = rng.uniform(1e4, 1e6)
        for k in range(3):
            peptide = f"PEPTIDE{p}K{k}"
            peptide_factor = rng.uniform(0.5, 2.0)
            for run in ["Run1", "Run2"]:
                retention_time = 10.0 + p + k * 0.3
                for i, channel in enumerate(CHANNELS):
                    fold = 2.0 if (p < 3 and i >= 2) else 1.0
                    noise = rng.lognormal(0, 0.05)
                    rows.append(
                        {
                            "Run": run,
                            "Channel": channel,
                            "Protein": protein,
                            "Peptide": peptide,
                            "Charge": 2,
                            "RetentionTime": retention_time,
                            "Intensity": abundance
                            * peptide_factor
                            * fold
                            * channel_bias[channel]
                            * run_bias[run]
                            * noise,
                            "IsolationInterferenceOK": True,
                            "SharedPeptide": False,
                            "PTM": False,
                        }
                    )
    return pd.DataFrame(rows)


@pytest.fixture
def base_config():
    return WorkflowConfig(
        reference_condition="A",
        spiked_protein_pattern="ups",
        rots_bootstraps=10,
        n_permutations=100,
    )


# Run-1 log2 profiles with row median zero; the first protein is the
# spiked one, shifted up in condition B. Run 2 swaps channels within each
# condition, so sweeping leaves identical per-condition values in both runs.
END_TO_END_PROFILES = {
    "UPS_changed": [-0.55, -0.45, 0.45, 0.55],
    "NULL_1": [0.2, -0.2, -0.1, 0.1],
    "NULL_2": [-0.3, 0.3, 0.1, -0.1],
    "NULL_3": [0.1, -0.1, 0.3, -0.3],
}
END_TO_END_BASELINES = {"UPS_changed": 10.0, "NULL_1": 12.0, "NULL_2": 11.0, "NULL_3": 13.0}


@pytest.fixture
def end_to_end_observations():
    """Deterministic 4 protein x 2 run x 4 channel data set"""
    rows = []
    for run, offset, order in [("Run1", 0.0, [0, 1, 2, 3]), ("Run2", 0.5, [1, 0, 3, 2])]:
        for protein, profile in END_TO_END_PROFILES.items():
            for channel, source in zip(CHANNELS, order):
                log_value = END_TO_END_BASELINES[protein] + offset + profile[source]
                rows.append(
                    {
                        "Run": run,
                        "Channel": channel,
                        "Protein": protein,
                        "Peptide": f"{protein}_PEPTIDE",
                        "Charge": 2,
                        "RetentionTime": 20.0,
                        "Intensity": 2.0 ** log_value,
                    }
                )
    return pd.DataFrame(rows)


@pytest.fixture
def end_to_end_config():
    return WorkflowConfig(
        reference_condition="A",
        spiked_proteins=("UPS_changed",),
        remove_one_hit_wonders=False,
        rots_bootstraps=10,
        n_permutations=100,
    )


@pytest.fixture
def protein_matrix_and_design():
    """Protein x sample log2 matrix with 3 conditions and 4 replicates each"""
    rng = np.random.default_rng(7)
    conditions = ["0.5", "1", "2"]
    samples, design_rows = [], []
    for run in ["R1", "R2"]:
        for c_index, condition in enumerate(conditions):
            for rep in range(2):
                sample = f"{run}:{c_index * 2 + rep}"
                samples.append(sample)
                design_rows.append(
                    {
                        "Run": run,
                        "Channel": str(c_index * 2 + rep),
                        "Condition": condition,
                        "BioReplicate": rep + 1,
                        "Sample": sample,
                    }
                )
    design = pd.DataFrame(design_rows)

    n_proteins = 40
    values = rng.normal(20, 1, (n_proteins, 1)) + rng.normal(0, 0.2, (n_proteins, len(samples)))
    proteins = [f"ups{i}" if i < 5 else f"P{i:03d}" for i in range(n_proteins)]
    matrix = pd.DataFrame(values, index=pd.Index(proteins, name="Protein"), columns=samples)

    # Spiked proteins follow the concentration: log2(c / 0.5)
    for sample, condition in zip(design["Sample"], design["Condition"]):
        matrix.loc[proteins[:5], sample] += np.log2(float(condition) / 0.5)

    return matrix, design
