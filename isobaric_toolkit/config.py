"""
Workflow Configuration for the Isobaric Workflow Toolkit

A single immutable configuration object is threaded through every stage of
the workflow instead of notebook-level global parameters.
"""

from dataclasses import dataclass, field, asdict, replace, fields
from typing import Any, Dict, Optional, Tuple


UNIT_SCALES = ("log2", "raw")
MIXED_MODEL_RANDOM_EFFECTS = ("sample", "peptide", "run")
NORMALIZATION_RANDOM_EFFECTS = (
    "protein",
    "protein:run",
    "peptide",
    "peptide:run",
    "protein+peptide",
)


@dataclass(frozen=True)
class WorkflowConfig:
    """Configuration for one component study

    Parameters mirror the notebook parameters of the original analyses:
    - data_path: serialized bundle with observations and study design
    - output_suffix: key for cached intermediate tables and exports
    - load_intermediates: reuse cached results instead of recomputing
    - subsample_proteins: analyse a random subset of proteins for speed
    - reference_condition: condition every contrast is taken against
    """

    # Input / output
    data_path: Optional[str] = None
    output_suffix: str = "default"
    output_dir: str = "."
    load_intermediates: bool = False
    save_intermediates: bool = False

    # Data reduction
    subsample_proteins: Optional[int] = None

    # Experimental design
    reference_condition: Optional[str] = None
    unit_scale: str = "log2"

    # Scoring
    q_value_threshold: float = 0.05
    spiked_proteins: Tuple[str, ...] = field(default_factory=tuple)
    spiked_protein_pattern: Optional[str] = None

    # Resampling
    random_seed: int = 42
    n_permutations: int = 1000
    rots_bootstraps: int = 100
    rots_top_k: Optional[int] = None

    # CONSTANd
    constand_max_iterations: int = 50
    constand_tolerance: float = 1e-5

    # Mixed models
    mixed_model_random_effect: str = "sample"
    normalization_random_effect: str = "protein"

    # PSM quality filters
    require_isolation_ok: bool = True
    remove_missing_channels: bool = True
    remove_shared_peptides: bool = True
    remove_ptm: bool = False
    remove_one_hit_wonders: bool = True
    resolve_duplicate_psms: bool = True

    def validate(self):
        """Validate parameter values; returns True or raises ValueError"""
        if not self.reference_condition:
            raise ValueError(
                "reference_condition must be set to the condition all contrasts are taken against"
            )
        if self.unit_scale not in UNIT_SCALES:
            raise ValueError(
                f"unit_scale must be one of {UNIT_SCALES}, got '{self.unit_scale}'"
            )
        if not 0 < self.q_value_threshold < 1:
            raise ValueError(
                f"q_value_threshold must be in (0, 1), got {self.q_value_threshold}"
            )
        if self.subsample_proteins is not None and self.subsample_proteins < 1:
            raise ValueError("subsample_proteins must be a positive integer or None")
        if self.n_permutations < 1:
            raise ValueError("n_permutations must be at least 1")
        if self.rots_bootstraps < 2:
            raise ValueError("rots_bootstraps must be at least 2")
        if self.constand_max_iterations < 1:
            raise ValueError("constand_max_iterations must be at least 1")
        if self.constand_tolerance <= 0:
            raise ValueError("constand_tolerance must be positive")
        if self.mixed_model_random_effect not in MIXED_MODEL_RANDOM_EFFECTS:
            raise ValueError(
                f"mixed_model_random_effect must be one of {MIXED_MODEL_RANDOM_EFFECTS}"
            )
        if self.normalization_random_effect not in NORMALIZATION_RANDOM_EFFECTS:
            raise ValueError(
                f"normalization_random_effect must be one of {NORMALIZATION_RANDOM_EFFECTS}"
            )
        return True

    def with_overrides(self, **changes) -> "WorkflowConfig":
        """Return a copy with the given fields replaced"""
        if "spiked_proteins" in changes and changes["spiked_proteins"] is not None:
            changes["spiked_proteins"] = tuple(changes["spiked_proteins"])
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        config_dict = asdict(self)
        config_dict["spiked_proteins"] = list(self.spiked_proteins)
        return config_dict

    @classmethod
    def from_dict(cls, mapping: Dict[str, Any]) -> "WorkflowConfig":
        """Build a configuration from a mapping, ignoring unknown keys"""
        known = {f.name for f in fields(cls)}
        kwargs = {key: value for key, value in mapping.items() if key in known}
        if kwargs.get("spiked_proteins") is not None:
            kwargs["spiked_proteins"] = tuple(kwargs["spiked_proteins"])
        if kwargs.get("reference_condition") is not None:
            kwargs["reference_condition"] = str(kwargs["reference_condition"])
        return cls(**kwargs)
