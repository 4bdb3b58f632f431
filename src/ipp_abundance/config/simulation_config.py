"""Simulation and sampler configuration.

Provides YAML-configurable settings for the simulated abundance field, the
reporting-unit partition and the MCMC sampler.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Optional

import yaml

logger = logging.getLogger(__name__)

# Default config path relative to project root
DEFAULT_CONFIG_PATH = Path(__file__).parent.parent.parent.parent / "config" / "abundance.yaml"


@dataclass
class SimulationConfig:
    """Settings for the simulated grid, abundance field and partition.

    Attributes:
        n_rows: Grid rows.
        n_cols: Grid columns.
        cell_size: Side length of a grid cell.
        n_covariates: Number of simulated covariates.
        length_scale: Spatial smoothing of covariates, in cells.
        intercept: Log intensity per unit area at zero covariates.
        coefficients: True covariate effects (one per covariate).
        n_units: Number of irregular reporting units.
        n_sites: Number of surveyed cells for the site-level model.
        seed: Random seed; None draws fresh entropy.
    """

    n_rows: int = 30
    n_cols: int = 30
    cell_size: float = 1.0
    n_covariates: int = 2
    length_scale: float = 3.0
    intercept: float = 0.5
    coefficients: list[float] = field(default_factory=lambda: [0.8, -0.5])
    n_units: int = 25
    n_sites: int = 100
    seed: Optional[int] = 42

    def __post_init__(self) -> None:
        """Validate sizes and coefficient count."""
        if self.coefficients is None:
            self.coefficients = []
        self.coefficients = [float(c) for c in self.coefficients]

        if self.n_rows < 1 or self.n_cols < 1:
            raise ValueError(f"Grid must be at least 1x1, got {self.n_rows}x{self.n_cols}")
        if self.cell_size <= 0:
            raise ValueError(f"cell_size must be positive, got {self.cell_size}")
        if len(self.coefficients) != self.n_covariates:
            raise ValueError(
                f"Expected {self.n_covariates} coefficients, got {len(self.coefficients)}"
            )
        if not 0 < self.n_units <= self.n_cells:
            raise ValueError(f"n_units must be in 1..{self.n_cells}, got {self.n_units}")
        if not 0 < self.n_sites <= self.n_cells:
            raise ValueError(f"n_sites must be in 1..{self.n_cells}, got {self.n_sites}")

    @property
    def n_cells(self) -> int:
        return self.n_rows * self.n_cols


@dataclass
class SamplerConfig:
    """Settings passed to ``pm.sample``."""

    draws: int = 1000
    tune: int = 1000
    chains: int = 2
    cores: int = 1
    target_accept: float = 0.9

    def __post_init__(self) -> None:
        if self.draws < 1 or self.chains < 1 or self.cores < 1 or self.tune < 0:
            raise ValueError(f"Invalid sampler settings: {self}")
        if not 0 < self.target_accept < 1:
            raise ValueError(f"target_accept must be in (0, 1), got {self.target_accept}")


@dataclass
class AbundanceConfig:
    """Full configuration: simulation plus sampler."""

    simulation: SimulationConfig = field(default_factory=SimulationConfig)
    sampler: SamplerConfig = field(default_factory=SamplerConfig)

    def summary(self) -> str:
        """Return a one-line summary of the configuration."""
        sim = self.simulation
        return (
            f"grid={sim.n_rows}x{sim.n_cols}, covariates={sim.n_covariates}, "
            f"units={sim.n_units}, sites={sim.n_sites}, seed={sim.seed}, "
            f"draws={self.sampler.draws}, chains={self.sampler.chains}"
        )


def _known_keys(cls: type, section: dict[str, Any], name: str) -> dict[str, Any]:
    allowed = {f.name for f in fields(cls)}
    unknown = sorted(set(section) - allowed)
    if unknown:
        logger.warning(f"Ignoring unknown keys in '{name}' section: {unknown}")
    return {k: v for k, v in section.items() if k in allowed}


def load_config(path: Optional[Path] = None) -> AbundanceConfig:
    """Load configuration from a YAML file.

    Args:
        path: Path to YAML config file. Uses default if not provided.

    Returns:
        AbundanceConfig with defaults for any missing keys.

    Raises:
        FileNotFoundError: If config file doesn't exist.
        ValueError: If a section is malformed or a value is invalid.
        yaml.YAMLError: If YAML parsing fails.
    """
    config_path = Path(path) if path is not None else DEFAULT_CONFIG_PATH

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    logger.info(f"Loading abundance config from {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ValueError(f"Config root must be a mapping, got {type(data).__name__}")

    sections = {}
    for name in ("simulation", "sampler"):
        # Empty keys parse as None, not {}
        section = data.get(name) or {}
        if not isinstance(section, dict):
            raise ValueError(f"Config section '{name}' must be a mapping")
        sections[name] = section

    return AbundanceConfig(
        simulation=SimulationConfig(**_known_keys(SimulationConfig, sections["simulation"], "simulation")),
        sampler=SamplerConfig(**_known_keys(SamplerConfig, sections["sampler"], "sampler")),
    )
