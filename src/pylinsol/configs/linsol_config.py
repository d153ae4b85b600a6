# Copyright 2024-2025 pylinsol authors. All rights reserved.

import tomllib
from typing import Literal

from pydantic import BaseModel, ConfigDict


class SolverConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: Literal["scipy", "dense", "cholesky"] = "scipy"

    # column ordering used by the sparse LU backend
    permc_spec: Literal["COLAMD", "NATURAL", "MMD_ATA", "MMD_AT_PLUS_A"] = "COLAMD"


class LinearSolverConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    # --- Factorization backend ------------------------------------------------
    solver: SolverConfig = SolverConfig()

    # Skip the factorization in evaluate() when the values of A did not change
    # since the last successful prepare(). prepare()/solve() never check this.
    reuse_factorization: bool = False

    # --- Dependency propagation -----------------------------------------------
    # "conservative": whole-row granularity, linear cost.
    # "precise": fixed-point over the structural graph of A.
    sparsity_propagation: Literal["conservative", "precise"] = "conservative"

    # --- Capabilities ---------------------------------------------------------
    # Directional derivatives are obtained through evaluate_symbolic /
    # evaluate_numeric, never natively.
    number_of_fwd_dir: Literal[0] = 0
    number_of_adj_dir: Literal[0] = 0
    max_number_of_fwd_dir: Literal[0] = 0
    max_number_of_adj_dir: Literal[0] = 0


def parse_config(config: dict | str) -> LinearSolverConfig:
    if isinstance(config, str):
        with open(config, "rb") as f:
            config = tomllib.load(f)

    return LinearSolverConfig(**config)
