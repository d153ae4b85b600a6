# Copyright 2024-2025 pylinsol authors. All rights reserved.

from pylinsol.configs.linsol_config import (
    LinearSolverConfig,
    SolverConfig,
    parse_config,
)

__all__ = ["LinearSolverConfig", "SolverConfig", "parse_config"]
