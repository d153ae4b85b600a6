# Copyright 2024-2025 pylinsol authors. All rights reserved.

from pylinsol.graph.expr import (
    Add,
    Constant,
    Expr,
    MatMul,
    Neg,
    RowSlice,
    Slot,
    SolveNode,
    Sub,
    Symbol,
    Transpose,
    Vertcat,
    Zero,
    add,
    constant,
    is_zero,
    mul,
    neg,
    sub,
    symbol,
    trans,
    vertcat,
    vertsplit,
    zeros,
)

__all__ = [
    "Add",
    "Constant",
    "Expr",
    "MatMul",
    "Neg",
    "RowSlice",
    "Slot",
    "SolveNode",
    "Sub",
    "Symbol",
    "Transpose",
    "Vertcat",
    "Zero",
    "add",
    "constant",
    "is_zero",
    "mul",
    "neg",
    "sub",
    "symbol",
    "trans",
    "vertcat",
    "vertsplit",
    "zeros",
]
