# Copyright 2024-2025 pylinsol authors. All rights reserved.

from pylinsol.utils.print_utils import add_str_header, format_size

__all__ = [
    "add_str_header",
    "format_size",
]
