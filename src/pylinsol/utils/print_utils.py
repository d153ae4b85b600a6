# Copyright 2024-2025 pylinsol authors. All rights reserved.


def add_str_header(
    title: str,
    table: str,
):
    """Add a header to a table."""
    # Add the header title
    table_width = max(len(line) for line in table.split("\n"))
    title_width = len(title)
    total_width = max(table_width, title_width)
    title_centered = title.center(total_width)
    table = f"{title_centered}\n{table}"

    return table


def format_size(size_bytes: int) -> str:
    """Human readable size of a number of bytes."""
    for unit in ["B", "KB", "MB", "GB"]:
        if size_bytes < 1024:
            return f"{size_bytes:.2f} {unit}"
        size_bytes /= 1024
    return f"{size_bytes:.2f} TB"
