# Copyright 2024-2025 pylinsol authors. All rights reserved.

__version__ = "0.1.0"
