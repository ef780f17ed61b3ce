# Copyright (c) 2025.
# This file is part of gpmp-jit, released under the MIT License.
"""Exceptions raised by gpmp-jit before any solving begins."""


class InvalidConfigurationError(ValueError):
    """Structural input error: bad settings, dimensions or robot/SDF pairing."""
