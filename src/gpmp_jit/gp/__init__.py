# Copyright (c) 2025.
# This file is part of gpmp-jit, released under the MIT License.
