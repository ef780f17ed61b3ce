# Copyright (c) 2025.
# This file is part of gpmp-jit, released under the MIT License.
import jax

# Planner tests compare against closed-form values; run them in double precision.
jax.config.update("jax_enable_x64", True)
