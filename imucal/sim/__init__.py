"""
Synthetic measurement generation for calibration tests and examples.

Modules:
    measurements: Static samples at random attitudes, with optional noise
        and outlier corruption
"""

from imucal.sim.measurements import (
    corrupt_measurements,
    generate_static_measurements,
    random_attitude,
)

__all__ = [
    "generate_static_measurements",
    "corrupt_measurements",
    "random_attitude",
]
