"""
Runtime settings and logging setup for fastgeod.

All numeric knobs of the geodesic-circle pipeline live in GeodesicSettings,
passed explicitly to the functions that need them. The log level is a setting
too; library modules only ever call logging.getLogger(__name__) and leave
handler configuration to the command line drivers.
"""

import logging
import os
import sys
from dataclasses import dataclass, fields
from typing import Optional

from fastgeod_errors import InvalidArgument

LOG_FORMAT = '%(asctime)s [%(levelname)s] %(message)s'

SPLINE_KINDS = ('pchip', 'not-a-knot', 'natural', 'clamped')
BACKENDS = ('thread', 'process')


@dataclass(frozen=True)
class GeodesicSettings:
    """
    Tunables for distance propagation, circle fitting and batch execution.

    Args:
        log_level: Logging level name used by configure_logging
        n_radius_samples: Number of radii sampled around the ideal radius
        radius_half_width: Half width of the radius sample grid (mesh units)
        resample_factor: Spline resampling density relative to the sample grid
        margin_edge_factor: Propagation margin in multiples of the max edge length
        spline: 'pchip' (monotone) or a CubicSpline boundary condition
        sentinel_eps: Distances at or below this read as "not reached"
        workers: Worker count for batch runs (None uses os.cpu_count())
        backend: 'thread' or 'process' executor
        progress: Show tqdm progress bars
    """
    log_level: str = 'WARNING'
    n_radius_samples: int = 10
    radius_half_width: float = 10.0
    resample_factor: int = 10
    margin_edge_factor: float = 8.0
    spline: str = 'pchip'
    sentinel_eps: float = 1e-9
    workers: Optional[int] = None
    backend: str = 'thread'
    progress: bool = True

    def __post_init__(self):
        self.validate()

    def validate(self):
        if int(self.n_radius_samples) < 2:
            raise InvalidArgument(f"n_radius_samples must be >= 2, got {self.n_radius_samples}")
        if not self.radius_half_width > 0:
            raise InvalidArgument(f"radius_half_width must be > 0, got {self.radius_half_width}")
        if int(self.resample_factor) < 1:
            raise InvalidArgument(f"resample_factor must be >= 1, got {self.resample_factor}")
        if not self.margin_edge_factor >= 0:
            raise InvalidArgument(f"margin_edge_factor must be >= 0, got {self.margin_edge_factor}")
        if self.spline not in SPLINE_KINDS:
            raise InvalidArgument(f"spline must be one of {SPLINE_KINDS}, got {self.spline!r}")
        if not self.sentinel_eps >= 0:
            raise InvalidArgument(f"sentinel_eps must be >= 0, got {self.sentinel_eps}")
        if self.workers is not None and int(self.workers) < 1:
            raise InvalidArgument(f"workers must be >= 1, got {self.workers}")
        if self.backend not in BACKENDS:
            raise InvalidArgument(f"backend must be one of {BACKENDS}, got {self.backend!r}")
        if not isinstance(logging.getLevelName(str(self.log_level).upper()), int):
            raise InvalidArgument(f"Unknown log level: {self.log_level!r}")

    @property
    def n_workers(self):
        if self.workers is None:
            return os.cpu_count() or 1
        return int(self.workers)

    @classmethod
    def from_args(cls, args):
        """Build settings from an argparse namespace, ignoring unrelated attributes."""
        names = {f.name for f in fields(cls)}
        kwargs = {k: v for k, v in vars(args).items() if k in names and v is not None}
        return cls(**kwargs)


def configure_logging(level='INFO'):
    """Configure root logging the way the command line drivers expect."""
    numeric = logging.getLevelName(str(level).upper())
    if not isinstance(numeric, int):
        raise InvalidArgument(f"Unknown log level: {level!r}")
    logging.basicConfig(
        level=numeric,
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )
    return numeric
