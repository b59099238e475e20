#!/usr/bin/env python3
"""
Geodesic circle and neighborhood measures on FreeSurfer cortical surfaces.

For every cortical vertex this computes, from shortest paths over the mesh
edge graph (Dijkstra with Euclidean edge lengths):

KEY METRICS COMPUTED:
1. Geodesic circle radius: radius of the geodesic disc enclosing a fixed
   percentage of the cortical surface area around the vertex
2. Geodesic circle perimeter: length of that disc's boundary contour
3. Mean geodesic distance: average distance from the vertex to all vertices
4. Geodesic neighborhoods: all vertices within a given path distance, with
   centered coordinates, normals and an optional per-vertex descriptor
5. Geodesic path: the shortest edge path between two vertices and its length

OUTPUTS (per hemisphere, in {subject}/surf by default):
- {hemi}.geocirc_radius_{surf}_a{scale}, {hemi}.geocirc_perimeter_{surf}_a{scale}
  and {hemi}.mean_geodist_{surf} as FreeSurfer curv files
- {subject}_{hemi}_{surf}_geocirc_a{scale}.csv with all circle measures
- {subject}_{hemi}_{surf}_geodneigh_d{dist}.csv/.json (or _kring{k} with --k) for neighborhood mode
- {subject}_{hemi}_{surf}_geodpath_{source}_{target}.csv for path mode

Vertices outside the cortex label (medial wall) are excluded from propagation
and read NaN in every output.
"""

import argparse
import logging
import os

import numpy as np

from fastgeod_dijkstra import shortest_path
from fastgeod_errors import GeodesicError, InvalidArgument
from fastgeod_io import (circles_to_frame, load_cortex_mask, load_descriptor, load_surface,
                         neighborhoods_to_frame, neighbors_to_frame, neighbors_to_json,
                         path_to_frame, scatter_to_vertices, write_curv)
from fastgeod_neigh import edge_neighborhoods
from fastgeod_parallel import geodesic_circles, geodesic_neighborhoods, mean_geodesic_distances
from fastgeod_settings import SPLINE_KINDS, GeodesicSettings, configure_logging

logger = logging.getLogger(__name__)

MODES = ('circles', 'meandist', 'neighbors', 'path')


# ============================================================================
# MAIN ANALYSIS CLASS
# ============================================================================

class GeodesicCircleAnalysis:
    """
    Geodesic measures for one subject hemisphere.

    Loads the surface and cortex mask once; every compute_* method runs a
    parallel batch over the cortical vertices and keeps full-length result
    arrays (NaN outside the cortex).
    """

    def __init__(self, subject_dir, subject_id, hemi='lh', surf_type='pial', custom_label=None,
                 settings=None):
        """
        Args:
            subject_dir: FreeSurfer subjects directory path
            subject_id: Subject identifier
            hemi: Hemisphere ('lh' or 'rh')
            surf_type: Surface name ('pial', 'white', ...)
            custom_label: Cortex label name used instead of 'cortex' ({hemi}.{label}.label)
            settings: GeodesicSettings
        """
        self.subject_dir = subject_dir
        self.subject_id = subject_id
        self.hemi = hemi
        self.surf_type = surf_type
        self.custom_label = custom_label
        self.settings = settings or GeodesicSettings()

        surf_path = os.path.join(subject_dir, subject_id, 'surf', f'{hemi}.{surf_type}')
        self.mesh = load_surface(surf_path)
        self.cortex_mask = self._load_cortex_mask()
        logger.info(f"Cortical vertices (excluding medial wall): {int(np.sum(self.cortex_mask))}")

        self.scale = 5.0
        self.max_distance = 5.0
        self.k = None
        self.source = None
        self.target = None
        self.path = None
        self.with_mean_distance = False
        self.circles = None
        self.radius = None
        self.perimeter = None
        self.mean_distance = None
        self.neighborhoods = None

    def _load_cortex_mask(self):
        label_name = f'{self.hemi}.{self.custom_label or "cortex"}.label'
        label_path = os.path.join(self.subject_dir, self.subject_id, 'label', label_name)
        if os.path.exists(label_path):
            return load_cortex_mask(label_path, self.mesh.n_vertices)
        if self.custom_label:
            raise FileNotFoundError(f"Custom cortex label not found: {label_path}")
        logger.warning(f"Cortex label {label_path} not found. Using all vertices.")
        return np.ones(self.mesh.n_vertices, dtype=bool)

    # ========================================================================
    # COMPUTATION
    # ========================================================================

    def compute_circles(self, scale=5.0, compute_mean_distance=True):
        """
        Geodesic circle radius/perimeter at `scale` percent of cortical area.
        """
        self.scale = float(scale)
        self.with_mean_distance = bool(compute_mean_distance)
        circles = geodesic_circles(self.mesh, area_fraction_percent=scale,
                                   compute_mean_distance=compute_mean_distance,
                                   cortical_mask=self.cortex_mask, settings=self.settings)
        n = self.mesh.n_vertices
        self.circles = circles
        self.radius = scatter_to_vertices(circles.query_vertices, circles.radius, n)
        self.perimeter = scatter_to_vertices(circles.query_vertices, circles.perimeter, n)
        if circles.mean_distance is not None:
            self.mean_distance = scatter_to_vertices(circles.query_vertices, circles.mean_distance, n)
        return circles

    def compute_mean_distances(self):
        q, mean = mean_geodesic_distances(self.mesh, cortical_mask=self.cortex_mask, settings=self.settings)
        self.mean_distance = scatter_to_vertices(q, mean, self.mesh.n_vertices)
        return self.mean_distance

    def compute_neighborhoods(self, max_distance, include_self=True, k=None):
        """
        Geodesic neighborhoods within max_distance, or k-hop rings when k is given.
        """
        normals = self.mesh.vertex_normals('area')
        self.max_distance = float(max_distance)
        self.k = k
        if k:
            query = np.flatnonzero(self.cortex_mask)
            self.neighborhoods = edge_neighborhoods(self.mesh, query, k=k, include_self=include_self,
                                                    normals=normals)
            return self.neighborhoods
        self.neighborhoods = geodesic_neighborhoods(self.mesh, max_distance, include_self=include_self,
                                                    normals=normals, cortical_mask=self.cortex_mask,
                                                    settings=self.settings)
        return self.neighborhoods

    def compute_path(self, source, target):
        """Shortest edge path between two cortical vertices."""
        self.source, self.target = int(source), int(target)
        exclude = None if self.cortex_mask.all() else ~self.cortex_mask
        self.path = shortest_path(self.mesh, source, target, exclude_mask=exclude)
        logger.info(f"Path {source} -> {target}: {len(self.path.indices)} vertices, length {self.path.length:.4f}")
        return self.path

    # ========================================================================
    # OUTPUT
    # ========================================================================

    def get_output_files(self, output_dir, mode):
        """Paths this analysis writes for the given mode."""
        h, s = self.hemi, self.surf_type
        if mode == 'circles':
            a = f'{self.scale:g}'
            files = [
                os.path.join(output_dir, f'{h}.geocirc_radius_{s}_a{a}'),
                os.path.join(output_dir, f'{h}.geocirc_perimeter_{s}_a{a}'),
                os.path.join(output_dir, f'{self.subject_id}_{h}_{s}_geocirc_a{a}.csv'),
            ]
            if self.with_mean_distance:
                files.append(os.path.join(output_dir, f'{h}.mean_geodist_{s}'))
            return files
        if mode == 'meandist':
            return [os.path.join(output_dir, f'{h}.mean_geodist_{s}')]
        if mode == 'path':
            return [os.path.join(output_dir, f'{self.subject_id}_{h}_{s}_geodpath_{self.source}_{self.target}.csv')]
        if self.k:
            base = os.path.join(output_dir, f'{self.subject_id}_{h}_{s}_kring{self.k}')
        else:
            d = f'{self.max_distance:g}'
            base = os.path.join(output_dir, f'{self.subject_id}_{h}_{s}_geodneigh_d{d}')
        return [base + '.csv', base + '.json', base + '_wide.csv']

    def check_output_files_exist(self, output_dir, mode):
        existing = [f for f in self.get_output_files(output_dir, mode) if os.path.exists(f)]
        return len(existing) > 0, existing

    def save_results(self, output_dir, mode, descriptor=None, neigh_write_size=0, allow_nan=False):
        os.makedirs(output_dir, exist_ok=True)
        files = self.get_output_files(output_dir, mode)
        if mode == 'circles':
            write_curv(files[0], self.radius)
            write_curv(files[1], self.perimeter)
            circles_to_frame(self.circles, self.mesh.n_vertices).to_csv(files[2], index=False)
            logger.info(f"Saved {files[2]}")
            if self.with_mean_distance:
                write_curv(files[3], self.mean_distance)
        elif mode == 'meandist':
            write_curv(files[0], self.mean_distance)
        elif mode == 'path':
            path_to_frame(self.path).to_csv(files[0], index=False)
            logger.info(f"Saved {files[0]}")
        else:
            neighbors_to_frame(self.neighborhoods).to_csv(files[0], index=False)
            with open(files[1], 'w') as f:
                f.write(neighbors_to_json(self.neighborhoods))
            neighborhoods_to_frame(self.neighborhoods, neigh_write_size=neigh_write_size,
                                   allow_nan=allow_nan, descriptor=descriptor).to_csv(files[2], index=False)
            for p in files:
                logger.info(f"Saved {p}")
        return files


# ============================================================================
# DRIVER FUNCTIONS
# ============================================================================

def process_subject(subject_dir, subject_id, output_dir=None, hemispheres=('lh', 'rh'), surf_type='pial',
                    custom_label=None, mode='circles', scale=5.0, compute_mean_distance=True,
                    max_distance=5.0, k=None, include_self=True, descriptor=None, neigh_write_size=0,
                    allow_nan=False, source=None, target=None, overwrite=False, settings=None):
    """
    Run one mode of the analysis on both hemispheres of a subject.

    Returns:
        list of written files
    """
    if mode == 'path' and (source is None or target is None):
        raise InvalidArgument("path mode needs both a source and a target vertex")
    if output_dir is None:
        output_dir = os.path.join(subject_dir, subject_id, 'surf')
    logger.info(f"Processing subject {subject_id} ({surf_type}, mode={mode}) -> {output_dir}")

    written = []
    for hemi in hemispheres:
        logger.info(f"--- {subject_id} {hemi} ---")
        analysis = GeodesicCircleAnalysis(subject_dir, subject_id, hemi=hemi, surf_type=surf_type,
                                          custom_label=custom_label, settings=settings)
        # output names depend on these
        analysis.scale = float(scale)
        analysis.max_distance = float(max_distance)
        analysis.k = k if mode == 'neighbors' else None
        analysis.source, analysis.target = source, target
        analysis.with_mean_distance = mode == 'circles' and compute_mean_distance

        if not overwrite:
            files_exist, existing = analysis.check_output_files_exist(output_dir, mode)
            if files_exist:
                logger.warning(f"Output files already exist for {subject_id} {hemi}, skipping "
                               f"(use --overwrite): {', '.join(existing)}")
                continue

        desc_values = None
        if descriptor:
            desc_path = os.path.join(subject_dir, subject_id, 'surf', f'{hemi}.{descriptor}')
            desc_values = load_descriptor(desc_path, analysis.mesh.n_vertices)

        if mode == 'circles':
            analysis.compute_circles(scale=scale, compute_mean_distance=compute_mean_distance)
        elif mode == 'meandist':
            analysis.compute_mean_distances()
        elif mode == 'path':
            analysis.compute_path(source, target)
        else:
            analysis.compute_neighborhoods(max_distance, include_self=include_self, k=k)

        written.extend(analysis.save_results(output_dir, mode, descriptor=desc_values,
                                             neigh_write_size=neigh_write_size, allow_nan=allow_nan))
    return written


def build_parser():
    parser = argparse.ArgumentParser(
        description='Geodesic circle radius/perimeter, mean geodesic distance and geodesic neighborhoods '
                    'on FreeSurfer surfaces'
    )
    parser.add_argument('subject_dir', help='FreeSurfer subjects directory')
    parser.add_argument('subject_id', help='Subject ID')
    parser.add_argument('--mode', choices=MODES, default='circles', help='Measure to compute (default: circles)')
    parser.add_argument('--output-dir', default=None,
                        help='Output directory (default: {subject_dir}/{subject_id}/surf/)')
    parser.add_argument('--hemispheres', nargs='+', default=['lh', 'rh'], help='Hemispheres to process')
    parser.add_argument('--surf-type', default='pial', help='Surface name: pial, white, or a custom surface')
    parser.add_argument('--custom-label', default=None,
                        help='Custom cortex label name (e.g. cortex6 for {hemi}.cortex6.label)')
    parser.add_argument('--overwrite', action='store_true', default=False,
                        help='Overwrite existing output files (default: skip the hemisphere)')
    parser.add_argument('--scale', type=float, default=5.0,
                        help='Geodesic circle area in percent of cortical area (default: 5.0)')
    parser.add_argument('--compute-mean-dist', dest='compute_mean_distance', action='store_true', default=True,
                        help='Also compute the mean geodesic distance in circles mode (default: True)')
    parser.add_argument('--no-compute-mean-dist', dest='compute_mean_distance', action='store_false',
                        help='Skip the mean geodesic distance (faster, bounded propagation)')
    parser.add_argument('--max-dist', dest='max_distance', type=float, default=5.0,
                        help='Neighborhood radius in mesh units for neighbors mode (default: 5.0)')
    parser.add_argument('--k', type=int, default=None,
                        help='Use k-hop edge rings instead of geodesic distance in neighbors mode')
    parser.add_argument('--no-include-self', dest='include_self', action='store_false', default=True,
                        help='Leave the source vertex out of its own neighborhood')
    parser.add_argument('--descriptor', default=None,
                        help='Morph data name passed through in neighborhood rows (e.g. thickness)')
    parser.add_argument('--neigh-write-size', type=int, default=0,
                        help='Neighbor slots per wide CSV row (0: smallest neighborhood size)')
    parser.add_argument('--allow-nan', action='store_true', default=False,
                        help='Pad short neighborhoods with NaN in the wide CSV')
    parser.add_argument('--source', type=int, default=None, help='Path start vertex for path mode')
    parser.add_argument('--target', type=int, default=None, help='Path end vertex for path mode')
    parser.add_argument('--spline', choices=SPLINE_KINDS, default='pchip',
                        help='Spline used for the radius fit (default: pchip)')
    parser.add_argument('--workers', type=int, default=None, help='Worker count (default: all CPUs)')
    parser.add_argument('--backend', choices=('thread', 'process'), default='thread',
                        help='Parallel backend (default: thread)')
    parser.add_argument('--no-progress', dest='progress', action='store_false', default=True,
                        help='Disable progress bars')
    parser.add_argument('--log-level', default='INFO', help='Logging level (default: INFO)')
    return parser


def main(argv=None):
    """Command-line interface for the geodesic circle analysis."""
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)

    if args.surf_type not in ['pial', 'white', 'inflated'] and args.custom_label is None:
        logger.warning("Using a custom surface without --custom-label; the cortex mask may not match the mesh.")

    try:
        settings = GeodesicSettings.from_args(args)
        process_subject(args.subject_dir, args.subject_id, args.output_dir, hemispheres=args.hemispheres,
                        surf_type=args.surf_type, custom_label=args.custom_label, mode=args.mode,
                        scale=args.scale, compute_mean_distance=args.compute_mean_distance,
                        max_distance=args.max_distance, k=args.k, include_self=args.include_self,
                        descriptor=args.descriptor, neigh_write_size=args.neigh_write_size,
                        allow_nan=args.allow_nan, source=args.source, target=args.target,
                        overwrite=args.overwrite, settings=settings)
    except (GeodesicError, FileNotFoundError) as exc:
        logger.error(f"{args.subject_id}: {exc}")
        return 1

    logger.info("Analysis complete!")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
