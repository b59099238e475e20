"""
FreeSurfer surface I/O and tabular/JSON export of fastgeod results.

Loading and saving go through nibabel.freesurfer; tables are pandas DataFrames
so they can be written with to_csv or inspected directly.
"""

import json
import logging
import os

import nibabel as nib
import numpy as np
import pandas as pd

from fastgeod_errors import InvalidArgument
from fastgeod_mesh import MeshGraph

logger = logging.getLogger(__name__)


# ============================================================================
# LOADING
# ============================================================================

def load_surface(surf_path):
    """
    Load a FreeSurfer surface (e.g. lh.pial) into a MeshGraph.
    """
    if not os.path.exists(surf_path):
        raise FileNotFoundError(f"Surface file not found: {surf_path}")
    vertices, faces = nib.freesurfer.read_geometry(surf_path)
    mesh = MeshGraph(vertices.astype(np.float64), faces.astype(np.int64))
    logger.info(f"Loaded surface {surf_path}: {mesh.n_vertices} vertices, {mesh.n_faces} faces")
    return mesh


def load_cortex_mask(label_path, n_vertices):
    """
    Boolean vertex mask from a FreeSurfer label file; out-of-range indices are ignored.
    """
    if not os.path.exists(label_path):
        raise FileNotFoundError(f"Label file not found: {label_path}")
    idx = nib.freesurfer.read_label(label_path)
    mask = np.zeros(int(n_vertices), dtype=bool)
    idx = idx[(idx >= 0) & (idx < mask.shape[0])]
    mask[idx] = True
    logger.info(f"Loaded cortex mask: {int(np.sum(mask))} of {mask.shape[0]} vertices")
    return mask


def load_descriptor(morph_path, n_vertices):
    """
    Per-vertex scalar field (thickness, curv, ...) from a FreeSurfer morph data file.
    """
    values = np.asarray(nib.freesurfer.read_morph_data(morph_path), dtype=np.float64)
    if values.shape != (int(n_vertices),):
        raise InvalidArgument(f"Descriptor {morph_path} has {values.shape[0]} values, mesh has {n_vertices} vertices")
    return values


# ============================================================================
# SAVING
# ============================================================================

def write_curv(path, values):
    """Write a per-vertex array as a FreeSurfer curv file (float32)."""
    nib.freesurfer.write_morph_data(path, np.asarray(values, dtype=np.float32))
    logger.info(f"Saved {path}")


def scatter_to_vertices(query_vertices, values, n_vertices):
    """Full-length float32 array with values at query_vertices and NaN elsewhere."""
    out = np.full(int(n_vertices), np.nan, dtype=np.float32)
    out[np.asarray(query_vertices, dtype=np.int64)] = values
    return out


def circles_to_frame(circles, n_vertices):
    """
    One row per mesh vertex: vertex, radius, perimeter (and mean_distance when computed).
    """
    data = {
        'vertex': np.arange(int(n_vertices)),
        'radius': scatter_to_vertices(circles.query_vertices, circles.radius, n_vertices),
        'perimeter': scatter_to_vertices(circles.query_vertices, circles.perimeter, n_vertices),
    }
    if circles.mean_distance is not None:
        data['mean_distance'] = scatter_to_vertices(circles.query_vertices, circles.mean_distance, n_vertices)
    return pd.DataFrame(data)


def neighbors_to_frame(neighborhoods):
    """Long format: one (source, target, distance) row per neighbor."""
    rows = [
        {'source': nh.index, 'target': n.index, 'distance': n.distance}
        for nh in neighborhoods
        for n in nh.neighbors
    ]
    return pd.DataFrame(rows, columns=['source', 'target', 'distance'])


def neighbors_to_json(neighborhoods, indent=None):
    """
    JSON document {"neighbors": {source: [targets]}, "distances": {source: [distances]}}.
    """
    doc = {
        'neighbors': {str(nh.index): [int(i) for i in nh.indices] for nh in neighborhoods},
        'distances': {str(nh.index): [float(d) for d in nh.distances] for nh in neighborhoods},
    }
    return json.dumps(doc, indent=indent)


def neighborhoods_to_frame(neighborhoods, neigh_write_size=0, allow_nan=False, descriptor=None):
    """
    Wide format: one row per neighborhood with a fixed number of neighbor slots.

    Each slot j contributes n{j}_index, n{j}_x/y/z (centered offset), n{j}_dist,
    n{j}_nx/ny/nz when normals are present, and n{j}_desc when a per-vertex
    descriptor is given.

    Args:
        neighborhoods: list of Neighborhood
        neigh_write_size: Slots per row; 0 uses the smallest neighborhood size
            (larger neighborhoods are truncated)
        allow_nan: Pad short neighborhoods with NaN instead of failing
        descriptor: Optional (N,) per-vertex values passed through untouched

    Returns:
        pandas DataFrame
    """
    if not neighborhoods:
        return pd.DataFrame(columns=['source'])
    sizes = [len(nh) for nh in neighborhoods]
    size = int(neigh_write_size) if neigh_write_size else min(sizes)
    if size < 0:
        raise InvalidArgument(f"neigh_write_size must be >= 0, got {neigh_write_size}")
    if not allow_nan and min(sizes) < size:
        short = neighborhoods[int(np.argmin(sizes))]
        raise InvalidArgument(
            f"Neighborhood of vertex {short.index} has {len(short)} neighbors, fewer than the "
            f"requested {size}; pass allow_nan to pad"
        )
    if descriptor is not None:
        descriptor = np.asarray(descriptor, dtype=np.float64)
    with_normals = all(nh.normals is not None for nh in neighborhoods)

    rows = []
    for nh in neighborhoods:
        row = {'source': nh.index}
        for j in range(size):
            n = nh.neighbors[j] if j < len(nh) else None
            row[f'n{j}_index'] = n.index if n is not None else np.nan
            row[f'n{j}_x'] = n.offset.x if n is not None else np.nan
            row[f'n{j}_y'] = n.offset.y if n is not None else np.nan
            row[f'n{j}_z'] = n.offset.z if n is not None else np.nan
            row[f'n{j}_dist'] = n.distance if n is not None else np.nan
            if with_normals:
                row[f'n{j}_nx'] = n.normal.x if n is not None else np.nan
                row[f'n{j}_ny'] = n.normal.y if n is not None else np.nan
                row[f'n{j}_nz'] = n.normal.z if n is not None else np.nan
            if descriptor is not None:
                row[f'n{j}_desc'] = descriptor[n.index] if n is not None else np.nan
        rows.append(row)
    return pd.DataFrame(rows)


def path_to_frame(path):
    """One row per path vertex: step, vertex, x, y, z and the distance walked so far."""
    pts = np.asarray(path.points, dtype=np.float64).reshape(-1, 3)
    steps = np.linalg.norm(np.diff(pts, axis=0), axis=1)
    walked = np.concatenate(([0.0], np.cumsum(steps))) if len(pts) else np.zeros(0)
    return pd.DataFrame({
        'step': np.arange(len(pts)),
        'vertex': np.asarray(path.indices, dtype=np.int64),
        'x': pts[:, 0],
        'y': pts[:, 1],
        'z': pts[:, 2],
        'distance': walked,
    })
