"""Correspondences between the face contour landmarks and the model's occluding silhouette.

The vertex that shows up on the outline of the face depends on the pose, so
the contour landmarks (e.g. ibug 1-8 and 10-17) are re-assigned to model
vertices after every pose estimate.
"""
import logging

import numpy as np

from facefit.linear_solver import Correspondences

logger = logging.getLogger(__name__)


def find_closest_index(point, candidates):
    """Index of the candidate closest to point. The first one wins a tie."""
    dists = np.linalg.norm(candidates - point, axis=1)
    return int(np.argmin(dists))


def triangle_facing(points2d, triangles):
    """True for triangles that face the camera.

    Triangles are counter-clockwise seen from outside in the y-up model frame,
    so a visible one winds clockwise in y-down image coordinates.
    """
    p0 = points2d[triangles[:, 0]]
    e1 = points2d[triangles[:, 1]] - p0
    e2 = points2d[triangles[:, 2]] - p0
    signed_area = e1[:, 0] * e2[:, 1] - e1[:, 1] * e2[:, 0]
    return signed_area < 0


def occluding_edges(facing, edge_topology):
    """Mask of the edges on the silhouette.

    An interior edge is occluding when exactly one of its two triangles faces
    the camera, a boundary edge when its only triangle does.
    """
    faces = edge_topology.adjacent_faces
    boundary = (faces[:, 0] < 0) | (faces[:, 1] < 0)
    visible = facing[np.maximum(faces, 0)] & (faces >= 0)
    interior_occluding = ~boundary & (visible[:, 0] != visible[:, 1])
    boundary_occluding = boundary & (visible[:, 0] | visible[:, 1])
    return interior_occluding | boundary_occluding


def occluding_vertices(mesh, camera, edge_topology):
    """Sorted indices of the vertices lying on an occluding edge."""
    points2d = camera.project(mesh.vertices)
    facing = triangle_facing(points2d, mesh.triangles)
    mask = occluding_edges(facing, edge_topology)
    return np.unique(edge_topology.adjacent_vertices[mask])


def resolve_contour_correspondences(mesh, camera, contour, edge_topology, landmarks):
    """Assign every observed contour landmark to its nearest silhouette vertex.

    Parameters
    ----------
    mesh : current Mesh
    camera : current CameraParameters
    contour : ContourDefinition
    edge_topology : EdgeTopology of the mesh
    landmarks : dict of landmark identifier -> (2,) image point

    Returns
    -------
    Correspondences of the contour landmarks, right side first, each side in
    the order of the contour definition.
    """
    exposed = occluding_vertices(mesh, camera, edge_topology)
    names, vertices, points = [], [], []
    for side, landmark_ids, candidates in contour.sides():
        observed = [name for name in landmark_ids if name in landmarks]
        if not observed:
            continue
        candidates = np.unique(np.asarray(candidates, dtype=int))
        on_silhouette = candidates[np.isin(candidates, exposed)]
        if on_silhouette.size == 0:
            logger.debug('No %s contour candidate is on the silhouette, using all %d candidates',
                         side, candidates.size)
            on_silhouette = candidates
        projected = camera.project(mesh.vertices[on_silhouette])
        for name in observed:
            point = np.asarray(landmarks[name], dtype=float)
            names.append(name)
            vertices.append(on_silhouette[find_closest_index(point, projected)])
            points.append(point)
    if not names:
        return Correspondences.empty()
    return Correspondences(tuple(names), np.array(vertices, dtype=int), np.array(points))
