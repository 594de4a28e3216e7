"""Iterative fitting of pose, shape and expression to 2D landmarks.

Every outer iteration estimates the camera from the current correspondences,
re-assigns the contour landmarks to the silhouette seen from that camera, and
solves for the shape coefficients and then the blendshape coefficients with the
camera fixed. The number of iterations is fixed; there is no early exit.
"""
import logging
from dataclasses import dataclass
from typing import Mapping

import numpy as np

from facefit.camera import CameraParameters, estimate_camera
from facefit.contour import resolve_contour_correspondences
from facefit.errors import FittingError, InvalidInput
from facefit.linear_solver import Correspondences, fit_expression_coefficients, fit_shape_coefficients
from facefit.model import ContourDefinition, EdgeTopology, Mesh, generate_mesh
from facefit.settings import FittingSettings

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class FitIteration:
    """Snapshot of the fit after one outer iteration."""
    iteration: int
    camera: CameraParameters
    shape_coefficients: np.ndarray
    expression_coefficients: np.ndarray
    correspondences: Correspondences
    contour_correspondences: Correspondences
    reprojection_error: float


@dataclass(frozen=True, eq=False)
class FitResult:
    """Final mesh and camera of a fit. Unpacks as (mesh, camera)."""
    mesh: Mesh
    camera: CameraParameters
    shape_coefficients: np.ndarray
    expression_coefficients: np.ndarray
    iterations: tuple

    def __iter__(self):
        yield self.mesh
        yield self.camera

    @property
    def reprojection_errors(self):
        return [it.reprojection_error for it in self.iterations]


def landmark_dict(landmarks):
    """Landmarks as an ordered dict of identifier -> (2,) point, rejecting empty or duplicate input."""
    if isinstance(landmarks, Mapping):
        items = list(landmarks.items())
    else:
        items = [(lm[0], lm[1]) for lm in landmarks]
    if not items:
        raise InvalidInput('No landmarks given', step='input', num_correspondences=0)
    result = {}
    for name, coordinates in items:
        name = str(name)
        if name in result:
            raise InvalidInput('Landmark ' + name + ' appears more than once', step='input')
        point = np.asarray(coordinates, dtype=float).ravel()
        if point.size != 2 or not np.isfinite(point).all():
            raise InvalidInput('Landmark ' + name + ' is not a finite 2D point', step='input')
        result[name] = point
    return result


def fixed_correspondences(landmarks, landmark_mapping, contour=None):
    """Correspondences of the landmarks with a fixed vertex, i.e. mapped and not on the contour."""
    contour_ids = contour.landmark_ids if contour is not None else frozenset()
    names, vertices, points = [], [], []
    for name, point in landmarks.items():
        if name in contour_ids:
            continue
        vertex = landmark_mapping.convert(name)
        if vertex is None:
            logger.debug('Landmark %s has no vertex mapping, skipping it', name)
            continue
        names.append(name)
        vertices.append(vertex)
        points.append(point)
    if not names:
        return Correspondences.empty()
    return Correspondences(tuple(names), np.array(vertices, dtype=int), np.array(points))


def reprojection_error(mesh, camera, correspondences):
    """Mean pixel distance between projected correspondence vertices and their landmarks."""
    if len(correspondences) == 0:
        return 0.0
    projected = camera.project(mesh.vertices[correspondences.vertex_indices])
    return float(np.mean(np.linalg.norm(projected - correspondences.image_points, axis=1)))


def _validate(shape_model, blendshapes, landmarks, landmark_mapping, image_width, image_height,
              edge_topology, contour, settings):
    if image_width <= 0 or image_height <= 0:
        raise InvalidInput('Image size must be positive, got ' + str((image_width, image_height)), step='input')
    if blendshapes is not None:
        blendshapes.validate(shape_model)
    num_vertices = shape_model.num_vertices
    for name, vertex in landmark_mapping.mappings.items():
        if vertex < 0 or vertex >= num_vertices:
            raise InvalidInput('Landmark ' + name + ' maps to vertex ' + str(vertex) + ', the model has '
                               + str(num_vertices) + ' vertices', step='input')
    contour.validate(num_vertices)
    missing = sorted(contour.landmark_ids - set(landmarks))
    if missing:
        raise InvalidInput('Contour landmarks without an observation: ' + ', '.join(missing), step='input')
    if edge_topology is not None:
        edge_topology.validate(num_vertices, shape_model.triangles.shape[0])
    if settings.num_shape_coefficients is not None and settings.num_shape_coefficients > shape_model.num_coefficients:
        raise InvalidInput('Asked for ' + str(settings.num_shape_coefficients) + ' shape coefficients, the model has '
                           + str(shape_model.num_coefficients), step='input')


def fit_shape_and_pose(shape_model, blendshapes, landmarks, landmark_mapping, image_width, image_height,
                       edge_topology=None, contour=None, settings=None):
    """Fit camera, shape and expression of a morphable model to one image's landmarks.

    Parameters
    ----------
    shape_model : ShapeModel
    blendshapes : BlendshapeSet or None
    landmarks : dict of identifier -> (x, y), or a sequence of Landmark, 0-based pixels
    landmark_mapping : LandmarkMapping from identifiers to vertex indices
    image_width, image_height : size of the image in pixels
    edge_topology : EdgeTopology of the model, built from the triangles if None
    contour : ContourDefinition, no contour fitting if None
    settings : FittingSettings, defaults if None

    Returns
    -------
    FitResult with the final mesh and camera
    """
    settings = settings or FittingSettings()
    contour = contour or ContourDefinition()
    landmarks = landmark_dict(landmarks)
    if edge_topology is None and contour.landmark_ids:
        edge_topology = EdgeTopology.from_triangles(shape_model.triangles)
    _validate(shape_model, blendshapes, landmarks, landmark_mapping, image_width, image_height,
              edge_topology, contour, settings)

    num_shape_coefficients = settings.num_shape_coefficients or shape_model.num_coefficients
    num_blendshapes = len(blendshapes) if blendshapes is not None else 0
    shape_coeffs = np.zeros(num_shape_coefficients)
    expression_coeffs = np.zeros(num_blendshapes)
    mesh = generate_mesh(shape_model, shape_coeffs, blendshapes, expression_coeffs)
    fixed = fixed_correspondences(landmarks, landmark_mapping, contour)
    contour_correspondences = Correspondences.empty()
    fit_contour = bool(contour.landmark_ids)
    nonnegative = settings.expression_solver == 'nnls'

    iterations = []
    for iteration in range(settings.num_iterations):
        try:
            correspondences = fixed.concatenate(contour_correspondences)
            camera = estimate_camera(mesh.vertices[correspondences.vertex_indices], correspondences.image_points,
                                     image_width, image_height, settings.projection, settings.fov_y)

            if fit_contour:
                contour_correspondences = resolve_contour_correspondences(mesh, camera, contour, edge_topology,
                                                                          landmarks)
                correspondences = fixed.concatenate(contour_correspondences)

            shape_coeffs = fit_shape_coefficients(camera, correspondences, shape_model, settings.regularization,
                                                  blendshapes, expression_coeffs, shape_coeffs)
            mesh = generate_mesh(shape_model, shape_coeffs, blendshapes, expression_coeffs)

            if num_blendshapes:
                expression_coeffs = fit_expression_coefficients(camera, correspondences, shape_model, blendshapes,
                                                                settings.expression_lambda, shape_coeffs,
                                                                expression_coeffs, nonnegative=nonnegative)
                mesh = generate_mesh(shape_model, shape_coeffs, blendshapes, expression_coeffs)
        except FittingError as exc:
            exc.iteration = iteration
            raise

        error = reprojection_error(mesh, camera, correspondences)
        logger.debug('Iteration %d: %d correspondences (%d contour), mean reprojection error %.3f px',
                     iteration, len(correspondences), len(contour_correspondences), error)
        iterations.append(FitIteration(iteration, camera, shape_coeffs, expression_coeffs, correspondences,
                                       contour_correspondences, error))

    pitch, yaw, roll = camera.euler_angles()
    logger.info('Fitted %d landmarks in %d iterations, reprojection error %.3f px, '
                'pitch %.1f yaw %.1f roll %.1f degrees', len(correspondences), settings.num_iterations,
                iterations[-1].reprojection_error, pitch, yaw, roll)
    return FitResult(mesh, camera, shape_coeffs, expression_coeffs, tuple(iterations))
