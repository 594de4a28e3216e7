"""Camera models and camera pose estimation from 3D-2D point correspondences.

The model lives in a y-up frame with +z pointing towards the viewer. Image
coordinates are OpenCV pixels: origin in the top-left corner, y pointing down.

An affine (scaled orthographic) camera projects a model point X to

    u = s * (r1 . X + tx)
    v = height - s * (r2 . X + ty)

and a perspective camera looks down -z of its frame Xc = R X + t with a focal
length derived from the vertical field of view.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import cv2
import numpy as np
import transforms3d as t3d
from scipy.linalg import lstsq
from scipy.optimize import least_squares

from facefit.errors import InsufficientConstraints, InvalidInput

logger = logging.getLogger(__name__)

# Flips the model frame (y up, looking down -z) into OpenCV's camera frame (y down, looking down +z).
_MODEL_TO_OPENCV = np.diag([1.0, -1.0, -1.0])

MIN_CORRESPONDENCES = 4

# Starting field of view when the perspective focal length is estimated freely.
DEFAULT_FOV_Y = 30.0


class ProjectionType(Enum):
    AFFINE = 'affine'
    PERSPECTIVE = 'perspective'


def focal_length_from_fov(fov_y, image_height):
    return 0.5 * image_height / np.tan(np.radians(fov_y) / 2.0)


def fov_from_focal_length(focal_length, image_height):
    return float(np.degrees(2.0 * np.arctan(0.5 * image_height / focal_length)))


@dataclass(frozen=True, eq=False)
class CameraParameters:
    """Pose and projection of one fitted image.

    For an affine camera `translation` is (tx, ty) in model units and `scale`
    maps model units to pixels. For a perspective camera `translation` is the
    3D offset of the model in the camera frame (tz < 0 in front of the camera),
    `fov_y` is the vertical field of view in degrees and `scale` is the
    equivalent weak-perspective scale f / -tz.
    """
    rotation: np.ndarray
    translation: np.ndarray
    scale: float
    image_width: int
    image_height: int
    projection: ProjectionType = ProjectionType.AFFINE
    fov_y: Optional[float] = None

    def __post_init__(self):
        rotation = np.asarray(self.rotation, dtype=float).reshape(3, 3)
        translation = np.asarray(self.translation, dtype=float).ravel()
        expected = 2 if self.projection is ProjectionType.AFFINE else 3
        if translation.size != expected:
            raise InvalidInput('A ' + self.projection.value + ' camera needs ' + str(expected)
                               + ' translation components, got ' + str(translation.size))
        if self.projection is ProjectionType.PERSPECTIVE and self.fov_y is None:
            raise InvalidInput('A perspective camera needs a field of view')
        object.__setattr__(self, 'rotation', rotation)
        object.__setattr__(self, 'translation', translation)
        object.__setattr__(self, 'scale', float(self.scale))

    @property
    def quaternion(self):
        """Rotation as a (w, x, y, z) unit quaternion."""
        return t3d.quaternions.mat2quat(self.rotation)

    def euler_angles(self):
        """(pitch, yaw, roll) in degrees, rotations about the x, y and z axis."""
        pitch, yaw, roll = t3d.euler.mat2euler(self.rotation, 'sxyz')
        return np.degrees([pitch, yaw, roll])

    @property
    def focal_length(self):
        if self.projection is not ProjectionType.PERSPECTIVE:
            raise ValueError('An affine camera has no focal length')
        return focal_length_from_fov(self.fov_y, self.image_height)

    def intrinsic_matrix(self):
        focal = self.focal_length
        return np.array([[focal, 0.0, self.image_width / 2.0],
                         [0.0, focal, self.image_height / 2.0],
                         [0.0, 0.0, 1.0]])

    def affine_camera_matrix(self):
        """3x4 matrix taking homogeneous model points to homogeneous pixel coordinates."""
        if self.projection is not ProjectionType.AFFINE:
            raise ValueError('Only an affine camera has an exact 3x4 affine camera matrix')
        s = self.scale
        tx, ty = self.translation
        matrix = np.zeros((3, 4))
        matrix[0, :3] = s * self.rotation[0]
        matrix[0, 3] = s * tx
        matrix[1, :3] = -s * self.rotation[1]
        matrix[1, 3] = self.image_height - s * ty
        matrix[2, 3] = 1.0
        return matrix

    @classmethod
    def from_affine_matrix(cls, matrix, image_width, image_height):
        """Decompose a 3x4 affine camera matrix into the closest scaled orthographic camera."""
        matrix = np.asarray(matrix, dtype=float).reshape(3, 4)
        linear_part = np.vstack((matrix[0, :3], -matrix[1, :3]))
        rotation, scale = closest_rotation(linear_part)
        translation = np.array([matrix[0, 3] / scale, (image_height - matrix[1, 3]) / scale])
        return cls(rotation, translation, scale, image_width, image_height)

    def camera_space(self, points):
        points = np.asarray(points, dtype=float).reshape(-1, 3)
        if self.projection is ProjectionType.AFFINE:
            return points @ self.rotation.T
        return points @ self.rotation.T + self.translation

    def project(self, points):
        """Pixel coordinates (N, 2) of model points (N, 3)."""
        points = np.asarray(points, dtype=float).reshape(-1, 3)
        if points.shape[0] == 0:
            return np.zeros((0, 2))
        if self.projection is ProjectionType.AFFINE:
            rotated = points @ self.rotation.T
            u = self.scale * (rotated[:, 0] + self.translation[0])
            v = self.image_height - self.scale * (rotated[:, 1] + self.translation[1])
            return np.stack((u, v), axis=1)
        rvec = cv2.Rodrigues(_MODEL_TO_OPENCV @ self.rotation)[0]
        tvec = _MODEL_TO_OPENCV @ self.translation
        pnts2d, _ = cv2.projectPoints(points, rvec, tvec, self.intrinsic_matrix(), np.zeros(5))
        return pnts2d.reshape(-1, 2)

    def projection_jacobian(self, points):
        """Derivative of the pixel coordinates w.r.t. the model points, (N, 2, 3)."""
        points = np.asarray(points, dtype=float).reshape(-1, 3)
        if self.projection is ProjectionType.AFFINE:
            jacobian = self.scale * np.vstack((self.rotation[0], -self.rotation[1]))
            return np.broadcast_to(jacobian, (points.shape[0], 2, 3)).copy()
        focal = self.focal_length
        cam = self.camera_space(points)
        depth = -cam[:, 2]
        jac_cam = np.zeros((points.shape[0], 2, 3))
        jac_cam[:, 0, 0] = focal / depth
        jac_cam[:, 0, 2] = focal * cam[:, 0] / depth ** 2
        jac_cam[:, 1, 1] = -focal / depth
        jac_cam[:, 1, 2] = -focal * cam[:, 1] / depth ** 2
        return jac_cam @ self.rotation

    def view_directions(self, points):
        """Unit vectors (N, 3) in model space pointing from each point towards the camera."""
        points = np.asarray(points, dtype=float).reshape(-1, 3)
        if self.projection is ProjectionType.AFFINE:
            return np.broadcast_to(self.rotation[2], points.shape).copy()
        center = -self.rotation.T @ self.translation
        directions = center - points
        return directions / np.linalg.norm(directions, axis=1, keepdims=True)


def closest_rotation(linear_part):
    """Closest rotation and isotropic scale to the 2x3 linear part of an affine camera.

    The two rows are replaced by the nearest pair of orthonormal rows in the
    Frobenius sense (the polar factor U V^T of the SVD), the third row is their
    cross product, and the scale is the mean of the two singular values, which
    is the least-squares optimal scale for that rotation. The result is always
    a proper rotation. For very oblique input, where the two rows are nearly
    parallel, the second singular value approaches zero and the rotation about
    the common row direction becomes arbitrary, but stays orthonormal.

    Returns
    -------
    rotation : (3, 3) rotation matrix
    scale : float
    """
    linear_part = np.asarray(linear_part, dtype=float).reshape(2, 3)
    u, singular_values, vt = np.linalg.svd(linear_part, full_matrices=False)
    if not np.isfinite(singular_values).all() or singular_values[0] <= np.finfo(float).eps:
        raise InsufficientConstraints('Affine camera has a degenerate linear part', step='pose')
    rows = u @ vt
    rotation = np.vstack((rows, np.cross(rows[0], rows[1])))
    scale = float(np.mean(singular_values))
    return rotation, scale


def _normalization_transform(points, target_distance):
    """Similarity moving the centroid to the origin with mean distance target_distance (Hartley & Zisserman)."""
    centroid = points.mean(axis=0)
    mean_distance = np.linalg.norm(points - centroid, axis=1).mean()
    if mean_distance <= np.finfo(float).eps:
        raise InsufficientConstraints('All correspondences coincide', step='pose',
                                      num_correspondences=points.shape[0])
    scale = target_distance / mean_distance
    dim = points.shape[1]
    transform = np.eye(dim + 1)
    transform[:dim, :dim] *= scale
    transform[:dim, dim] = -scale * centroid
    return transform


def _check_correspondences(model_points, image_points):
    model_points = np.asarray(model_points, dtype=float).reshape(-1, 3)
    image_points = np.asarray(image_points, dtype=float).reshape(-1, 2)
    if model_points.shape[0] != image_points.shape[0]:
        raise InvalidInput('Got ' + str(model_points.shape[0]) + ' model points and '
                           + str(image_points.shape[0]) + ' image points', step='pose')
    if model_points.shape[0] < MIN_CORRESPONDENCES:
        raise InsufficientConstraints('Camera estimation needs at least ' + str(MIN_CORRESPONDENCES)
                                      + ' correspondences', step='pose',
                                      num_correspondences=model_points.shape[0])
    return model_points, image_points


def estimate_affine_camera(model_points, image_points, image_width, image_height):
    """Scaled orthographic camera from at least four 3D-2D correspondences.

    Solves the 8 unknowns of the affine camera matrix with the Gold Standard
    algorithm (normalized points, linear least squares) and projects the result
    onto the closest scaled orthographic camera.
    """
    model_points, image_points = _check_correspondences(model_points, image_points)
    num_points = model_points.shape[0]

    flipped = image_points.copy()
    flipped[:, 1] = image_height - flipped[:, 1]
    image_norm = _normalization_transform(flipped, np.sqrt(2.0))
    model_norm = _normalization_transform(model_points, np.sqrt(3.0))
    image_n = (image_norm @ np.hstack((flipped, np.ones((num_points, 1)))).T).T[:, :2]
    model_n = (model_norm @ np.hstack((model_points, np.ones((num_points, 1)))).T).T[:, :3]

    A = np.zeros((2 * num_points, 8))
    A[0::2, 0:3] = model_n
    A[0::2, 3] = 1.0
    A[1::2, 4:7] = model_n
    A[1::2, 7] = 1.0
    b = image_n.ravel()
    rank = np.linalg.matrix_rank(A)
    if rank < 8:
        raise InsufficientConstraints('Correspondences are degenerate, affine system has rank '
                                      + str(rank) + ' < 8', step='pose', num_correspondences=num_points)
    k = lstsq(A, b)[0]

    p_norm = np.vstack((k[:4], k[4:], [0.0, 0.0, 0.0, 1.0]))
    p = np.linalg.inv(image_norm) @ p_norm @ model_norm
    rotation, scale = closest_rotation(p[:2, :3])
    translation = p[:2, 3] / scale
    return CameraParameters(rotation, translation, scale, image_width, image_height)


def _perspective_camera(params, image_width, image_height, fov_y):
    rotation = cv2.Rodrigues(params[:3])[0]
    translation = params[3:6]
    if fov_y is None:
        fov_y = fov_from_focal_length(np.exp(params[6]), image_height)
    focal = focal_length_from_fov(fov_y, image_height)
    depth = max(-translation[2], np.finfo(float).eps)
    return CameraParameters(rotation, translation, focal / depth, image_width, image_height,
                            projection=ProjectionType.PERSPECTIVE, fov_y=fov_y)


def _min_perspective(x, model_points, image_points, image_width, image_height, fov_y):
    camera = _perspective_camera(x, image_width, image_height, fov_y)
    return (camera.project(model_points) - image_points).ravel()


def estimate_perspective_camera(model_points, image_points, image_width, image_height, fov_y=None):
    """Perspective camera, optionally with a fixed vertical field of view in degrees.

    The affine estimate gives rotation and weak-perspective scale; depth and
    principal point offset follow from it, and all parameters (plus the focal
    length when fov_y is None) are refined by non-linear least squares on the
    reprojection error.
    """
    model_points, image_points = _check_correspondences(model_points, image_points)
    affine = estimate_affine_camera(model_points, image_points, image_width, image_height)

    focal = focal_length_from_fov(fov_y if fov_y is not None else DEFAULT_FOV_Y, image_height)
    s = affine.scale
    translation = np.array([affine.translation[0] - (image_width / 2.0) / s,
                            affine.translation[1] - (image_height / 2.0) / s,
                            -focal / s])
    x0 = np.concatenate((cv2.Rodrigues(affine.rotation)[0].ravel(), translation))
    if fov_y is None:
        x0 = np.append(x0, np.log(focal))

    res = least_squares(_min_perspective, x0,
                        args=(model_points, image_points, image_width, image_height, fov_y),
                        loss='linear', method='trf', x_scale='jac')
    if not res.success:
        logger.warning('Perspective camera refinement did not converge: %s', res.message)
    camera = _perspective_camera(res.x, image_width, image_height, fov_y)
    if camera.translation[2] >= 0:
        raise InsufficientConstraints('Perspective estimate places the model behind the camera',
                                      step='pose', num_correspondences=model_points.shape[0])
    return camera


def estimate_camera(model_points, image_points, image_width, image_height,
                    projection=ProjectionType.AFFINE, fov_y=None):
    """Dispatch to the affine or perspective estimator."""
    if projection is ProjectionType.PERSPECTIVE:
        return estimate_perspective_camera(model_points, image_points, image_width, image_height, fov_y)
    return estimate_affine_camera(model_points, image_points, image_width, image_height)
