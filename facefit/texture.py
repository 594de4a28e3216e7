"""Extraction of the face texture into the model's UV space (the isomap)."""
import numpy as np
import cv2

from facefit.camera import CameraParameters
from facefit.contour import triangle_facing
from facefit.errors import InvalidInput

INTERPOLATIONS = {'nearest': cv2.INTER_NEAREST, 'bilinear': cv2.INTER_LINEAR}


def view_angle_alpha(mesh, camera):
    """Per-triangle alpha from the angle between normal and viewing direction.

    255 when the triangle faces the camera head-on, falling linearly to 0 at 90
    degrees. Isomaps of several views can be merged by thresholding it.
    """
    v = mesh.vertices
    tri = mesh.triangles
    normals = np.cross(v[tri[:, 1]] - v[tri[:, 0]], v[tri[:, 2]] - v[tri[:, 0]])
    lengths = np.linalg.norm(normals, axis=1, keepdims=True)
    normals = normals / np.where(lengths > 0, lengths, 1.0)
    centroids = v[tri].mean(axis=1)
    cos_angle = np.clip(np.sum(normals * camera.view_directions(centroids), axis=1), 0.0, 1.0)
    angle = np.degrees(np.arccos(cos_angle))
    return np.round(255.0 - angle * 255.0 / 90.0).astype(np.uint8)


def _barycentric(points, triangle):
    a, b, c = triangle
    v0 = b - a
    v1 = c - a
    v2 = points - a
    d00 = v0 @ v0
    d01 = v0 @ v1
    d11 = v1 @ v1
    denom = d00 * d11 - d01 * d01
    if abs(denom) < 1e-12:
        return None
    d20 = v2 @ v0
    d21 = v2 @ v1
    w1 = (d11 * d20 - d01 * d21) / denom
    w2 = (d00 * d21 - d01 * d20) / denom
    return np.stack((1.0 - w1 - w2, w1, w2), axis=1)


def extract_texture(mesh, camera, image, resolution=512, interpolation='bilinear'):
    """Sample the image into a resolution x resolution isomap.

    Parameters
    ----------
    mesh : fitted Mesh, with texture coordinates
    camera : fitted CameraParameters, or a 3x4 affine camera matrix
    image : (H, W) or (H, W, C) image the mesh was fitted to
    resolution : side length of the isomap in texels
    interpolation : 'bilinear' or 'nearest'

    Returns
    -------
    (resolution, resolution, C + 1) isomap; the last channel is the view-angle
    alpha, 0 for texels that are not covered, back-facing or outside the image.
    """
    if mesh.texcoords is None:
        raise InvalidInput('Texture extraction needs a mesh with texture coordinates')
    if interpolation not in INTERPOLATIONS:
        raise InvalidInput('interpolation must be one of ' + str(sorted(INTERPOLATIONS)))
    image = np.ascontiguousarray(image)
    if image.ndim == 2:
        image = image[:, :, None]
    height, width, channels = image.shape
    if isinstance(camera, np.ndarray):
        camera = CameraParameters.from_affine_matrix(camera, width, height)

    projected = camera.project(mesh.vertices)
    facing = triangle_facing(projected, mesh.triangles)
    alphas = view_angle_alpha(mesh, camera)
    uv = mesh.texcoords * resolution

    map_x = np.full((resolution, resolution), -1.0, dtype=np.float32)
    map_y = np.full((resolution, resolution), -1.0, dtype=np.float32)
    alpha = np.zeros((resolution, resolution), dtype=np.uint8)
    for t in np.flatnonzero(facing & (alphas > 0)):
        triangle = mesh.triangles[t]
        tri_uv = uv[triangle]
        col_min = max(int(np.floor(tri_uv[:, 0].min())), 0)
        col_max = min(int(np.ceil(tri_uv[:, 0].max())), resolution - 1)
        row_min = max(int(np.floor(tri_uv[:, 1].min())), 0)
        row_max = min(int(np.ceil(tri_uv[:, 1].max())), resolution - 1)
        if col_min > col_max or row_min > row_max:
            continue
        rows, cols = np.mgrid[row_min:row_max + 1, col_min:col_max + 1]
        rows = rows.ravel()
        cols = cols.ravel()
        centres = np.stack((cols + 0.5, rows + 0.5), axis=1)
        weights = _barycentric(centres, tri_uv)
        if weights is None:
            continue
        inside = np.all(weights >= -1e-9, axis=1)
        if not inside.any():
            continue
        source = weights[inside] @ projected[triangle]
        map_x[rows[inside], cols[inside]] = source[:, 0]
        map_y[rows[inside], cols[inside]] = source[:, 1]
        alpha[rows[inside], cols[inside]] = alphas[t]

    in_image = (map_x >= 0) & (map_x <= width - 1) & (map_y >= 0) & (map_y <= height - 1)
    alpha[~in_image] = 0
    colours = cv2.remap(image, map_x, map_y, INTERPOLATIONS[interpolation],
                        borderMode=cv2.BORDER_CONSTANT, borderValue=0)
    colours = colours.reshape(resolution, resolution, channels)

    isomap = np.zeros((resolution, resolution, channels + 1), dtype=image.dtype)
    valid = alpha > 0
    isomap[valid, :channels] = colours[valid]
    isomap[:, :, channels] = alpha
    return isomap
