"""Drawing of landmarks and fitted meshes into OpenCV (BGR) images."""
import cv2
import numpy as np
from colour import Color

from facefit.contour import triangle_facing


def bgr(colour):
    """OpenCV BGR tuple of a colour name or colour.Color."""
    if not isinstance(colour, Color):
        colour = Color(colour)
    return tuple(int(round(255 * v)) for v in reversed(colour.rgb))


def draw_landmarks(image, landmarks, colour='blue', size=2):
    """Draw a small square at every landmark (a dict of name -> point or a sequence of Landmark)."""
    points = landmarks.values() if isinstance(landmarks, dict) else [lm.coordinates for lm in landmarks]
    colour = bgr(colour)
    for x, y in points:
        cv2.rectangle(image, (int(round(x - size)), int(round(y - size))),
                      (int(round(x + size)), int(round(y + size))), colour)
    return image


def draw_wireframe(image, mesh, camera, colour='green'):
    """Draw the edges of the triangles facing the camera."""
    points = camera.project(mesh.vertices)
    facing = triangle_facing(points, mesh.triangles)
    colour = bgr(colour)
    pixels = np.round(points).astype(int)
    for triangle in mesh.triangles[facing]:
        p1, p2, p3 = (tuple(int(c) for c in pixels[v]) for v in triangle)
        cv2.line(image, p1, p2, colour)
        cv2.line(image, p2, p3, colour)
        cv2.line(image, p3, p1, colour)
    return image


def draw_vertices(image, mesh, camera, colour='red', radius=1):
    colour = bgr(colour)
    for x, y in np.round(camera.project(mesh.vertices)).astype(int):
        cv2.circle(image, (int(x), int(y)), radius, colour)
    return image
