"""Fit the morphable model to an image with ibug landmarks.

Writes the fitted mesh as wireframe over the image (<output>.png), the mesh
(<output>.obj) and the extracted texture (<output>.isomap.png).
"""
import argparse
import logging
import os

import cv2

from facefit import assets, eos_interop
from facefit.camera import ProjectionType
from facefit.errors import FittingError
from facefit.fitting import fit_shape_and_pose
from facefit.settings import FittingSettings, load_settings
from facefit.texture import extract_texture
from facefit.visualisation import draw_landmarks, draw_wireframe

logger = logging.getLogger(__name__)


def parse_args(argv=None):
    ap = argparse.ArgumentParser(description='Fits a 3D Morphable Model to an image with landmarks.')
    ap.add_argument('-m', '--model', default='share/sfm_shape_3448.bin',
                    help='a Morphable Model stored as cereal BinaryArchive')
    ap.add_argument('-i', '--image', default='data/image_0010.png', help='an input image')
    ap.add_argument('-l', '--landmarks', default='data/image_0010.pts',
                    help='2D landmarks for the image, in ibug .pts format')
    ap.add_argument('-p', '--mapping', default='share/ibug_to_sfm.txt',
                    help='landmark identifier to model vertex number mapping')
    ap.add_argument('-c', '--model-contour', default='share/sfm_model_contours.json',
                    help='file with model contour indices')
    ap.add_argument('-e', '--edge-topology', default='share/sfm_3448_edge_topology.json',
                    help="file with model's precomputed edge topology")
    ap.add_argument('-b', '--blendshapes', default='share/expression_blendshapes_3448.bin',
                    help='file with blendshapes')
    ap.add_argument('-s', '--settings', default=None, help='TOML file with a [fitting] table')
    ap.add_argument('-o', '--output', default='out', help='basename for the output rendering and obj files')
    ap.add_argument('--iterations', type=int, default=None)
    ap.add_argument('--lambda', dest='regularization', type=float, default=None)
    ap.add_argument('--perspective', action='store_true', help='fit a perspective instead of an affine camera')
    ap.add_argument('--fov', type=float, default=None, help='fixed vertical field of view in degrees')
    ap.add_argument('-v', '--verbose', action='store_true')
    return ap.parse_args(argv)


def build_settings(args):
    settings = load_settings(args.settings) if args.settings else FittingSettings()
    values = settings.to_dict()
    if args.iterations is not None:
        values['num_iterations'] = args.iterations
    if args.regularization is not None:
        values['regularization'] = args.regularization
    if args.perspective or args.fov is not None:
        values['projection'] = ProjectionType.PERSPECTIVE
    if args.fov is not None:
        values['fov_y'] = args.fov
    return FittingSettings.from_dict(values)


def main(argv=None):
    args = parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format='%(asctime)s %(name)s %(levelname)s: %(message)s')

    image = cv2.imread(args.image)
    if image is None:
        logger.error('Could not read the image %s', args.image)
        return 1
    try:
        landmarks = assets.read_pts_landmarks(args.landmarks)
        settings = build_settings(args)
    except (OSError, FittingError) as e:
        logger.error('Error reading the landmarks or settings: %s', e)
        return 1

    try:
        shape_model = eos_interop.load_shape_model(args.model)
        blendshapes = eos_interop.load_blendshapes(args.blendshapes) if args.blendshapes else None
        landmark_mapping = assets.load_landmark_mapping(args.mapping)
        contour = assets.load_contour_definition(args.mapping, args.model_contour) if args.model_contour else None
        edge_topology = eos_interop.load_edge_topology(args.edge_topology) if args.edge_topology else None
    except (OSError, FittingError) as e:
        logger.error('Error loading the Morphable Model or its metadata: %s', e)
        return 1

    try:
        result = fit_shape_and_pose(shape_model, blendshapes, landmarks, landmark_mapping,
                                    image.shape[1], image.shape[0], edge_topology, contour, settings)
    except FittingError as e:
        logger.error('Fitting failed: %s', e)
        return 1
    mesh, camera = result
    pitch, yaw, roll = camera.euler_angles()
    logger.info('Head pose: pitch %.1f, yaw %.1f, roll %.1f degrees', pitch, yaw, roll)

    outimg = draw_landmarks(image.copy(), landmarks)
    draw_wireframe(outimg, mesh, camera)
    out_dir = os.path.dirname(args.output)
    if out_dir and not os.path.isdir(out_dir):
        os.makedirs(out_dir)
    cv2.imwrite(args.output + '.png', outimg)
    eos_interop.write_obj(mesh, args.output + '.obj')
    if mesh.texcoords is not None:
        cv2.imwrite(args.output + '.isomap.png', extract_texture(mesh, camera, image))

    logger.info('Finished fitting and wrote result mesh and isomap to files with basename %s', args.output)
    return 0


if __name__ == '__main__':
    raise SystemExit(main())
