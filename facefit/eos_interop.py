"""Conversion between eos (cereal .bin models, eos.core.Mesh, EdgeTopology) and facefit's arrays."""
import numpy as np
import eos

from facefit.errors import InvalidInput
from facefit.model import Blendshape, BlendshapeSet, EdgeTopology, ShapeModel


def shape_model_from_eos(morphable_model):
    """ShapeModel from an eos.morphablemodel.MorphableModel."""
    shape_model = morphable_model.get_shape_model()
    texcoords = np.asarray(morphable_model.get_texture_coordinates(), dtype=float)
    eigenvalues = np.asarray(shape_model.get_eigenvalues(), dtype=float).ravel()
    return ShapeModel(mean=np.asarray(shape_model.get_mean(), dtype=float),
                      basis=np.asarray(shape_model.get_orthonormal_pca_basis(), dtype=float),
                      stddev=np.sqrt(eigenvalues),
                      triangles=np.asarray(shape_model.get_triangle_list(), dtype=int),
                      texcoords=texcoords if texcoords.size else None)


def blendshapes_from_eos(blendshapes):
    return BlendshapeSet([Blendshape(bs.name, np.asarray(bs.deformation, dtype=float)) for bs in blendshapes])


def edge_topology_from_eos(edge_topology):
    """EdgeTopology with 0-based indices and -1 for boundary edges.

    eos stores 1-based face and vertex indices, with 0 meaning "no adjacent face".
    """
    adjacent_faces = np.asarray(edge_topology.adjacent_faces, dtype=int).reshape(-1, 2) - 1
    adjacent_vertices = np.asarray(edge_topology.adjacent_vertices, dtype=int).reshape(-1, 2) - 1
    return EdgeTopology(adjacent_faces=adjacent_faces, adjacent_vertices=adjacent_vertices)


def mesh_to_eos(mesh):
    """eos.core.Mesh with the vertices, triangles and texture coordinates of a facefit Mesh."""
    eos_mesh = eos.core.Mesh()
    eos_mesh.vertices = [np.asarray(v, dtype=np.float32) for v in mesh.vertices]
    eos_mesh.tvi = [[int(i) for i in triangle] for triangle in mesh.triangles]
    if mesh.texcoords is not None:
        eos_mesh.texcoords = [np.asarray(tc, dtype=np.float32) for tc in mesh.texcoords]
    if mesh.colors is not None:
        eos_mesh.colors = [np.asarray(c, dtype=np.float32) for c in mesh.colors]
    return eos_mesh


def write_obj(mesh, filename):
    """Write the mesh as Wavefront OBJ, textured (with an .mtl pointing at the isomap) if it has texcoords."""
    eos_mesh = mesh_to_eos(mesh)
    if mesh.texcoords is not None:
        eos.core.write_textured_obj(eos_mesh, filename)
    else:
        eos.core.write_obj(eos_mesh, filename)


def _load(loader, filename, what):
    try:
        return loader(filename)
    except RuntimeError as exc:
        raise InvalidInput('Error loading the ' + what + ' ' + str(filename) + ': ' + str(exc)) from exc


def load_shape_model(filename):
    return shape_model_from_eos(_load(eos.morphablemodel.load_model, filename, 'Morphable Model'))


def load_blendshapes(filename):
    return blendshapes_from_eos(_load(eos.morphablemodel.load_blendshapes, filename, 'blendshapes'))


def load_edge_topology(filename):
    return edge_topology_from_eos(_load(eos.morphablemodel.load_edge_topology, filename, 'edge topology'))
