"""
Export decoded models and textures to common formats.

Models become trimesh meshes (OBJ/GLB/PLY via trimesh's exporters);
uncompressed textures become numpy images written with OpenCV.
"""

from pathlib import Path
from typing import Union

import numpy as np

try:
    import cv2
    HAS_CV2 = True
except ImportError:
    HAS_CV2 = False

try:
    import trimesh
    HAS_TRIMESH = True
except ImportError:
    HAS_TRIMESH = False

from rclevel.models import StaticModel, Texture, TextureFormat


def model_to_trimesh(model: StaticModel) -> "trimesh.Trimesh":
    """
    Build a triangle mesh from a model's positions and index buffer.

    Args:
        model: Decoded model; the index buffer is a triangle list

    Returns:
        trimesh.Trimesh (not processed, so vertex order is preserved)

    Raises:
        ValueError: If the index count is not a multiple of three
    """
    if not HAS_TRIMESH:
        raise ImportError("trimesh is required. Install with: pip install trimesh")

    if model.index_count % 3 != 0:
        raise ValueError(
            f"{model.category.value} model {model.id}: {model.index_count} indices is not a triangle list"
        )

    faces = model.indices.astype(np.int64).reshape(-1, 3)
    return trimesh.Trimesh(vertices=model.positions.astype(np.float64), faces=faces, process=False)


def export_model(model: StaticModel, path: Union[str, Path]) -> Path:
    """
    Write a model to disk; the format follows the file extension.

    Example:
        >>> export_model(level.moby_models[0], "out/moby_0.obj")
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    mesh = model_to_trimesh(model)
    mesh.export(str(path))
    return path


def texture_to_array(texture: Texture) -> np.ndarray:
    """
    Convert an uncompressed texture payload to an image array.

    Returns:
        (height, width, 4) uint8 RGBA for RGBA8, (height, width) for L8

    Raises:
        ValueError: If the texture has no payload or is block-compressed
    """
    if not texture.has_payload:
        raise ValueError(f"Texture {texture.index} has no pixel data")
    if texture.format.is_compressed:
        raise ValueError(f"Texture {texture.index} is {texture.format.name} compressed")

    pixels = np.frombuffer(texture.payload, dtype=np.uint8)
    if texture.format is TextureFormat.RGBA8:
        return pixels.reshape(texture.height, texture.width, 4)
    return pixels.reshape(texture.height, texture.width)


def write_texture_image(texture: Texture, path: Union[str, Path]) -> Path:
    """
    Write a texture to an image file (PNG recommended, keeps alpha).

    Example:
        >>> write_texture_image(level.textures[3], "out/tex_3.png")
    """
    if not HAS_CV2:
        raise ImportError("opencv-python is required. Install with: pip install opencv-python")

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    image = texture_to_array(texture)
    if image.ndim == 3:
        image = cv2.cvtColor(image, cv2.COLOR_RGBA2BGRA)

    if not cv2.imwrite(str(path), image):
        raise ValueError(f"Could not write image: {path}")
    return path
