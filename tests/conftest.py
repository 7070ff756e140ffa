"""Shared test fixtures: synthetic images and tiny ONNX encoders."""

import os

import numpy as np
import onnx
import pytest
from onnx import TensorProto, helper
from PIL import Image

SMALL_SIZE = 32


def save_solid_image(path, color, size=(64, 48)):
    """Write a solid-color RGB PNG and return its path as str."""
    Image.new("RGB", size, color).save(str(path))
    return str(path)


def build_pooling_model(path, input_shape=(1, 3, SMALL_SIZE, SMALL_SIZE),
                        input_name="pixel_values", output_name="image_embeds"):
    """
    ONNX graph mapping [1, 3, H, W] to the per-channel means [1, 3].
    Solid images of the same color therefore get identical embeddings.
    """
    graph = helper.make_graph(
        [
            helper.make_node("GlobalAveragePool", [input_name], ["pooled"]),
            helper.make_node("Flatten", ["pooled"], [output_name], axis=1),
        ],
        "tiny-encoder",
        [helper.make_tensor_value_info(input_name, TensorProto.FLOAT, list(input_shape))],
        [helper.make_tensor_value_info(output_name, TensorProto.FLOAT, [1, 3])],
    )
    model = helper.make_model(graph, opset_imports=[helper.make_opsetid("", 13)])
    model.ir_version = 8
    onnx.save(model, str(path))
    return str(path)


@pytest.fixture
def pooling_model(tmp_path):
    """Tiny encoder with a static [1, 3, 32, 32] input."""
    return build_pooling_model(tmp_path / "tiny.onnx")


@pytest.fixture
def dynamic_model(tmp_path):
    """Tiny encoder accepting any batch and spatial size."""
    return build_pooling_model(tmp_path / "dynamic.onnx", input_shape=["batch", 3, "height", "width"])


@pytest.fixture
def red_image(tmp_path):
    return save_solid_image(tmp_path / "red.png", (255, 0, 0))


@pytest.fixture
def mixed_directory(tmp_path):
    """
    Target directory with two near-red images, one green, one blue and one
    corrupt file (plus a text file that must be ignored).
    """
    target = tmp_path / "target"
    nested = target / "nested"
    nested.mkdir(parents=True)
    save_solid_image(target / "red_copy.png", (255, 0, 0), size=(80, 60))
    save_solid_image(nested / "dark_red.png", (200, 0, 0))
    save_solid_image(target / "green.png", (0, 255, 0))
    save_solid_image(target / "blue.png", (0, 0, 255))
    (target / "broken.png").write_bytes(b"this is not an image")
    (target / "notes.txt").write_text("ignore me")
    return str(target)


@pytest.fixture
def nine_valid_one_corrupt(tmp_path):
    """Ten image paths in sorted order; 'img_04.png' is corrupt."""
    folder = tmp_path / "batch"
    folder.mkdir()
    rng = np.random.RandomState(42)
    paths = []
    for i in range(10):
        path = folder / f"img_{i:02d}.png"
        if i == 4:
            path.write_bytes(b"\x89PNG\r\n\x1a\n corrupted payload")
        else:
            color = tuple(int(c) for c in rng.randint(0, 255, 3))
            save_solid_image(path, color)
        paths.append(str(path))
    return paths


@pytest.fixture
def empty_directory(tmp_path):
    folder = tmp_path / "empty"
    folder.mkdir()
    (folder / "readme.md").write_text("no images here")
    return str(folder)


def abspaths(paths):
    return [os.path.abspath(p) for p in paths]
