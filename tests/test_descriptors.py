import os

import numpy as np
import pytest
from PIL import Image

from app.descriptors import build_descriptors, create_descriptor
from app.exceptions import ImageDecodeError, InferenceError, InitializationError
from conftest import SMALL_SIZE, save_solid_image
from core.encoder import ClipImageEncoder
from core.preprocessor import Preprocessor


class BrightnessEncoder:
    """Returns channel means; fails on very bright tensors like a broken model would."""

    is_ready = True

    def extract(self, tensor):
        means = tensor[0].mean(axis=(1, 2))
        if means.min() > 1.5:
            raise InferenceError("saturated output")
        return means.astype(np.float32)


@pytest.fixture
def preprocessor():
    return Preprocessor(image_size=SMALL_SIZE)


@pytest.fixture
def encoder(pooling_model):
    with ClipImageEncoder(pooling_model, image_size=SMALL_SIZE) as enc:
        yield enc


def test_create_descriptor_is_normalized(red_image, preprocessor, encoder):
    descriptor = create_descriptor(red_image, preprocessor, encoder)

    assert descriptor.identity == red_image
    assert descriptor.dimension == 3
    assert abs(np.linalg.norm(descriptor.embedding) - 1.0) < 1e-5


def test_create_descriptor_rejects_unsupported_extension(tmp_path, preprocessor, encoder):
    path = tmp_path / "picture.txt"
    Image.new("RGB", (8, 8)).save(str(path), format="PNG")
    with pytest.raises(ImageDecodeError):
        create_descriptor(str(path), preprocessor, encoder)


def test_create_descriptor_propagates_decode_errors(tmp_path, preprocessor, encoder):
    path = tmp_path / "zero.jpg"
    path.write_bytes(b"")
    with pytest.raises(ImageDecodeError):
        create_descriptor(str(path), preprocessor, encoder)


@pytest.mark.parametrize("workers", [1, 4])
def test_build_descriptors_skips_corrupt_file(nine_valid_one_corrupt, preprocessor, encoder, workers):
    batch = build_descriptors(nine_valid_one_corrupt, preprocessor, encoder, max_workers=workers)

    expected = [p for p in nine_valid_one_corrupt if not p.endswith("img_04.png")]
    assert batch.count == 9
    assert [d.identity for d in batch.descriptors] == expected
    assert len(batch.failures) == 1
    assert os.path.basename(batch.failures[0].path) == "img_04.png"
    assert batch.failures[0].error_type == "ImageDecodeError"


def test_build_descriptors_matches_sequential_results(nine_valid_one_corrupt, preprocessor, encoder):
    parallel = build_descriptors(nine_valid_one_corrupt, preprocessor, encoder, max_workers=4)
    for descriptor in parallel.descriptors:
        single = create_descriptor(descriptor.identity, preprocessor, encoder)
        np.testing.assert_array_equal(descriptor.embedding, single.embedding)


def test_build_descriptors_isolates_inference_errors(tmp_path, preprocessor):
    paths = [
        save_solid_image(tmp_path / "a_black.png", (0, 0, 0)),
        save_solid_image(tmp_path / "b_white.png", (255, 255, 255)),
        save_solid_image(tmp_path / "c_gray.png", (90, 90, 90)),
    ]

    batch = build_descriptors(paths, preprocessor, BrightnessEncoder(), max_workers=3)

    assert [d.identity for d in batch.descriptors] == [paths[0], paths[2]]
    assert [(f.path, f.error_type) for f in batch.failures] == [(paths[1], "InferenceError")]


def test_build_descriptors_reports_progress(nine_valid_one_corrupt, preprocessor, encoder):
    calls = []
    build_descriptors(nine_valid_one_corrupt, preprocessor, encoder, max_workers=2,
                      progress_callback=lambda done, total: calls.append((done, total)))

    assert calls == [(i, 10) for i in range(1, 11)]


def test_build_descriptors_empty_input(preprocessor, encoder):
    batch = build_descriptors([], preprocessor, encoder)
    assert batch.descriptors == []
    assert batch.failures == []


def test_build_descriptors_refuses_closed_encoder(nine_valid_one_corrupt, preprocessor, pooling_model):
    encoder = ClipImageEncoder(pooling_model, image_size=SMALL_SIZE)
    encoder.close()

    with pytest.raises(InitializationError):
        build_descriptors(nine_valid_one_corrupt, preprocessor, encoder)
