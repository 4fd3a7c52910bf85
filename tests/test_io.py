"""Tests for image loading and JSON configuration files."""

import json

import cv2
import numpy as np
import pytest

from imagealign.core.alignment_runner import (
    AlignmentParameters, AlignmentResult, AlignmentStatus,
)
from imagealign.core.image_ops import BorderMode
from imagealign.core.warp import WarpType
from imagealign.io.config_manager import ConfigManager
from imagealign.io.image_loader import ImageLoader


@pytest.fixture
def png_file(tmp_path, target_image):
    path = tmp_path / "scene.png"
    cv2.imwrite(str(path), target_image.astype(np.uint8))
    return str(path)


class TestImageLoader:

    def test_load_grayscale(self, png_file, target_image):
        data = ImageLoader.load(png_file)
        assert data.image_gray.dtype == np.uint8
        assert data.shape == target_image.shape
        assert data.width == 128 and data.height == 128
        assert data.filename == "scene.png"
        np.testing.assert_array_equal(data.image_gray, target_image.astype(np.uint8))

    def test_colour_file_is_converted(self, tmp_path):
        path = tmp_path / "colour.png"
        bgr = np.zeros((10, 12, 3), dtype=np.uint8)
        bgr[:, :, 1] = 200
        cv2.imwrite(str(path), bgr)
        data = ImageLoader.load(str(path))
        assert data.image_gray.ndim == 2
        assert data.shape == (10, 12)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            ImageLoader.load(str(tmp_path / "nope.png"))

    def test_unsupported_format(self, tmp_path):
        path = tmp_path / "image.gif"
        path.write_bytes(b"GIF89a")
        with pytest.raises(ValueError):
            ImageLoader.load(str(path))

    def test_crop(self, png_file):
        data = ImageLoader.load(png_file)
        patch = data.crop(10, 20, 30, 15)
        assert patch.shape == (15, 30)
        np.testing.assert_array_equal(patch, data.image_gray[20:35, 10:40])
        with pytest.raises(ValueError):
            data.crop(120, 0, 30, 10)

    def test_from_array(self):
        data = ImageLoader.from_array(np.zeros((5, 7, 3), dtype=np.uint8))
        assert data.shape == (5, 7)
        with pytest.raises(ValueError):
            ImageLoader.from_array(np.zeros((5, 7, 4, 2)))


class TestConfigManager:

    def test_parameters_round_trip(self, tmp_path):
        params = AlignmentParameters(warp_type=WarpType.SIMILARITY, max_iterations=20,
                                     epsilon=1e-4, border_mode=BorderMode.CONSTANT)
        path = str(tmp_path / "cfg" / "params.json")
        ConfigManager.save_parameters(params, path)
        assert ConfigManager.load_parameters(path) == params

    def test_bare_parameter_dict(self, tmp_path):
        path = tmp_path / "bare.json"
        path.write_text(json.dumps({'warp_type': 'affine', 'max_iterations': 7}))
        params = ConfigManager.load_parameters(str(path))
        assert params.warp_type == WarpType.AFFINE
        assert params.max_iterations == 7

    def test_result_round_trip(self, tmp_path):
        result = AlignmentResult(parameters=np.array([1.5, -2.0]),
                                 transform_matrix=np.array([[1, 0, 1.5],
                                                            [0, 1, -2.0],
                                                            [0, 0, 1.0]]),
                                 status=AlignmentStatus.CONVERGED,
                                 n_iterations=4, errors=[2.0, 0.1],
                                 final_error=0.1, delta_norm=1e-6)
        params = AlignmentParameters()
        path = str(tmp_path / "result.json")
        ConfigManager.save_result(result, path, params)

        loaded, loaded_params = ConfigManager.load_result(path)
        np.testing.assert_allclose(loaded.parameters, [1.5, -2.0])
        assert loaded.status == AlignmentStatus.CONVERGED
        assert loaded_params == params

    def test_result_missing(self, tmp_path):
        path = str(tmp_path / "params.json")
        ConfigManager.save_parameters(AlignmentParameters(), path)
        with pytest.raises(ValueError):
            ConfigManager.load_result(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            ConfigManager.load_parameters(str(tmp_path / "missing.json"))
