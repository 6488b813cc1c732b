"""
Test cases for the descriptor extractor.
"""

import asyncio
from unittest import mock

import pytest
import numpy as np

from hallpass.extractor import BoundingBox, FaceDescriptorExtractor


class TestFaceDescriptorExtractor:
    """Test cases for FaceDescriptorExtractor with the model patched out."""

    @pytest.fixture
    def config(self):
        return {
            'embedding': {
                'detection_model': 'hog',
                'upsample_times': 2,
                'num_jitters': 1
            }
        }

    @pytest.fixture
    def extractor(self, config):
        return FaceDescriptorExtractor(config)

    @pytest.fixture
    def frame(self):
        return np.zeros((120, 160, 3), dtype=np.uint8)

    def test_unknown_model_falls_back_to_hog(self):
        extractor = FaceDescriptorExtractor({'embedding': {'detection_model': 'yolo'}})
        assert extractor.detection_model == 'hog'

    def test_empty_input(self, extractor):
        assert extractor.detect_sync(None) == []
        assert extractor.detect_sync(np.zeros((0, 0, 3), dtype=np.uint8)) == []

    def test_faces_in_locator_order(self, extractor, frame):
        locations = [(10, 60, 70, 20), (5, 150, 50, 100)]
        encodings = [np.full(128, 0.1, dtype=np.float32), np.full(128, 0.2, dtype=np.float32)]

        with mock.patch('hallpass.extractor.face_recognition') as fr:
            fr.face_locations.return_value = locations
            fr.face_encodings.return_value = encodings
            faces = extractor.detect_sync(frame)

        assert [f.bounding_box for f in faces] == [
            BoundingBox(x=20, y=10, width=40, height=60),
            BoundingBox(x=100, y=5, width=50, height=45)
        ]
        assert faces[0].descriptor.dtype == np.float64
        assert faces[1].descriptor[0] == pytest.approx(0.2)

        _, kwargs = fr.face_locations.call_args
        assert kwargs == {'number_of_times_to_upsample': 2, 'model': 'hog'}
        _, kwargs = fr.face_encodings.call_args
        assert kwargs['known_face_locations'] == locations

    def test_no_faces_skips_encoding(self, extractor, frame):
        with mock.patch('hallpass.extractor.face_recognition') as fr:
            fr.face_locations.return_value = []
            assert extractor.detect_sync(frame) == []
        fr.face_encodings.assert_not_called()

    def test_grayscale_input(self, extractor):
        with mock.patch('hallpass.extractor.face_recognition') as fr:
            fr.face_locations.return_value = []
            extractor.detect_sync(np.zeros((40, 40), dtype=np.uint8))
        rgb_image = fr.face_locations.call_args[0][0]
        assert rgb_image.shape == (40, 40, 3)

    def test_async_detect(self, extractor, frame):
        with mock.patch('hallpass.extractor.face_recognition') as fr:
            fr.face_locations.return_value = [(0, 10, 10, 0)]
            fr.face_encodings.return_value = [np.zeros(128)]
            faces = asyncio.run(extractor.detect(frame))

        assert len(faces) == 1
        assert faces[0].bounding_box == BoundingBox(x=0, y=0, width=10, height=10)
