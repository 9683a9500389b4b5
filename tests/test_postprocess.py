import unittest

import numpy as np

from yolo_postkit.postprocess import YoloPostConfig, YoloPostprocessor, process_mask
from yolo_postkit.types import LetterboxParams, TaskType


def _channels_first(rows: np.ndarray) -> np.ndarray:
    return np.ascontiguousarray(rows.T[None, ...]).astype(np.float32)


class TestYoloPostConfig(unittest.TestCase):
    def test_task_parsed_from_string(self) -> None:
        self.assertIs(YoloPostConfig(task="Segment").task, TaskType.SEGMENT)

    def test_task_unset_by_default(self) -> None:
        self.assertIsNone(YoloPostConfig().task)

    def test_invalid_values(self) -> None:
        bad = [
            {"conf_threshold": 1.5},
            {"iou_threshold": -0.1},
            {"max_detections": 0},
            {"kpt_shape": (17, 4)},
            {"kpt_shape": (0, 3)},
            {"num_classes": 0},
            {"task": "classify"},
        ]
        for kwargs in bad:
            with self.subTest(**{k: str(v) for k, v in kwargs.items()}):
                with self.assertRaises(ValueError):
                    YoloPostConfig(**kwargs)


class TestProcessMask(unittest.TestCase):
    def test_shape_and_range(self) -> None:
        protos = np.zeros((1, 2, 8, 8), dtype=np.float32)
        protos[0, 0] = 10.0
        masks = process_mask(protos, np.array([[1.0, 0.0], [-1.0, 0.0]]))
        self.assertEqual(masks.shape, (2, 8, 8))
        self.assertEqual(masks.dtype, np.float32)
        self.assertTrue(np.all(masks[0] > 0.99))
        self.assertTrue(np.all(masks[1] < 0.01))

    def test_rejects_batched_prototypes(self) -> None:
        with self.assertRaises(ValueError):
            process_mask(np.zeros((2, 2, 8, 8)), np.zeros((1, 2)))


class TestDetect(unittest.TestCase):
    PARAMS = LetterboxParams(scale=0.5, pad_x=0.0, pad_y=140.0)

    def _preds(self) -> np.ndarray:
        rows = np.zeros((100, 6), dtype=np.float32)
        rows[0] = [320, 320, 100, 50, 0.1, 0.8]
        return _channels_first(rows)

    def test_end_to_end_mapping(self) -> None:
        post = YoloPostprocessor(YoloPostConfig())
        results = post.process(self._preds(), orig_size=(1280, 720), input_size=(640, 640), params=self.PARAMS)
        self.assertEqual(len(results), 1)
        res = results[0]
        self.assertEqual(res.class_id, 1)
        self.assertAlmostEqual(res.confidence, 0.8, places=6)
        self.assertTrue(np.allclose(res.bbox.as_xywh(), (541.0, 311.0, 201.0, 101.0)))
        self.assertIsNone(res.mask)
        self.assertIsNone(res.keypoints)

    def test_recomputed_params_agree(self) -> None:
        post = YoloPostprocessor(YoloPostConfig())
        results = post.process(self._preds(), orig_size=(1280, 720), input_size=(640, 640))
        self.assertTrue(np.allclose(results[0].bbox.as_xywh(), (541.0, 311.0, 201.0, 101.0)))

    def test_explicit_num_classes(self) -> None:
        post = YoloPostprocessor(YoloPostConfig(num_classes=2))
        results = post.process(self._preds(), orig_size=(1280, 720), input_size=(640, 640), params=self.PARAMS)
        self.assertEqual(len(results), 1)

    def test_nothing_detected(self) -> None:
        post = YoloPostprocessor(YoloPostConfig())
        preds = _channels_first(np.zeros((100, 6), dtype=np.float32))
        self.assertEqual(post.process(preds, orig_size=(1280, 720), input_size=(640, 640)), [])

    def test_results_in_descending_score_order(self) -> None:
        rows = np.zeros((100, 6), dtype=np.float32)
        rows[0] = [100, 100, 20, 20, 0.4, 0.0]
        rows[1] = [300, 300, 20, 20, 0.0, 0.9]
        rows[2] = [500, 500, 20, 20, 0.6, 0.0]
        post = YoloPostprocessor(YoloPostConfig())
        results = post.process(_channels_first(rows), orig_size=(640, 640), input_size=(640, 640))
        self.assertEqual([round(r.confidence, 2) for r in results], [0.9, 0.6, 0.4])

    def test_single_row_major_row(self) -> None:
        preds = np.array([[100, 100, 50, 50, 0.1, 0.9, 0.05]], dtype=np.float32)
        post = YoloPostprocessor(YoloPostConfig(conf_threshold=0.3))
        results = post.process(preds, orig_size=(640, 640), input_size=(640, 640))
        self.assertEqual(len(results), 1)
        self.assertEqual(results[0].class_id, 1)
        self.assertAlmostEqual(results[0].confidence, 0.9, places=6)
        self.assertTrue(np.allclose(results[0].bbox.as_xywh(), (75.5, 75.5, 50.5, 50.5)))

    def test_bare_row_major_tensor_uses_last_axis(self) -> None:
        rows = np.zeros((3, 7), dtype=np.float32)
        rows[0] = [100, 100, 50, 50, 0.1, 0.9, 0.05]
        rows[2] = [400, 400, 50, 50, 0.8, 0.0, 0.0]
        post = YoloPostprocessor(YoloPostConfig())
        results = post.process(rows, orig_size=(640, 640), input_size=(640, 640))
        self.assertEqual([r.class_id for r in results], [1, 0])

    def test_underivable_layout(self) -> None:
        post = YoloPostprocessor(YoloPostConfig(task="pose"))
        with self.assertRaises(ValueError):
            post.process(np.zeros((1, 6, 100), dtype=np.float32), orig_size=(640, 640), input_size=(640, 640))


class TestSegment(unittest.TestCase):
    PARAMS = LetterboxParams(scale=1.0, pad_x=0.0, pad_y=0.0)

    def _run(self, coeffs, protos=None):
        rows = np.zeros((50, 7), dtype=np.float32)
        rows[0] = [30, 30, 20, 20, 0.9, *coeffs]
        if protos is None:
            protos = np.zeros((1, 2, 16, 16), dtype=np.float32)
            protos[0, 0] = 10.0
        post = YoloPostprocessor(YoloPostConfig(task=TaskType.SEGMENT))
        return post.process(
            _channels_first(rows), orig_size=(64, 64), input_size=(64, 64), params=self.PARAMS, protos=protos
        )

    def test_mask_cropped_to_box(self) -> None:
        results = self._run([1.0, 0.0])
        self.assertEqual(len(results), 1)
        mask = results[0].mask
        self.assertEqual(mask.dtype, np.uint8)
        self.assertEqual(mask.shape, (20, 20))
        self.assertTrue(np.all(mask == 255))

    def test_negative_coefficients_give_empty_mask(self) -> None:
        mask = self._run([-1.0, 0.0])[0].mask
        self.assertEqual(mask.shape, (20, 20))
        self.assertTrue(np.all(mask == 0))

    def test_prototype_channel_mismatch(self) -> None:
        with self.assertRaises(ValueError):
            self._run([1.0, 0.0], protos=np.zeros((1, 3, 16, 16), dtype=np.float32))

    def test_mask_follows_letterbox_params(self) -> None:
        # 32x24 image kept at scale 1 (no upscaling) inside a 64x64 input: content spans
        # cols 16..48 and rows 20..44, i.e. proto cols 4..12 and rows 5..11 on a 16x16 grid.
        protos = np.full((1, 2, 16, 16), -10.0, dtype=np.float32)
        protos[0, 0, 5:11, 4:12] = 10.0
        rows = np.zeros((50, 7), dtype=np.float32)
        rows[0] = [32, 32, 20, 16, 0.9, 1.0, 0.0]
        post = YoloPostprocessor(YoloPostConfig(task="segment"))
        results = post.process(
            _channels_first(rows),
            orig_size=(32, 24),
            input_size=(64, 64),
            params=LetterboxParams(scale=1.0, pad_x=16.0, pad_y=20.0),
            protos=protos,
        )
        res = results[0]
        self.assertTrue(np.allclose(res.bbox.as_xywh(), (6.5, 4.5, 20.5, 16.5)))
        self.assertEqual(res.mask.shape, (16, 20))
        self.assertTrue(np.all(res.mask == 255))

    def test_requires_prototypes(self) -> None:
        post = YoloPostprocessor(YoloPostConfig(task="segment"))
        with self.assertRaises(ValueError):
            post.process(np.zeros((1, 7, 50), dtype=np.float32), orig_size=(64, 64), input_size=(64, 64))


class TestPose(unittest.TestCase):
    PARAMS = LetterboxParams(scale=0.5, pad_x=0.0, pad_y=140.0)

    def test_keypoints_mapped_to_original(self) -> None:
        rows = np.zeros((50, 11), dtype=np.float32)
        rows[0] = [320, 320, 100, 200, 0.9, 320, 320, 0.9, 10, 140, 0.2]
        post = YoloPostprocessor(YoloPostConfig(task="pose", kpt_shape=(2, 3)))
        results = post.process(
            _channels_first(rows), orig_size=(1280, 720), input_size=(640, 640), params=self.PARAMS
        )
        kpts = results[0].keypoints
        self.assertEqual(kpts.shape, (2, 3))
        self.assertTrue(np.allclose(kpts[0], [640.0, 360.0, 0.9], atol=1e-4))
        self.assertTrue(np.allclose(kpts[1], [20.0, 0.0, 0.2], atol=1e-4))

    def test_two_dim_keypoints_get_full_confidence(self) -> None:
        rows = np.zeros((50, 9), dtype=np.float32)
        rows[0] = [320, 320, 100, 200, 0.9, 320, 320, 100, 200]
        post = YoloPostprocessor(YoloPostConfig(task="pose", kpt_shape=(2, 2)))
        results = post.process(
            _channels_first(rows), orig_size=(1280, 720), input_size=(640, 640), params=self.PARAMS
        )
        kpts = results[0].keypoints
        self.assertEqual(kpts.shape, (2, 3))
        self.assertTrue(np.allclose(kpts[:, 2], 1.0))
        self.assertTrue(np.allclose(kpts[1, :2], [200.0, 120.0]))


if __name__ == "__main__":
    unittest.main()
