import unittest

import numpy as np

from yolo_postkit.letterbox import letterbox, letterbox_params, round_half_away
from yolo_postkit.ops import scale_boxes
from yolo_postkit.types import ImageSize


class TestRoundHalfAway(unittest.TestCase):
    def test_halves_go_away_from_zero(self) -> None:
        self.assertEqual(round_half_away(0.5), 1)
        self.assertEqual(round_half_away(1.5), 2)
        self.assertEqual(round_half_away(2.5), 3)
        self.assertEqual(round_half_away(-0.5), -1)
        self.assertEqual(round_half_away(139.9), 140)
        self.assertEqual(round_half_away(24.4), 24)


class TestLetterboxParams(unittest.TestCase):
    def test_landscape_into_square(self) -> None:
        geom = letterbox_params((1280, 720), (640, 640))
        self.assertAlmostEqual(geom.params.scale, 0.5)
        self.assertAlmostEqual(geom.params.pad_x, 0.0)
        self.assertAlmostEqual(geom.params.pad_y, 140.0)
        self.assertEqual(geom.resized, ImageSize(640, 360))
        self.assertEqual(geom.border, (140, 140, 0, 0))
        self.assertEqual(geom.output_size, ImageSize(640, 640))

    def test_fractional_padding_splits_top_smaller(self) -> None:
        # 101 * 0.5 = 50.5 rounds up to 51, leaving 49 rows of padding.
        geom = letterbox_params((200, 101), (100, 100))
        self.assertEqual(geom.resized, ImageSize(100, 51))
        self.assertAlmostEqual(geom.params.pad_y, 24.5)
        self.assertEqual(geom.border, (24, 25, 0, 0))
        self.assertEqual(geom.output_size, ImageSize(100, 100))

    def test_auto_pads_to_stride_multiple(self) -> None:
        geom = letterbox_params((1280, 720), (640, 640), auto=True, stride=32)
        self.assertAlmostEqual(geom.params.pad_y, 12.0)
        self.assertEqual(geom.output_size, ImageSize(640, 384))
        self.assertEqual(geom.output_size.height % 32, 0)

    def test_scale_fill_stretches_without_padding(self) -> None:
        geom = letterbox_params((1280, 720), (640, 640), scale_fill=True)
        self.assertEqual(geom.resized, ImageSize(640, 640))
        self.assertEqual(geom.border, (0, 0, 0, 0))
        self.assertAlmostEqual(geom.params.scale, 640 / 1280)
        self.assertAlmostEqual(geom.params.pad_x, 0.0)
        self.assertAlmostEqual(geom.params.pad_y, 0.0)

    def test_no_upscale_keeps_small_images(self) -> None:
        geom = letterbox_params((320, 240), (640, 640), scaleup=False)
        self.assertAlmostEqual(geom.params.scale, 1.0)
        self.assertEqual(geom.resized, ImageSize(320, 240))
        self.assertAlmostEqual(geom.params.pad_x, 160.0)
        self.assertAlmostEqual(geom.params.pad_y, 200.0)

    def test_int_target_is_square(self) -> None:
        geom = letterbox_params((100, 50), 320)
        self.assertEqual(geom.output_size, ImageSize(320, 320))

    def test_invalid_sizes_rejected(self) -> None:
        with self.assertRaises(ValueError):
            letterbox_params((0, 10), (640, 640))
        with self.assertRaises(ValueError):
            letterbox_params((10, 10), (640, 0))
        with self.assertRaises(ValueError):
            letterbox_params((10, 10), (640, 640), stride=0)


class TestLetterboxImage(unittest.TestCase):
    def test_output_shape_and_border_color(self) -> None:
        img = np.zeros((720, 1280, 3), dtype=np.uint8)
        padded, params = letterbox(img, (640, 640), color=(114, 114, 114))
        self.assertEqual(padded.shape, (640, 640, 3))
        self.assertTrue(np.all(padded[0, 0] == 114))
        self.assertTrue(np.all(padded[639, 639] == 114))
        self.assertTrue(np.all(padded[320, 320] == 0))
        self.assertAlmostEqual(params.pad_y, 140.0)

    def test_rectangular_target(self) -> None:
        img = np.zeros((640, 640, 3), dtype=np.uint8)
        padded, params = letterbox(img, (640, 480))
        self.assertEqual(padded.shape, (480, 640, 3))
        self.assertAlmostEqual(params.scale, 0.75)
        self.assertAlmostEqual(params.pad_x, 80.0)

    def test_auto_output_is_stride_aligned(self) -> None:
        img = np.zeros((720, 1280, 3), dtype=np.uint8)
        padded, _ = letterbox(img, (640, 640), auto=True)
        self.assertEqual(padded.shape, (384, 640, 3))

    def test_rejects_non_array(self) -> None:
        with self.assertRaises(TypeError):
            letterbox(None)  # type: ignore[arg-type]


class TestLetterboxRoundTrip(unittest.TestCase):
    CASES = [
        ((1280, 720), (640, 640)),
        ((720, 1280), (640, 640)),
        ((333, 517), (640, 640)),
        ((1920, 1080), (416, 416)),
        ((200, 101), (100, 100)),
        ((640, 640), (640, 480)),
    ]

    def test_boxes_survive_forward_then_inverse(self) -> None:
        rng = np.random.default_rng(7)
        for src, dst in self.CASES:
            with self.subTest(src=src, dst=dst):
                params = letterbox_params(src, dst).params
                w0, h0 = src
                xy = rng.uniform(0, 0.5, size=(20, 2)) * np.array([w0, h0])
                wh = rng.uniform(0.05, 0.4, size=(20, 2)) * np.array([w0, h0])
                boxes = np.concatenate([xy, wh], axis=1)

                fwd = boxes * params.scale
                fwd[:, 0] += params.pad_x
                fwd[:, 1] += params.pad_y

                back = scale_boxes(dst, fwd, src, params=params)
                self.assertTrue(np.all(np.abs(back - boxes) <= 1.0), msg=f"max err {np.abs(back - boxes).max()}")

    def test_recomputed_params_match_for_integral_padding(self) -> None:
        params = letterbox_params((1280, 720), (640, 640)).params
        boxes = np.array([[100.0, 200.0, 300.0, 150.0]])
        fwd = boxes * params.scale
        fwd[:, 1] += params.pad_y
        back = scale_boxes((640, 640), fwd, (1280, 720))
        self.assertTrue(np.allclose(back, boxes, atol=1.0))


if __name__ == "__main__":
    unittest.main()
