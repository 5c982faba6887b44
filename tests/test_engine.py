"""
Tests for the per-frame warp engine.

Tests the NoFace / FaceDetected states, both warp modes, trigger
integration, output buffers and downscaled warping.
"""

import numpy as np
import pytest

from facewarp.compositor import Capabilities, FeatherStyle
from facewarp.config import FeatherConfig, TriggerConfig, WarpConfig
from facewarp.engine import FrameState, WarpEngine
from facewarp.landmarks import LandmarkSet
from facewarp.utils import mirror_image


def _engine(**kwargs):
    return WarpEngine(WarpConfig(**kwargs))


class TestNoFace:
    """Frames without usable landmarks pass through unmodified."""

    @pytest.mark.parametrize("mode", ["grid", "patches"])
    def test_passthrough(self, image, mode):
        engine = _engine(mode=mode)
        original = image.copy()
        output = engine.process(image, None)

        assert engine.state == FrameState.NO_FACE
        assert np.array_equal(output, original)
        assert output is not image
        assert np.array_equal(image, original)

    def test_malformed_array_passes_through(self, image, face_points):
        engine = _engine()
        output = engine.process(image, face_points[:50])
        assert engine.state == FrameState.NO_FACE
        assert np.array_equal(output, image)

    def test_nan_role_passes_through(self, image, face_points):
        face_points[13] = (np.nan, np.nan)
        engine = _engine()
        output = engine.process(image, face_points)
        assert engine.state == FrameState.NO_FACE
        assert np.array_equal(output, image)

    def test_recovers_after_no_face(self, image, face_landmarks):
        engine = _engine()
        engine.process(image, None)
        engine.process(image, face_landmarks)
        assert engine.state == FrameState.FACE_DETECTED
        engine.process(image, None)
        assert engine.state == FrameState.NO_FACE


class TestGridMode:
    """Test the smooth-field grid warp."""

    def test_zero_intensity_identity(self, image, face_landmarks):
        engine = _engine(intensity=0.0)
        output = engine.process(image, face_landmarks)
        assert engine.state == FrameState.FACE_DETECTED
        assert np.array_equal(output, image)

    def test_warps_face_region_only(self, image, face_landmarks):
        engine = _engine(intensity=1.0, grid_resolution=(8, 8))
        original = image.copy()
        output = engine.process(image, face_landmarks)

        assert np.array_equal(image, original)
        assert engine.last_stats.painted == 128
        assert engine.last_stats.degenerate == 0
        # Brow and mouth area changed
        assert not np.array_equal(output[60:80, 80:120], image[60:80, 80:120])
        assert not np.array_equal(output[130:150, 80:120], image[130:150, 80:120])
        # Corners outside the padded face box untouched
        assert np.array_equal(output[:25, :25], image[:25, :25])
        assert np.array_equal(output[-20:, -20:], image[-20:, -20:])

    def test_accepts_raw_points(self, image, face_points, face_landmarks):
        from_array = _engine(intensity=1.0).process(image, face_points)
        from_set = _engine(intensity=1.0).process(image, face_landmarks)
        assert np.array_equal(from_array, from_set)

    def test_nan_non_role_point(self, image, face_points):
        """A missing contour point does not affect the face box."""
        face_points[0] = (np.nan, np.nan)
        engine = _engine(intensity=1.0)
        output = engine.process(image, LandmarkSet(face_points))

        assert engine.state == FrameState.FACE_DETECTED
        assert engine.last_stats.degenerate == 0
        assert not np.array_equal(output, image)
        assert np.array_equal(output[:25, :25], image[:25, :25])

        from_array = _engine(intensity=1.0).process(image, face_points)
        assert np.array_equal(from_array, output)

    def test_grayscale(self, image, face_landmarks):
        gray = np.ascontiguousarray(image[..., 0])
        output = _engine(intensity=1.0).process(gray, face_landmarks)
        assert output.shape == gray.shape
        assert not np.array_equal(output, gray)

    def test_stronger_intensity_moves_more(self, image, face_landmarks):
        weak = _engine(intensity=0.3).process(image, face_landmarks)
        strong = _engine(intensity=1.0).process(image, face_landmarks)
        diff_weak = np.abs(weak.astype(int) - image.astype(int)).sum()
        diff_strong = np.abs(strong.astype(int) - image.astype(int)).sum()
        assert diff_strong > diff_weak > 0

    def test_mirror_consistent(self, image, face_landmarks):
        """Warping the mirrored frame matches mirroring the warped frame."""
        engine = _engine(intensity=1.0)
        direct = mirror_image(engine.process(image, face_landmarks))
        mirrored = engine.process(mirror_image(image), face_landmarks.mirrored(200))

        diff = np.abs(direct.astype(float) - mirrored.astype(float))
        assert diff[30:180, 40:160].mean() < 3.0


class TestPatchesMode:
    """Test the localized patch warp."""

    def test_warps_regions(self, image, face_landmarks):
        engine = _engine(intensity=1.0, mode="patches")
        output = engine.process(image, face_landmarks)
        assert engine.state == FrameState.FACE_DETECTED
        assert engine.last_stats.painted == 10
        assert not np.array_equal(output[130:160, 80:120], image[130:160, 80:120])
        assert np.array_equal(output[:40, :40], image[:40, :40])

    def test_zero_intensity_identity(self, image, face_landmarks):
        output = _engine(intensity=0.0, mode="patches").process(image, face_landmarks)
        assert np.array_equal(output, image)

    def test_feather_style_from_capabilities(self):
        engine = WarpEngine(WarpConfig(mode="patches"), capabilities=Capabilities(gaussian_blur=True))
        assert engine.compositor.feather_style == FeatherStyle.BLUR

        engine = WarpEngine(WarpConfig(mode="patches"), capabilities=Capabilities(gaussian_blur=False))
        assert engine.compositor.feather_style == FeatherStyle.RAMP

    def test_blur_falls_back_when_unavailable(self):
        config = WarpConfig(mode="patches", feather=FeatherConfig(style="blur"))
        engine = WarpEngine(config, capabilities=Capabilities(gaussian_blur=False))
        assert engine.compositor.feather_style == FeatherStyle.RAMP

    def test_explicit_ramp(self):
        config = WarpConfig(mode="patches", feather=FeatherConfig(style="ramp"))
        engine = WarpEngine(config, capabilities=Capabilities(gaussian_blur=True))
        assert engine.compositor.feather_style == FeatherStyle.RAMP

    def test_reserve_preallocates(self, image, face_landmarks):
        engine = _engine(intensity=1.0, mode="patches")
        engine.reserve(image.shape)
        assert engine.pool.allocations == 2
        for _ in range(3):
            engine.process(image, face_landmarks)
        assert engine.pool.allocations == 2


class TestTriggerIntegration:

    def test_threshold_low_score_passes_through(self, image, face_landmarks):
        engine = _engine(intensity=1.0, trigger=TriggerConfig(mode="threshold"))
        output = engine.process(image, face_landmarks, score=0.1)
        assert engine.state == FrameState.FACE_DETECTED
        assert np.array_equal(output, image)

    def test_threshold_high_score_warps(self, image, face_landmarks):
        engine = _engine(intensity=1.0, trigger=TriggerConfig(mode="threshold"))
        output = engine.process(image, face_landmarks, score=0.95)
        assert not np.array_equal(output, image)

    def test_no_face_frames_keep_average(self, image, face_landmarks):
        engine = _engine(trigger=TriggerConfig(mode="threshold"))
        engine.process(image, face_landmarks, score=0.9)
        engine.process(image, None, score=0.0)
        assert engine.trigger.ema == pytest.approx(0.9)

    def test_forced(self, image, face_landmarks):
        engine = _engine(intensity=0.0, trigger=TriggerConfig(mode="forced", forced_intensity=1.0))
        output = engine.process(image, face_landmarks)
        assert not np.array_equal(output, image)


class TestOutputBuffer:

    def test_writes_into_out(self, image, face_landmarks):
        engine = _engine(intensity=1.0)
        out = np.zeros_like(image)
        result = engine.process(image, face_landmarks, out=out)
        assert result is out
        assert np.array_equal(out, _engine(intensity=1.0).process(image, face_landmarks))

    def test_out_passthrough(self, image):
        out = np.zeros_like(image)
        _engine().process(image, None, out=out)
        assert np.array_equal(out, image)

    def test_rejects_mismatched_out(self, image, face_landmarks):
        with pytest.raises(ValueError):
            _engine().process(image, face_landmarks, out=np.zeros((10, 10, 3), dtype=np.uint8))


class TestSourceScale:
    """Warping a downscaled copy of the frame."""

    def test_output_matches_frame(self, image, face_landmarks):
        engine = _engine(intensity=1.0, source_scale=0.5)
        output = engine.process(image, face_landmarks)
        assert output.shape == image.shape
        assert output.dtype == image.dtype
        assert not np.array_equal(output, image)

    def test_outside_face_untouched(self, image, face_landmarks):
        output = _engine(intensity=1.0, source_scale=0.5).process(image, face_landmarks)
        assert np.array_equal(output[:25, :25], image[:25, :25])

    def test_landmarks_scaled_per_axis(self, monkeypatch, odd_image, face_landmarks):
        """Rows and columns of a non-square frame scale by their own factors."""
        engine = _engine(intensity=1.0, source_scale=0.5)
        seen = []
        original_warp = engine._warp

        def recording_warp(src, out, landmarks, intensity):
            seen.append((src.shape, landmarks))
            return original_warp(src, out, landmarks, intensity)

        monkeypatch.setattr(engine, "_warp", recording_warp)
        output = engine.process(odd_image, face_landmarks)

        (shape, small), = seen
        assert shape[:2] == (100, 150)
        expected = face_landmarks.points * np.array([150 / 300, 100 / 201], dtype=np.float32)
        assert np.allclose(small.points, expected)
        assert output.shape == odd_image.shape
        assert not np.array_equal(output, odd_image)
        assert np.array_equal(output[:, -60:], odd_image[:, -60:])

    def test_reserve_work_buffer(self, image):
        engine = _engine(source_scale=0.5)
        engine.reserve(image.shape)
        assert engine.pool.acquire("work_output", (100, 100, 3)) is not None
        assert engine.pool.allocations == 1


class TestConfigValidation:

    def test_invalid_config_rejected(self):
        with pytest.raises(ValueError):
            WarpEngine(WarpConfig(mode="stretch"))
