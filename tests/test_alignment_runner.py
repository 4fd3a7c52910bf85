"""Tests for the iterative alignment driver."""

import numpy as np
import pytest

from imagealign.core.alignment_runner import (
    AlignmentParameters, AlignmentResult, AlignmentStatus, ImageAligner,
)
from imagealign.core.image_ops import BorderMode
from imagealign.core.warp import EuclideanWarp, TranslationWarp, WarpType


class TestAlignmentParameters:

    def test_defaults(self):
        p = AlignmentParameters()
        assert p.warp_type == WarpType.TRANSLATION
        assert p.max_iterations == 50
        assert p.border_mode == BorderMode.REPLICATE

    def test_dict_round_trip(self):
        p = AlignmentParameters(warp_type=WarpType.AFFINE, max_iterations=12,
                                epsilon=1e-5, border_mode=BorderMode.CONSTANT,
                                max_condition=1e10)
        d = p.to_dict()
        assert d['warp_type'] == 'affine'
        assert d['border_mode'] == 'constant'
        assert AlignmentParameters.from_dict(d) == p

    def test_from_partial_dict(self):
        p = AlignmentParameters.from_dict({'warp_type': 'euclidean'})
        assert p.warp_type == WarpType.EUCLIDEAN
        assert p.epsilon == 1e-3

    @pytest.mark.parametrize("kwargs", [
        {'max_iterations': 0},
        {'epsilon': -1.0},
        {'max_condition': 1.0},
    ])
    def test_invalid(self, kwargs):
        with pytest.raises(ValueError):
            AlignmentParameters(**kwargs)


class TestImageAligner:

    def test_translation_converges(self, target_image, render):
        template = render(TranslationWarp([33.5, 30.25]), (64, 64))
        aligner = ImageAligner(AlignmentParameters(epsilon=1e-4))
        result = aligner.run(template, target_image, initial_parameters=[32.0, 32.0])

        assert result.converged
        assert result.status == AlignmentStatus.CONVERGED
        assert 0 < result.n_iterations < 50
        assert len(result.errors) == result.n_iterations
        assert result.delta_norm < 1e-4
        np.testing.assert_allclose(result.parameters, [33.5, 30.25], atol=0.1)
        np.testing.assert_allclose(result.transform_matrix[:2, 2], [33.5, 30.25], atol=0.1)

    def test_refines_caller_warp_in_place(self, target_image, render):
        template = render(EuclideanWarp([33.0, 31.0, 0.03]), (64, 64))
        aligner = ImageAligner(AlignmentParameters(warp_type=WarpType.EUCLIDEAN))
        warp = EuclideanWarp([32.0, 32.0, 0.0])
        result = aligner.run(template, target_image, warp=warp)

        assert result.converged
        assert result.warp_type == WarpType.EUCLIDEAN
        np.testing.assert_array_equal(warp.get_parameters(), result.parameters)
        assert result.parameters[2] == pytest.approx(0.03, abs=0.005)

    def test_degenerate_is_reported(self):
        aligner = ImageAligner()
        result = aligner.run(np.full((16, 16), 50.0), np.full((64, 64), 50.0),
                             initial_parameters=[5.0, 5.0])
        assert result.status == AlignmentStatus.DEGENERATE
        assert not result.converged
        assert result.n_iterations == 0
        np.testing.assert_array_equal(result.parameters, [5.0, 5.0])

    def test_iteration_budget(self, target_image, render):
        template = render(TranslationWarp([33.5, 30.25]), (64, 64))
        aligner = ImageAligner(AlignmentParameters(max_iterations=1, epsilon=0.0))
        result = aligner.run(template, target_image, initial_parameters=[32.0, 32.0])
        assert result.status == AlignmentStatus.MAX_ITERATIONS
        assert result.n_iterations == 1

    def test_progress_and_cancel(self, target_image, render):
        template = render(TranslationWarp([33.5, 30.25]), (64, 64))
        aligner = ImageAligner(AlignmentParameters(epsilon=0.0))
        reports = []

        def on_progress(percent, message):
            reports.append(percent)
            if len(reports) == 2:
                aligner.cancel()

        aligner.set_progress_callback(on_progress)
        result = aligner.run(template, target_image, initial_parameters=[32.0, 32.0])

        assert result.status == AlignmentStatus.CANCELLED
        assert result.n_iterations == 1
        assert reports[0] == 0
        assert reports[-1] == 100
        assert all(isinstance(p, int) and 0 <= p <= 100 for p in reports)

    def test_cancel_flag_reset_on_next_run(self, target_image, render):
        template = render(TranslationWarp([33.0, 31.0]), (48, 48))
        aligner = ImageAligner()
        aligner.cancel()
        result = aligner.run(template, target_image, initial_parameters=[32.0, 32.0])
        assert result.status != AlignmentStatus.CANCELLED


class TestAlignmentResult:

    def test_dict_round_trip(self):
        r = AlignmentResult(parameters=np.array([1.0, 2.0, 0.1]),
                            transform_matrix=EuclideanWarp([1.0, 2.0, 0.1]).matrix(),
                            warp_type=WarpType.EUCLIDEAN,
                            status=AlignmentStatus.CONVERGED,
                            n_iterations=7, errors=[3.0, 1.0, 0.5],
                            final_error=0.5, delta_norm=1e-5,
                            computation_time_s=0.25)
        back = AlignmentResult.from_dict(r.to_dict())
        np.testing.assert_allclose(back.parameters, r.parameters)
        np.testing.assert_allclose(back.transform_matrix, r.transform_matrix)
        assert back.warp_type == WarpType.EUCLIDEAN
        assert back.converged
        assert back.errors == [3.0, 1.0, 0.5]
        assert back.n_iterations == 7

    def test_to_warp(self):
        r = AlignmentResult(parameters=np.array([4.0, 5.0]),
                            transform_matrix=np.eye(3))
        w = r.to_warp()
        assert isinstance(w, TranslationWarp)
        assert w.apply((1.0, 1.0)) == (5.0, 6.0)
