"""Tests for the multi-level ROI pooler."""

import pytest
import torch

from models.poolers import LevelMapper, Pooler, make_pooler
from utils.boxes import BoxList

FPN_SCALES = [0.25, 0.125, 0.0625, 0.03125]


def constant_features(batch_size, channels, scales, image_size=512):
    """Level l of image b is filled with (l + 1) + 10 * b."""
    features = []
    for level, s in enumerate(scales):
        side = int(image_size * s)
        feature = torch.empty(batch_size, channels, side, side)
        for b in range(batch_size):
            feature[b].fill_(level + 1 + 10 * b)
        features.append(feature)
    return features


class TestLevelMapper:
    def test_canonical_levels(self):
        mapper = LevelMapper(2, 5)
        boxes = BoxList(
            torch.tensor([
                [0.0, 0.0, 223.0, 223.0],    # 224 -> level 4
                [0.0, 0.0, 55.0, 55.0],      # 56  -> level 2
                [0.0, 0.0, 9.0, 9.0],        # tiny, clamped to level 2
                [0.0, 0.0, 1999.0, 1999.0],  # huge, clamped to level 5
                [0.0, 0.0, 111.0, 111.0],    # 112 -> level 3
            ]),
            (2000, 2000),
        )
        levels = mapper([boxes])
        assert levels.dtype == torch.int64
        assert levels.tolist() == [2, 0, 0, 3, 1]

    def test_concatenates_images_in_order(self):
        mapper = LevelMapper(2, 5)
        a = BoxList([[0.0, 0.0, 223.0, 223.0]], (512, 512))
        b = BoxList([[0.0, 0.0, 55.0, 55.0]], (512, 512))
        assert mapper([a, b]).tolist() == [2, 0]


class TestPooler:
    def test_convert_to_roi_format(self):
        pooler = Pooler((7, 7), [0.0625], 0)
        a = BoxList([[1.0, 2.0, 3.0, 4.0]], (100, 100))
        b = BoxList([[0.0, 0.0, 9.0, 9.0], [5.0, 5.0, 10.0, 10.0]], (100, 100)).convert("xywh")
        rois = pooler.convert_to_roi_format([a, b])
        assert rois.tolist() == [
            [0, 1, 2, 3, 4],
            [1, 0, 0, 9, 9],
            [1, 5, 5, 10, 10],
        ]

    def test_single_level(self):
        pooler = Pooler((7, 7), [0.0625], sampling_ratio=0)
        features = constant_features(2, 4, [0.0625])
        boxes = [
            BoxList([[16.0, 16.0, 200.0, 200.0], [0.0, 0.0, 100.0, 300.0]], (512, 512)),
            BoxList([[64.0, 32.0, 256.0, 400.0]], (512, 512)),
        ]
        out = pooler(features, boxes)
        assert out.shape == (3, 4, 7, 7)
        assert torch.allclose(out[0], torch.full((4, 7, 7), 1.0))
        assert torch.allclose(out[1], torch.full((4, 7, 7), 1.0))
        # second image reads from batch index 1
        assert torch.allclose(out[2], torch.full((4, 7, 7), 11.0))

    def test_multi_level_assignment_preserves_order(self):
        pooler = Pooler((7, 7), FPN_SCALES, sampling_ratio=2)
        features = constant_features(2, 3, FPN_SCALES)
        boxes = [
            BoxList(
                torch.tensor([
                    [0.0, 0.0, 479.0, 479.0],   # level 5 -> index 3
                    [10.0, 10.0, 65.0, 65.0],   # level 2 -> index 0
                    [0.0, 0.0, 223.0, 223.0],   # level 4 -> index 2
                ]),
                (512, 512),
            ),
            BoxList([[100.0, 100.0, 155.0, 155.0]], (512, 512)),  # level 2, image 1
        ]
        out = pooler(features, boxes)
        assert out.shape == (4, 3, 7, 7)
        means = [round(v, 4) for v in out.mean(dim=(1, 2, 3)).tolist()]
        assert means == [4.0, 1.0, 3.0, 11.0]

    def test_feature_count_mismatch(self):
        pooler = Pooler((7, 7), FPN_SCALES, sampling_ratio=2)
        boxes = [BoxList([[0.0, 0.0, 10.0, 10.0]], (512, 512))]
        with pytest.raises(ValueError, match="feature maps"):
            pooler(constant_features(1, 3, FPN_SCALES[:2]), boxes)

    def test_no_boxes(self):
        pooler = Pooler((7, 7), FPN_SCALES, sampling_ratio=2)
        boxes = [BoxList(torch.zeros(0, 4), (512, 512))]
        out = pooler(constant_features(1, 3, FPN_SCALES), boxes)
        assert out.shape == (0, 3, 7, 7)

    def test_requires_scales(self):
        with pytest.raises(ValueError):
            Pooler((7, 7), [], 0)

    def test_no_images(self):
        pooler = Pooler((7, 7), FPN_SCALES, sampling_ratio=2)
        out = pooler(constant_features(1, 3, FPN_SCALES), [])
        assert out.shape == (0, 3, 7, 7)

        single = Pooler((5, 5), [0.0625], sampling_ratio=0)
        assert single(constant_features(1, 3, [0.0625]), []).shape == (0, 3, 5, 5)

    def test_coarsest_first_scales_rejected(self):
        with pytest.raises(ValueError, match="finest first"):
            Pooler((7, 7), list(reversed(FPN_SCALES)), sampling_ratio=2)

    def test_skipped_level_rejected(self):
        with pytest.raises(ValueError, match="halve at each level"):
            Pooler((7, 7), [0.25, 0.0625], sampling_ratio=2)

    def test_non_power_of_two_scales_rejected(self):
        with pytest.raises(ValueError, match="powers of 1/2"):
            Pooler((7, 7), [0.3, 0.15], sampling_ratio=2)

    def test_non_positive_scale_rejected(self):
        with pytest.raises(ValueError, match="positive"):
            Pooler((7, 7), [0.0], sampling_ratio=0)

    def test_single_arbitrary_scale_allowed(self):
        pooler = Pooler((3, 3), [0.1], sampling_ratio=0)
        boxes = [BoxList([[10.0, 10.0, 100.0, 100.0]], (200, 200))]
        out = pooler([torch.ones(1, 2, 20, 20)], boxes)
        assert torch.allclose(out, torch.ones(1, 2, 3, 3))


class TestMakePooler:
    def test_from_defaults(self, config):
        pooler = make_pooler(config, "ROI_BOX_HEAD")
        assert pooler.output_size == (14, 14)
        assert pooler.scales == [0.0625]
        assert len(pooler.poolers) == 1

    def test_from_fpn_config(self, make_fpn_config):
        pooler = make_pooler(make_fpn_config(), "ROI_BOX_HEAD")
        assert pooler.output_size == (7, 7)
        assert len(pooler.poolers) == 4
        assert pooler.map_levels.k_min == 2
        assert pooler.map_levels.k_max == 5

    def test_unknown_head(self, config):
        with pytest.raises(KeyError, match="ROI_MASK_HEAD"):
            make_pooler(config, "ROI_MASK_HEAD")
