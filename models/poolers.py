"""
Multi-level ROI pooling.

Boxes are pooled with torchvision's RoIAlign, one operator per feature level.
With several levels (FPN) each box is assigned to the level that matches its
scale, following Eqn.(1) of the FPN paper.
"""

import math
import torch
import torch.nn as nn
from torchvision.ops import RoIAlign
from typing import List

from utils.config import get_cfg


class LevelMapper:
    """
    Maps each box to the FPN level it should be pooled from.
    """
    def __init__(self, k_min, k_max, canonical_scale=224, canonical_level=4, eps=1e-6):
        """
        Args:
            k_min (int): Finest level index
            k_max (int): Coarsest level index
            canonical_scale (int): Box size mapped to canonical_level
            canonical_level (int): Level of a canonical_scale x canonical_scale box
            eps (float): Keeps log2 finite for degenerate boxes
        """
        self.k_min = k_min
        self.k_max = k_max
        self.s0 = canonical_scale
        self.lvl0 = canonical_level
        self.eps = eps

    def __call__(self, boxlists):
        """
        Returns:
            Tensor [R] of 0-based level indices, in the order of the concatenated boxes
        """
        s = torch.sqrt(torch.cat([boxlist.area() for boxlist in boxlists]))

        target_lvls = torch.floor(self.lvl0 + torch.log2(s / self.s0 + self.eps))
        target_lvls = torch.clamp(target_lvls, min=self.k_min, max=self.k_max)
        return target_lvls.to(torch.int64) - self.k_min


class Pooler(nn.Module):
    """
    Pools a fixed-size feature for every box from a list of feature maps.
    """
    def __init__(self, output_size, scales, sampling_ratio):
        """
        Args:
            output_size (tuple[int, int]): Pooled (height, width)
            scales (list[float]): Spatial scale of each feature level, finest first
            sampling_ratio (int): RoIAlign sampling ratio, 0 for adaptive
        """
        super().__init__()
        if len(scales) == 0:
            raise ValueError("Pooler needs at least one scale")
        if any(s <= 0 for s in scales):
            raise ValueError(f"Pooler scales must be positive, got {list(scales)}")

        # Levels are deduced from the scales: 1/4 -> 2, 1/32 -> 5
        levels = [-math.log2(s) for s in scales]
        if len(scales) > 1:
            if any(abs(lvl - round(lvl)) > 1e-6 for lvl in levels):
                raise ValueError(f"Multi-level pooler scales must be powers of 1/2, got {list(scales)}")
            levels = [int(round(lvl)) for lvl in levels]
            if levels != list(range(levels[0], levels[0] + len(levels))):
                raise ValueError(
                    f"Multi-level pooler scales must be finest first and halve at each level, got {list(scales)}"
                )

        self.poolers = nn.ModuleList([
            RoIAlign(output_size, spatial_scale=scale, sampling_ratio=sampling_ratio)
            for scale in scales
        ])
        self.output_size = output_size
        self.scales = list(scales)

        lvl_min = int(round(levels[0]))
        lvl_max = int(round(levels[-1]))
        self.map_levels = LevelMapper(lvl_min, lvl_max)

    def convert_to_roi_format(self, boxes):
        """Concatenate BoxLists into a [R, 5] tensor of (batch_idx, x1, y1, x2, y2)."""
        concat_boxes = torch.cat([b.convert("xyxy").bbox for b in boxes], dim=0)
        device, dtype = concat_boxes.device, concat_boxes.dtype
        ids = torch.cat(
            [
                torch.full((len(b), 1), i, dtype=dtype, device=device)
                for i, b in enumerate(boxes)
            ],
            dim=0,
        )
        return torch.cat([ids, concat_boxes], dim=1)

    def forward(self, x: List[torch.Tensor], boxes):
        """
        Args:
            x (list[Tensor]): Feature maps [B, C, H_l, W_l], one per scale
            boxes (list[BoxList]): Proposals, one BoxList per image

        Returns:
            Tensor [R, C, output_size[0], output_size[1]] in box order
        """
        num_levels = len(self.poolers)
        if len(x) != num_levels:
            raise ValueError(f"Pooler got {len(x)} feature maps for {num_levels} scales")

        output_h, output_w = self.output_size
        if len(boxes) == 0:
            return x[0].new_zeros((0, x[0].shape[1], output_h, output_w))

        rois = self.convert_to_roi_format(boxes).to(x[0].dtype)
        if num_levels == 1:
            return self.poolers[0](x[0], rois)

        levels = self.map_levels(boxes).to(rois.device)

        num_rois = len(rois)
        num_channels = x[0].shape[1]
        dtype, device = x[0].dtype, x[0].device
        result = torch.zeros(
            (num_rois, num_channels, output_h, output_w),
            dtype=dtype,
            device=device,
        )
        for level, (per_level_feature, pooler) in enumerate(zip(x, self.poolers)):
            idx_in_level = torch.nonzero(levels == level).squeeze(1)
            if idx_in_level.numel() == 0:
                continue
            rois_per_level = rois[idx_in_level]
            result[idx_in_level] = pooler(per_level_feature, rois_per_level).to(dtype)

        return result


def make_pooler(config, head_name):
    """Build the Pooler of MODEL.<head_name> (e.g. "ROI_BOX_HEAD")."""
    prefix = f"MODEL.{head_name}"
    resolution = get_cfg(config, f"{prefix}.POOLER_RESOLUTION")
    return Pooler(
        output_size=(resolution, resolution),
        scales=get_cfg(config, f"{prefix}.POOLER_SCALES"),
        sampling_ratio=get_cfg(config, f"{prefix}.POOLER_SAMPLING_RATIO"),
    )
