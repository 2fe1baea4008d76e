"""
ResNet stages used as ROI heads.

The conv5 (res5) stage of a ResNet applied on pooled ROI features forms the
box head of C4 Faster R-CNN. Batch norm statistics are frozen, as is usual
when fine-tuning detection models from ImageNet weights.
"""

from collections import namedtuple

import torch.nn as nn
import torch.nn.functional as F
from torchvision.ops.misc import FrozenBatchNorm2d


# index: stage number (1 = res2 ... 4 = res5)
# block_count: number of residual blocks in the stage
# return_features: exposes the stage output as a feature map in a ResNet trunk;
#   ResNetHead ignores it and always returns the output of its last stage
StageSpec = namedtuple("StageSpec", ["index", "block_count", "return_features"])


class Bottleneck(nn.Module):
    """1x1 -> 3x3 (grouped, dilated) -> 1x1 residual block with frozen BN."""

    def __init__(
        self,
        in_channels,
        bottleneck_channels,
        out_channels,
        num_groups=1,
        stride_in_1x1=True,
        stride=1,
        dilation=1,
        norm_func=FrozenBatchNorm2d,
    ):
        super().__init__()

        self.downsample = None
        if in_channels != out_channels:
            down_stride = stride if dilation == 1 else 1
            self.downsample = nn.Sequential(
                nn.Conv2d(in_channels, out_channels, kernel_size=1, stride=down_stride, bias=False),
                norm_func(out_channels),
            )
            nn.init.kaiming_uniform_(self.downsample[0].weight, a=1)

        if dilation > 1:
            stride = 1  # dilated stages keep resolution

        # MSRA-style ResNets put the stride in the 1x1 conv, FB-style in the 3x3
        stride_1x1, stride_3x3 = (stride, 1) if stride_in_1x1 else (1, stride)

        self.conv1 = nn.Conv2d(
            in_channels, bottleneck_channels, kernel_size=1, stride=stride_1x1, bias=False
        )
        self.bn1 = norm_func(bottleneck_channels)

        self.conv2 = nn.Conv2d(
            bottleneck_channels,
            bottleneck_channels,
            kernel_size=3,
            stride=stride_3x3,
            padding=dilation,
            bias=False,
            groups=num_groups,
            dilation=dilation,
        )
        self.bn2 = norm_func(bottleneck_channels)

        self.conv3 = nn.Conv2d(bottleneck_channels, out_channels, kernel_size=1, bias=False)
        self.bn3 = norm_func(out_channels)

        for conv in [self.conv1, self.conv2, self.conv3]:
            nn.init.kaiming_uniform_(conv.weight, a=1)

    def forward(self, x):
        identity = x

        out = F.relu_(self.bn1(self.conv1(x)))
        out = F.relu_(self.bn2(self.conv2(out)))
        out = self.bn3(self.conv3(out))

        if self.downsample is not None:
            identity = self.downsample(x)

        out += identity
        return F.relu_(out)


def _make_stage(
    in_channels,
    bottleneck_channels,
    out_channels,
    block_count,
    num_groups,
    stride_in_1x1,
    first_stride,
    dilation=1,
):
    blocks = []
    stride = first_stride
    for _ in range(block_count):
        blocks.append(
            Bottleneck(
                in_channels,
                bottleneck_channels,
                out_channels,
                num_groups,
                stride_in_1x1,
                stride,
                dilation=dilation,
            )
        )
        stride = 1
        in_channels = out_channels
    return nn.Sequential(*blocks)


class ResNetHead(nn.Module):
    """
    One or more ResNet stages applied on top of pooled features.

    Channel widths are derived from the res2 widths: every stage after res2
    doubles them, so res5 with the defaults maps 1024 -> 2048 channels with a
    512-wide bottleneck.
    """
    def __init__(
        self,
        stages,
        num_groups=1,
        width_per_group=64,
        stride_in_1x1=True,
        stride_init=None,
        res2_out_channels=256,
        dilation=1,
    ):
        super().__init__()

        stage2_relative_factor = 2 ** (stages[0].index - 1)
        stage2_bottleneck_channels = num_groups * width_per_group
        out_channels = res2_out_channels * stage2_relative_factor
        in_channels = out_channels // 2
        bottleneck_channels = stage2_bottleneck_channels * stage2_relative_factor

        self.in_channels = in_channels
        self.stages = []
        stride = stride_init
        for i, stage in enumerate(stages):
            if i > 0:
                # consecutive stages double the widths again
                in_channels = out_channels
                out_channels *= 2
                bottleneck_channels *= 2
            name = "layer" + str(stage.index)
            if not stride:
                stride = int(stage.index > 1) + 1
            module = _make_stage(
                in_channels,
                bottleneck_channels,
                out_channels,
                stage.block_count,
                num_groups,
                stride_in_1x1,
                first_stride=stride,
                dilation=dilation,
            )
            stride = None
            self.add_module(name, module)
            self.stages.append(name)

        self.out_channels = out_channels

    def forward(self, x):
        for stage in self.stages:
            x = getattr(self, stage)(x)
        return x
