"""
ROI box feature extractors.

Each extractor pools a fixed-size feature for every proposal and turns it into
the representation consumed by the box predictor:

    ResNet50Conv5ROIFeatureExtractor   pooler -> res5 stage         [R, 2048, r/2, r/2]
    FPN2MLPFeatureExtractor            pooler -> fc6 -> fc7         [R, MLP_HEAD_DIM]
    FPNXconv1fcFeatureExtractor        pooler -> N x conv3x3 -> fc6 [R, MLP_HEAD_DIM]

The variant is selected by name from MODEL.ROI_BOX_HEAD.FEATURE_EXTRACTOR.
"""

import torch
import torch.nn as nn
import torch.nn.functional as F
from typing import List

from models.backbones import ResNetHead, StageSpec
from models.layers import make_fc, make_xconvs
from models.poolers import make_pooler
from utils.config import get_cfg

RESNETS = "MODEL.RESNETS"
ROI_BOX_HEAD = "MODEL.ROI_BOX_HEAD"


class ResNet50Conv5ROIFeatureExtractor(nn.Module):
    def __init__(self, config, in_channels):
        super().__init__()
        res2_out_channels = get_cfg(config, f"{RESNETS}.RES2_OUT_CHANNELS")

        self.pooler = make_pooler(config, "ROI_BOX_HEAD")
        self.head = ResNetHead(
            stages=[StageSpec(index=4, block_count=3, return_features=False)],
            num_groups=get_cfg(config, f"{RESNETS}.NUM_GROUPS"),
            width_per_group=get_cfg(config, f"{RESNETS}.WIDTH_PER_GROUP"),
            stride_in_1x1=get_cfg(config, f"{RESNETS}.STRIDE_IN_1X1"),
            stride_init=None,
            res2_out_channels=res2_out_channels,
            dilation=get_cfg(config, f"{RESNETS}.RES5_DILATION"),
        )
        if in_channels != self.head.in_channels:
            raise ValueError(
                f"ResNet50Conv5ROIFeatureExtractor expects {self.head.in_channels} input channels "
                f"(RES2_OUT_CHANNELS={res2_out_channels}), got {in_channels}"
            )
        self.out_channels = self.head.out_channels

    def forward(self, x: List[torch.Tensor], proposals):
        x = self.pooler(x, proposals)
        x = self.head(x)
        return x


class FPN2MLPFeatureExtractor(nn.Module):
    """
    Heads for FPN for classification: two fully-connected layers on the
    flattened pooled features.
    """
    def __init__(self, config, in_channels):
        super().__init__()
        resolution = get_cfg(config, f"{ROI_BOX_HEAD}.POOLER_RESOLUTION")
        representation_size = get_cfg(config, f"{ROI_BOX_HEAD}.MLP_HEAD_DIM")
        use_gn = get_cfg(config, f"{ROI_BOX_HEAD}.USE_GN")

        self.pooler = make_pooler(config, "ROI_BOX_HEAD")
        input_size = in_channels * resolution ** 2
        self.fc6 = make_fc(input_size, representation_size, use_gn, config)
        self.fc7 = make_fc(representation_size, representation_size, use_gn, config)
        self.out_channels = representation_size

    def forward(self, x: List[torch.Tensor], proposals):
        x = self.pooler(x, proposals)
        x = x.flatten(start_dim=1)

        x = F.relu_(self.fc6(x))
        x = F.relu_(self.fc7(x))
        return x


class FPNXconv1fcFeatureExtractor(nn.Module):
    """
    Heads for FPN for classification: a stack of 3x3 convolutions followed by
    a single fully-connected layer.
    """
    def __init__(self, config, in_channels):
        super().__init__()
        resolution = get_cfg(config, f"{ROI_BOX_HEAD}.POOLER_RESOLUTION")
        conv_head_dim = get_cfg(config, f"{ROI_BOX_HEAD}.CONV_HEAD_DIM")
        num_stacked_convs = get_cfg(config, f"{ROI_BOX_HEAD}.NUM_STACKED_CONVS")
        use_gn = get_cfg(config, f"{ROI_BOX_HEAD}.USE_GN")

        if num_stacked_convs < 0:
            raise ValueError(f"NUM_STACKED_CONVS must be >= 0, got {num_stacked_convs}")

        self.pooler = make_pooler(config, "ROI_BOX_HEAD")
        self.xconvs = make_xconvs(
            in_channels,
            conv_head_dim,
            num_stacked_convs,
            dilation=get_cfg(config, f"{ROI_BOX_HEAD}.DILATION"),
            use_gn=use_gn,
            config=config,
        )

        # Stacked convs keep the pooled resolution (padding == dilation);
        # an empty stack passes the pooled channels straight through
        xconv_out_channels = conv_head_dim if num_stacked_convs > 0 else in_channels
        input_size = xconv_out_channels * resolution ** 2
        representation_size = get_cfg(config, f"{ROI_BOX_HEAD}.MLP_HEAD_DIM")
        self.fc6 = make_fc(input_size, representation_size, use_gn=False)
        self.out_channels = representation_size

    def forward(self, x: List[torch.Tensor], proposals):
        x = self.pooler(x, proposals)
        x = self.xconvs(x)
        x = x.flatten(start_dim=1)
        x = F.relu_(self.fc6(x))
        return x


ROI_BOX_FEATURE_EXTRACTORS = {
    "ResNet50Conv5ROIFeatureExtractor": ResNet50Conv5ROIFeatureExtractor,
    "FPN2MLPFeatureExtractor": FPN2MLPFeatureExtractor,
    "FPNXconv1fcFeatureExtractor": FPNXconv1fcFeatureExtractor,
}


def make_roi_box_feature_extractor(config, in_channels):
    """
    Build the box feature extractor named by MODEL.ROI_BOX_HEAD.FEATURE_EXTRACTOR.

    Args:
        config: Config namespace
        in_channels (int): Channels of the feature maps given to the pooler

    Returns:
        nn.Module with an ``out_channels`` attribute

    Raises:
        ValueError: If the extractor name is not registered
        KeyError: If a config key the extractor reads is missing
    """
    name = get_cfg(config, "MODEL.ROI_BOX_HEAD.FEATURE_EXTRACTOR")
    if name not in ROI_BOX_FEATURE_EXTRACTORS:
        raise ValueError(
            f"Unknown ROI box feature extractor: {name}. "
            f"Choose from {list(ROI_BOX_FEATURE_EXTRACTORS.keys())}"
        )

    extractor = ROI_BOX_FEATURE_EXTRACTORS[name](config, in_channels)
    print(f"[ROIBoxHead] Built {name} (in_channels={in_channels}, out_channels={extractor.out_channels})")
    return extractor
