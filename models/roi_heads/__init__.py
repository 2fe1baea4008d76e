"""
ROI heads for Faster R-CNN.
"""

from .feature_extractors import (
    FPN2MLPFeatureExtractor,
    FPNXconv1fcFeatureExtractor,
    ResNet50Conv5ROIFeatureExtractor,
    ROI_BOX_FEATURE_EXTRACTORS,
    make_roi_box_feature_extractor,
)

__all__ = [
    'FPN2MLPFeatureExtractor',
    'FPNXconv1fcFeatureExtractor',
    'ResNet50Conv5ROIFeatureExtractor',
    'ROI_BOX_FEATURE_EXTRACTORS',
    'make_roi_box_feature_extractor',
]
