"""
ROI Box Feature Extraction Script

Builds the ROI box feature extractor selected in the config and runs it on
synthetic feature maps and proposals, as a quick check of the configured head.

Usage:
    python extract_features.py
    python extract_features.py --config configs/faster_rcnn_R_50_FPN.yaml
    python extract_features.py --override MODEL.ROI_BOX_HEAD.FEATURE_EXTRACTOR=FPNXconv1fcFeatureExtractor
"""

import torch
import lightning as L

from configs import build_config
from models.roi_heads import make_roi_box_feature_extractor
from utils.boxes import BoxList


def make_random_proposals(num_images, num_proposals, image_size):
    """Random xyxy proposals inside a square image of side image_size."""
    proposals = []
    for _ in range(num_images):
        xy = torch.rand(num_proposals, 2) * image_size * 0.75
        wh = 16 + torch.rand(num_proposals, 2) * (image_size / 4)
        boxes = torch.cat([xy, xy + wh], dim=1)
        proposals.append(
            BoxList(boxes, (image_size, image_size), mode="xyxy").clip_to_image(remove_empty=False)
        )
    return proposals


def make_random_features(num_images, channels, image_size, scales):
    """One [B, C, H*s, W*s] feature map per pooler scale."""
    return [
        torch.randn(num_images, channels, max(1, int(image_size * s)), max(1, int(image_size * s)))
        for s in scales
    ]


# -----------------------------
# --- Extraction Script ---
# -----------------------------
if __name__ == "__main__":
    # Load config
    config = build_config()

    # Set seed
    L.seed_everything(config.SEED, workers=True)

    in_channels = config.MODEL.BACKBONE.OUT_CHANNELS
    extractor = make_roi_box_feature_extractor(config, in_channels)
    extractor.eval()

    batch_size = config.EXTRACT.BATCH_SIZE
    image_size = config.EXTRACT.IMAGE_SIZE
    features = make_random_features(
        batch_size, in_channels, image_size, config.MODEL.ROI_BOX_HEAD.POOLER_SCALES
    )
    proposals = make_random_proposals(batch_size, config.EXTRACT.NUM_PROPOSALS, image_size)

    with torch.no_grad():
        output = extractor(features, proposals)

    num_params = sum(p.numel() for p in extractor.parameters())

    print("\n" + "="*60)
    print(f"Feature extractor: {config.MODEL.ROI_BOX_HEAD.FEATURE_EXTRACTOR}")
    print(f"Feature maps: {[tuple(f.shape) for f in features]}")
    print(f"Proposals: {[len(p) for p in proposals]}")
    print(f"Output shape: {tuple(output.shape)}")
    print(f"Out channels: {extractor.out_channels}")
    print(f"Parameters: {num_params:,}")
    print("="*60 + "\n")
