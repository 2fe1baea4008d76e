"""Shared pytest fixtures for the ROI box head tests."""

import pytest
import torch

from configs import CONFIG_DIR, build_config
from utils.boxes import BoxList

FPN_CONFIG = str(CONFIG_DIR / "faster_rcnn_R_50_FPN.yaml")
IMAGE_SIZE = 512


@pytest.fixture(autouse=True)
def seed():
    torch.manual_seed(0)


@pytest.fixture()
def config():
    """Packaged defaults (C4 / ResNet50Conv5 box head)."""
    return build_config(args=[])


@pytest.fixture()
def make_fpn_config():
    """Factory for FPN configs with extra dot-notation overrides."""
    def _make(*overrides):
        args = ["--config", FPN_CONFIG]
        if overrides:
            args += ["--override", *overrides]
        return build_config(args=args)
    return _make


@pytest.fixture()
def proposals():
    """Two images with 3 and 2 proposals of varied sizes."""
    size = (IMAGE_SIZE, IMAGE_SIZE)
    return [
        BoxList(
            torch.tensor([
                [10.0, 10.0, 65.0, 65.0],
                [0.0, 0.0, 223.0, 223.0],
                [20.0, 30.0, 499.0, 479.0],
            ]),
            size,
        ),
        BoxList(
            torch.tensor([
                [100.0, 120.0, 180.0, 200.0],
                [5.0, 5.0, 300.0, 250.0],
            ]),
            size,
        ),
    ]


@pytest.fixture()
def make_features():
    """Factory for random feature maps, one per pooler scale."""
    def _make(batch_size, channels, scales, image_size=IMAGE_SIZE):
        return [
            torch.randn(batch_size, channels, int(image_size * s), int(image_size * s))
            for s in scales
        ]
    return _make
