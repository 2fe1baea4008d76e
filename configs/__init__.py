# configs/__init__.py
from pathlib import Path

from utils.config import load_config

CONFIG_DIR = Path(__file__).parent
DEFAULT_CONFIG = CONFIG_DIR / "defaults.yaml"


def build_config(args=None):
    return load_config(str(DEFAULT_CONFIG), args)
