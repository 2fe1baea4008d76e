import yaml
import argparse
from types import SimpleNamespace
from copy import deepcopy

def dict_to_namespace(d):
    if isinstance(d, dict):
        return SimpleNamespace(**{k: dict_to_namespace(v) for k, v in d.items()})
    elif isinstance(d, list):
        return [dict_to_namespace(x) for x in d]
    else:
        return d

def namespace_to_dict(ns):
    if isinstance(ns, SimpleNamespace):
        return {k: namespace_to_dict(v) for k, v in vars(ns).items()}
    elif isinstance(ns, list):
        return [namespace_to_dict(x) for x in ns]
    else:
        return ns

def update_dict(d, updates):
    """Update nested dict 'd' using dot notation keys in 'updates'."""
    for key, value in updates.items():
        keys = key.split(".")
        target = d
        for k in keys[:-1]:
            target = target.setdefault(k, {})
        target[keys[-1]] = value
    return d

def merge_dict(base, other):
    """Recursively merge 'other' into a copy of 'base'. Leaves of 'other' win."""
    merged = deepcopy(base)
    for key, value in other.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_dict(merged[key], value)
        else:
            merged[key] = deepcopy(value)
    return merged

def parse_overrides(items):
    """
    Turn ['A.B=1', 'C=[1, 2]'] into {'A.B': 1, 'C': [1, 2]}.

    Values are parsed as YAML so numbers, bools and lists keep their type;
    anything YAML cannot parse stays a string.
    """
    overrides = {}
    for item in items:
        if "=" not in item:
            raise ValueError(f"Invalid override '{item}', expected KEY.PATH=value")
        key, value = item.split("=", 1)
        try:
            value = yaml.safe_load(value)
        except yaml.YAMLError:
            pass
        overrides[key.strip()] = value
    return overrides

def get_cfg(config, key):
    """
    Look up a dotted key path in a config namespace.

    Args:
        config: SimpleNamespace tree returned by load_config
        key: Dotted path such as "MODEL.ROI_BOX_HEAD.POOLER_RESOLUTION"

    Returns:
        The value stored at that path

    Raises:
        KeyError: If any segment of the path is missing
    """
    node = config
    for part in key.split("."):
        if isinstance(node, SimpleNamespace) and hasattr(node, part):
            node = getattr(node, part)
        elif isinstance(node, dict) and part in node:
            node = node[part]
        else:
            raise KeyError(f"Config key not found: {key} (missing '{part}')")
    return node

def load_config(default_path: str, args=None):
    # --- Load YAML base config ---
    with open(default_path, "r") as f:
        cfg_dict = yaml.safe_load(f) or {}

    # --- Parse CLI overrides ---
    parser = argparse.ArgumentParser()
    parser.add_argument("--config", type=str, default=None, help="Experiment config merged over the defaults")
    parser.add_argument("--override", nargs="*", default=[], help="Override config params (dot notation)")

    if args is None:
        args = parser.parse_args()
    else:
        args = parser.parse_args(args)

    # --- Merge experiment config ---
    if args.config is not None and args.config != default_path:
        with open(args.config, "r") as f:
            cfg_dict = merge_dict(cfg_dict, yaml.safe_load(f) or {})

    # --- Apply overrides ---
    cfg_dict = update_dict(cfg_dict, parse_overrides(args.override))

    return dict_to_namespace(cfg_dict)
