import torch.nn as nn

from utils.config import get_cfg


def group_norm(config, out_channels, affine=True):
    """
    GroupNorm sized from MODEL.GROUP_NORM.

    Exactly one of DIM_PER_GP / NUM_GROUPS must be set (the other is -1).
    """
    dim_per_gp = get_cfg(config, "MODEL.GROUP_NORM.DIM_PER_GP")
    num_groups = get_cfg(config, "MODEL.GROUP_NORM.NUM_GROUPS")
    eps = float(get_cfg(config, "MODEL.GROUP_NORM.EPSILON"))

    if dim_per_gp > 0 and num_groups > 0:
        raise ValueError("GroupNorm: only one of DIM_PER_GP and NUM_GROUPS can be used")
    if dim_per_gp > 0:
        if out_channels % dim_per_gp != 0:
            raise ValueError(f"GroupNorm: {out_channels} channels not divisible by DIM_PER_GP={dim_per_gp}")
        groups = out_channels // dim_per_gp
    elif num_groups > 0:
        if out_channels % num_groups != 0:
            raise ValueError(f"GroupNorm: {out_channels} channels not divisible by NUM_GROUPS={num_groups}")
        groups = num_groups
    else:
        raise ValueError("GroupNorm: one of DIM_PER_GP and NUM_GROUPS must be positive")

    return nn.GroupNorm(groups, out_channels, eps=eps, affine=affine)


def make_fc(dim_in, hidden_dim, use_gn=False, config=None):
    """
    Fully-connected layer with Caffe2-style init (kaiming_uniform a=1, zero bias).

    When use_gn is set the linear layer drops its bias and is followed by GroupNorm;
    config is then required to size the groups.
    """
    if use_gn:
        if config is None:
            raise ValueError("make_fc: config is required when use_gn=True")
        fc = nn.Linear(dim_in, hidden_dim, bias=False)
        nn.init.kaiming_uniform_(fc.weight, a=1)
        return nn.Sequential(fc, group_norm(config, hidden_dim))

    fc = nn.Linear(dim_in, hidden_dim)
    nn.init.kaiming_uniform_(fc.weight, a=1)
    nn.init.constant_(fc.bias, 0)
    return fc


def make_xconvs(in_channels, conv_head_dim, num_stacked_convs, dilation=1, use_gn=False, config=None):
    """
    Stack of 3x3 conv (+ optional GroupNorm) + ReLU blocks.

    Args:
        in_channels (int): Channels of the pooled features
        conv_head_dim (int): Channels of every conv in the stack
        num_stacked_convs (int): Number of conv blocks
        dilation (int): Dilation (and padding) of each conv
        use_gn (bool): Insert GroupNorm after each conv, convs then have no bias
        config: Config namespace, needed only for GroupNorm sizing

    Returns:
        nn.Sequential: conv weights ~ N(0, 0.01), conv biases = 0
    """
    if use_gn and config is None:
        raise ValueError("make_xconvs: config is required when use_gn=True")

    layers = []
    for _ in range(num_stacked_convs):
        layers.append(
            nn.Conv2d(
                in_channels,
                conv_head_dim,
                kernel_size=3,
                stride=1,
                padding=dilation,
                dilation=dilation,
                bias=not use_gn,
            )
        )
        if use_gn:
            layers.append(group_norm(config, conv_head_dim))
        layers.append(nn.ReLU(inplace=True))
        in_channels = conv_head_dim

    xconvs = nn.Sequential(*layers)
    for module in xconvs.modules():
        if isinstance(module, nn.Conv2d):
            nn.init.normal_(module.weight, std=0.01)
            if module.bias is not None:
                nn.init.constant_(module.bias, 0)
    return xconvs
