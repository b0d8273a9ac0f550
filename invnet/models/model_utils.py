import torch.nn as nn


NONLINEARITIES = {
    'relu': nn.ReLU(),
    'leaky_relu': nn.LeakyReLU(),
    'tanh': nn.Tanh(),
    'softplus': nn.Softplus(),
}

CONV_LAYERS = {
    2: (nn.Conv2d, nn.ConvTranspose2d),
    3: (nn.Conv3d, nn.ConvTranspose3d),
}


def get_conv_layers(ndims: int) -> tuple[type, type]:
    """Look up convolution and transposed convolution classes.

    Args:
        ndims: Number of spatial dimensions, 2 or 3.

    Returns:
        Convolution class and transposed convolution class.
    """
    try:
        return CONV_LAYERS[ndims]
    except KeyError:
        raise ValueError(f"{ndims} is not a supported number of dimensions!")


def get_activation(act_type: str) -> nn.Module:
    """Look up an activation module by name."""
    try:
        return NONLINEARITIES[act_type]
    except KeyError:
        raise ValueError(f"{act_type} is not a valid activation!")
