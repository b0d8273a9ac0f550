import torch
import torch.nn as nn

from ..model_utils import get_activation, get_conv_layers


class ResidualBlock(nn.Module):
    """Three-layer convolutional block used as coupling layer network.

    conv(k1) -> act -> conv(k2) -> act -> transposed conv(k1). The last
    layer has no bias. Parameters are ordered W1, b1, W2, b2, W3.
    """

    def __init__(
        self,
        n_in: int,
        n_hidden: int,
        n_out: int | None = None,
        ndims: int = 2,
        k1: int = 3,
        k2: int = 3,
        p1: int = 1,
        p2: int = 1,
        s1: int = 1,
        s2: int = 1,
        act_type: str = "relu"
    ):
        """Initialize ResidualBlock.

        Args:
            n_in: Number of input channels.
            n_hidden: Number of hidden channels.
            n_out: Number of output channels. Defaults to 2 * n_in.
            ndims: Number of spatial dimensions, 2 or 3.
            k1, k2: Kernel sizes of the outer and middle convolutions.
            p1, p2: Paddings of the outer and middle convolutions.
            s1, s2: Strides of the outer and middle convolutions.
            act_type: Activation function between convolutions.
        """
        super().__init__()
        self.n_in = n_in
        self.n_hidden = n_hidden
        self.n_out = 2 * n_in if n_out is None else n_out

        conv, conv_t = get_conv_layers(ndims)
        self.activation = get_activation(act_type)

        self.conv1 = conv(n_in, n_hidden, k1, stride=s1, padding=p1)
        self.conv2 = conv(n_hidden, n_hidden, k2, stride=s2, padding=p2)
        self.conv3 = conv_t(n_hidden, self.n_out, k1, stride=s1, padding=p1,
                            bias=False)

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        h = self.activation(self.conv1(x))
        h = self.activation(self.conv2(h))
        return self.conv3(h)
