import torch
import torch.nn as nn

from ..invertible_layer import InvertibleNetwork
from ..layers import AffineLayer, HyperbolicLayer
from ...models import TTuple
from ...utils import tensor_split, tensor_cat, wavelet_squeeze, \
    wavelet_unsqueeze


def build_schedule(n_scales: int, n_steps: int, n_center: int) -> list:
    """Return the (action, scale) of each hyperbolic layer.

    Scales are counted from 0 (finest, after the initial squeeze). Every
    scale above the coarsest holds n_steps - 1 "same" layers and one "down"
    layer on the way down, and one "up" layer and n_steps - 1 "same" layers
    on the way back.
    """
    schedule = []
    for i in range(n_scales - 1):
        schedule += [("same", i)] * (n_steps - 1) + [("down", i)]
    schedule += [("same", n_scales - 1)] * n_center
    for i in reversed(range(n_scales - 1)):
        schedule += [("up", i + 1)] + [("same", i)] * (n_steps - 1)
    return schedule


class NetworkHyperbolic(InvertibleNetwork):
    """Multiscale network of hyperbolic layers (Lensink et al., 2019).

    The input is wavelet squeezed and scaled by an AffineLayer, the only
    layer with a non-zero log determinant. Its channels are split into two
    states which are advanced by hyperbolic layers that move down to
    n_scales - 1 coarser scales and back up.
    """

    def __init__(
        self,
        n_in: int,
        n_scales: int,
        n_steps: int,
        in_shape: tuple[int, int],
        kernel: int = 3,
        stride: int = 1,
        pad: int = 1,
        logdet: bool = True,
        alpha: float = 1.,
        hidden_factor: int = 1,
        n_center: int = 1
    ):
        """Initialize NetworkHyperbolic.

        Args:
            n_in: Number of input channels.
            n_scales: Number of scales.
            n_steps: Number of hyperbolic layers per scale.
            in_shape: Spatial input shape (H, W).
            kernel, stride, pad: Convolution settings of hyperbolic layers.
            logdet: Whether forward returns the log determinant.
            alpha: Step size of the hyperbolic layers.
            hidden_factor: Ratio of hidden to state channels.
            n_center: Number of layers at the coarsest scale.
        """
        super().__init__()
        if n_scales < 1 or n_steps < 1:
            raise ValueError("Number of scales and steps must be positive.")

        height, width = in_shape
        factor = 2 ** n_scales
        if height % factor or width % factor:
            raise ValueError(
                f"Input shape {tuple(in_shape)} must be divisible by {factor}."
            )

        self.n_in = n_in
        self.in_shape = tuple(in_shape)
        self.logdet = logdet

        self.affine = AffineLayer((4 * n_in, height // 2, width // 2),
                                  logdet=logdet)

        # Channels of each state after the initial squeeze
        n_state = 2 * n_in
        self.hyperbolic_layers = nn.ModuleList([
            HyperbolicLayer(n_state * 4 ** scale, kernel=kernel,
                            stride=stride, pad=pad, action=action,
                            alpha=alpha, hidden_factor=hidden_factor)
            for action, scale in build_schedule(n_scales, n_steps, n_center)
        ])

    def forward(self, x: torch.Tensor, logdet: bool | None = None):
        """Compute forward pass.

        Args:
            x: Input of shape (B, n_in, H, W).
            logdet: Override for returning the log determinant.

        Returns:
            Output of the input's shape, and log determinant if requested.
        """
        x, logdet_full = self.affine(wavelet_squeeze(x), logdet=True)
        x_prev, x_curr = tensor_split(x)
        for layer in self.hyperbolic_layers:
            x_prev, x_curr = layer(x_prev, x_curr, logdet=False)
        y = wavelet_unsqueeze(tensor_cat(x_prev, x_curr))

        if self._use_logdet(logdet):
            return y, logdet_full
        return y

    def inverse(self, y: torch.Tensor, logdet: bool | None = None):
        """Compute inverse pass.

        Returns:
            Recovered input, and log determinant of the inverse if requested.
        """
        y_curr, y_next = tensor_split(wavelet_squeeze(y))
        for layer in reversed(self.hyperbolic_layers):
            y_curr, y_next = layer.inverse(y_curr, y_next, logdet=False)
        x, logdet_full = self.affine.inverse(tensor_cat(y_curr, y_next),
                                             logdet=True)
        x = wavelet_unsqueeze(x)

        if self._use_logdet(logdet, inverse=True):
            return x, logdet_full
        return x

    def backward(self, dy: torch.Tensor, y: torch.Tensor) -> TTuple:
        """Backpropagate from the network output, one layer at a time.

        Returns:
            Gradient with respect to the input, and the recovered input.
        """
        dy_curr, dy_next = tensor_split(wavelet_squeeze(dy))
        y_curr, y_next = tensor_split(wavelet_squeeze(y))
        for layer in reversed(self.hyperbolic_layers):
            dy_curr, dy_next, y_curr, y_next = layer.backward(
                dy_curr, dy_next, y_curr, y_next
            )

        dx, x = self.affine.backward(tensor_cat(dy_curr, dy_next),
                                     tensor_cat(y_curr, y_next))
        return wavelet_unsqueeze(dx), wavelet_unsqueeze(x)

    def backward_inv(self, dx: torch.Tensor, x: torch.Tensor) -> TTuple:
        """Backpropagate from the output of inverse, one layer at a time.

        Returns:
            Gradient with respect to the input of inverse, and that input.
        """
        dz, z = self.affine.backward_inv(wavelet_squeeze(dx),
                                         wavelet_squeeze(x))
        dx_prev, dx_curr = tensor_split(dz)
        x_prev, x_curr = tensor_split(z)
        for layer in self.hyperbolic_layers:
            dx_prev, dx_curr, x_prev, x_curr = layer.backward_inv(
                dx_prev, dx_curr, x_prev, x_curr
            )

        dy = wavelet_unsqueeze(tensor_cat(dx_prev, dx_curr))
        y = wavelet_unsqueeze(tensor_cat(x_prev, x_curr))
        return dy, y
