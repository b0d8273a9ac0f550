import torch
import torch.nn as nn
import torch.nn.functional as F

from ..invertible_layer import InvertibleLayer, recompute_backward
from ...models import TQuad
from ...utils import wavelet_squeeze, wavelet_unsqueeze


ACTIONS = ("same", "down", "up")


class HyperbolicLayer(InvertibleLayer):
    """Hyperbolic (leapfrog) layer from Lensink et al. (2019).

    Operates on a pair of consecutive states:
        X_next = 2 X_curr - X_prev - alpha * W^T relu(W * X_curr + b)
    where W is a convolution. The map (X_prev, X_curr) -> (X_curr, X_next) is
    volume preserving. With action "down" or "up" both states are first
    moved to the next coarser or finer scale with the Haar transform.
    """

    def __init__(
        self,
        n_in: int,
        kernel: int = 3,
        stride: int = 1,
        pad: int = 1,
        action: str = "same",
        alpha: float = 1.,
        hidden_factor: int = 1
    ):
        """Initialize HyperbolicLayer.

        Args:
            n_in: Number of channels of each state before the action.
            kernel, stride, pad: Convolution settings.
            action: One of "same", "down" or "up".
            alpha: Step size.
            hidden_factor: Ratio of hidden to state channels.
        """
        super().__init__()
        if action not in ACTIONS:
            raise ValueError(f"{action} is not a valid action!")
        if action == "down":
            n_in = 4 * n_in
        elif action == "up":
            if n_in % 4:
                raise ValueError(
                    f"Cannot upsample {n_in} channels, must be divisible by 4."
                )
            n_in = n_in // 4

        self.n_in = n_in
        self.action = action
        self.alpha = alpha
        self.stride = stride
        self.pad = pad

        n_hidden = n_in * hidden_factor
        self.W = nn.Parameter(torch.empty(n_hidden, n_in, kernel, kernel))
        nn.init.xavier_uniform_(self.W)
        self.b = nn.Parameter(torch.zeros(n_hidden))

    def _change_dims(self, x: torch.Tensor) -> torch.Tensor:
        if self.action == "down":
            return wavelet_squeeze(x)
        if self.action == "up":
            return wavelet_unsqueeze(x)
        return x

    def _restore_dims(self, x: torch.Tensor) -> torch.Tensor:
        if self.action == "down":
            return wavelet_unsqueeze(x)
        if self.action == "up":
            return wavelet_squeeze(x)
        return x

    def _update(self, x_curr: torch.Tensor) -> torch.Tensor:
        h = F.conv2d(x_curr, self.W, self.b, stride=self.stride,
                     padding=self.pad)
        return F.conv_transpose2d(F.relu(h), self.W, stride=self.stride,
                                  padding=self.pad)

    def forward(
        self,
        x_prev: torch.Tensor,
        x_curr: torch.Tensor,
        logdet: bool | None = None
    ):
        """Advance the states by one step.

        Returns:
            (x_curr, x_next) at the new scale, extended by the zero log
            determinant if requested.
        """
        x_prev = self._change_dims(x_prev)
        x_curr = self._change_dims(x_curr)
        x_next = 2 * x_curr - x_prev - self.alpha * self._update(x_curr)
        if self._use_logdet(logdet):
            return x_curr, x_next, x_curr.new_zeros(())
        return x_curr, x_next

    def inverse(
        self,
        x_curr: torch.Tensor,
        x_next: torch.Tensor,
        logdet: bool | None = None
    ):
        """Step the states back.

        Returns:
            (x_prev, x_curr) at the original scale, extended by the zero log
            determinant if requested.
        """
        x_prev = 2 * x_curr - x_next - self.alpha * self._update(x_curr)
        x_prev = self._restore_dims(x_prev)
        x_curr = self._restore_dims(x_curr)
        if self._use_logdet(logdet, inverse=True):
            return x_prev, x_curr, x_curr.new_zeros(())
        return x_prev, x_curr

    def backward(
        self,
        dx_curr: torch.Tensor,
        dx_next: torch.Tensor,
        x_curr: torch.Tensor,
        x_next: torch.Tensor
    ) -> TQuad:
        """Backpropagate from the output states.

        Returns:
            Gradients with respect to the input states, and the input states.
        """
        with torch.no_grad():
            x_prev_in, x_curr_in = self.inverse(x_curr, x_next, logdet=False)

        dx_prev_in, dx_curr_in = recompute_backward(
            lambda a, b: self.forward(a, b, logdet=False),
            (dx_curr, dx_next), (x_prev_in, x_curr_in)
        )
        return dx_prev_in, dx_curr_in, x_prev_in, x_curr_in

    def backward_inv(
        self,
        dx_prev: torch.Tensor,
        dx_curr: torch.Tensor,
        x_prev: torch.Tensor,
        x_curr: torch.Tensor
    ) -> TQuad:
        """Backpropagate from the states returned by inverse.

        Returns:
            Gradients with respect to the inputs of inverse, and those inputs.
        """
        with torch.no_grad():
            x_curr_out, x_next_out = self.forward(x_prev, x_curr, logdet=False)

        dx_curr_out, dx_next_out = recompute_backward(
            lambda a, b: self.inverse(a, b, logdet=False),
            (dx_prev, dx_curr), (x_curr_out, x_next_out)
        )
        return dx_curr_out, dx_next_out, x_curr_out, x_next_out
