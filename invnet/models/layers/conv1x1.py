import torch
import torch.nn as nn

from ..invertible_layer import InvertibleLayer
from ...models import TTuple


def householder(v: torch.Tensor) -> torch.Tensor:
    """Householder reflection I - 2 v v^T / (v^T v)."""
    eye = torch.eye(v.shape[0], dtype=v.dtype, device=v.device)
    return eye - 2. * torch.outer(v, v) / torch.dot(v, v)


class Conv1x1(InvertibleLayer):
    """Orthogonal 1x1 convolution that mixes channels.

    The weight is a product of three Householder reflections, so the layer
    is volume preserving and its inverse is the transposed weight.
    """

    def __init__(
        self,
        k: int,
        v1: torch.Tensor | None = None,
        v2: torch.Tensor | None = None,
        v3: torch.Tensor | None = None,
        logdet: bool = False
    ):
        """Initialize Conv1x1.

        Args:
            k: Number of channels.
            v1, v2, v3: Optional Householder vectors of length k.
            logdet: Whether forward returns the (zero) log determinant.
        """
        super().__init__()
        self.k = k
        self.logdet = logdet
        self.v1 = nn.Parameter(torch.randn(k) if v1 is None else v1.clone())
        self.v2 = nn.Parameter(torch.randn(k) if v2 is None else v2.clone())
        self.v3 = nn.Parameter(torch.randn(k) if v3 is None else v3.clone())

    @property
    def weight(self) -> torch.Tensor:
        return householder(self.v1) @ householder(self.v2) @ \
            householder(self.v3)

    @staticmethod
    def _mix(w: torch.Tensor, x: torch.Tensor) -> torch.Tensor:
        return torch.einsum("ij,bj...->bi...", w, x)

    def forward(self, x: torch.Tensor, logdet: bool | None = None):
        y = self._mix(self.weight, x)
        if self._use_logdet(logdet):
            return y, x.new_zeros(())
        return y

    def inverse(self, y: torch.Tensor, logdet: bool | None = None):
        x = self._mix(self.weight.T, y)
        if self._use_logdet(logdet, inverse=True):
            return x, y.new_zeros(())
        return x

    def backward(
        self,
        dy: torch.Tensor | TTuple,
        y: torch.Tensor | None = None
    ) -> TTuple:
        """Backpropagate through the forward pass.

        Args:
            dy: Gradient with respect to the output, or a (dy, y) pair.
            y: Layer output.

        Returns:
            Gradient with respect to the input, and the recovered input.
        """
        if y is None:
            dy, y = dy
        with torch.enable_grad():
            w = self.weight
        with torch.no_grad():
            x = self._mix(w.T, y)
            dx = self._mix(w.T, dy)
            dw = torch.einsum("bin,bjn->ij", dy.flatten(2), x.flatten(2))
        torch.autograd.backward(w, dw)
        return dx, x

    def backward_inv(
        self,
        dx: torch.Tensor | TTuple,
        x: torch.Tensor | None = None
    ) -> TTuple:
        """Backpropagate through the inverse pass.

        Args:
            dx: Gradient with respect to the output of inverse, or a
                (dx, x) pair.
            x: Output of inverse.

        Returns:
            Gradient with respect to the input of inverse, and that input.
        """
        if x is None:
            dx, x = dx
        with torch.enable_grad():
            w = self.weight
        with torch.no_grad():
            y = self._mix(w, x)
            dy = self._mix(w, dx)
            dw = torch.einsum("bin,bjn->ji", dx.flatten(2), y.flatten(2))
        torch.autograd.backward(w, dw)
        return dy, y
