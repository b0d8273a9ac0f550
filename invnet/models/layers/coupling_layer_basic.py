import torch
import torch.nn.functional as F

from .residual_block import ResidualBlock
from ..invertible_layer import InvertibleLayer, recompute_backward
from ...models import TQuad
from ...utils import tensor_split


class CouplingLayerBasic(InvertibleLayer):
    """Affine coupling layer operating on a pair of tensors.

    Y1 = X1 and Y2 = S * X2 + T, where [log S, T] = RB(X1) and
    S = sigmoid(log S).
    """

    def __init__(
        self,
        n_in: int,
        n_hidden: int,
        ndims: int = 2,
        logdet: bool = False,
        k1: int = 3,
        k2: int = 3,
        p1: int = 1,
        p2: int = 1,
        s1: int = 1,
        s2: int = 1
    ):
        """Initialize CouplingLayerBasic.

        Args:
            n_in: Number of channels of each of the two inputs.
            n_hidden: Hidden channels of the residual block.
            ndims: Number of spatial dimensions, 2 or 3.
            logdet: Whether forward returns the log determinant.
            k1, k2, p1, p2, s1, s2: Residual block convolution settings.
        """
        super().__init__()
        self.n_in = n_in
        self.n_hidden = n_hidden
        self.ndims = ndims
        self.logdet = logdet
        self.rb = ResidualBlock(n_in, n_hidden, ndims=ndims, k1=k1, k2=k2,
                                p1=p1, p2=p2, s1=s1, s2=s2)

    def _scale_shift(self, x1: torch.Tensor):
        log_s, t = tensor_split(self.rb(x1))
        return torch.sigmoid(log_s), F.logsigmoid(log_s), t

    def forward(
        self,
        x1: torch.Tensor,
        x2: torch.Tensor,
        logdet: bool | None = None
    ):
        """Couple x2 on x1.

        Returns:
            (y1, y2), extended by the log determinant if requested.
        """
        s, log_s, t = self._scale_shift(x1)
        y2 = s * x2 + t
        if self._use_logdet(logdet):
            return x1, y2, log_s.sum() / x1.shape[0]
        return x1, y2

    def inverse(
        self,
        y1: torch.Tensor,
        y2: torch.Tensor,
        logdet: bool | None = None
    ):
        """Undo the coupling.

        Returns:
            (x1, x2), extended by the inverse log determinant if requested.
        """
        s, log_s, t = self._scale_shift(y1)
        x2 = (y2 - t) / s
        if self._use_logdet(logdet, inverse=True):
            return y1, x2, -log_s.sum() / y1.shape[0]
        return y1, x2

    def backward(
        self,
        dy1: torch.Tensor,
        dy2: torch.Tensor,
        y1: torch.Tensor,
        y2: torch.Tensor
    ) -> TQuad:
        """Backpropagate from the outputs.

        Returns:
            Input gradients dx1, dx2 and recovered inputs x1, x2.
        """
        with torch.no_grad():
            x1, x2 = self.inverse(y1, y2, logdet=False)

        dx1, dx2 = recompute_backward(
            lambda a, b: self.forward(a, b, logdet=self.logdet),
            (dy1, dy2), (x1, x2), logdet=self.logdet
        )
        return dx1, dx2, x1, x2

    def backward_inv(
        self,
        dx1: torch.Tensor,
        dx2: torch.Tensor,
        x1: torch.Tensor,
        x2: torch.Tensor
    ) -> TQuad:
        """Backpropagate from the outputs of the inverse pass.

        Returns:
            Gradients dy1, dy2 of the inverse inputs and the inputs y1, y2.
        """
        with torch.no_grad():
            y1, y2 = self.forward(x1, x2, logdet=False)

        dy1, dy2 = recompute_backward(
            lambda a, b: self.inverse(a, b, logdet=self.logdet),
            (dx1, dx2), (y1, y2), logdet=self.logdet
        )
        return dy1, dy2, y1, y2
