import torch
import torch.nn as nn

from ..conditional_layers import ConditionalLayerHINT
from ..invertible_layer import InvertibleNetwork
from ..layers import ActNorm
from ...models import TQuad


class NetworkConditionalHINT(InvertibleNetwork):
    """Conditional HINT network for generative modeling of pairs (X, Y).

    Each level normalizes X and Y with separate ActNorm layers and then
    applies a ConditionalLayerHINT.
    """

    def __init__(
        self,
        n_in: int,
        n_hidden: int,
        depth: int,
        ndims: int = 2,
        logdet: bool = True,
        k1: int = 3,
        k2: int = 3,
        p1: int = 1,
        p2: int = 1,
        s1: int = 1,
        s2: int = 1
    ):
        """Initialize NetworkConditionalHINT.

        Args:
            n_in: Number of channels of X and of Y.
            n_hidden: Hidden channels of the residual blocks.
            depth: Number of levels.
            ndims: Number of spatial dimensions, 2 or 3.
            logdet: Whether forward returns the log determinant.
            k1, k2, p1, p2, s1, s2: Residual block convolution settings.
        """
        super().__init__()
        if depth < 1:
            raise ValueError(f"Depth must be positive, got {depth}.")
        self.logdet = logdet

        self.an_x = nn.ModuleList(
            [ActNorm(n_in, logdet=logdet) for _ in range(depth)]
        )
        self.an_y = nn.ModuleList(
            [ActNorm(n_in, logdet=logdet) for _ in range(depth)]
        )
        self.cl = nn.ModuleList([
            ConditionalLayerHINT(n_in, n_hidden, ndims=ndims, permute=True,
                                 logdet=logdet, k1=k1, k2=k2, p1=p1, p2=p2,
                                 s1=s1, s2=s2)
            for _ in range(depth)
        ])

    def forward(
        self,
        x: torch.Tensor,
        y: torch.Tensor,
        logdet: bool | None = None
    ):
        """Compute forward pass.

        Args:
            x: Input of shape (B, n_in, ...).
            y: Conditioning input of the same shape.
            logdet: Override for returning the log determinant.

        Returns:
            (zx, zy), extended by the log determinant if requested.
        """
        logdet = self._use_logdet(logdet)
        logdet_full = x.new_zeros(())

        for an_x, an_y, cl in zip(self.an_x, self.an_y, self.cl):
            x, logdet1 = an_x(x, logdet=True)
            y, logdet2 = an_y(y, logdet=True)
            x, y, logdet3 = cl(x, y, logdet=True)
            logdet_full = logdet_full + logdet1 + logdet2 + logdet3

        if logdet:
            return x, y, logdet_full
        return x, y

    def inverse(
        self,
        zx: torch.Tensor,
        zy: torch.Tensor,
        logdet: bool | None = None
    ):
        """Compute inverse pass.

        Returns:
            (x, y), extended by the inverse log determinant if requested.
        """
        logdet = self._use_logdet(logdet, inverse=True)
        logdet_full = zx.new_zeros(())

        for an_x, an_y, cl in zip(
            reversed(self.an_x), reversed(self.an_y), reversed(self.cl)
        ):
            zx, zy, logdet1 = cl.inverse(zx, zy, logdet=True)
            zy, logdet2 = an_y.inverse(zy, logdet=True)
            zx, logdet3 = an_x.inverse(zx, logdet=True)
            logdet_full = logdet_full + logdet1 + logdet2 + logdet3

        if logdet:
            return zx, zy, logdet_full
        return zx, zy

    def backward(
        self,
        dzx: torch.Tensor,
        dzy: torch.Tensor,
        zx: torch.Tensor,
        zy: torch.Tensor
    ) -> TQuad:
        """Backpropagate from the network outputs, one level at a time.

        Returns:
            Gradients dx, dy and recovered inputs x, y.
        """
        for an_x, an_y, cl in zip(
            reversed(self.an_x), reversed(self.an_y), reversed(self.cl)
        ):
            dzx, dzy, zx, zy = cl.backward(dzx, dzy, zx, zy)
            dzx, zx = an_x.backward(dzx, zx)
            dzy, zy = an_y.backward(dzy, zy)
        return dzx, dzy, zx, zy

    def backward_inv(
        self,
        dx: torch.Tensor,
        dy: torch.Tensor,
        x: torch.Tensor,
        y: torch.Tensor
    ) -> TQuad:
        """Backpropagate from the outputs of the inverse pass.

        Returns:
            Gradients dzx, dzy and the inverse inputs zx, zy.
        """
        for an_x, an_y, cl in zip(self.an_x, self.an_y, self.cl):
            dx, x = an_x.backward_inv(dx, x)
            dy, y = an_y.backward_inv(dy, y)
            dx, dy, x, y = cl.backward_inv(dx, dy, x, y)
        return dx, dy, x, y

    def forward_y(self, y: torch.Tensor) -> torch.Tensor:
        """Transform Y alone."""
        for an_y, cl in zip(self.an_y, self.cl):
            y = cl.forward_y(an_y(y, logdet=False))
        return y

    def inverse_y(self, zy: torch.Tensor) -> torch.Tensor:
        """Invert the Y transform alone."""
        for an_y, cl in zip(reversed(self.an_y), reversed(self.cl)):
            zy = an_y.inverse(cl.inverse_y(zy), logdet=False)
        return zy
