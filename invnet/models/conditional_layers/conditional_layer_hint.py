import torch

from ..invertible_layer import InvertibleLayer
from ..layers import Conv1x1, CouplingLayerBasic, CouplingLayerHINT
from ...models import TQuad


class ConditionalLayerHINT(InvertibleLayer):
    """Conditional HINT layer for a pair of inputs X and Y.

    Both inputs are transformed by their own HINT layer. X is additionally
    coupled on the (permuted) Y, so Zy depends on Y only while Zx depends on
    both.
    """

    def __init__(
        self,
        n_in: int,
        n_hidden: int,
        ndims: int = 2,
        permute: bool = True,
        logdet: bool = True,
        k1: int = 3,
        k2: int = 3,
        p1: int = 1,
        p2: int = 1,
        s1: int = 1,
        s2: int = 1
    ):
        """Initialize ConditionalLayerHINT.

        Args:
            n_in: Number of channels of X and of Y.
            n_hidden: Hidden channels of the residual blocks.
            ndims: Number of spatial dimensions, 2 or 3.
            permute: Whether to permute both inputs with 1x1 convolutions.
            logdet: Whether forward returns the log determinant.
            k1, k2, p1, p2, s1, s2: Residual block convolution settings.
        """
        super().__init__()
        self.logdet = logdet
        conv_args = dict(k1=k1, k2=k2, p1=p1, p2=p2, s1=s1, s2=s2)

        self.cl_x = CouplingLayerHINT(n_in, n_hidden, ndims=ndims,
                                      logdet=logdet, permute="lower",
                                      **conv_args)
        self.cl_y = CouplingLayerHINT(n_in, n_hidden, ndims=ndims,
                                      logdet=logdet, permute="lower",
                                      **conv_args)
        self.cl_yx = CouplingLayerBasic(n_in, n_hidden, ndims=ndims,
                                        logdet=logdet, **conv_args)

        self.c_x = Conv1x1(n_in) if permute else None
        self.c_y = Conv1x1(n_in) if permute else None

    def forward(
        self,
        x: torch.Tensor,
        y: torch.Tensor,
        logdet: bool | None = None
    ):
        """Compute forward pass.

        Returns:
            (zx, zy), extended by the log determinant if requested.
        """
        logdet = self._use_logdet(logdet)

        yp = y if self.c_y is None else self.c_y(y, logdet=False)
        zy, logdet2 = self.cl_y(yp, logdet=True)

        xp = x if self.c_x is None else self.c_x(x, logdet=False)
        x, logdet1 = self.cl_x(xp, logdet=True)
        _, zx, logdet3 = self.cl_yx(yp, x, logdet=True)

        if logdet:
            return zx, zy, logdet1 + logdet2 + logdet3
        return zx, zy

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

        yp, logdet1 = self.cl_y.inverse(zy, logdet=True)
        _, x, logdet2 = self.cl_yx.inverse(yp, zx, logdet=True)
        xp, logdet3 = self.cl_x.inverse(x, logdet=True)

        x = xp if self.c_x is None else self.c_x.inverse(xp, logdet=False)
        y = yp if self.c_y is None else self.c_y.inverse(yp, logdet=False)

        if logdet:
            return x, y, logdet1 + logdet2 + logdet3
        return x, y

    def backward(
        self,
        dzx: torch.Tensor,
        dzy: torch.Tensor,
        zx: torch.Tensor,
        zy: torch.Tensor
    ) -> TQuad:
        """Backpropagate from the outputs.

        Returns:
            Gradients dx, dy and recovered inputs x, y.
        """
        dyp, yp = self.cl_y.backward(dzy, zy)
        dyp_cond, dx, _, x = self.cl_yx.backward(
            torch.zeros_like(dyp), dzx, yp, zx
        )
        dyp = dyp + dyp_cond
        dxp, xp = self.cl_x.backward(dx, x)

        if self.c_x is not None:
            dx, x = self.c_x.backward(dxp, xp)
        else:
            dx, x = dxp, xp
        if self.c_y is not None:
            dy, y = self.c_y.backward(dyp, yp)
        else:
            dy, y = dyp, yp
        return dx, dy, x, y

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
        if self.c_x is not None:
            dxp, xp = self.c_x.backward_inv(dx, x)
        else:
            dxp, xp = dx, x
        if self.c_y is not None:
            dyp, yp = self.c_y.backward_inv(dy, y)
        else:
            dyp, yp = dy, y

        dx_, x_ = self.cl_x.backward_inv(dxp, xp)
        dyp_cond, dzx, _, zx = self.cl_yx.backward_inv(
            torch.zeros_like(dyp), dx_, yp, x_
        )
        dzy, zy = self.cl_y.backward_inv(dyp + dyp_cond, yp)
        return dzx, dzy, zx, zy

    def forward_y(self, y: torch.Tensor) -> torch.Tensor:
        """Transform Y alone."""
        yp = y if self.c_y is None else self.c_y(y, logdet=False)
        return self.cl_y(yp, logdet=False)

    def inverse_y(self, zy: torch.Tensor) -> torch.Tensor:
        """Invert the Y transform alone."""
        yp = self.cl_y.inverse(zy, logdet=False)
        return yp if self.c_y is None else self.c_y.inverse(yp, logdet=False)
