import torch

from ..invertible_layer import InvertibleLayer
from ..layers import Conv1x1, CouplingLayerHINT, AdditiveCouplingLayerSLIM, \
    AffineCouplingLayerSLIM, LearnedCouplingLayerSLIM
from ...models import TQuad
from ...utils import wavelet_squeeze, wavelet_unsqueeze


SLIM_TYPES = ("affine", "additive", "learned")


class ConditionalLayerSLIM(InvertibleLayer):
    """Conditional SLIM layer built from HINT coupling layers.

    The Y lane transforms the data Y with a HINT layer on its Haar
    coefficients. The X lane transforms X with a HINT layer followed by a
    SLIM coupling layer that conditions on Y through the forward modeling
    operator (or a learned map for type "learned").
    """

    def __init__(
        self,
        nx_in: int,
        nx_hidden: int,
        ny_in: int,
        ny_hidden: int,
        type: str = "affine",
        nx_shape: tuple[int, int] | None = None,
        ny_shape: tuple[int, int] | None = None,
        k1: int = 3,
        k2: int = 3,
        p1: int = 1,
        p2: int = 1,
        s1: int = 1,
        s2: int = 1
    ):
        """Initialize ConditionalLayerSLIM.

        Args:
            nx_in, nx_hidden: Input and hidden channels of X.
            ny_in, ny_hidden: Input and hidden channels of Y.
            type: Data coupling type, one of SLIM_TYPES.
            nx_shape: Spatial shape of X, required for type "learned".
            ny_shape: Spatial shape of Y, required for type "learned".
            k1, k2, p1, p2, s1, s2: Residual block convolution settings.
        """
        super().__init__()
        if type not in SLIM_TYPES:
            raise ValueError(f"{type} is not a valid SLIM layer type!")
        self.logdet = True
        self.type = type
        conv_args = dict(k1=k1, k2=k2, p1=p1, p2=p2, s1=s1, s2=s2)

        self.cl_x = CouplingLayerHINT(nx_in, nx_hidden, logdet=True,
                                      **conv_args)
        self.cl_y = CouplingLayerHINT(4 * ny_in, ny_hidden, logdet=True,
                                      **conv_args)

        if type == "affine":
            self.cl_xy = AffineCouplingLayerSLIM(
                nx_in, nx_hidden, logdet=True, permute=False, **conv_args
            )
        elif type == "additive":
            self.cl_xy = AdditiveCouplingLayerSLIM(
                nx_in, nx_hidden, logdet=True, permute=False, **conv_args
            )
        else:
            if nx_shape is None or ny_shape is None:
                raise ValueError(
                    "Learned SLIM layers require nx_shape and ny_shape."
                )
            self.cl_xy = LearnedCouplingLayerSLIM(
                nx_in, nx_hidden, nx_shape, ny_in, ny_shape, logdet=True,
                permute=False, **conv_args
            )

        self.c_x = Conv1x1(nx_in)
        self.c_y = Conv1x1(4 * ny_in)

    @staticmethod
    def _flatten(y: torch.Tensor) -> torch.Tensor:
        return y.reshape(y.shape[0], -1)

    def forward(
        self,
        x: torch.Tensor,
        y: torch.Tensor,
        op=None,
        logdet: bool | None = None
    ):
        """Compute forward pass.

        Args:
            x: Model-space input.
            y: Observed data, conditioning the X lane.
            op: Forward modeling operator, unused for type "learned".
            logdet: Override for returning the log determinant.

        Returns:
            (zx, zy), extended by the log determinant if requested.
        """
        logdet = self._use_logdet(logdet)

        yp = self.c_y(wavelet_squeeze(y), logdet=False)
        zy, logdet2 = self.cl_y(yp, logdet=True)
        zy = wavelet_unsqueeze(zy)

        xp = self.c_x(x, logdet=False)
        x, logdet1 = self.cl_x(xp, logdet=True)
        zx, logdet3 = self.cl_xy(x, self._flatten(y), op, logdet=True)

        if logdet:
            return zx, zy, logdet1 + logdet2 + logdet3
        return zx, zy

    def inverse(
        self,
        zx: torch.Tensor,
        zy: torch.Tensor,
        op=None,
        logdet: bool | None = None
    ):
        """Compute inverse pass.

        Returns:
            (x, y), extended by the inverse log determinant if requested.
        """
        logdet = self._use_logdet(logdet, inverse=True)

        yp, logdet1 = self.cl_y.inverse(wavelet_squeeze(zy), logdet=True)
        y = wavelet_unsqueeze(self.c_y.inverse(yp, logdet=False))

        x, logdet2 = self.cl_xy.inverse(zx, self._flatten(y), op,
                                        logdet=True)
        xp, logdet3 = self.cl_x.inverse(x, logdet=True)
        x = self.c_x.inverse(xp, logdet=False)

        if logdet:
            return x, y, logdet1 + logdet2 + logdet3
        return x, y

    def backward(
        self,
        dzx: torch.Tensor,
        dzy: torch.Tensor,
        zx: torch.Tensor,
        zy: torch.Tensor,
        op=None
    ) -> TQuad:
        """Backpropagate from the outputs.

        Returns:
            Gradients dx, dy and recovered inputs x, y.
        """
        # Y lane
        dyp, yp = self.cl_y.backward(wavelet_squeeze(dzy),
                                     wavelet_squeeze(zy))
        dys, ys = self.c_y.backward(dyp, yp)
        y = wavelet_unsqueeze(ys)
        dy = wavelet_unsqueeze(dys)

        # X lane
        dx, dy_cond, x = self.cl_xy.backward(dzx, zx, self._flatten(y), op)
        dy = dy + dy_cond.reshape(dy.shape)
        dxp, xp = self.cl_x.backward(dx, x)
        dx, x = self.c_x.backward(dxp, xp)
        return dx, dy, x, y

    def backward_inv(self, *args, **kwargs):
        raise NotImplementedError(
            "ConditionalLayerSLIM does not support backward_inv."
        )

    def forward_y(self, y: torch.Tensor) -> torch.Tensor:
        """Transform Y alone."""
        yp = self.c_y(wavelet_squeeze(y), logdet=False)
        return wavelet_unsqueeze(self.cl_y(yp, logdet=False))

    def inverse_y(self, zy: torch.Tensor) -> torch.Tensor:
        """Invert the Y transform alone."""
        yp = self.cl_y.inverse(wavelet_squeeze(zy), logdet=False)
        return wavelet_unsqueeze(self.c_y.inverse(yp, logdet=False))
