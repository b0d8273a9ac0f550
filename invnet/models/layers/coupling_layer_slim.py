import math
from abc import ABCMeta, abstractmethod
from typing import Callable

import torch
import torch.nn as nn
import torch.nn.functional as F

from .conv1x1 import Conv1x1
from .residual_block import ResidualBlock
from ..invertible_layer import InvertibleLayer, recompute_backward
from ...models import TTriple
from ...utils import tensor_split, tensor_cat, as_operator


def data_gradient(
    x1: torch.Tensor,
    d: torch.Tensor,
    op,
    link: Callable[[torch.Tensor], torch.Tensor] | None = None
) -> torch.Tensor:
    """Gradient of the least-squares data misfit 0.5 ||J link(x1) - d||^2.

    Args:
        x1: Model-space tensor of shape (B, C, ...).
        d: Observed data, flattened to (B, m).
        op: Linear operator J acting on flattened x1.
        link: Link function applied to x1 before the operator.

    Returns:
        J^T (J link(x1) - d), reshaped like x1.
    """
    op = as_operator(op)
    batch_size = x1.shape[0]
    m = x1 if link is None else link(x1)
    residual = op.forward(m.reshape(batch_size, -1)) - \
        d.reshape(batch_size, -1)
    return op.adjoint(residual).reshape(x1.shape)


class CouplingLayerSLIM(InvertibleLayer, metaclass=ABCMeta):
    """Interface for coupling layers conditioned on observed data.

    The input X is optionally permuted and split into X1 and X2. X1 is
    passed through, and X2 is transformed with parameters computed from X1
    and the data D.
    """

    def __init__(self, n_in: int, logdet: bool, permute: bool):
        super().__init__()
        if n_in % 2:
            raise ValueError(f"Number of channels ({n_in}) must be even.")
        self.n_in = n_in
        self.logdet = logdet
        self.conv = Conv1x1(n_in) if permute else None

    @abstractmethod
    def _condition(self, x1: torch.Tensor, d: torch.Tensor, op):
        """Compute coupling parameters from x1 and the data."""
        pass

    @abstractmethod
    def _couple(self, x2: torch.Tensor, h: torch.Tensor):
        """Transform x2, returning the result and the log determinant."""
        pass

    @abstractmethod
    def _decouple(self, y2: torch.Tensor, h: torch.Tensor):
        """Undo _couple, returning x2 and the inverse log determinant."""
        pass

    def forward(
        self,
        x: torch.Tensor,
        d: torch.Tensor,
        op=None,
        logdet: bool | None = None
    ):
        """Compute forward pass.

        Args:
            x: Input of shape (B, n_in, ...).
            d: Observed data.
            op: Forward modeling operator, if the layer needs one.
            logdet: Override for returning the log determinant.

        Returns:
            Transformed data, and log determinant if requested.
        """
        if self.conv is not None:
            x = self.conv(x, logdet=False)
        x1, x2 = tensor_split(x)
        y2, ld = self._couple(x2, self._condition(x1, d, op))
        y = tensor_cat(x1, y2)
        if self._use_logdet(logdet):
            return y, ld
        return y

    def inverse(
        self,
        y: torch.Tensor,
        d: torch.Tensor,
        op=None,
        logdet: bool | None = None
    ):
        """Compute inverse pass.

        Returns:
            Recovered input, and log determinant of the inverse if requested.
        """
        y1, y2 = tensor_split(y)
        x2, ld = self._decouple(y2, self._condition(y1, d, op))
        x = tensor_cat(y1, x2)
        if self.conv is not None:
            x = self.conv.inverse(x, logdet=False)
        if self._use_logdet(logdet, inverse=True):
            return x, ld
        return x

    def backward(
        self,
        dy: torch.Tensor,
        y: torch.Tensor,
        d: torch.Tensor,
        op=None
    ) -> TTriple:
        """Backpropagate from the output.

        Returns:
            Gradients with respect to the input and the data, and the
            recovered input.
        """
        with torch.no_grad():
            x = self.inverse(y, d, op, logdet=False)

        dx, dd = recompute_backward(
            lambda x_, d_: self.forward(x_, d_, op, logdet=self.logdet),
            (dy,), (x, d), logdet=self.logdet
        )
        return dx, dd, x


class AdditiveCouplingLayerSLIM(CouplingLayerSLIM):
    """Additive coupling on the data misfit gradient: Y2 = X2 + T."""

    def __init__(
        self,
        n_in: int,
        n_hidden: int,
        link: Callable[[torch.Tensor], torch.Tensor] | None = None,
        ndims: int = 2,
        logdet: bool = False,
        permute: bool = False,
        k1: int = 3,
        k2: int = 3,
        p1: int = 1,
        p2: int = 1,
        s1: int = 1,
        s2: int = 1
    ):
        """Initialize AdditiveCouplingLayerSLIM.

        Args:
            n_in: Number of input channels.
            n_hidden: Hidden channels of the residual block.
            link: Link function applied before the forward operator.
            ndims: Number of spatial dimensions, 2 or 3.
            logdet: Whether forward returns the (zero) log determinant.
            permute: Whether to permute channels with a 1x1 convolution.
            k1, k2, p1, p2, s1, s2: Residual block convolution settings.
        """
        super().__init__(n_in, logdet, permute)
        self.link = link
        self.rb = ResidualBlock(n_in, n_hidden, n_out=n_in // 2, ndims=ndims,
                                k1=k1, k2=k2, p1=p1, p2=p2, s1=s1, s2=s2)

    def _condition(self, x1: torch.Tensor, d: torch.Tensor, op):
        g = data_gradient(x1, d, op, self.link)
        return self.rb(tensor_cat(x1, g))

    def _couple(self, x2: torch.Tensor, h: torch.Tensor):
        return x2 + h, x2.new_zeros(())

    def _decouple(self, y2: torch.Tensor, h: torch.Tensor):
        return y2 - h, y2.new_zeros(())


class AffineCouplingLayerSLIM(CouplingLayerSLIM):
    """Affine coupling on the data misfit gradient: Y2 = S * X2 + T."""

    def __init__(
        self,
        n_in: int,
        n_hidden: int,
        link: Callable[[torch.Tensor], torch.Tensor] | None = None,
        ndims: int = 2,
        logdet: bool = False,
        permute: bool = False,
        k1: int = 3,
        k2: int = 3,
        p1: int = 1,
        p2: int = 1,
        s1: int = 1,
        s2: int = 1
    ):
        """Initialize AffineCouplingLayerSLIM.

        Args:
            n_in: Number of input channels.
            n_hidden: Hidden channels of the residual block.
            link: Link function applied before the forward operator.
            ndims: Number of spatial dimensions, 2 or 3.
            logdet: Whether forward returns the log determinant.
            permute: Whether to permute channels with a 1x1 convolution.
            k1, k2, p1, p2, s1, s2: Residual block convolution settings.
        """
        super().__init__(n_in, logdet, permute)
        self.link = link
        self.rb = ResidualBlock(n_in, n_hidden, n_out=n_in, ndims=ndims,
                                k1=k1, k2=k2, p1=p1, p2=p2, s1=s1, s2=s2)

    def _condition(self, x1: torch.Tensor, d: torch.Tensor, op):
        g = data_gradient(x1, d, op, self.link)
        return self.rb(tensor_cat(x1, g))

    def _couple(self, x2: torch.Tensor, h: torch.Tensor):
        log_s, t = tensor_split(h)
        y2 = torch.sigmoid(log_s) * x2 + t
        return y2, F.logsigmoid(log_s).sum() / x2.shape[0]

    def _decouple(self, y2: torch.Tensor, h: torch.Tensor):
        log_s, t = tensor_split(h)
        x2 = (y2 - t) / torch.sigmoid(log_s)
        return x2, -F.logsigmoid(log_s).sum() / y2.shape[0]


class LearnedCouplingLayerSLIM(AffineCouplingLayerSLIM):
    """Affine SLIM coupling layer with a learned data-to-model mapping.

    Instead of the misfit gradient of a known operator, the conditioning
    input is a learned linear map of the data into the shape of X1.
    """

    def __init__(
        self,
        n_in: int,
        n_hidden: int,
        nx_shape: tuple[int, ...],
        ny_in: int,
        ny_shape: tuple[int, ...],
        ndims: int = 2,
        logdet: bool = False,
        permute: bool = False,
        k1: int = 3,
        k2: int = 3,
        p1: int = 1,
        p2: int = 1,
        s1: int = 1,
        s2: int = 1
    ):
        """Initialize LearnedCouplingLayerSLIM.

        Args:
            n_in: Number of input channels.
            n_hidden: Hidden channels of the residual block.
            nx_shape: Spatial shape of the input.
            ny_in: Number of data channels.
            ny_shape: Spatial shape of the data.
            ndims: Number of spatial dimensions, 2 or 3.
            logdet: Whether forward returns the log determinant.
            permute: Whether to permute channels with a 1x1 convolution.
            k1, k2, p1, p2, s1, s2: Residual block convolution settings.
        """
        super().__init__(n_in, n_hidden, ndims=ndims, logdet=logdet,
                         permute=permute, k1=k1, k2=k2, p1=p1, p2=p2, s1=s1,
                         s2=s2)
        self.nx_shape = tuple(nx_shape)
        self.data_map = nn.Linear(ny_in * math.prod(ny_shape),
                                  n_in // 2 * math.prod(nx_shape))

    def _condition(self, x1: torch.Tensor, d: torch.Tensor, op=None):
        g = self.data_map(d.reshape(d.shape[0], -1)).reshape(x1.shape)
        return self.rb(tensor_cat(x1, g))
