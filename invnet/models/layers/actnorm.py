import math
import warnings

import torch
import torch.nn as nn

from ..invertible_layer import InvertibleLayer, accumulate_grad
from ...models import TTuple


class ActNorm(InvertibleLayer):
    """Activation normalization with per-channel scale and bias.

    Scale and bias are initialized from the first batch seen by forward so
    that each output channel has zero mean and unit variance.
    """

    initialized: torch.Tensor

    def __init__(self, n_in: int, logdet: bool = False):
        """Initialize ActNorm.

        Args:
            n_in: Number of channels.
            logdet: Whether forward returns the log determinant.
        """
        super().__init__()
        self.n_in = n_in
        self.logdet = logdet
        self.s = nn.Parameter(torch.ones(n_in))
        self.b = nn.Parameter(torch.zeros(n_in))
        self.register_buffer("initialized", torch.tensor(False))

    @staticmethod
    def _reduce_dims(x: torch.Tensor) -> list[int]:
        return [0] + list(range(2, x.dim()))

    def _view(self, p: torch.Tensor, x: torch.Tensor) -> torch.Tensor:
        return p.view(1, -1, *([1] * (x.dim() - 2)))

    def _logdet_forward(self, x: torch.Tensor) -> torch.Tensor:
        n_spatial = math.prod(x.shape[2:])
        return n_spatial * torch.log(torch.abs(self.s)).sum()

    @torch.no_grad()
    def _initialize(self, x: torch.Tensor):
        dims = self._reduce_dims(x)
        mean = x.mean(dims)
        std = x.std(dims)
        self.s.copy_(1. / std)
        self.b.copy_(-mean / std)
        self.initialized.fill_(True)

    @torch.no_grad()
    def _on_params_put(self):
        # Loaded scale and bias replace data initialization
        self.initialized.fill_(True)

    def forward(self, x: torch.Tensor, logdet: bool | None = None):
        """Normalize input, initializing from data on first call.

        Args:
            x: Input of shape (B, C, ...).
            logdet: Override for returning the log determinant.

        Returns:
            Normalized data, and log determinant if requested.
        """
        if not self.initialized:
            self._initialize(x)

        y = x * self._view(self.s, x) + self._view(self.b, x)
        if self._use_logdet(logdet):
            return y, self._logdet_forward(x)
        return y

    def inverse(self, y: torch.Tensor, logdet: bool | None = None):
        """Undo the normalization.

        Args:
            y: Normalized data.
            logdet: Override for returning the log determinant.

        Returns:
            Recovered input, and log determinant of the inverse if requested.
        """
        if not self.initialized:
            warnings.warn("ActNorm is inverted before being initialized.")

        x = (y - self._view(self.b, y)) / self._view(self.s, y)
        if self._use_logdet(logdet, inverse=True):
            return x, -self._logdet_forward(y)
        return x

    def backward(self, dy: torch.Tensor, y: torch.Tensor) -> TTuple:
        with torch.no_grad():
            x = self.inverse(y, logdet=False)
            dims = self._reduce_dims(y)
            dx = dy * self._view(self.s, y)
            ds = (dy * x).sum(dims)
            db = dy.sum(dims)
            if self.logdet:
                ds = ds - math.prod(y.shape[2:]) / self.s
        accumulate_grad(self.s, ds)
        accumulate_grad(self.b, db)
        return dx, x

    def backward_inv(self, dx: torch.Tensor, x: torch.Tensor) -> TTuple:
        with torch.no_grad():
            s = self._view(self.s, x)
            y = x * s + self._view(self.b, x)
            dims = self._reduce_dims(x)
            dy = dx / s
            ds = -(dx * x).sum(dims) / self.s
            db = -dx.sum(dims) / self.s
            if self.logdet:
                ds = ds + math.prod(x.shape[2:]) / self.s
        accumulate_grad(self.s, ds)
        accumulate_grad(self.b, db)
        return dy, y
