import torch
import torch.nn as nn

from ..invertible_layer import InvertibleLayer, accumulate_grad


class AffineLayer(InvertibleLayer):
    """Elementwise affine transformation Y = X * s + b.

    The scale s and bias b have the full per-sample shape of the input, e.g.
    (C, H, W) for image batches of shape (B, C, H, W).
    """

    def __init__(self, shape: tuple[int, ...], logdet: bool = False):
        """Initialize AffineLayer.

        Args:
            shape: Per-sample input shape, excluding the batch dimension.
            logdet: Whether forward returns the log determinant.
        """
        super().__init__()
        self.shape = tuple(shape)
        self.logdet = logdet

        s = torch.empty(self.shape)
        if s.dim() > 1:
            nn.init.xavier_uniform_(s)
        else:
            nn.init.uniform_(s, -1., 1.)
        self.s = nn.Parameter(s)
        self.b = nn.Parameter(torch.zeros(self.shape))

    def _logdet_forward(self) -> torch.Tensor:
        return torch.log(torch.abs(self.s)).sum()

    def _logdet_backward(self) -> torch.Tensor:
        return 1. / self.s

    def _logdet_hessian(self) -> torch.Tensor:
        return -1. / self.s ** 2

    def forward(self, x: torch.Tensor, logdet: bool | None = None):
        """Compute forward pass.

        Args:
            x: Input data.
            logdet: Override for returning the log determinant.

        Returns:
            Transformed data, and log determinant if requested.
        """
        y = x * self.s + self.b
        if self._use_logdet(logdet):
            return y, self._logdet_forward()
        return y

    def inverse(
        self,
        y: torch.Tensor,
        logdet: bool | None = None,
        eps: float = 0.
    ):
        """Compute inverse pass.

        Args:
            y: Output data.
            logdet: Override for returning the log determinant.
            eps: Stabilizer added to the scale before dividing.

        Returns:
            Recovered input, and log determinant of the inverse if requested.
        """
        x = (y - self.b) / (self.s + eps)
        if self._use_logdet(logdet, inverse=True):
            return x, -self._logdet_forward()
        return x

    def backward(
        self,
        dy: torch.Tensor,
        y: torch.Tensor,
        set_grad: bool = True
    ):
        """Analytic backward pass.

        Args:
            dy: Gradient with respect to the output.
            y: Layer output.
            set_grad: If False, parameter gradients are returned instead of
                being accumulated into .grad.

        Returns:
            (dx, x) if set_grad. Otherwise (dx, [ds, db], x), extended by the
            logdet gradient [dlogdet_ds, dlogdet_db] if logdet is tracked.
        """
        with torch.no_grad():
            x = self.inverse(y, logdet=False)
            dx = dy * self.s
            ds = (dy * x).sum(0)
            db = dy.sum(0)

            if set_grad:
                if self.logdet:
                    ds = ds - self._logdet_backward()
                accumulate_grad(self.s, ds)
                accumulate_grad(self.b, db)
                return dx, x

            if self.logdet:
                dlogdet = [self._logdet_backward(), torch.zeros_like(db)]
                return dx, [ds, db], x, dlogdet
            return dx, [ds, db], x

    def backward_inv(self, dx: torch.Tensor, x: torch.Tensor):
        """Analytic backward pass through inverse.

        Args:
            dx: Gradient with respect to the output of inverse.
            x: Output of inverse.

        Returns:
            Gradient with respect to the input of inverse, and that input.
        """
        with torch.no_grad():
            y = x * self.s + self.b
            dy = dx / self.s
            ds = -(dx * x).sum(0) / self.s
            db = -dx.sum(0) / self.s
            if self.logdet:
                ds = ds + self._logdet_backward()
        accumulate_grad(self.s, ds)
        accumulate_grad(self.b, db)
        return dy, y

    def jacobian(
        self,
        dx: torch.Tensor,
        dtheta: list[torch.Tensor],
        x: torch.Tensor
    ):
        """Jacobian-vector product with respect to input and parameters.

        Args:
            dx: Input perturbation.
            dtheta: Parameter perturbations [ds, db].
            x: Input data.

        Returns:
            (dy, y), or (dy, y, logdet, dlogdet) with the perturbation of the
            logdet gradient if logdet is tracked.
        """
        with torch.no_grad():
            y = x * self.s + self.b
            dy = dx * self.s + x * dtheta[0] + dtheta[1]
            if self.logdet:
                dlogdet = [self._logdet_hessian() * dtheta[0],
                           torch.zeros_like(dtheta[1])]
                return dy, y, self._logdet_forward(), dlogdet
            return dy, y

    def adjoint_jacobian(self, dy: torch.Tensor, y: torch.Tensor):
        """Adjoint Jacobian-vector product, see backward with set_grad=False."""
        return self.backward(dy, y, set_grad=False)
