import torch
import torch.nn as nn

from .conv1x1 import Conv1x1
from .coupling_layer_basic import CouplingLayerBasic
from ..invertible_layer import InvertibleLayer
from ...models import TTuple
from ...utils import tensor_split, tensor_cat


PERMUTE_TYPES = ("none", "lower", "both", "full")

# Recursion stops once a tensor has at most this many channels
MAX_LEAF_CHANNELS = 4


def get_depth(n_in: int) -> int:
    """Number of recursion levels of a HINT layer with n_in channels."""
    count = 0
    nc = n_in
    while nc > MAX_LEAF_CHANNELS:
        nc /= 2
        count += 1
    return count + 1


def _check_channels(n_in: int):
    nc = n_in
    while True:
        if nc % 2:
            raise ValueError(
                f"{n_in} channels cannot be split evenly at every HINT level."
            )
        if nc <= MAX_LEAF_CHANNELS:
            return
        nc //= 2


class CouplingLayerHINT(InvertibleLayer):
    """Recursive HINT coupling layer (Kruse et al., 2020).

    The input is split into halves. Each half is transformed by the same
    layer one scale deeper, and the second half is additionally coupled on
    the first half with the coupling layer of the current scale. Scales with
    at most four channels use a single coupling layer.

    An optional orthogonal 1x1 convolution permutes the channels:
        "none": no permutation.
        "lower": permute the second half before coupling.
        "full": permute the input.
        "both": permute the input and undo the permutation on the output.
    """

    def __init__(
        self,
        n_in: int,
        n_hidden: int,
        ndims: int = 2,
        logdet: bool = False,
        permute: str = "none",
        k1: int = 3,
        k2: int = 3,
        p1: int = 1,
        p2: int = 1,
        s1: int = 1,
        s2: int = 1
    ):
        """Initialize CouplingLayerHINT.

        Args:
            n_in: Number of input channels.
            n_hidden: Hidden channels of the residual blocks.
            ndims: Number of spatial dimensions, 2 or 3.
            logdet: Whether forward returns the log determinant.
            permute: Permutation type, one of PERMUTE_TYPES.
            k1, k2, p1, p2, s1, s2: Residual block convolution settings.
        """
        super().__init__()
        if permute not in PERMUTE_TYPES:
            raise ValueError(f"{permute} is not a valid permutation type!")
        _check_channels(n_in)

        self.n_in = n_in
        self.logdet = logdet
        self.permute = permute

        depth = get_depth(n_in)
        self.coupling_layers = nn.ModuleList([
            CouplingLayerBasic(n_in // 2 ** j, n_hidden, ndims=ndims,
                               logdet=logdet, k1=k1, k2=k2, p1=p1, p2=p2,
                               s1=s1, s2=s2)
            for j in range(1, depth + 1)
        ])

        if permute in ("full", "both"):
            self.conv = Conv1x1(n_in)
        elif permute == "lower":
            self.conv = Conv1x1(n_in // 2)
        else:
            self.conv = None

    @classmethod
    def from_layers(
        cls,
        coupling_layers: list[CouplingLayerBasic],
        conv: Conv1x1 | None = None,
        logdet: bool = False,
        permute: str = "none"
    ) -> "CouplingLayerHINT":
        """Build a HINT layer from existing coupling layers.

        Args:
            coupling_layers: One coupling layer per scale, coarsest first.
            conv: Permutation layer, required unless permute is "none".
            logdet: Whether forward returns the log determinant.
            permute: Permutation type, one of PERMUTE_TYPES.

        Returns:
            HINT layer sharing the given sublayers.
        """
        if permute not in PERMUTE_TYPES:
            raise ValueError(f"{permute} is not a valid permutation type!")
        if permute != "none" and conv is None:
            raise ValueError(f"Permutation {permute} requires a Conv1x1.")

        n_in = 2 * coupling_layers[0].n_in
        _check_channels(n_in)
        depth = get_depth(n_in)
        if len(coupling_layers) != depth:
            raise ValueError(
                f"Expected {depth} coupling layers, "
                f"got {len(coupling_layers)}."
            )

        layer = cls.__new__(cls)
        InvertibleLayer.__init__(layer)
        layer.n_in = n_in
        layer.logdet = logdet
        layer.permute = permute
        layer.coupling_layers = nn.ModuleList(coupling_layers)
        layer.conv = conv
        return layer

    def _resolve_permute(self, permute: str | None) -> str:
        return self.permute if permute is None else permute

    def _forward(
        self,
        x: torch.Tensor,
        scale: int,
        permute: str,
        logdet: bool
    ) -> tuple[torch.Tensor, torch.Tensor | None]:
        coupling = self.coupling_layers[scale - 1]

        if permute in ("full", "both"):
            x = self.conv(x, logdet=False)
        xa, xb = tensor_split(x)
        if permute == "lower":
            xb = self.conv(xb, logdet=False)

        logdet_full = None
        if x.shape[1] > MAX_LEAF_CHANNELS:
            ya, logdet1 = self._forward(xa, scale + 1, "none", logdet)
            y_temp, logdet2 = self._forward(xb, scale + 1, "none", logdet)
            out = coupling(xa, y_temp, logdet=logdet)
            if logdet:
                logdet_full = logdet1 + logdet2 + out[2]
        else:
            ya = xa
            out = coupling(xa, xb, logdet=logdet)
            if logdet:
                logdet_full = out[2]

        y = tensor_cat(ya, out[1])
        if permute == "both":
            y = self.conv.inverse(y, logdet=False)
        return y, logdet_full

    def forward(
        self,
        x: torch.Tensor,
        logdet: bool | None = None,
        permute: str | None = None
    ):
        """Compute forward pass.

        Args:
            x: Input of shape (B, C, ...).
            logdet: Override for returning the log determinant.
            permute: Override for the permutation type.

        Returns:
            Transformed data, and log determinant if requested.
        """
        logdet = self._use_logdet(logdet)
        y, logdet_full = self._forward(x, 1, self._resolve_permute(permute),
                                       logdet)
        return (y, logdet_full) if logdet else y

    def _inverse(
        self,
        y: torch.Tensor,
        scale: int,
        permute: str,
        logdet: bool
    ) -> tuple[torch.Tensor, torch.Tensor | None]:
        coupling = self.coupling_layers[scale - 1]

        if permute == "both":
            y = self.conv(y, logdet=False)
        ya, yb = tensor_split(y)

        logdet_full = None
        if y.shape[1] > MAX_LEAF_CHANNELS:
            xa, logdet1 = self._inverse(ya, scale + 1, "none", logdet)
            out = coupling.inverse(xa, yb, logdet=logdet)
            xb, logdet3 = self._inverse(out[1], scale + 1, "none", logdet)
            if logdet:
                logdet_full = logdet1 + out[2] + logdet3
        else:
            xa = ya
            out = coupling.inverse(ya, yb, logdet=logdet)
            xb = out[1]
            if logdet:
                logdet_full = out[2]

        if permute == "lower":
            xb = self.conv.inverse(xb, logdet=False)
        x = tensor_cat(xa, xb)
        if permute in ("full", "both"):
            x = self.conv.inverse(x, logdet=False)
        return x, logdet_full

    def inverse(
        self,
        y: torch.Tensor,
        logdet: bool | None = None,
        permute: str | None = None
    ):
        """Compute inverse pass.

        Args:
            y: Output of shape (B, C, ...).
            logdet: Override for returning the log determinant.
            permute: Override for the permutation type.

        Returns:
            Recovered input, and log determinant of the inverse if requested.
        """
        logdet = self._use_logdet(logdet, inverse=True)
        x, logdet_full = self._inverse(y, 1, self._resolve_permute(permute),
                                       logdet)
        return (x, logdet_full) if logdet else x

    def _backward(
        self,
        dy: torch.Tensor,
        y: torch.Tensor,
        scale: int,
        permute: str
    ) -> TTuple:
        coupling = self.coupling_layers[scale - 1]

        if permute == "both":
            dy, y = self.conv.backward_inv(dy, y)
        ya, yb = tensor_split(y)
        dya, dyb = tensor_split(dy)

        if y.shape[1] > MAX_LEAF_CHANNELS:
            dxa, xa = self._backward(dya, ya, scale + 1, "none")
            dxa_temp, dxb_temp, _, x_temp = coupling.backward(
                torch.zeros_like(dxa), dyb, xa, yb
            )
            dxb, xb = self._backward(dxb_temp, x_temp, scale + 1, "none")
            dxa = dxa + dxa_temp
        else:
            xa = ya
            dxa_temp, dxb, _, xb = coupling.backward(
                torch.zeros_like(dya), dyb, ya, yb
            )
            dxa = dya + dxa_temp

        if permute == "lower":
            dxb, xb = self.conv.backward(dxb, xb)
        dx = tensor_cat(dxa, dxb)
        x = tensor_cat(xa, xb)
        if permute in ("full", "both"):
            dx, x = self.conv.backward(dx, x)
        return dx, x

    def backward(
        self,
        dy: torch.Tensor,
        y: torch.Tensor,
        permute: str | None = None
    ) -> TTuple:
        """Backpropagate from the output, recomputing one scale at a time.

        Args:
            dy: Gradient with respect to the output.
            y: Layer output.
            permute: Override for the permutation type.

        Returns:
            Gradient with respect to the input, and the recovered input.
        """
        return self._backward(dy, y, 1, self._resolve_permute(permute))

    def _backward_inv(
        self,
        dx: torch.Tensor,
        x: torch.Tensor,
        scale: int,
        permute: str
    ) -> TTuple:
        coupling = self.coupling_layers[scale - 1]

        if permute in ("full", "both"):
            dx, x = self.conv.backward_inv(dx, x)
        dxa, dxb = tensor_split(dx)
        xa, xb = tensor_split(x)
        if permute == "lower":
            dxb, xb = self.conv.backward_inv(dxb, xb)

        if x.shape[1] > MAX_LEAF_CHANNELS:
            dy_temp, y_temp = self._backward_inv(dxb, xb, scale + 1, "none")
            dya_temp, dyb, _, yb = coupling.backward_inv(
                torch.zeros_like(dxa), dy_temp, xa, y_temp
            )
            dya, ya = self._backward_inv(dxa + dya_temp, xa, scale + 1,
                                         "none")
        else:
            ya = xa
            dya_temp, dyb, _, yb = coupling.backward_inv(
                torch.zeros_like(dxa), dxb, xa, xb
            )
            dya = dxa + dya_temp

        dy = tensor_cat(dya, dyb)
        y = tensor_cat(ya, yb)
        if permute == "both":
            dy, y = self.conv.backward(dy, y)
        return dy, y

    def backward_inv(
        self,
        dx: torch.Tensor,
        x: torch.Tensor,
        permute: str | None = None
    ) -> TTuple:
        """Backpropagate from the output of the inverse pass.

        Args:
            dx: Gradient with respect to the output of inverse.
            x: Output of inverse.
            permute: Override for the permutation type.

        Returns:
            Gradient with respect to the input of inverse, and that input.
        """
        return self._backward_inv(dx, x, 1, self._resolve_permute(permute))
