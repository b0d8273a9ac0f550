from abc import ABCMeta, abstractmethod
from typing import Callable, Sequence

import torch
import torch.nn as nn

from ..models import TTuple


def recompute_backward(
    func: Callable,
    grads: Sequence[torch.Tensor],
    inputs: Sequence[torch.Tensor],
    logdet: bool = False
) -> tuple[torch.Tensor, ...]:
    """Backpropagate output gradients through a locally recomputed function.

    The inputs are detached, func is re-evaluated on them with autograd
    enabled, and the output gradients are pushed back. Parameter gradients
    accumulate into their .grad fields. Only the graph of func is held in
    memory, never that of the surrounding network.

    Args:
        func: Function mapping inputs to outputs. If logdet is set, the
            output directly following the gradient-matched outputs must be
            the scalar log determinant.
        grads: Gradients with respect to the leading outputs of func.
        inputs: Values at which func is evaluated.
        logdet: Whether to backpropagate -1 into the log determinant.

    Returns:
        Gradients with respect to each input.
    """
    inputs = tuple(x.detach().requires_grad_(True) for x in inputs)
    with torch.enable_grad():
        outputs = func(*inputs)
    if isinstance(outputs, torch.Tensor):
        outputs = (outputs,)

    tensors = []
    grad_tensors = []
    for out, grad in zip(outputs, grads):
        if out.requires_grad:
            tensors.append(out)
            grad_tensors.append(grad)

    if logdet:
        ld = outputs[len(grads)]
        if ld.requires_grad:
            tensors.append(ld)
            grad_tensors.append(-torch.ones_like(ld))

    if tensors:
        torch.autograd.backward(tensors, grad_tensors)

    return tuple(
        torch.zeros_like(x) if x.grad is None else x.grad for x in inputs
    )


def accumulate_grad(param: nn.Parameter, grad: torch.Tensor):
    """Add an analytically computed gradient into param.grad."""
    grad = grad.detach().reshape(param.shape)
    if param.grad is None:
        param.grad = grad.clone()
    else:
        param.grad += grad


class InvertibleLayer(nn.Module, metaclass=ABCMeta):
    """Interface for invertible layers.

    Layers implement forward and inverse. By default, backward rebuilds the
    layer input from its output and recomputes the layer locally, so no
    activations need to be stored during the forward pass.

    A layer's log determinant is returned by forward iff logdet is set and
    the layer is not reversed, and by inverse iff logdet is set and the
    layer is reversed. Both accept an explicit logdet keyword override.
    """

    logdet: bool = False
    is_reversed: bool = False

    @abstractmethod
    def forward(self, *args, **kwargs):
        """Abstract method for the forward pass."""
        pass

    @abstractmethod
    def inverse(self, *args, **kwargs):
        """Abstract method for the inverse pass."""
        pass

    def _use_logdet(self, logdet: bool | None, inverse: bool = False) -> bool:
        if logdet is not None:
            return logdet
        if inverse:
            return self.logdet and self.is_reversed
        return self.logdet and not self.is_reversed

    def backward(self, dy: torch.Tensor, y: torch.Tensor) -> TTuple:
        """Backpropagate through the layer starting from its output.

        Accumulates the gradient of f(y) - logdet into the parameters, where
        dy is the gradient of f. The logdet term is only included if the
        layer tracks its log determinant.

        Args:
            dy: Gradient with respect to the output.
            y: Layer output.

        Returns:
            Gradient with respect to the input, and the recovered input.
        """
        with torch.no_grad():
            x = self.inverse(y, logdet=False)

        dx, = recompute_backward(
            lambda x_: self.forward(x_, logdet=self.logdet),
            (dy,), (x,), logdet=self.logdet
        )
        return dx, x

    def backward_inv(self, dx: torch.Tensor, x: torch.Tensor) -> TTuple:
        """Backpropagate through the inverse pass starting from its output.

        Args:
            dx: Gradient with respect to the output of inverse.
            x: Output of inverse.

        Returns:
            Gradient with respect to the input of inverse, and that input.
        """
        with torch.no_grad():
            y = self.forward(x, logdet=False)

        dy, = recompute_backward(
            lambda y_: self.inverse(y_, logdet=self.logdet),
            (dx,), (y,), logdet=self.logdet
        )
        return dy, y

    def get_params(self) -> list[nn.Parameter]:
        """Return all trainable parameters in registration order."""
        return list(self.parameters())

    def put_params(self, params: Sequence[torch.Tensor]):
        """Overwrite parameter values in registration order.

        Args:
            params: New values, matching get_params in count and shape.
        """
        own = self.get_params()
        if len(params) != len(own):
            raise ValueError(
                f"Expected {len(own)} parameters, got {len(params)}."
            )

        with torch.no_grad():
            for p, new in zip(own, params):
                new = torch.as_tensor(new)
                if new.shape != p.shape:
                    raise ValueError(
                        f"Shape mismatch: {tuple(new.shape)} vs "
                        f"{tuple(p.shape)}."
                    )
                p.copy_(new)

        for module in self.modules():
            if isinstance(module, InvertibleLayer):
                module._on_params_put()

    def _on_params_put(self):
        """Called on every invertible sublayer after put_params."""

    def clear_grad(self):
        """Reset the gradients of all parameters."""
        self.zero_grad(set_to_none=True)

    def tag_as_reversed(self, tag: bool) -> "InvertibleLayer":
        """Set the reversed flag on this layer and all invertible sublayers."""
        for module in self.modules():
            if isinstance(module, InvertibleLayer):
                module.is_reversed = tag
        return self


class InvertibleNetwork(InvertibleLayer):
    """Interface for networks composed of invertible layers."""

    config: dict

    def reverse(self) -> "ReversedNetwork":
        """Return a view of the network with forward and inverse swapped."""
        return ReversedNetwork(self)


class ReversedNetwork(InvertibleNetwork):
    """Wraps a network so that its inverse is used as forward pass.

    Parameters are shared with the wrapped network.
    """

    def __init__(self, network: InvertibleNetwork):
        """Initialize ReversedNetwork.

        Args:
            network: Network to be reversed. It is tagged as reversed.
        """
        super().__init__()
        self.network = network.tag_as_reversed(True)
        self.logdet = network.logdet
        self.is_reversed = True

    def forward(self, *args, **kwargs):
        return self.network.inverse(*args, **kwargs)

    def inverse(self, *args, **kwargs):
        return self.network.forward(*args, **kwargs)

    def backward(self, *args, **kwargs):
        return self.network.backward_inv(*args, **kwargs)

    def backward_inv(self, *args, **kwargs):
        return self.network.backward(*args, **kwargs)

    def reverse(self) -> InvertibleNetwork:
        """Undo the reversal and return the wrapped network."""
        return self.network.tag_as_reversed(False)
