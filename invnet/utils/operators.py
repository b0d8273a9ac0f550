from abc import ABCMeta, abstractmethod

import torch


class LinearOperator(metaclass=ABCMeta):
    """Interface for linear forward modeling operators.

    Operators act on batches of flattened vectors: forward maps (B, n) to
    (B, m) and adjoint maps (B, m) back to (B, n).
    """

    @abstractmethod
    def forward(self, x: torch.Tensor) -> torch.Tensor:
        """Apply the operator."""
        pass

    @abstractmethod
    def adjoint(self, d: torch.Tensor) -> torch.Tensor:
        """Apply the adjoint operator."""
        pass


class MatrixOperator(LinearOperator):
    """Linear operator given by a dense (m x n) matrix."""

    def __init__(self, matrix: torch.Tensor):
        """Initialize MatrixOperator.

        Args:
            matrix: Dense 2D operator matrix.
        """
        if matrix.dim() != 2:
            raise ValueError("Operator matrix must be two dimensional.")
        self.matrix = matrix

    @property
    def shape(self) -> tuple[int, int]:
        return tuple(self.matrix.shape)

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return x @ self.matrix.to(x).T

    def adjoint(self, d: torch.Tensor) -> torch.Tensor:
        return d @ self.matrix.to(d)


class IdentityOperator(LinearOperator):
    """Identity operator, data and model space coincide."""

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return x

    def adjoint(self, d: torch.Tensor) -> torch.Tensor:
        return d


def as_operator(op) -> LinearOperator:
    """Wrap supported operator representations as a LinearOperator.

    Args:
        op: LinearOperator instance or 2D tensor.

    Returns:
        Operator with forward and adjoint methods.
    """
    if isinstance(op, LinearOperator):
        return op
    if isinstance(op, torch.Tensor):
        return MatrixOperator(op)
    raise TypeError(f"Unsupported operator type: {type(op).__name__}.")
