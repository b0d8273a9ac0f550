import pytest

import torch

from invnet.models.layers import CouplingLayerBasic
from invnet.utils import log_likelihood, grad_log_likelihood


def test_coupling_layer_basic_invertible():
    layer = CouplingLayerBasic(2, 8)
    x1 = torch.randn(4, 2, 6, 6)
    x2 = torch.randn(4, 2, 6, 6)

    y1, y2 = layer(x1, x2)
    x1_, x2_ = layer.inverse(y1, y2)

    assert torch.equal(y1, x1)
    assert torch.allclose(x2_, x2)


def test_coupling_layer_basic_logdet():
    """Test the log determinant against the full Jacobian."""
    layer = CouplingLayerBasic(2, 4, logdet=True)
    x = torch.randn(1, 4, 2, 2)

    _, _, logdet = layer(x[:, :2], x[:, 2:])
    jac = torch.autograd.functional.jacobian(
        lambda x_: torch.cat(layer(x_[:, :2], x_[:, 2:], logdet=False), 1),
        x
    ).reshape(16, 16)

    assert torch.allclose(logdet, torch.linalg.slogdet(jac)[1])

    _, _, logdet_inv = layer.inverse(x[:, :2], x[:, 2:], logdet=True)
    _, _, logdet_fwd = layer(x[:, :2], x[:, 2:])
    assert torch.allclose(logdet_inv, -logdet_fwd)


@pytest.mark.parametrize("logdet", [True, False])
def test_coupling_layer_basic_backward(logdet, param_grads):
    layer = CouplingLayerBasic(2, 8, logdet=logdet)
    x1 = torch.randn(4, 2, 6, 6, requires_grad=True)
    x2 = torch.randn(4, 2, 6, 6, requires_grad=True)

    y1, y2, ld = layer(x1, x2, logdet=True)
    loss = -log_likelihood(y1) - log_likelihood(y2)
    (loss - (ld if logdet else 0)).backward()
    expected = param_grads(layer)

    layer.clear_grad()
    y1, y2 = y1.detach(), y2.detach()
    dx1, dx2, x1_, x2_ = layer.backward(
        -grad_log_likelihood(y1), -grad_log_likelihood(y2), y1, y2
    )

    assert torch.allclose(x2_, x2.detach())
    assert torch.allclose(dx1, x1.grad)
    assert torch.allclose(dx2, x2.grad)
    for grad, exp in zip(param_grads(layer), expected):
        assert torch.allclose(grad, exp)


def test_coupling_layer_basic_backward_inv(param_grads):
    layer = CouplingLayerBasic(2, 8, logdet=True)
    y1 = torch.randn(4, 2, 6, 6, requires_grad=True)
    y2 = torch.randn(4, 2, 6, 6, requires_grad=True)

    x1, x2, ld = layer.inverse(y1, y2, logdet=True)
    (-log_likelihood(x1) - log_likelihood(x2) - ld).backward()
    expected = param_grads(layer)

    layer.clear_grad()
    x1, x2 = x1.detach(), x2.detach()
    dy1, dy2, _, y2_ = layer.backward_inv(
        -grad_log_likelihood(x1), -grad_log_likelihood(x2), x1, x2
    )

    assert torch.allclose(y2_, y2.detach())
    assert torch.allclose(dy1, y1.grad)
    assert torch.allclose(dy2, y2.grad)
    for grad, exp in zip(param_grads(layer), expected):
        assert torch.allclose(grad, exp)
