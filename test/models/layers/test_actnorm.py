import pytest

import torch

from invnet.models.layers import ActNorm
from invnet.utils import log_likelihood, grad_log_likelihood


def test_actnorm_data_initialization():
    """Test that the first batch is normalized per channel."""
    layer = ActNorm(3)
    x = 5 + 2 * torch.randn(16, 3, 8, 8)

    y = layer(x)

    assert bool(layer.initialized)
    assert torch.allclose(y.mean((0, 2, 3)), torch.zeros(3), atol=1e-6)
    assert torch.allclose(y.std((0, 2, 3)), torch.ones(3))

    # Parameters stay fixed after the first call
    s = layer.s.detach().clone()
    layer(torch.randn(16, 3, 8, 8))
    assert torch.equal(layer.s, s)


def test_actnorm_put_params_skips_initialization():
    layer = ActNorm(2)
    layer.put_params([torch.tensor([2., 3.]), torch.tensor([.5, -.5])])

    layer(5 + 4 * torch.randn(8, 2, 4, 4))

    assert bool(layer.initialized)
    assert torch.equal(layer.s, torch.tensor([2., 3.]))
    assert torch.equal(layer.b, torch.tensor([.5, -.5]))


@pytest.mark.parametrize("shape", [(4, 3, 6, 6), (4, 3, 2, 4, 4)])
def test_actnorm_invertible(shape):
    layer = ActNorm(3)
    x = torch.randn(*shape)

    assert torch.allclose(layer.inverse(layer(x)), x)


def test_actnorm_logdet():
    layer = ActNorm(2, logdet=True)
    x = torch.randn(1, 2, 2, 2)
    layer(torch.randn(8, 2, 2, 2))

    _, logdet = layer(x)
    _, logdet_inv = layer.inverse(x, logdet=True)
    jac = torch.autograd.functional.jacobian(
        lambda x_: layer(x_, logdet=False), x
    ).reshape(8, 8)

    assert torch.allclose(logdet, torch.linalg.slogdet(jac)[1])
    assert torch.allclose(logdet_inv, -logdet)


def test_actnorm_inverse_uninitialized_warns():
    layer = ActNorm(2)

    with pytest.warns(UserWarning):
        layer.inverse(torch.randn(2, 2, 4, 4))


@pytest.mark.parametrize("logdet", [True, False])
def test_actnorm_backward(logdet, param_grads):
    layer = ActNorm(3, logdet=logdet)
    layer(torch.randn(8, 3, 4, 4))
    x = torch.randn(8, 3, 4, 4, requires_grad=True)

    y, ld = layer(x, logdet=True)
    (-log_likelihood(y) - (ld if logdet else 0)).backward()
    expected = param_grads(layer)

    layer.clear_grad()
    y = y.detach()
    dx, x_ = layer.backward(-grad_log_likelihood(y), y)

    assert torch.allclose(x_, x.detach())
    assert torch.allclose(dx, x.grad)
    for grad, exp in zip(param_grads(layer), expected):
        assert torch.allclose(grad, exp)


@pytest.mark.parametrize("logdet", [True, False])
def test_actnorm_backward_inv(logdet, param_grads):
    layer = ActNorm(3, logdet=logdet)
    layer(torch.randn(8, 3, 4, 4))
    y = torch.randn(8, 3, 4, 4, requires_grad=True)

    x, ld = layer.inverse(y, logdet=True)
    (-log_likelihood(x) - (ld if logdet else 0)).backward()
    expected = param_grads(layer)

    layer.clear_grad()
    x = x.detach()
    dy, y_ = layer.backward_inv(-grad_log_likelihood(x), x)

    assert torch.allclose(y_, y.detach())
    assert torch.allclose(dy, y.grad)
    for grad, exp in zip(param_grads(layer), expected):
        assert torch.allclose(grad, exp)
