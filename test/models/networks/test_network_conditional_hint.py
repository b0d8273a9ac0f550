import pytest

import torch

from invnet.models.networks import NetworkConditionalHINT
from invnet.utils import log_likelihood, grad_log_likelihood


shape = (4, 4, 4, 4)


@pytest.fixture
def network():
    """Conditional HINT network with ActNorm initialized on random data."""
    network = NetworkConditionalHINT(4, 8, 3)
    network(torch.randn(*shape), torch.randn(*shape))
    return network


def test_network_conditional_hint_structure():
    network = NetworkConditionalHINT(4, 8, 3, logdet=False)

    assert len(network.an_x) == len(network.an_y) == len(network.cl) == 3
    assert all(cl.c_x is not None for cl in network.cl)
    assert not any(an.logdet for an in network.an_x)

    with pytest.raises(ValueError):
        NetworkConditionalHINT(4, 8, 0)


def test_network_conditional_hint_invertible(network):
    x = torch.randn(*shape)
    y = torch.randn(*shape)

    zx, zy, logdet = network(x, y)
    x_, y_, logdet_inv = network.inverse(zx, zy, logdet=True)

    assert torch.allclose(x_, x)
    assert torch.allclose(y_, y)
    assert torch.allclose(logdet_inv, -logdet)


def test_network_conditional_hint_no_logdet():
    network = NetworkConditionalHINT(4, 8, 2, logdet=False)

    out = network(torch.randn(*shape), torch.randn(*shape))

    assert len(out) == 2


def test_network_conditional_hint_y_lane(network):
    y = torch.randn(*shape)

    _, zy, _ = network(torch.randn(*shape), y)

    assert torch.allclose(network.forward_y(y), zy)
    assert torch.allclose(network.inverse_y(zy), y)


def test_network_conditional_hint_backward(network, param_grads):
    x = torch.randn(*shape, requires_grad=True)
    y = torch.randn(*shape, requires_grad=True)

    zx, zy, logdet = network(x, y)
    (-log_likelihood(zx) - log_likelihood(zy) - logdet).backward()
    expected = param_grads(network)

    network.clear_grad()
    zx, zy = zx.detach(), zy.detach()
    dx, dy, x_, y_ = network.backward(
        -grad_log_likelihood(zx), -grad_log_likelihood(zy), zx, zy
    )

    assert torch.allclose(x_, x.detach())
    assert torch.allclose(y_, y.detach())
    assert torch.allclose(dx, x.grad)
    assert torch.allclose(dy, y.grad)
    for grad, exp in zip(param_grads(network), expected):
        assert torch.allclose(grad, exp)


def test_network_conditional_hint_reversed_backward(network, param_grads):
    """Test that backward of the reversed network matches autograd."""
    reversed_network = network.reverse()
    zx = torch.randn(*shape, requires_grad=True)
    zy = torch.randn(*shape, requires_grad=True)

    x, y, logdet = reversed_network(zx, zy)
    (-log_likelihood(x) - log_likelihood(y) - logdet).backward()
    expected = param_grads(network)

    network.clear_grad()
    x, y = x.detach(), y.detach()
    dzx, dzy, zx_, zy_ = reversed_network.backward(
        -grad_log_likelihood(x), -grad_log_likelihood(y), x, y
    )

    assert torch.allclose(zx_, zx.detach())
    assert torch.allclose(zy_, zy.detach())
    assert torch.allclose(dzx, zx.grad)
    assert torch.allclose(dzy, zy.grad)
    for grad, exp in zip(param_grads(network), expected):
        assert torch.allclose(grad, exp)


def test_network_conditional_hint_3d():
    network = NetworkConditionalHINT(4, 4, 2, ndims=3)
    x = torch.randn(2, 4, 4, 4, 4)
    y = torch.randn(2, 4, 4, 4, 4)

    zx, zy, _ = network(x, y)
    x_, y_ = network.inverse(zx, zy)

    assert torch.allclose(x_, x)
    assert torch.allclose(y_, y)
