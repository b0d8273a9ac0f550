import pytest
from unittest.mock import patch

import torch

from invnet.models.networks import NetworkHyperbolic, build_schedule
from invnet.utils import log_likelihood, grad_log_likelihood


def test_build_schedule():
    schedule = build_schedule(3, 2, 1)

    assert schedule == [
        ("same", 0), ("down", 0), ("same", 1), ("down", 1),
        ("same", 2),
        ("up", 2), ("same", 1), ("up", 1), ("same", 0),
    ]


@pytest.mark.parametrize("n_scales,n_steps,n_center", [
    (1, 3, 2), (2, 1, 1), (3, 2, 1), (2, 3, 3)
])
def test_network_hyperbolic_depth(n_scales, n_steps, n_center):
    network = NetworkHyperbolic(1, n_scales, n_steps, (16, 16),
                                n_center=n_center)

    expected = 2 * (n_scales - 1) * n_steps + n_center
    assert len(network.hyperbolic_layers) == expected


def test_network_hyperbolic_channels():
    network = NetworkHyperbolic(2, 3, 1, (16, 16))

    assert network.affine.shape == (8, 8, 8)
    assert [layer.n_in for layer in network.hyperbolic_layers] == \
        [16, 64, 64, 16, 4]


@pytest.mark.parametrize("n_scales", [1, 2, 3])
def test_network_hyperbolic_invertible(n_scales):
    network = NetworkHyperbolic(2, n_scales, 2, (8, 8), alpha=.2)
    x = torch.randn(3, 2, 8, 8)

    y, logdet = network(x)
    x_, logdet_inv = network.inverse(y, logdet=True)

    assert y.shape == x.shape
    assert torch.allclose(x_, x)
    # Hyperbolic layers are volume preserving
    assert torch.allclose(logdet, torch.log(network.affine.s.abs()).sum())
    assert torch.allclose(logdet_inv, -logdet)


def test_network_hyperbolic_logdet():
    network = NetworkHyperbolic(1, 2, 1, (4, 4), alpha=.2)
    x = torch.randn(1, 1, 4, 4)

    _, logdet = network(x)
    jac = torch.autograd.functional.jacobian(
        lambda x_: network(x_, logdet=False), x
    ).reshape(16, 16)

    assert torch.allclose(logdet, torch.linalg.slogdet(jac)[1])


def test_network_hyperbolic_backward(param_grads):
    network = NetworkHyperbolic(2, 2, 2, (8, 8), alpha=.2)
    x = torch.randn(3, 2, 8, 8, requires_grad=True)

    y, logdet = network(x)
    (-log_likelihood(y) - logdet).backward()
    expected = param_grads(network)

    network.clear_grad()
    y = y.detach()
    dx, x_ = network.backward(-grad_log_likelihood(y), y)

    assert torch.allclose(x_, x.detach())
    assert torch.allclose(dx, x.grad)
    for grad, exp in zip(param_grads(network), expected):
        assert torch.allclose(grad, exp)


def test_network_hyperbolic_errors():
    with pytest.raises(ValueError):
        NetworkHyperbolic(2, 3, 2, (12, 12))
    with pytest.raises(ValueError):
        NetworkHyperbolic(2, 0, 2, (8, 8))


def test_network_hyperbolic_reversed_backward(param_grads):
    """Test that backward of the reversed network matches autograd."""
    network = NetworkHyperbolic(2, 2, 2, (8, 8), alpha=.2)
    reversed_network = network.reverse()
    y = torch.randn(3, 2, 8, 8, requires_grad=True)

    x, logdet = reversed_network(y)
    (-log_likelihood(x) - logdet).backward()
    expected = param_grads(network)

    network.clear_grad()
    x = x.detach()
    with patch("invnet.models.invertible_layer.recompute_backward",
               side_effect=AssertionError("whole network recomputed")):
        dy, y_ = reversed_network.backward(-grad_log_likelihood(x), x)

    assert torch.allclose(y_, y.detach())
    assert torch.allclose(dy, y.grad)
    for grad, exp in zip(param_grads(network), expected):
        assert torch.allclose(grad, exp)
