import pytest

import torch
import torch.nn as nn

from invnet.models.invertible_layer import recompute_backward, \
    accumulate_grad
from invnet.models.layers import AffineLayer, ActNorm, CouplingLayerHINT
from invnet.models.networks import NetworkConditionalHINT


def test_recompute_backward_matches_autograd():
    """Test local recomputation against autograd on the same function."""
    weight = nn.Parameter(torch.randn(3))

    def func(a, b):
        return a * weight, a + b * weight, (weight ** 2).sum()

    a = torch.randn(4, 3)
    b = torch.randn(4, 3)
    ga = torch.randn(4, 3)
    gb = torch.randn(4, 3)

    da, db = recompute_backward(func, (ga, gb), (a, b), logdet=True)
    expected_grad = weight.grad.clone()

    weight.grad = None
    a_ = a.clone().requires_grad_(True)
    b_ = b.clone().requires_grad_(True)
    y1, y2, ld = func(a_, b_)
    ((y1 * ga).sum() + (y2 * gb).sum() - ld).backward()

    assert torch.allclose(da, a_.grad)
    assert torch.allclose(db, b_.grad)
    assert torch.allclose(expected_grad, weight.grad)


def test_recompute_backward_unused_input():
    """Test that inputs without influence on the outputs get zero grads."""
    a = torch.randn(2, 3)
    b = torch.randn(2, 3)

    da, db = recompute_backward(lambda x, y: 2 * x, (torch.ones(2, 3),),
                                (a, b))

    assert torch.allclose(da, 2 * torch.ones(2, 3))
    assert torch.equal(db, torch.zeros(2, 3))


def test_accumulate_grad():
    p = nn.Parameter(torch.zeros(2, 2))
    accumulate_grad(p, torch.ones(4))
    accumulate_grad(p, torch.ones(2, 2))

    assert torch.equal(p.grad, 2 * torch.ones(2, 2))


def test_use_logdet_convention():
    """Test which direction returns a log determinant."""
    layer = AffineLayer((2, 4, 4), logdet=True)
    x = torch.randn(3, 2, 4, 4)

    assert len(layer(x)) == 2
    assert isinstance(layer.inverse(x), torch.Tensor)

    layer.tag_as_reversed(True)
    assert isinstance(layer(x), torch.Tensor)
    assert len(layer.inverse(x)) == 2

    # Explicit keyword wins
    assert len(layer(x, logdet=True)) == 2
    assert isinstance(layer.inverse(x, logdet=False), torch.Tensor)


def test_get_put_params():
    layer = CouplingLayerHINT(8, 4, permute="full")
    other = CouplingLayerHINT(8, 4, permute="full")

    other.put_params([p.detach() for p in layer.get_params()])
    x = torch.randn(2, 8, 4, 4)

    assert torch.allclose(layer(x), other(x))


def test_put_params_survives_forward_network():
    """Test that loaded ActNorm parameters are not re-initialized from data."""
    shape = (4, 4, 4, 4)
    network = NetworkConditionalHINT(4, 8, 2)
    network(torch.randn(*shape), torch.randn(*shape))
    other = NetworkConditionalHINT(4, 8, 2)

    other.put_params([p.detach().clone() for p in network.get_params()])
    x = 3 + 2 * torch.randn(*shape)
    y = -1 + .5 * torch.randn(*shape)

    for out, expected in zip(other(x, y), network(x, y)):
        assert torch.allclose(out, expected)


def test_put_params_mismatch():
    layer = ActNorm(3)

    with pytest.raises(ValueError):
        layer.put_params([torch.ones(3)])
    with pytest.raises(ValueError):
        layer.put_params([torch.ones(3), torch.ones(4)])


def test_clear_grad():
    layer = AffineLayer((3,))
    x = torch.randn(5, 3)
    layer.backward(torch.ones(5, 3), layer(x))

    assert all(p.grad is not None for p in layer.parameters())
    layer.clear_grad()
    assert all(p.grad is None for p in layer.parameters())


def test_tag_as_reversed_propagates():
    network = NetworkConditionalHINT(4, 8, 2)
    network.tag_as_reversed(True)

    flags = [
        m.is_reversed for m in network.modules() if hasattr(m, "is_reversed")
    ]
    assert all(flags)


def test_reverse_network():
    """Test that reversing swaps directions and shares parameters."""
    network = NetworkConditionalHINT(4, 8, 2)
    x = torch.randn(3, 4, 4, 4)
    y = torch.randn(3, 4, 4, 4)
    zx, zy, logdet = network(x, y)

    reversed_network = network.reverse()
    assert network.is_reversed
    shared = zip(reversed_network.parameters(), network.parameters())
    assert all(a is b for a, b in shared)

    x_, y_, logdet_inv = reversed_network(zx, zy)
    assert torch.allclose(x_, x)
    assert torch.allclose(y_, y)
    assert torch.allclose(logdet_inv, -logdet)

    zx_, zy_ = reversed_network.inverse(x, y)
    assert torch.allclose(zx_, zx)

    restored = reversed_network.reverse()
    assert restored is network
    assert not network.is_reversed
