import pytest

import torch

from invnet.models.layers import ResidualBlock


@pytest.mark.parametrize("ndims,shape", [
    (2, (3, 4, 8, 8)),
    (3, (3, 4, 4, 4, 4)),
])
def test_residual_block_shape(ndims, shape):
    block = ResidualBlock(4, 16, ndims=ndims)
    out = block(torch.randn(*shape))

    assert out.shape == (shape[0], 8) + shape[2:]


def test_residual_block_n_out():
    block = ResidualBlock(4, 16, n_out=3)
    out = block(torch.randn(2, 4, 6, 6))

    assert out.shape == (2, 3, 6, 6)


def test_residual_block_parameters():
    """Test that the block holds W1, b1, W2, b2, W3."""
    block = ResidualBlock(2, 8, k1=5, p1=2)
    params = list(block.parameters())

    assert len(params) == 5
    assert params[0].shape == (8, 2, 5, 5)
    assert params[2].shape == (8, 8, 3, 3)
    assert params[4].shape == (8, 4, 5, 5)


def test_residual_block_strided():
    block = ResidualBlock(2, 8, k1=4, p1=0, s1=4)
    out = block(torch.randn(2, 2, 8, 8))

    assert out.shape == (2, 4, 8, 8)


def test_residual_block_errors():
    with pytest.raises(ValueError):
        ResidualBlock(2, 4, ndims=1)
    with pytest.raises(ValueError):
        ResidualBlock(2, 4, act_type="gelu")
