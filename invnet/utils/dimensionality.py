import torch
import torch.nn.functional as F

from ..models import TTuple


def tensor_split(x: torch.Tensor, split_index: int | None = None) -> TTuple:
    """Split a tensor along the channel dimension.

    Args:
        x: Input of shape (B, C, ...).
        split_index: Number of channels in the first part. Defaults to C // 2.

    Returns:
        First and second channel blocks.
    """
    k = x.shape[1] // 2 if split_index is None else split_index
    return x[:, :k], x[:, k:]


def tensor_cat(a: torch.Tensor, b: torch.Tensor) -> torch.Tensor:
    """Concatenate two tensors along the channel dimension."""
    return torch.cat((a, b), dim=1)


def _check_even_spatial(x: torch.Tensor):
    if x.dim() != 4:
        raise ValueError(f"Expected a (B, C, H, W) tensor, got {x.dim()} dims.")
    if x.shape[2] % 2 or x.shape[3] % 2:
        raise ValueError(
            f"Spatial dimensions {tuple(x.shape[2:])} must be even."
        )


def wavelet_squeeze(x: torch.Tensor) -> torch.Tensor:
    """Apply one level of the orthonormal Haar transform.

    Maps (B, C, H, W) to (B, 4C, H/2, W/2). Channel blocks are ordered as
    [LL, LH, HL, HH]. The transform is orthogonal, so its adjoint is
    wavelet_unsqueeze.

    Args:
        x: Input image batch.

    Returns:
        Haar coefficients stacked along channels.
    """
    _check_even_spatial(x)
    a = x[:, :, 0::2, 0::2]
    b = x[:, :, 0::2, 1::2]
    c = x[:, :, 1::2, 0::2]
    d = x[:, :, 1::2, 1::2]

    ll = (a + b + c + d) / 2
    lh = (a - b + c - d) / 2
    hl = (a + b - c - d) / 2
    hh = (a - b - c + d) / 2
    return torch.cat((ll, lh, hl, hh), dim=1)


def wavelet_unsqueeze(y: torch.Tensor) -> torch.Tensor:
    """Invert wavelet_squeeze.

    Args:
        y: Haar coefficients of shape (B, 4C, H, W).

    Returns:
        Image batch of shape (B, C, 2H, 2W).
    """
    if y.shape[1] % 4:
        raise ValueError(
            f"Number of channels ({y.shape[1]}) must be divisible by 4."
        )
    ll, lh, hl, hh = torch.chunk(y, 4, dim=1)

    a = (ll + lh + hl + hh) / 2
    b = (ll - lh + hl - hh) / 2
    c = (ll + lh - hl - hh) / 2
    d = (ll - lh - hl + hh) / 2

    # Interleave columns, then rows
    n, ch, h, w = ll.shape
    top = torch.stack((a, b), dim=-1).reshape(n, ch, h, 2 * w)
    bottom = torch.stack((c, d), dim=-1).reshape(n, ch, h, 2 * w)
    return torch.stack((top, bottom), dim=3).reshape(n, ch, 2 * h, 2 * w)


def squeeze(x: torch.Tensor) -> torch.Tensor:
    """Move each 2x2 spatial block into channels."""
    _check_even_spatial(x)
    return F.pixel_unshuffle(x, 2)


def unsqueeze(y: torch.Tensor) -> torch.Tensor:
    """Invert squeeze."""
    return F.pixel_shuffle(y, 2)
