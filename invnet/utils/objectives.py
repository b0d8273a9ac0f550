from math import pi

import torch


def log_likelihood(z: torch.Tensor) -> torch.Tensor:
    """Standard normal log-likelihood up to a constant, averaged over batch.

    Args:
        z: Latent samples, first dimension is the batch.

    Returns:
        Scalar -0.5 * ||z||^2 / B.
    """
    return -.5 * torch.sum(z ** 2) / z.shape[0]


def grad_log_likelihood(z: torch.Tensor) -> torch.Tensor:
    """Gradient of log_likelihood with respect to z."""
    return -z / z.shape[0]


def standard_normal_logprob(z: torch.Tensor) -> torch.Tensor:
    """Evaluate likelihood of z under standard normal.

    Args:
        z: Input data.

    Returns:
        Log probability of each sample under standard normal distribution.
    """
    z = z.reshape(z.shape[0], -1)
    return -.5 * (torch.log(torch.tensor(pi) * 2) + z ** 2).sum(1)
