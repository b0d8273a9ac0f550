from .dimensionality import tensor_split, tensor_cat, wavelet_squeeze, \
    wavelet_unsqueeze, squeeze, unsqueeze
from .objectives import log_likelihood, grad_log_likelihood, \
    standard_normal_logprob
from .operators import LinearOperator, MatrixOperator, IdentityOperator, \
    as_operator

__all__ = [
    "tensor_split",
    "tensor_cat",
    "wavelet_squeeze",
    "wavelet_unsqueeze",
    "squeeze",
    "unsqueeze",
    "log_likelihood",
    "grad_log_likelihood",
    "standard_normal_logprob",
    "LinearOperator",
    "MatrixOperator",
    "IdentityOperator",
    "as_operator",
]
