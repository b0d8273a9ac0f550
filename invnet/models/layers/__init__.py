from .affine_layer import AffineLayer
from .actnorm import ActNorm
from .conv1x1 import Conv1x1
from .residual_block import ResidualBlock
from .coupling_layer_basic import CouplingLayerBasic
from .coupling_layer_hint import CouplingLayerHINT, get_depth
from .hyperbolic_layer import HyperbolicLayer
from .coupling_layer_slim import CouplingLayerSLIM, \
    AdditiveCouplingLayerSLIM, AffineCouplingLayerSLIM, \
    LearnedCouplingLayerSLIM, data_gradient

__all__ = [
    "AffineLayer",
    "ActNorm",
    "Conv1x1",
    "ResidualBlock",
    "CouplingLayerBasic",
    "CouplingLayerHINT",
    "get_depth",
    "HyperbolicLayer",
    "CouplingLayerSLIM",
    "AdditiveCouplingLayerSLIM",
    "AffineCouplingLayerSLIM",
    "LearnedCouplingLayerSLIM",
    "data_gradient",
]
