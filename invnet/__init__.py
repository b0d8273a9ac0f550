from .models.invertible_layer import InvertibleLayer, InvertibleNetwork, \
    ReversedNetwork
from .models.layers import *
from .models.conditional_layers import *
from .models.networks import *
from .models.factory import InvertibleNetworkFactory
from .models.learner import InvertibleNetworkLearner
