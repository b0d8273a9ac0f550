from .config_constants import *
from .invertible_layer import InvertibleNetwork
from .networks import NetworkConditionalHINT, NetworkHyperbolic


NETWORK_TYPES = ("conditional_hint", "hyperbolic")


class InvertibleNetworkFactory:
    """Constructs invertible networks from a config dictionary."""

    def __init__(self, config: dict):
        """Initialize InvertibleNetworkFactory.

        Args:
            config: Network architecture parameters.
        """
        self.config = config
        self.parse_config(config)

    def parse_config(self, config: dict):
        """Parse config for relevant arguments.

        Args:
            config: Network architecture parameters.
        """
        self.network_type = config[NETWORK_TYPE]
        self.n_in = config[N_IN]
        self.logdet = config.get(LOGDET, True)

        if self.network_type == "conditional_hint":
            self.n_hidden = config[N_HIDDEN]
            self.depth = config[DEPTH]
            self.ndims = config.get(NDIMS, 2)
            self.conv_args = {
                "k1": config.get(KERNEL_1, 3),
                "k2": config.get(KERNEL_2, 3),
                "p1": config.get(PAD_1, 1),
                "p2": config.get(PAD_2, 1),
                "s1": config.get(STRIDE_1, 1),
                "s2": config.get(STRIDE_2, 1),
            }
        elif self.network_type == "hyperbolic":
            self.scales = config[SCALES]
            self.steps_per_scale = config[STEPS_PER_SCALE]
            self.in_shape = tuple(config[IN_SHAPE])
            self.kernel = config.get(KERNEL, 3)
            self.pad = config.get(PAD, 1)
            self.stride = config.get(STRIDE, 1)
            self.alpha = config.get(ALPHA, 1.)
            self.hidden_factor = config.get(HIDDEN_FACTOR, 1)
            self.n_center = config.get(N_CENTER, 1)
        else:
            raise ValueError(
                f"{self.network_type} is not a valid network type!"
            )

    def _build_network(self) -> InvertibleNetwork:
        """Build the network described by the parsed config."""
        if self.network_type == "conditional_hint":
            return NetworkConditionalHINT(
                self.n_in,
                self.n_hidden,
                self.depth,
                ndims=self.ndims,
                logdet=self.logdet,
                **self.conv_args
            )

        return NetworkHyperbolic(
            self.n_in,
            self.scales,
            self.steps_per_scale,
            self.in_shape,
            kernel=self.kernel,
            stride=self.stride,
            pad=self.pad,
            logdet=self.logdet,
            alpha=self.alpha,
            hidden_factor=self.hidden_factor,
            n_center=self.n_center
        )

    def build_network(self) -> InvertibleNetwork:
        """Wrap concrete network builder to add config as an attribute."""
        network = self._build_network()
        network.config = self.config

        return network
