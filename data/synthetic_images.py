import numpy as np


class SyntheticImagePairDataset:
    """Generate pairs of smooth random images X and observations Y.

    X is white Gaussian noise smoothed by repeated box filtering. Y is a
    noisy linear observation Y = A vec(X) + noise, reshaped to the image
    shape, with A a fixed random Gaussian matrix.
    """

    def __init__(
        self,
        n_channels: int,
        image_shape: tuple[int, int],
        n_smooth: int = 2,
        noise_std: float = 0.1,
        random_seed: int | None = None
    ):
        """Initialize generator for paired image data.

        Args:
            n_channels: Number of image channels.
            image_shape: Spatial shape (H, W) of the images.
            n_smooth: Number of box filter passes applied to X.
            noise_std: Standard deviation of the observation noise.
            random_seed: Seed used to draw the forward operator.
        """
        self.n_channels = n_channels
        self.image_shape = tuple(image_shape)
        self.n_smooth = n_smooth
        self.noise_std = noise_std

        dim = n_channels * int(np.prod(image_shape))
        rng = np.random.default_rng(random_seed)
        self.operator = rng.normal(0, 1 / np.sqrt(dim), size=(dim, dim))

    @property
    def sample_shape(self) -> tuple[int, ...]:
        return (self.n_channels,) + self.image_shape

    def _smooth(self, x: np.ndarray) -> np.ndarray:
        for _ in range(self.n_smooth):
            x = (
                x
                + np.roll(x, 1, axis=-1) + np.roll(x, -1, axis=-1)
                + np.roll(x, 1, axis=-2) + np.roll(x, -1, axis=-2)
            ) / 5
        return x

    def generate_samples(
        self,
        n_samples: int,
        random_seed: int | None = None
    ) -> tuple[np.ndarray, np.ndarray]:
        """Generate paired samples.

        Args:
            n_samples: Number of pairs to generate.
            random_seed: Seed used to draw the samples.
        Returns:
            Arrays X and Y, each of shape (n_samples, C, H, W).
        """
        rng = np.random.default_rng(random_seed)
        x = rng.normal(size=(n_samples,) + self.sample_shape)
        x = self._smooth(x)

        y = x.reshape(n_samples, -1) @ self.operator.T
        y += rng.normal(0, self.noise_std, size=y.shape)
        y = y.reshape(x.shape)

        return x.astype(np.float32), y.astype(np.float32)
