import numpy as np

from sklearn.model_selection import train_test_split
from sklearn.preprocessing import StandardScaler

from typing import Tuple

DSTuple = Tuple[np.ndarray, np.ndarray, np.ndarray]


def split_dataset(
    data: np.ndarray,
    split_ratio: tuple[float, float, float],
    random_seed: int | None = None
) -> DSTuple:
    """Split data into train, validation, and test splits.

    Args:
        data: Dataset to split. Assumes first dimension is sample dimension.
        split_ratio: Ratio of train, validation, and test splits.
        random_seed: Seed of the shuffling, shared by both splits.
    Return:
        Tuple of train, validation, test data splits.
    """
    test_ratio = split_ratio[2] / (split_ratio[1] + split_ratio[2])

    train_set, temp_set = train_test_split(data, train_size=split_ratio[0],
                                           random_state=random_seed)
    val_set, test_set = train_test_split(temp_set, test_size=test_ratio,
                                         random_state=random_seed)

    return train_set, val_set, test_set


def standardize_images(data: np.ndarray) -> np.ndarray:
    """Standardize image data per channel.

    Args:
        data: Images of shape (n_samples, n_channels, *spatial).
    Returns:
        Standardized images of the same shape.
    """
    n_channels = data.shape[1]
    flat = np.moveaxis(data, 1, -1).reshape(-1, n_channels)
    flat = StandardScaler().fit_transform(flat)
    standard = flat.reshape(np.moveaxis(data, 1, -1).shape)
    return np.moveaxis(standard, -1, 1)
