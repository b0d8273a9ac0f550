import pytest
from unittest.mock import Mock, patch

import torch
from torch.utils.data import DataLoader, TensorDataset

from experiments.train_utils import train_loop, check_wandb_run, \
    persist_wandb
from invnet.models.networks import NetworkHyperbolic


@pytest.fixture
def dataloaders():
    train = TensorDataset(torch.randn(16, 1, 8, 8))
    val = TensorDataset(torch.randn(8, 1, 8, 8))
    return DataLoader(train, batch_size=8), DataLoader(val, batch_size=8)


def test_train_loop_returns_best_state(dataloaders):
    network = NetworkHyperbolic(1, 2, 1, (8, 8), alpha=.1)
    optimizer = torch.optim.Adam(network.parameters(), lr=1e-3)
    train_args = {"max_epoch": 2, "patience": 5, "use_wandb": False}

    state = train_loop(network, optimizer, None, *dataloaders, train_args)

    assert state.keys() == network.state_dict().keys()


def test_train_loop_logs_to_wandb(dataloaders):
    network = NetworkHyperbolic(1, 2, 1, (8, 8), alpha=.1)
    optimizer = torch.optim.Adam(network.parameters(), lr=1e-3)
    scheduler = torch.optim.lr_scheduler.ReduceLROnPlateau(optimizer)
    train_args = {"max_epoch": 3, "patience": 5, "use_wandb": True}

    with patch("experiments.train_utils.wandb") as wandb:
        train_loop(network, optimizer, scheduler, *dataloaders, train_args)

    assert wandb.log.call_count == 3
    assert set(wandb.log.call_args[0][0]) == {"train_loss", "val_loss"}


def test_train_loop_bad_scheduler(dataloaders):
    network = NetworkHyperbolic(1, 2, 1, (8, 8))
    optimizer = torch.optim.Adam(network.parameters(), lr=1e-3)
    train_args = {"max_epoch": 1, "patience": 5, "use_wandb": False}

    with pytest.raises(RuntimeError):
        train_loop(network, optimizer, Mock(), *dataloaders, train_args)


@pytest.mark.parametrize("states,expected", [
    ([], False),
    (["finished"], True),
    (["crashed"], False),
])
def test_check_wandb_run(states, expected):
    config = {"model_config": "hyperbolic", "data_random_seed": 1,
              "model_seed": 2, "lr": 1e-3}
    runs = [Mock(state=state) for state in states]

    with patch("experiments.train_utils.wandb") as wandb:
        wandb.Api.return_value.runs.return_value = runs
        assert check_wandb_run(config, "project") == expected


def test_check_wandb_run_duplicates():
    config = {"model_config": "hyperbolic", "data_random_seed": 1,
              "model_seed": 2, "lr": 1e-3}

    with patch("experiments.train_utils.wandb") as wandb:
        wandb.Api.return_value.runs.return_value = [Mock(), Mock()]
        with pytest.raises(RuntimeError):
            check_wandb_run(config, "project")


def test_persist_wandb(tmp_path):
    run = Mock()

    with patch("experiments.train_utils.wandb") as wandb:
        persist_wandb(run, {"w": torch.ones(2)}, "hyperbolic",
                      temp_path=str(tmp_path))

    wandb.Artifact.assert_called_once_with("hyperbolic", type="model")
    artifact = wandb.Artifact.return_value
    artifact.add_file.assert_called_once()
    run.log_artifact.assert_called_once_with(artifact)
    assert list(tmp_path.iterdir()) == []
