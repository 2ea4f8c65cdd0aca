import torch
import torch.nn as nn
import random
import numpy as np
import os
from typing import Dict, Any, Optional
import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
from torch.utils.data import DataLoader
from torchvision import datasets, transforms
import importlib.util
import torchvision.utils as vutils

from gan_ops.optim import ShadowAdam


def set_seed(seed: int):
    """
    Set random seed for reproducibility.

    Args:
        seed: Random seed
    """
    random.seed(seed)
    np.random.seed(seed)
    torch.manual_seed(seed)
    torch.cuda.manual_seed_all(seed)
    torch.backends.cudnn.deterministic = True
    torch.backends.cudnn.benchmark = False
    os.environ['PYTHONHASHSEED'] = str(seed)


def gradient_clip(model: nn.Module, max_norm: Optional[float] = 1.0):
    """
    Clip gradients to prevent exploding gradients.

    Args:
        model: Model to clip gradients for
        max_norm: Maximum gradient norm, None disables clipping
    """
    if max_norm is None:
        return
    torch.nn.utils.clip_grad_norm_(model.parameters(), max_norm)


def count_parameters(model: nn.Module) -> int:
    """
    Count the number of trainable parameters in a model.

    Shared parameters are counted once.

    Args:
        model: Model to count parameters for

    Returns:
        Number of trainable parameters
    """
    return sum(p.numel() for p in model.parameters() if p.requires_grad)


def compute_model_size_mb(model: nn.Module) -> float:
    """
    Compute model size in MB.

    Args:
        model: Model to compute size for

    Returns:
        Model size in MB
    """
    param_size = 0
    buffer_size = 0

    for param in model.parameters():
        param_size += param.nelement() * param.element_size()

    for buffer in model.buffers():
        buffer_size += buffer.nelement() * buffer.element_size()

    size_mb = (param_size + buffer_size) / 1024 / 1024
    return size_mb


def print_model_summary(model: nn.Module):
    """
    Print model summary including parameter count and size.

    Args:
        model: Model to summarize
    """
    total_params = count_parameters(model)
    model_size = compute_model_size_mb(model)

    print(f"Model Summary:")
    print(f"  Total parameters: {total_params:,}")
    print(f"  Model size: {model_size:.2f} MB")
    print(f"  Model structure:")
    print(model)


def get_device() -> torch.device:
    """
    Get the best available device.

    Returns:
        Device to use
    """
    if torch.cuda.is_available():
        return torch.device("cuda")
    elif torch.backends.mps.is_available():
        return torch.device("mps")
    else:
        return torch.device("cpu")


def create_optimizer(model: nn.Module, optimizer_type: str = "shadow_adam",
                     learning_rate: float = 1e-4, **kwargs) -> torch.optim.Optimizer:
    """
    Create optimizer.

    Args:
        model: Model to optimize
        optimizer_type: Type of optimizer ("shadow_adam", "adam", "adamw", "sgd")
        learning_rate: Learning rate
        **kwargs: Additional arguments for optimizer

    Returns:
        Optimizer
    """
    if optimizer_type == "shadow_adam":
        return ShadowAdam(model.parameters(), lr=learning_rate, **kwargs)
    elif optimizer_type == "adam":
        return torch.optim.Adam(model.parameters(), lr=learning_rate, **kwargs)
    elif optimizer_type == "adamw":
        return torch.optim.AdamW(model.parameters(), lr=learning_rate, **kwargs)
    elif optimizer_type == "sgd":
        return torch.optim.SGD(model.parameters(), lr=learning_rate, **kwargs)
    else:
        raise ValueError(f"Unknown optimizer type: {optimizer_type}")


def save_checkpoint(trainer, is_best=False, normal_save=False) -> str:
    """
    Save model checkpoint.

    The optimizer state dicts carry the moment accumulators.

    Args:
        trainer: Trainer to save checkpoint for
        is_best: Whether this is the best model so far
        normal_save: Whether this is a normal save

    Returns:
        Path of the written checkpoint
    """
    if not (is_best or normal_save):
        raise ValueError("Either is_best or normal_save must be set")

    checkpoint = {
        'epoch': trainer.current_epoch,
        'model_state_dict': trainer.model.state_dict(),
        'g_optimizer_state_dict': trainer.g_optimizer.state_dict(),
        'd_optimizer_state_dict': trainer.d_optimizer.state_dict(),
        'g_loss': trainer.best_g_loss,
        'd_loss': trainer.best_d_loss,
        'config': trainer.config,
    }

    if normal_save:
        filepath = os.path.join(trainer.config['checkpoint_dir'], f"checkpoint_epoch_{trainer.current_epoch}.pth")
    else:
        filepath = os.path.join(trainer.config['checkpoint_dir'], "best_model.pth")

    torch.save(checkpoint, filepath)
    if normal_save:
        print(f"Checkpoint saved to {filepath}")
    else:
        print(f"Best model saved to {filepath}")
    return filepath


def load_checkpoint(trainer, checkpoint_path):
    """
    Load model checkpoint.

    Args:
        trainer: Trainer to load checkpoint into
        checkpoint_path: Path to checkpoint file

    Returns:
        The loaded checkpoint dictionary
    """
    checkpoint = torch.load(checkpoint_path, map_location=trainer.device, weights_only=False)

    trainer.model.load_state_dict(checkpoint['model_state_dict'])
    trainer.g_optimizer.load_state_dict(checkpoint['g_optimizer_state_dict'])
    trainer.d_optimizer.load_state_dict(checkpoint['d_optimizer_state_dict'])
    trainer.best_g_loss = checkpoint['g_loss']
    trainer.best_d_loss = checkpoint['d_loss']
    trainer.current_epoch = checkpoint['epoch'] + 1

    print(f"Resumed from epoch {trainer.current_epoch}")
    print(f"Checkpoint loaded from {checkpoint_path}")
    print(f"Epoch: {checkpoint['epoch']}, G Loss: {checkpoint['g_loss']:.4f}, D Loss: {checkpoint['d_loss']:.4f}")
    return checkpoint


def log_hyperparameters(config: Dict[str, Any], log_dir: str = "logs"):
    """
    Log hyperparameters to file.

    Args:
        config: Configuration dictionary
        log_dir: Directory to save logs
    """
    os.makedirs(log_dir, exist_ok=True)

    with open(os.path.join(log_dir, "config.txt"), "w") as f:
        for key, value in config.items():
            f.write(f"{key}: {value}\n")


def log_metrics(log_dir: str, metrics: Dict[str, float], epoch: int):
    """
    Log training metrics.

    Args:
        log_dir: Directory holding training_log.txt
        metrics: Metric name to value
        epoch: Current epoch (1-based)
    """
    log_file = os.path.join(log_dir, "training_log.txt")
    # Create file from scratch if first epoch
    if epoch == 1 and os.path.exists(log_file):
        os.remove(log_file)

    line = ", ".join(f"{name}: {value:.6f}" for name, value in metrics.items())
    with open(log_file, "a") as f:
        f.write(f"Epoch {epoch}: {line}\n")

    print(f"Epoch {epoch}: {line}")


def plot_losses(log_file: str, save_path: str):
    """
    Plot every logged metric against epochs.

    Args:
        log_file: Path to training log file
        save_path: Path to save the plot
    """
    epochs = []
    history = {}

    # Lines look like "Epoch 3: d_loss: 0.123456, g_loss: 0.654321"
    with open(log_file, 'r') as f:
        for line in f:
            if not line.startswith('Epoch'):
                continue
            head, _, body = line.strip().partition(': ')
            epochs.append(int(head.split()[1]))
            for item in body.split(', '):
                name, value = item.split(': ')
                history.setdefault(name, []).append(float(value))

    plt.figure(figsize=(10, 5))
    for name, values in history.items():
        plt.plot(epochs[:len(values)], values, label=name)
    plt.xlabel('Epochs')
    plt.ylabel('Loss')
    plt.title('Losses Over Time')
    plt.legend()
    plt.grid(True)

    plt.savefig(save_path)
    plt.close()


def create_dataloader(config, device=None, normalize=True, dataset='mnist'):
    """
    Create train and validation DataLoaders.

    Args:
        config: Configuration dictionary
        device: Device the batches will be moved to
        normalize: Scale pixels to [-1, 1] instead of [0, 1]
        dataset: Dataset to load

    Returns:
        Tuple of (train_loader, val_loader)
    """
    if dataset != 'mnist':
        raise ValueError(f"Unknown dataset: {dataset}")

    # pin_memory is not supported on MPS (Apple Silicon)
    pin_memory = device is not None and device.type == 'cuda'

    steps = [
        transforms.Resize(config['image_size']),
        transforms.ToTensor(),
    ]
    if normalize:
        steps.append(transforms.Normalize([0.5], [0.5]))
    transform = transforms.Compose(steps)

    train_dataset = datasets.MNIST(root=config['data_dir'], train=True, download=True, transform=transform)
    val_dataset = datasets.MNIST(root=config['data_dir'], train=False, download=True, transform=transform)

    train_loader = DataLoader(
        train_dataset,
        batch_size=config['batch_size'],
        shuffle=True,
        num_workers=config['num_workers'],
        pin_memory=pin_memory,
        drop_last=True
    )

    val_loader = DataLoader(
        val_dataset,
        batch_size=config['batch_size'],
        shuffle=False,
        num_workers=config['num_workers'],
        pin_memory=pin_memory,
        drop_last=True
    )
    return train_loader, val_loader


def save_image_grid(images, filepath, nrow=4):
    """
    Save a grid of images.

    Images in [-1, 1] are mapped to [0, 1] before saving.

    Args:
        images: Tensor of images
        filepath: Path to save the grid
        nrow: Number of images per row
    """
    images = (images.detach().cpu().clamp(-1, 1) + 1) / 2
    grid = vutils.make_grid(images, nrow=nrow, normalize=False, padding=2)
    vutils.save_image(grid, filepath)


def load_config(config_path: str, default_config: dict) -> dict:
    """
    Load configuration from a Python file.

    Values from the file's DEFAULT_CONFIG override the defaults.

    Args:
        config_path: Path to configuration file
        default_config: Configuration to start from

    Returns:
        Configuration dictionary
    """
    config = dict(default_config)

    spec = importlib.util.spec_from_file_location("config", config_path)
    if spec is None:
        raise ValueError(f"Cannot load config from {config_path}")
    config_module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(config_module)

    if hasattr(config_module, 'DEFAULT_CONFIG'):
        config.update(config_module.DEFAULT_CONFIG)

    return config
