"""
Default configuration for pix2pix training.
"""

# Model configuration
MODEL_CONFIG = {
    'image_size': 256,
    'in_channels': 3,
    'out_channels': 3,
}

# Training configuration
TRAINING_CONFIG = {
    'num_epochs': 150,
    'batch_size': 1,
    'g_learning_rate': 2e-4,
    'd_learning_rate': 2e-4,
    'beta1': 0.5,
    'beta2': 0.999,
    'epsilon': 1e-7,
    'optimizer_type': 'shadow_adam', # 'shadow_adam' or 'adam' or 'adamw' or 'sgd'
    'max_grad_norm': None,
    'save_every': 20,
    'sample_every': 5,
    'seed': 42,
}

# Loss configuration
LOSS_CONFIG = {
    'l1_lambda': 100.0,
}

# Paths configuration
PATHS_CONFIG = {
    'checkpoint_dir': 'checkpoints',
    'log_dir': 'logs',
    'sample_dir': 'samples',
    'experiment_name': 'pix2pix',
}

# Combine all configurations
DEFAULT_CONFIG = {
    **MODEL_CONFIG,
    **TRAINING_CONFIG,
    **LOSS_CONFIG,
    **PATHS_CONFIG,
    'resume_from': None,
}
