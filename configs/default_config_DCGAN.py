"""
Default configuration for DCGAN training on MNIST.
"""

# Model configuration
MODEL_CONFIG = {
    'image_size': 28,
    'in_channels': 1,
    'noise_dim': 100,
    'dropout_rate': 0.3,
}

# Training configuration
TRAINING_CONFIG = {
    'num_epochs': 50,
    'batch_size': 256,
    'g_learning_rate': 1e-4,
    'd_learning_rate': 1e-4,
    'beta1': 0.9,
    'beta2': 0.999,
    'epsilon': 1e-7,
    'num_workers': 4,
    'optimizer_type': 'shadow_adam', # 'shadow_adam' or 'adam' or 'adamw' or 'sgd'
    'max_grad_norm': None,
    'save_every': 10,
    'sample_every': 5,
    'num_sample_images': 16,
    'seed': 42,
}

# Paths configuration
PATHS_CONFIG = {
    'checkpoint_dir': 'checkpoints',
    'log_dir': 'logs',
    'sample_dir': 'samples',
    'data_dir': 'data',
    'experiment_name': 'dcgan_mnist',
}

# Combine all configurations
DEFAULT_CONFIG = {
    **MODEL_CONFIG,
    **TRAINING_CONFIG,
    **PATHS_CONFIG,
    'resume_from': None,
}
