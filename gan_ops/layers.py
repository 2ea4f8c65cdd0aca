"""
Layer primitives used to build the GAN graphs.

Every layer is written out explicitly on top of torch tensor ops: the
batch normalization formula, the inverted dropout mask, the numerically
stable logistic loss, Glorot initialization and "SAME"/"VALID" padded
(transposed) convolutions. The module classes declare their parameters
and perform the initial assignment in ``reset_parameters``.

All tensors use the NCHW layout.
"""

import math
from typing import Optional, Sequence, Tuple

import torch
import torch.nn as nn
import torch.nn.functional as F


LEAKY_ALPHA = 0.3
BATCHNORM_EPSILON = 1e-3

_PADDINGS = ("SAME", "VALID")


def batch_normalization(x: torch.Tensor,
                        mean: torch.Tensor,
                        variance: torch.Tensor,
                        offset: Optional[torch.Tensor] = None,
                        scale: Optional[torch.Tensor] = None,
                        variance_epsilon: float = BATCHNORM_EPSILON) -> torch.Tensor:
    """
    Normalize ``x`` with the given statistics.

    Computes ``x * inv + (offset - mean * inv)`` with
    ``inv = scale / sqrt(variance + variance_epsilon)``.

    Args:
        x: Input tensor
        mean: Mean, broadcastable to ``x``
        variance: Variance, broadcastable to ``x``
        offset: Optional offset (beta), treated as zero when None
        scale: Optional scale (gamma), treated as one when None
        variance_epsilon: Small float added to the variance

    Returns:
        Normalized tensor with the shape of ``x``
    """
    inv = torch.rsqrt(variance + variance_epsilon)
    if scale is not None:
        inv = inv * scale
    shift = -mean * inv if offset is None else offset - mean * inv
    return x * inv.to(x.dtype) + shift.to(x.dtype)


def moments(x: torch.Tensor, axes: Sequence[int]) -> Tuple[torch.Tensor, torch.Tensor]:
    """Mean and biased variance of ``x`` over ``axes`` (dims kept)."""
    mean = x.mean(dim=tuple(axes), keepdim=True)
    variance = (x - mean).pow(2).mean(dim=tuple(axes), keepdim=True)
    return mean, variance


def dropout(x: torch.Tensor, rate: float, training: bool = True) -> torch.Tensor:
    """
    Inverted dropout.

    A keep mask is built as ``floor(uniform[0, 1) + keep_prob)`` so that each
    element survives with probability ``keep_prob = 1 - rate``. Survivors are
    scaled by ``1 / keep_prob``.

    Args:
        x: Input tensor
        rate: Fraction of elements to drop, in ``[0, 1)``
        training: Identity when False

    Returns:
        Tensor with the shape of ``x``
    """
    if not 0.0 <= rate < 1.0:
        raise ValueError(f"Dropout rate must be in [0, 1), got {rate}")
    if not training or rate == 0.0:
        return x

    keep_prob = 1.0 - rate
    random_tensor = torch.rand_like(x) + keep_prob
    binary_tensor = torch.floor(random_tensor)
    return x / keep_prob * binary_tensor


def sigmoid_cross_entropy_with_logits(labels: torch.Tensor, logits: torch.Tensor) -> torch.Tensor:
    """
    Elementwise logistic loss computed from logits.

    Uses ``max(x, 0) - x * z + log(1 + exp(-|x|))`` which is stable for
    large positive and negative logits.

    Args:
        labels: Targets ``z`` in ``[0, 1]``, same shape as logits
        logits: Unscaled log-odds ``x``

    Returns:
        Loss tensor with the shape of ``logits``
    """
    labels = torch.as_tensor(labels, dtype=logits.dtype, device=logits.device)
    zeros = torch.zeros_like(logits)
    cond = logits >= zeros
    relu_logits = torch.where(cond, logits, zeros)
    neg_abs_logits = torch.where(cond, -logits, logits)
    return (relu_logits - logits * labels) + torch.log1p(torch.exp(neg_abs_logits))


def _fans(shape: Sequence[int]) -> Tuple[float, float]:
    # Dense weights are (in, out); conv weights are (out, in, kh, kw) or
    # (in, out, kh, kw) for transposed conv. fan_in + fan_out is symmetric.
    if len(shape) == 2:
        return float(shape[0]), float(shape[1])
    if len(shape) == 4:
        receptive_field_size = float(shape[2] * shape[3])
        return receptive_field_size * shape[1], receptive_field_size * shape[0]
    raise ValueError(f"Glorot initialization supports 2D and 4D shapes, got {tuple(shape)}")


@torch.no_grad()
def glorot_uniform_(tensor: torch.Tensor) -> torch.Tensor:
    """
    Fill ``tensor`` in place from the Glorot (Xavier) uniform distribution.

    ``limit = sqrt(3 * scale)`` with ``scale = 1 / max(1, (fan_in + fan_out) / 2)``.
    """
    fan_in, fan_out = _fans(tensor.shape)
    scale = 1.0 / max(1.0, (fan_in + fan_out) / 2.0)
    limit = math.sqrt(3.0 * scale)
    return tensor.uniform_(-limit, limit)


@torch.no_grad()
def initialize_(tensor: torch.Tensor, initializer: str = "glorot_uniform",
                stddev: float = 0.02) -> torch.Tensor:
    """
    Assign an initial value to ``tensor`` in place.

    Args:
        tensor: Tensor to fill
        initializer: "glorot_uniform", "normal" or "zeros"
        stddev: Scale applied to standard normal draws for "normal"

    Returns:
        The filled tensor
    """
    if initializer == "glorot_uniform":
        return glorot_uniform_(tensor)
    elif initializer == "normal":
        return tensor.copy_(torch.randn_like(tensor) * stddev)
    elif initializer == "zeros":
        return tensor.zero_()
    else:
        raise ValueError(f"Unknown initializer: {initializer}")


def same_padding(size: int, kernel: int, stride: int) -> Tuple[int, int]:
    """
    Padding applied by a "SAME" convolution along one spatial axis.

    Returns:
        Tuple of (pad_before, pad_after); the extra pixel goes after
    """
    out = -(-size // stride)
    total = max((out - 1) * stride + kernel - size, 0)
    return total // 2, total - total // 2


def _check_padding(padding: str) -> str:
    padding = padding.upper()
    if padding not in _PADDINGS:
        raise ValueError(f"Unknown padding: {padding}")
    return padding


def _pair(value) -> Tuple[int, int]:
    if isinstance(value, int):
        return value, value
    return tuple(value)


def conv2d(x: torch.Tensor, weight: torch.Tensor, bias: Optional[torch.Tensor] = None,
           stride: int = 1, padding: str = "SAME") -> torch.Tensor:
    """
    2D convolution with TensorFlow-style padding.

    Args:
        x: Input of shape (batch, in_channels, height, width)
        weight: Filter of shape (out_channels, in_channels, kh, kw)
        bias: Optional bias of shape (out_channels,)
        stride: Stride along both spatial axes
        padding: "SAME" or "VALID"

    Returns:
        Output of shape (batch, out_channels, out_h, out_w)
    """
    padding = _check_padding(padding)
    if padding == "SAME":
        kh, kw = weight.shape[-2:]
        top, bottom = same_padding(x.shape[-2], kh, stride)
        left, right = same_padding(x.shape[-1], kw, stride)
        x = F.pad(x, (left, right, top, bottom))
    return F.conv2d(x, weight, bias, stride=stride)


def conv2d_transpose(x: torch.Tensor, weight: torch.Tensor, output_size,
                     stride: int = 1, padding: str = "SAME",
                     bias: Optional[torch.Tensor] = None) -> torch.Tensor:
    """
    Transposed 2D convolution producing an explicit output size.

    This is the gradient of :func:`conv2d` with respect to its input: the
    full transposed result is computed and then cropped by the padding the
    forward convolution of ``output_size`` would have used.

    Args:
        x: Input of shape (batch, in_channels, height, width)
        weight: Filter of shape (in_channels, out_channels, kh, kw)
        output_size: Target (height, width)
        stride: Stride along both spatial axes
        padding: "SAME" or "VALID"
        bias: Optional bias of shape (out_channels,)

    Returns:
        Output of shape (batch, out_channels, *output_size)
    """
    padding = _check_padding(padding)
    out_h, out_w = _pair(output_size)
    kh, kw = weight.shape[-2:]

    if padding == "SAME":
        expected = (-(-out_h // stride), -(-out_w // stride))
        top, _ = same_padding(out_h, kh, stride)
        left, _ = same_padding(out_w, kw, stride)
    else:
        expected = ((out_h - kh) // stride + 1, (out_w - kw) // stride + 1)
        top, left = 0, 0

    if tuple(x.shape[-2:]) != expected:
        raise ValueError(
            f"Output size {(out_h, out_w)} is not reachable from input size "
            f"{tuple(x.shape[-2:])} with stride {stride} and {padding} padding"
        )

    y = F.conv_transpose2d(x, weight, stride=stride)

    # Kernels smaller than the stride leave uncovered border pixels
    extra_h = max(top + out_h - y.shape[-2], 0)
    extra_w = max(left + out_w - y.shape[-1], 0)
    if extra_h or extra_w:
        y = F.pad(y, (0, extra_w, 0, extra_h))

    y = y[..., top:top + out_h, left:left + out_w]
    if bias is not None:
        y = y + bias.view(1, -1, 1, 1)
    return y


def leaky_relu(x: torch.Tensor, alpha: float = LEAKY_ALPHA) -> torch.Tensor:
    return F.leaky_relu(x, negative_slope=alpha)


class Dense(nn.Module):
    """
    Fully connected layer, ``y = x @ W + b``.

    The weight is stored as (in_features, out_features).
    """

    def __init__(self, in_features: int, units: int, use_bias: bool = True,
                 kernel_initializer: str = "glorot_uniform", stddev: float = 0.02):
        super().__init__()
        self.in_features = in_features
        self.units = units
        self.kernel_initializer = kernel_initializer
        self.stddev = stddev

        self.weight = nn.Parameter(torch.empty(in_features, units))
        if use_bias:
            self.bias = nn.Parameter(torch.empty(units))
        else:
            self.register_parameter('bias', None)

        self.reset_parameters()

    def reset_parameters(self):
        initialize_(self.weight, self.kernel_initializer, self.stddev)
        if self.bias is not None:
            initialize_(self.bias, "zeros")

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        y = torch.matmul(x, self.weight)
        if self.bias is not None:
            y = y + self.bias
        return y

    def extra_repr(self) -> str:
        return f"in_features={self.in_features}, units={self.units}, bias={self.bias is not None}"


class Conv2D(nn.Module):
    """
    2D convolution layer with "SAME" or "VALID" padding.
    """

    def __init__(self, in_channels: int, filters: int, kernel_size: int = 5,
                 stride: int = 1, padding: str = "SAME", use_bias: bool = True,
                 kernel_initializer: str = "glorot_uniform", stddev: float = 0.02):
        """
        Initialize the convolution.

        Args:
            in_channels: Number of input channels
            filters: Number of output channels
            kernel_size: Square kernel size
            stride: Stride along both spatial axes
            padding: "SAME" or "VALID"
            use_bias: Whether to add a bias
            kernel_initializer: Name of the weight initializer
            stddev: Standard deviation for the "normal" initializer
        """
        super().__init__()
        self.in_channels = in_channels
        self.filters = filters
        self.kernel_size = kernel_size
        self.stride = stride
        self.padding = _check_padding(padding)
        self.kernel_initializer = kernel_initializer
        self.stddev = stddev

        self.weight = nn.Parameter(torch.empty(filters, in_channels, kernel_size, kernel_size))
        if use_bias:
            self.bias = nn.Parameter(torch.empty(filters))
        else:
            self.register_parameter('bias', None)

        self.reset_parameters()

    def reset_parameters(self):
        initialize_(self.weight, self.kernel_initializer, self.stddev)
        if self.bias is not None:
            initialize_(self.bias, "zeros")

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return conv2d(x, self.weight, self.bias, stride=self.stride, padding=self.padding)

    def extra_repr(self) -> str:
        return (f"{self.in_channels}, {self.filters}, kernel_size={self.kernel_size}, "
                f"stride={self.stride}, padding={self.padding}")


class Conv2DTranspose(nn.Module):
    """
    Transposed 2D convolution layer.

    The filter is stored as (in_channels, filters, kh, kw). When no output
    size is given, "SAME" yields ``input * stride`` and "VALID" yields
    ``(input - 1) * stride + kernel_size``.
    """

    def __init__(self, in_channels: int, filters: int, kernel_size: int = 5,
                 stride: int = 1, padding: str = "SAME", use_bias: bool = False,
                 kernel_initializer: str = "glorot_uniform", stddev: float = 0.02):
        super().__init__()
        self.in_channels = in_channels
        self.filters = filters
        self.kernel_size = kernel_size
        self.stride = stride
        self.padding = _check_padding(padding)
        self.kernel_initializer = kernel_initializer
        self.stddev = stddev

        self.weight = nn.Parameter(torch.empty(in_channels, filters, kernel_size, kernel_size))
        if use_bias:
            self.bias = nn.Parameter(torch.empty(filters))
        else:
            self.register_parameter('bias', None)

        self.reset_parameters()

    def reset_parameters(self):
        initialize_(self.weight, self.kernel_initializer, self.stddev)
        if self.bias is not None:
            initialize_(self.bias, "zeros")

    def output_size(self, input_size) -> Tuple[int, int]:
        h, w = _pair(input_size)
        if self.padding == "SAME":
            return h * self.stride, w * self.stride
        return (h - 1) * self.stride + self.kernel_size, (w - 1) * self.stride + self.kernel_size

    def forward(self, x: torch.Tensor, output_size=None) -> torch.Tensor:
        if output_size is None:
            output_size = self.output_size(x.shape[-2:])
        return conv2d_transpose(x, self.weight, output_size, stride=self.stride,
                                padding=self.padding, bias=self.bias)

    def extra_repr(self) -> str:
        return (f"{self.in_channels}, {self.filters}, kernel_size={self.kernel_size}, "
                f"stride={self.stride}, padding={self.padding}")


class BatchNormalization(nn.Module):
    """
    Batch normalization over the channel axis (axis 1).

    In training mode the batch moments normalize the input and update the
    running statistics as ``running = momentum * running + (1 - momentum) * batch``.
    In eval mode the running statistics are used. With ``fixed=True`` the
    layer always normalizes with mean 0 and variance 1 and never updates its
    statistics.
    """

    def __init__(self, num_features: int, epsilon: float = BATCHNORM_EPSILON,
                 momentum: float = 0.99, center: bool = False, scale: bool = False,
                 fixed: bool = False):
        super().__init__()
        self.num_features = num_features
        self.fixed = fixed
        self.epsilon = epsilon
        self.momentum = momentum

        self.offset = nn.Parameter(torch.zeros(num_features)) if center else None
        self.scale = nn.Parameter(torch.ones(num_features)) if scale else None
        self.register_buffer('running_mean', torch.zeros(num_features))
        self.register_buffer('running_var', torch.ones(num_features))

    def reset_parameters(self):
        self.running_mean.zero_()
        self.running_var.fill_(1.0)
        if self.offset is not None:
            initialize_(self.offset, "zeros")
        if self.scale is not None:
            with torch.no_grad():
                self.scale.fill_(1.0)

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        if x.dim() < 2 or x.shape[1] != self.num_features:
            raise ValueError(
                f"Expected {self.num_features} channels on axis 1, got shape {tuple(x.shape)}"
            )
        shape = [1, self.num_features] + [1] * (x.dim() - 2)
        axes = [0] + list(range(2, x.dim()))

        if self.training and not self.fixed:
            mean, variance = moments(x, axes)
            with torch.no_grad():
                self.running_mean.mul_(self.momentum).add_((1 - self.momentum) * mean.view(-1))
                self.running_var.mul_(self.momentum).add_((1 - self.momentum) * variance.view(-1))
        else:
            mean = self.running_mean.view(shape)
            variance = self.running_var.view(shape)

        offset = self.offset.view(shape) if self.offset is not None else None
        scale = self.scale.view(shape) if self.scale is not None else None
        return batch_normalization(x, mean, variance, offset, scale, self.epsilon)

    def extra_repr(self) -> str:
        return f"{self.num_features}, epsilon={self.epsilon}, momentum={self.momentum}, fixed={self.fixed}"


class Dropout(nn.Module):

    def __init__(self, rate: float):
        super().__init__()
        if not 0.0 <= rate < 1.0:
            raise ValueError(f"Dropout rate must be in [0, 1), got {rate}")
        self.rate = rate

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return dropout(x, self.rate, self.training)

    def extra_repr(self) -> str:
        return f"rate={self.rate}"


class LeakyReLU(nn.Module):

    def __init__(self, alpha: float = LEAKY_ALPHA):
        super().__init__()
        self.alpha = alpha

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return leaky_relu(x, self.alpha)

    def extra_repr(self) -> str:
        return f"alpha={self.alpha}"
