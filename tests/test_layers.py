import math

import pytest
import torch
import torch.nn.functional as F

from gan_ops.layers import (
    BatchNormalization, Conv2D, Conv2DTranspose, Dense, Dropout,
    batch_normalization, conv2d, conv2d_transpose, dropout, glorot_uniform_,
    initialize_, moments, same_padding, sigmoid_cross_entropy_with_logits,
)


def test_batch_normalization_formula():
    x = torch.randn(4, 3)
    mean = torch.tensor([0.5, -1.0, 2.0])
    variance = torch.tensor([1.0, 4.0, 0.25])
    offset = torch.tensor([0.1, 0.2, 0.3])
    scale = torch.tensor([2.0, 1.0, 0.5])

    out = batch_normalization(x, mean, variance, offset, scale, 1e-3)
    expected = (x - mean) / torch.sqrt(variance + 1e-3) * scale + offset
    assert torch.allclose(out, expected, atol=1e-6)


def test_batch_normalization_without_offset_and_scale():
    x = torch.randn(8, 2)
    out = batch_normalization(x, torch.tensor(1.0), torch.tensor(1.0), variance_epsilon=0.0)
    assert torch.allclose(out, x - 1.0, atol=1e-6)


def test_moments():
    x = torch.randn(5, 3, 4, 4)
    mean, variance = moments(x, [0, 2, 3])
    assert mean.shape == (1, 3, 1, 1)
    assert torch.allclose(mean.view(-1), x.mean(dim=(0, 2, 3)), atol=1e-6)
    assert torch.allclose(variance.view(-1), x.var(dim=(0, 2, 3), unbiased=False), atol=1e-5)


def test_dropout_scales_survivors_and_zeros_the_rest():
    x = torch.ones(1000)
    out = dropout(x, 0.3)
    kept = out[out != 0]
    assert torch.allclose(kept, torch.full_like(kept, 1 / 0.7))
    assert 0.6 < (out != 0).float().mean().item() < 0.8


def test_dropout_preserves_expectation():
    x = torch.ones(200000)
    assert abs(dropout(x, 0.5).mean().item() - 1.0) < 0.02


def test_dropout_identity_cases():
    x = torch.randn(10)
    assert torch.equal(dropout(x, 0.0), x)
    assert torch.equal(dropout(x, 0.9, training=False), x)


@pytest.mark.parametrize("rate", [-0.1, 1.0, 1.5])
def test_dropout_rejects_bad_rate(rate):
    with pytest.raises(ValueError):
        dropout(torch.ones(3), rate)
    with pytest.raises(ValueError):
        Dropout(rate)


def test_dropout_module_respects_eval_mode():
    layer = Dropout(0.5)
    layer.eval()
    x = torch.randn(100)
    assert torch.equal(layer(x), x)


def test_sigmoid_cross_entropy_matches_reference():
    logits = torch.randn(6, 4) * 5
    labels = torch.rand(6, 4)
    out = sigmoid_cross_entropy_with_logits(labels, logits)
    expected = F.binary_cross_entropy_with_logits(logits, labels, reduction='none')
    assert out.shape == logits.shape
    assert torch.allclose(out, expected, atol=1e-5)


def test_sigmoid_cross_entropy_is_stable_for_large_logits():
    logits = torch.tensor([-1000.0, 1000.0])
    labels = torch.tensor([0.0, 1.0])
    out = sigmoid_cross_entropy_with_logits(labels, logits)
    assert torch.all(torch.isfinite(out))
    assert torch.allclose(out, torch.zeros(2))

    wrong = sigmoid_cross_entropy_with_logits(1 - labels, logits)
    assert torch.allclose(wrong, torch.tensor([1000.0, 1000.0]))


def test_sigmoid_cross_entropy_gradient_at_zero():
    logits = torch.zeros(3, requires_grad=True)
    sigmoid_cross_entropy_with_logits(torch.ones(3), logits).sum().backward()
    assert torch.allclose(logits.grad, torch.full((3,), -0.5))


def test_glorot_uniform_limits_for_conv_and_dense():
    weight = torch.empty(64, 1, 5, 5)
    glorot_uniform_(weight)
    limit = math.sqrt(6.0 / (25 * 1 + 25 * 64))
    assert weight.abs().max().item() <= limit
    assert weight.abs().max().item() > 0.5 * limit

    dense = torch.empty(6272, 1)
    glorot_uniform_(dense)
    assert dense.abs().max().item() <= math.sqrt(6.0 / 6273)


def test_glorot_uniform_small_fans_are_clamped():
    weight = torch.empty(1, 1)
    glorot_uniform_(weight)
    assert weight.abs().item() <= math.sqrt(3.0)


def test_glorot_uniform_rejects_other_ranks():
    with pytest.raises(ValueError):
        glorot_uniform_(torch.empty(3, 3, 3))


def test_initialize_unknown_initializer():
    with pytest.raises(ValueError):
        initialize_(torch.empty(2, 2), "orthogonal")


def test_initialize_normal_uses_stddev():
    weight = torch.empty(100, 1000)
    initialize_(weight, "normal", stddev=0.01)
    assert abs(weight.std().item() - 0.01) < 0.0005


@pytest.mark.parametrize("size,kernel,stride,expected", [
    (28, 5, 1, (2, 2)),
    (28, 5, 2, (1, 2)),
    (14, 5, 2, (1, 2)),
    (7, 4, 2, (1, 2)),
    (4, 1, 2, (0, 0)),
])
def test_same_padding(size, kernel, stride, expected):
    assert same_padding(size, kernel, stride) == expected


def test_conv2d_same_output_sizes():
    x = torch.randn(2, 3, 28, 28)
    weight = torch.randn(8, 3, 5, 5)
    assert conv2d(x, weight, stride=1).shape == (2, 8, 28, 28)
    assert conv2d(x, weight, stride=2).shape == (2, 8, 14, 14)
    assert conv2d(x, weight, stride=2, padding="VALID").shape == (2, 8, 12, 12)


def test_conv2d_same_stride_one_matches_symmetric_padding():
    x = torch.randn(1, 2, 9, 9)
    weight = torch.randn(3, 2, 5, 5)
    bias = torch.randn(3)
    assert torch.allclose(conv2d(x, weight, bias), F.conv2d(x, weight, bias, padding=2), atol=1e-4)


def test_conv2d_rejects_unknown_padding():
    with pytest.raises(ValueError):
        conv2d(torch.randn(1, 1, 4, 4), torch.randn(1, 1, 3, 3), padding="FULL")


@pytest.mark.parametrize("size,kernel,stride,padding", [
    (28, 5, 2, "SAME"),
    (27, 5, 2, "SAME"),
    (7, 5, 1, "SAME"),
    (8, 4, 2, "SAME"),
    (4, 1, 2, "SAME"),
    (13, 4, 1, "VALID"),
    (15, 3, 2, "VALID"),
])
def test_conv2d_transpose_is_adjoint_of_conv2d(size, kernel, stride, padding):
    x = torch.randn(2, 3, size, size, dtype=torch.float64)
    weight = torch.randn(4, 3, kernel, kernel, dtype=torch.float64)
    y_shape = conv2d(x, weight, stride=stride, padding=padding).shape
    y = torch.randn(y_shape, dtype=torch.float64)

    lhs = (conv2d(x, weight, stride=stride, padding=padding) * y).sum()
    rhs = (x * conv2d_transpose(y, weight, (size, size), stride=stride, padding=padding)).sum()
    assert torch.allclose(lhs, rhs, rtol=1e-9, atol=1e-9)


def test_conv2d_transpose_rejects_unreachable_output():
    y = torch.randn(1, 4, 7, 7)
    weight = torch.randn(4, 2, 5, 5)
    with pytest.raises(ValueError):
        conv2d_transpose(y, weight, (28, 28), stride=2)


def test_conv2d_transpose_layer_default_sizes():
    same = Conv2DTranspose(8, 4, kernel_size=5, stride=2)
    assert same(torch.randn(1, 8, 7, 7)).shape == (1, 4, 14, 14)

    valid = Conv2DTranspose(8, 4, kernel_size=4, stride=2, padding="VALID", use_bias=True)
    assert valid(torch.randn(1, 8, 5, 5)).shape == (1, 4, 12, 12)
    assert torch.count_nonzero(valid.bias) == 0


def test_conv2d_layer_weight_layout():
    layer = Conv2D(3, 16, kernel_size=5, stride=2)
    assert layer.weight.shape == (16, 3, 5, 5)
    assert layer.bias.shape == (16,)
    assert layer(torch.randn(2, 3, 28, 28)).shape == (2, 16, 14, 14)


def test_dense_matches_matmul():
    layer = Dense(5, 3)
    x = torch.randn(4, 5)
    with torch.no_grad():
        layer.bias.fill_(0.5)
    assert torch.allclose(layer(x), x @ layer.weight + 0.5)
    assert layer.weight.shape == (5, 3)


def test_dense_without_bias():
    layer = Dense(5, 3, use_bias=False)
    assert layer.bias is None
    assert len(list(layer.parameters())) == 1


def test_batchnorm_layer_training_and_eval():
    layer = BatchNormalization(3, momentum=0.5)
    x = torch.randn(16, 3, 4, 4) * 3 + 2

    out = layer(x)
    assert torch.allclose(out.mean(dim=(0, 2, 3)), torch.zeros(3), atol=1e-5)
    assert torch.allclose(out.var(dim=(0, 2, 3), unbiased=False), torch.ones(3), atol=1e-2)

    batch_mean = x.mean(dim=(0, 2, 3))
    assert torch.allclose(layer.running_mean, 0.5 * batch_mean, atol=1e-5)

    layer.eval()
    expected = (x - layer.running_mean.view(1, 3, 1, 1)) / torch.sqrt(layer.running_var.view(1, 3, 1, 1) + 1e-3)
    assert torch.allclose(layer(x), expected, atol=1e-5)


def test_fixed_batchnorm_uses_constant_statistics():
    layer = BatchNormalization(3, fixed=True)
    x = torch.randn(1, 3) * 5 + 1

    expected = x / math.sqrt(1 + 1e-3)
    assert torch.allclose(layer(x), expected, atol=1e-6)
    layer.eval()
    assert torch.allclose(layer(x), expected, atol=1e-6)

    assert torch.count_nonzero(layer.running_mean) == 0
    assert torch.equal(layer.running_var, torch.ones(3))


def test_batchnorm_layer_has_no_trainable_parameters_by_default():
    assert list(BatchNormalization(4).parameters()) == []
    assert len(list(BatchNormalization(4, center=True, scale=True).parameters())) == 2


def test_batchnorm_layer_rejects_wrong_channels():
    with pytest.raises(ValueError):
        BatchNormalization(3)(torch.randn(2, 4, 5, 5))
