import pytest
import torch

from gan_ops.optim import trainable_variables
from pix2pix.losses import Pix2PixLoss, discriminator_loss, generator_loss
from pix2pix.model import (
    Discriminator, Downsample, Generator, Pix2Pix, SharedDiscriminator, Upsample, down_filters,
)


def test_down_filters():
    assert down_filters(256) == [64, 128, 256, 512, 512, 512, 512, 512]
    assert down_filters(32) == [64, 128, 256, 512, 512]
    assert down_filters(4) == [64, 128]


@pytest.mark.parametrize("size", [2, 100, 0])
def test_down_filters_rejects_bad_sizes(size):
    with pytest.raises(ValueError):
        down_filters(size)


def test_blocks_halve_and_double_resolution():
    x = torch.randn(2, 3, 16, 16)
    down = Downsample(3, 8, apply_batchnorm=False)
    assert down.bn is None
    assert down(x).shape == (2, 8, 8, 8)

    up = Upsample(8, 4, apply_dropout=True)
    assert up(torch.randn(2, 8, 8, 8)).shape == (2, 4, 16, 16)
    assert (up(torch.randn(2, 8, 8, 8)) >= 0).all()


def test_generator_structure():
    generator = Generator(image_size=32)
    assert len(generator.down_stack) == 5
    assert len(generator.up_stack) == 4
    assert generator.down_stack[0].bn is None
    assert all(block.bn is not None for block in generator.down_stack[1:])
    assert [block.dropout is not None for block in generator.up_stack] == [True, True, True, False]
    assert generator.last.weight.shape == (128, 3, 4, 4)


def test_generator_custom_filters():
    generator = Generator(image_size=16, filters=[8, 16, 32, 32])
    assert generator.last.weight.shape == (16, 3, 4, 4)
    assert generator(torch.randn(2, 3, 16, 16)).shape == (2, 3, 16, 16)
    with pytest.raises(ValueError):
        Generator(image_size=16, filters=[8, 16])


def test_generator_output_range_and_shape():
    generator = Generator(in_channels=1, out_channels=3, image_size=32)
    out = generator(torch.randn(2, 1, 32, 32))
    assert out.shape == (2, 3, 32, 32)
    assert out.abs().max().item() <= 1.0


def test_generator_rejects_wrong_input():
    with pytest.raises(ValueError):
        Generator(image_size=32)(torch.randn(2, 3, 64, 64))


def test_generator_weights_use_small_normal_init():
    generator = Generator(image_size=64)
    weight = generator.down_stack[3].conv.weight
    assert abs(weight.std().item() - 0.02) < 0.002
    assert torch.count_nonzero(generator.last.bias) == 0


def test_discriminator_patch_shape():
    discriminator = Discriminator()
    inputs = torch.randn(2, 3, 32, 32)
    targets = torch.randn(2, 3, 32, 32)
    assert discriminator(inputs, targets).shape == (2, 1, 2, 2)


def test_discriminator_patch_shape_full_size():
    discriminator = Discriminator(in_channels=1, target_channels=1)
    logits = discriminator(torch.randn(1, 1, 256, 256), torch.randn(1, 1, 256, 256))
    assert logits.shape == (1, 1, 30, 30)


def test_discriminator_variables():
    variables = trainable_variables(Discriminator())
    assert list(variables) == [
        'conv1.weight', 'conv2.weight', 'conv3.weight', 'conv4.weight', 'last.weight', 'last.bias',
    ]
    assert variables['conv1.weight'].shape == (64, 6, 4, 4)


def test_discriminator_input_checks():
    discriminator = Discriminator()
    with pytest.raises(ValueError):
        discriminator(torch.randn(2, 3, 32, 32), torch.randn(3, 3, 32, 32))
    with pytest.raises(ValueError):
        discriminator(torch.randn(2, 3, 16, 16), torch.randn(2, 3, 16, 16))


def test_shared_discriminator_reuses_convolutions():
    discriminator = Discriminator()
    shared = discriminator.share()
    assert isinstance(shared, SharedDiscriminator)

    source_ids = {id(p) for p in discriminator.parameters()}
    assert {id(p) for p in shared.parameters()} == source_ids
    assert shared.norm2 is not discriminator.norm2

    inputs = torch.randn(2, 3, 32, 32)
    targets = torch.randn(2, 3, 32, 32)
    assert torch.allclose(shared(inputs, targets), discriminator(inputs, targets), atol=1e-5)


def test_pix2pix_forward_and_translate(cpu):
    model = Pix2Pix(image_size=32, device=cpu)
    inputs = torch.randn(2, 3, 32, 32)
    targets = torch.randn(2, 3, 32, 32)

    real_logits, fake_logits, generated = model(inputs, targets)
    assert real_logits.shape == fake_logits.shape == (2, 1, 2, 2)
    assert generated.shape == (2, 3, 32, 32)

    translated = model.translate(inputs)
    assert translated.shape == (2, 3, 32, 32)
    assert not translated.requires_grad


def test_pix2pix_reset_parameters(cpu):
    model = Pix2Pix(image_size=32, device=cpu)
    with torch.no_grad():
        model.discriminator.last.bias.fill_(1.0)
        model.fake_discriminator.norm3.running_mean.fill_(1.0)
    model.reset_parameters()
    assert torch.count_nonzero(model.discriminator.last.bias) == 0
    assert torch.count_nonzero(model.fake_discriminator.norm3.running_mean) == 0


def test_generator_loss_combines_gan_and_l1():
    fake_logits = torch.zeros(2, 1, 2, 2)
    generated = torch.zeros(2, 3, 8, 8)
    target = torch.full((2, 3, 8, 8), 0.5)

    total, gan, l1 = generator_loss(fake_logits, generated, target, l1_lambda=100.0)
    assert torch.isclose(l1, torch.tensor(0.5))
    assert torch.isclose(gan, torch.log(torch.tensor(2.0)))
    assert torch.isclose(total, gan + 50.0)


def test_generator_loss_shape_mismatch():
    with pytest.raises(ValueError):
        generator_loss(torch.zeros(1, 1, 2, 2), torch.zeros(1, 3, 8, 8), torch.zeros(1, 1, 8, 8))


def test_discriminator_loss_and_module():
    real = torch.full((1, 1, 2, 2), 40.0)
    fake = torch.full((1, 1, 2, 2), -40.0)
    assert discriminator_loss(real, fake).item() < 1e-6

    loss_fn = Pix2PixLoss(l1_lambda=10.0)
    total, _, l1 = loss_fn.generator_loss(real, torch.zeros(1, 1, 4, 4), torch.ones(1, 1, 4, 4))
    assert torch.isclose(total, torch.tensor(10.0))
    assert torch.isclose(l1, torch.tensor(1.0))
