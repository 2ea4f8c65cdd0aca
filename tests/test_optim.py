import pytest
import torch
import torch.nn as nn

from gan_ops.optim import ShadowAdam, trainable_variables


def _model():
    return nn.Sequential(nn.Linear(4, 3), nn.Linear(3, 1))


def test_slots_exist_before_first_step():
    model = _model()
    optimizer = ShadowAdam(model.parameters())

    for param in model.parameters():
        m = optimizer.slot(param, "m")
        v = optimizer.slot(param, "v")
        assert m.shape == param.shape
        assert v.shape == param.shape
        assert torch.count_nonzero(m) == 0
        assert torch.count_nonzero(v) == 0
        assert optimizer.state[param]['step'] == 0


def test_added_param_group_gets_zero_slots():
    model = _model()
    optimizer = ShadowAdam(model[0].parameters())
    optimizer.add_param_group({'params': model[1].parameters(), 'lr': 1e-3})

    for param in model[1].parameters():
        assert torch.count_nonzero(optimizer.slot(param, "m")) == 0
        assert optimizer.slot(param, "v").shape == param.shape
        assert optimizer.state[param]['step'] == 0

    model(torch.randn(2, 4)).sum().backward()
    optimizer.step()
    assert optimizer.state[model[1].weight]['step'] == 1
    assert torch.count_nonzero(optimizer.slot(model[1].weight, "m")) > 0


def test_slot_lookup_errors():
    model = _model()
    optimizer = ShadowAdam(model.parameters())
    param = next(model.parameters())

    with pytest.raises(KeyError):
        optimizer.slot(param, "velocity")
    with pytest.raises(ValueError):
        optimizer.slot(nn.Parameter(torch.zeros(2)), "m")


def test_slots_listing_covers_every_parameter():
    model = _model()
    optimizer = ShadowAdam(model.parameters())
    slots = optimizer.slots()
    assert len(slots) == len(list(model.parameters()))
    assert set(slots[0]) == {"m", "v"}


def test_first_step_moves_each_weight_by_learning_rate():
    param = nn.Parameter(torch.tensor([1.0, -2.0, 3.0]))
    optimizer = ShadowAdam([param], lr=0.1, eps=1e-12)
    param.grad = torch.tensor([0.5, -4.0, 2.0])
    optimizer.step()

    assert torch.allclose(param.data, torch.tensor([0.9, -1.9, 2.9]), atol=1e-5)
    assert torch.allclose(optimizer.slot(param, "m"), 0.1 * param.grad)
    assert torch.allclose(optimizer.slot(param, "v"), 0.001 * param.grad ** 2)


def test_matches_torch_adam_without_epsilon():
    torch.manual_seed(1)
    reference = _model().double()
    model = _model().double()
    model.load_state_dict(reference.state_dict())

    ours = ShadowAdam(model.parameters(), lr=1e-2, betas=(0.8, 0.99), eps=0.0)
    theirs = torch.optim.Adam(reference.parameters(), lr=1e-2, betas=(0.8, 0.99), eps=0.0)

    for _ in range(5):
        x = torch.randn(8, 4, dtype=torch.float64)
        for net, opt in ((model, ours), (reference, theirs)):
            opt.zero_grad()
            net(x).pow(2).mean().backward()
            opt.step()

    for p, q in zip(model.parameters(), reference.parameters()):
        assert torch.allclose(p, q, atol=1e-10)


def test_parameters_without_gradients_are_skipped():
    used = nn.Parameter(torch.ones(2))
    unused = nn.Parameter(torch.ones(2))
    optimizer = ShadowAdam([used, unused], lr=0.1)
    used.grad = torch.ones(2)
    optimizer.step()

    assert torch.equal(unused.data, torch.ones(2))
    assert optimizer.state[unused]['step'] == 0
    assert optimizer.state[used]['step'] == 1


def test_reset_slots():
    param = nn.Parameter(torch.ones(3))
    optimizer = ShadowAdam([param])
    param.grad = torch.ones(3)
    optimizer.step()
    assert torch.count_nonzero(optimizer.slot(param, "m")) == 3

    optimizer.reset_slots()
    assert torch.count_nonzero(optimizer.slot(param, "m")) == 0
    assert torch.count_nonzero(optimizer.slot(param, "v")) == 0
    assert optimizer.state[param]['step'] == 0


def test_state_dict_round_trip_keeps_slots():
    model = _model()
    optimizer = ShadowAdam(model.parameters())
    model(torch.randn(2, 4)).sum().backward()
    optimizer.step()

    restored = ShadowAdam(model.parameters())
    restored.load_state_dict(optimizer.state_dict())
    for param in model.parameters():
        assert torch.equal(restored.slot(param, "m"), optimizer.slot(param, "m"))
        assert torch.equal(restored.slot(param, "v"), optimizer.slot(param, "v"))


@pytest.mark.parametrize("kwargs", [{"lr": -1.0}, {"betas": (1.0, 0.9)}, {"eps": -1e-8}])
def test_invalid_hyperparameters(kwargs):
    with pytest.raises(ValueError):
        ShadowAdam(_model().parameters(), **kwargs)


def test_trainable_variables_lists_shared_parameters_once():
    shared = nn.Linear(2, 2)
    model = nn.ModuleDict({'a': shared, 'b': shared, 'c': nn.Linear(2, 1)})
    model['c'].bias.requires_grad_(False)

    variables = trainable_variables(model)
    assert list(variables) == ['a.weight', 'a.bias', 'c.weight']
