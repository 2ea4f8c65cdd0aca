"""
Trainable variables and their Adam accumulators.

Each trainable parameter is shadowed by a first-moment ("m") and a
second-moment ("v") accumulator of the same shape. Unlike torch.optim.Adam,
the accumulators are created and zero-initialized when the optimizer is
built, so they can be inspected, reset and checkpointed before the first
update.
"""

import math
from collections import OrderedDict
from typing import Dict, Iterable, Tuple

import torch
import torch.nn as nn


SLOT_NAMES = ("m", "v")


def trainable_variables(module: nn.Module) -> "OrderedDict[str, nn.Parameter]":
    """
    Collect the trainable parameters of a module in declaration order.

    Parameters shared between submodules are listed once, under the name of
    their first occurrence.

    Args:
        module: Module to inspect

    Returns:
        Ordered mapping from parameter name to parameter
    """
    variables = OrderedDict()
    for name, param in module.named_parameters():
        if param.requires_grad:
            variables[name] = param
    return variables


class ShadowAdam(torch.optim.Optimizer):
    """
    Adam optimizer with eagerly allocated moment accumulators.

    Update rule for step ``t`` with gradient ``g``::

        lr_t = lr * sqrt(1 - beta2^t) / (1 - beta1^t)
        m = m + (g - m) * (1 - beta1)
        v = v + (g * g - v) * (1 - beta2)
        p = p - lr_t * m / (sqrt(v) + eps)
    """

    def __init__(self, params: Iterable, lr: float = 1e-4,
                 betas: Tuple[float, float] = (0.9, 0.999), eps: float = 1e-7):
        """
        Initialize the optimizer and zero its accumulators.

        Args:
            params: Parameters (or parameter groups) to optimize
            lr: Learning rate
            betas: Decay rates for the first and second moments
            eps: Term added to the denominator
        """
        if lr < 0.0:
            raise ValueError(f"Invalid learning rate: {lr}")
        if not 0.0 <= betas[0] < 1.0 or not 0.0 <= betas[1] < 1.0:
            raise ValueError(f"Invalid beta parameters: {betas}")
        if eps < 0.0:
            raise ValueError(f"Invalid epsilon value: {eps}")

        defaults = dict(lr=lr, betas=betas, eps=eps)
        super().__init__(params, defaults)

    def add_param_group(self, param_group: dict):
        """
        Add a parameter group and zero the accumulators of its parameters.
        """
        super().add_param_group(param_group)
        for p in self.param_groups[-1]['params']:
            _zero_slots(self.state[p], p)

    def reset_slots(self):
        """
        Assign zeros to every accumulator and restart the step counter.
        """
        for group in self.param_groups:
            for p in group['params']:
                _zero_slots(self.state[p], p)

    def slot(self, param: torch.Tensor, name: str) -> torch.Tensor:
        """
        Return the accumulator ``name`` ("m" or "v") shadowing ``param``.
        """
        if name not in SLOT_NAMES:
            raise KeyError(f"Unknown slot: {name}")
        if not any(p is param for group in self.param_groups for p in group['params']):
            raise ValueError("Parameter is not managed by this optimizer")
        return self.state[param][name]

    def slots(self) -> Dict[int, Dict[str, torch.Tensor]]:
        """Accumulators keyed by parameter position across groups."""
        result = {}
        index = 0
        for group in self.param_groups:
            for p in group['params']:
                result[index] = {name: self.state[p][name] for name in SLOT_NAMES}
                index += 1
        return result

    @torch.no_grad()
    def step(self, closure=None):
        loss = None
        if closure is not None:
            with torch.enable_grad():
                loss = closure()

        for group in self.param_groups:
            beta1, beta2 = group['betas']
            lr = group['lr']
            eps = group['eps']

            for p in group['params']:
                if p.grad is None:
                    continue
                if p.grad.is_sparse:
                    raise RuntimeError("ShadowAdam does not support sparse gradients")

                grad = p.grad
                state = self.state[p]
                state['step'] += 1
                t = state['step']
                m, v = state['m'], state['v']

                m.add_((grad - m) * (1 - beta1))
                v.add_((grad * grad - v) * (1 - beta2))

                lr_t = lr * math.sqrt(1 - beta2 ** t) / (1 - beta1 ** t)
                p.addcdiv_(m, v.sqrt().add_(eps), value=-lr_t)

        return loss


def _zero_slots(state: dict, param: torch.Tensor):
    state['step'] = 0
    state['m'] = torch.zeros_like(param, memory_format=torch.preserve_format)
    state['v'] = torch.zeros_like(param, memory_format=torch.preserve_format)
