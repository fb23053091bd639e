# Test the demo end to end
# Test by running: pytest scalargrad/test.py

import pytest

from .autograd import use_graph
from .demo import DemoConfig, main, neuron_example


def test_neuron_example():
    with use_graph():
        o = neuron_example()
        # o = tanh((x1*w1 + x2*w2) + b)
        x1w1 = o.operands[0].operands[0].operands[0]
        x1, w1 = x1w1.operands
    assert (x1.label, w1.label) == ("x1", "w1")
    assert x1.grad == pytest.approx(w1.data * (1 - o.data ** 2))
    assert w1.grad == pytest.approx(x1.data * (1 - o.data ** 2))
    assert x1.grad == pytest.approx(-1.5)
    assert w1.grad == pytest.approx(1.0)


def test_demo(capsys):
    losses = main(DemoConfig(seed=0))
    out = capsys.readouterr().out

    assert len(losses) == 100
    assert losses[99] < losses[0]

    assert "x1 = leaf()" in out
    assert "tanh(" in out
    assert out.count("Iteration [") == 100
    assert "Iteration [100/100], Loss:" in out
    before = out.split("ypred before training:")[1].split("Training...")[0].split()
    after = out.split("ypred after training:")[1].split()
    assert len(before) == 4
    assert len(after) == 4
