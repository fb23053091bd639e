# Testing script for the neural network implementation
# Test by running: pytest scalargrad/nn/test.py, or python -m scalargrad.nn.test

import numpy as np
import pytest
import torch

from ..autograd import GraphMismatchError, Value, use_graph
from .nn import InputArityError, Layer, Network, Neuron, squared_error_loss, train_sgd

# toy dataset: 4 samples, 3 features, targets in {-1, 1}
XS = [
    [2.0, 3.0, -1.0],
    [3.0, -1.0, 5.0],
    [0.5, 1.0, 1.0],
    [1.0, 1.0, -1.0],
]
YS = [1.0, -1.0, -1.0, 1.0]


def test_shapes_and_parameters():
    with use_graph():
        model = Network(3, [4, 4, 1], np.random.default_rng(0))
        assert len(model.layers) == 3
        assert [len(layer.neurons) for layer in model.layers] == [4, 4, 1]
        assert [len(layer.neurons[0].w) for layer in model.layers] == [3, 4, 4]

        params = model.parameters()
        # (3+1)*4 + (4+1)*4 + (4+1)*1
        assert len(params) == 41
        # weights then bias, neuron by neuron, layer by layer
        first = model.layers[0].neurons[0]
        assert [p.index for p in params[:4]] == [p.index for p in first.w + [first.b]]
        assert [p.index for p in params] == [p.index for p in model.parameters()]
        # all parameters are leaves drawn from [-1, 1)
        for p in params:
            assert p.op is None
            assert -1.0 <= p.data < 1.0

        out = model(XS[0])
        assert len(out) == 1
        assert -1.0 < out[0].data < 1.0
        assert len(Layer(3, 5, np.random.default_rng(0))(XS[0])) == 5


def test_seeded_initialization():
    with use_graph():
        a = Network(3, [4, 4, 1], np.random.default_rng(42))
        b = Network(3, [4, 4, 1], np.random.default_rng(42))
        c = Network(3, [4, 4, 1], np.random.default_rng(43))
        assert [p.data for p in a.parameters()] == [p.data for p in b.parameters()]
        assert [p.data for p in a.parameters()] != [p.data for p in c.parameters()]
        assert a(XS[1])[0].data == b(XS[1])[0].data


def test_input_arity():
    with use_graph():
        neuron = Neuron(3, np.random.default_rng(0))
        with pytest.raises(InputArityError):
            neuron([1.0, 2.0])
        with pytest.raises(InputArityError):
            neuron([1.0, 2.0, 3.0, 4.0])
        model = Network(3, [2, 1], np.random.default_rng(0))
        with pytest.raises(InputArityError):
            model([1.0, 2.0])


def test_neuron_forward():
    with use_graph():
        neuron = Neuron(2, np.random.default_rng(0))
        x = [Value(0.5), Value(-1.5)]
        o = neuron(x)
        expected = np.tanh(neuron.w[0].data * 0.5 + neuron.w[1].data * -1.5 + neuron.b.data)
        assert o.data == pytest.approx(expected)
        o.backward()
        local = 1 - o.data ** 2
        assert neuron.b.grad == pytest.approx(local)
        assert neuron.w[1].grad == pytest.approx(-1.5 * local)
        assert x[0].grad == pytest.approx(neuron.w[0].data * local)


def test_compare_with_torch():
    ''' Gradients of the whole network must match PyTorch on the same weights '''
    with use_graph():
        model = Network(3, [4, 4, 1], np.random.default_rng(1))
        loss = squared_error_loss([model(x)[0] for x in XS], YS)
        model.zero_grad()
        loss.backward()

        # the same network in torch, weights copied over
        torch_params = []
        for layer in model.layers:
            W = torch.tensor([[float(w.data) for w in n.w] for n in layer.neurons], dtype=torch.float64, requires_grad=True)
            b = torch.tensor([float(n.b.data) for n in layer.neurons], dtype=torch.float64, requires_grad=True)
            torch_params.append((W, b))
        h = torch.tensor(XS, dtype=torch.float64)
        for W, b in torch_params:
            h = torch.tanh(h @ W.T + b)
        torch_loss = ((h[:, 0] - torch.tensor(YS, dtype=torch.float64)) ** 2).sum()
        torch_loss.backward()

        assert loss.data == pytest.approx(torch_loss.item(), rel=1e-9)
        for layer, (W, b) in zip(model.layers, torch_params):
            assert W.grad is not None and b.grad is not None
            for i, n in enumerate(layer.neurons):
                for j, w in enumerate(n.w):
                    assert w.grad == pytest.approx(W.grad[i, j].item(), rel=1e-7, abs=1e-12)
                assert n.b.grad == pytest.approx(b.grad[i].item(), rel=1e-7, abs=1e-12)


def test_zero_grad():
    with use_graph():
        model = Network(3, [4, 1], np.random.default_rng(0))
        loss = squared_error_loss([model(x)[0] for x in XS], YS)
        loss.backward()
        assert any(p.grad != 0 for p in model.parameters())
        model.zero_grad()
        assert all(p.grad == 0 for p in model.parameters())


def test_fresh_graph_every_iteration():
    ''' With zeroed grads, an iteration only sees the gradient of its own forward graph '''
    with use_graph():
        model = Network(3, [4, 4, 1], np.random.default_rng(3))

        def grads():
            loss = squared_error_loss([model(x)[0] for x in XS], YS)
            model.zero_grad()
            loss.backward()
            return [p.grad for p in model.parameters()]

        assert grads() == grads()


def test_training_decreases_loss():
    with use_graph():
        model = Network(3, [4, 4, 1], np.random.default_rng(0))
        losses = train_sgd(model, XS, YS, iterations=100, learning_rate=0.1, log_every=0)
        assert len(losses) == 100
        assert losses[99] < losses[0]
        # predictions moved towards the targets
        final = squared_error_loss([model(x)[0] for x in XS], YS)
        assert final.data < losses[0]


def test_training_keeps_graph_bounded():
    ''' Each iteration's forward graph is dropped once the parameters are updated '''
    with use_graph() as graph:
        model = Network(3, [4, 4, 1], np.random.default_rng(0))
        n_params = len(graph)
        assert n_params == len(model.parameters()) == 41

        train_sgd(model, XS, YS, iterations=10, learning_rate=0.1, log_every=0)
        assert len(graph) == n_params
        train_sgd(model, XS, YS, iterations=100, learning_rate=0.1, log_every=0)
        assert len(graph) == n_params

        # parameters are still intact leaves holding their updated values
        assert all(p.op is None for p in model.parameters())
        assert all(p.index < n_params for p in model.parameters())


def test_network_keeps_its_graph():
    ''' Inputs are recorded in the graph holding the parameters, whatever graph is current '''
    with use_graph() as graph:
        model = Network(3, [4, 1], np.random.default_rng(0))
    assert model.graph is graph

    with use_graph() as other:
        out = model(XS[0])
        loss = squared_error_loss(out, [YS[0]])
        loss.backward()
        assert len(other) == 0
    assert out[0].graph is graph
    assert any(p.grad != 0 for p in model.parameters())

    # nodes of another graph can not be fed in
    with use_graph():
        with pytest.raises(GraphMismatchError):
            model([Value(1.0), Value(2.0), Value(3.0)])


def test_training_log(capsys):
    with use_graph():
        model = Network(3, [4, 1], np.random.default_rng(0))
        train_sgd(model, XS, YS, iterations=10, learning_rate=0.1, log_every=5)
    lines = capsys.readouterr().out.splitlines()
    assert len(lines) == 2
    assert "Iteration [5/10], Loss:" in lines[0]
    assert "Iteration [10/10], Loss:" in lines[1]


if __name__ == "__main__":
    test_shapes_and_parameters()
    test_seeded_initialization()
    test_input_arity()
    test_neuron_forward()
    test_compare_with_torch()
    test_zero_grad()
    test_fresh_graph_every_iteration()
    test_training_decreases_loss()
    test_training_keeps_graph_bounded()
    test_network_keeps_its_graph()
    print("All tests passed")
