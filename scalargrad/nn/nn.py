# A simple multi-layer perceptron built on our autograd implementation

from typing import Sequence
import datetime

import numpy as np

from ..autograd import Value, add, current_graph, multiply, power, subtract


class InputArityError(ValueError):
    '''A neuron was fed a different number of inputs than it has weights'''


# A single neuron in the network
class Neuron:
    def __init__(self, n_inputs: int, rng: np.random.Generator | None = None):
        # KEY IDEA: the random generator is passed in, so that a seeded network is reproducible
        rng = rng if rng is not None else np.random.default_rng()
        self.w = [Value(rng.uniform(-1.0, 1.0)) for _ in range(n_inputs)]
        self.b = Value(rng.uniform(-1.0, 1.0))

    def forward(self, x: Sequence[Value | float]) -> Value:
        if len(x) != len(self.w):
            raise InputArityError(f"Neuron expects {len(self.w)} inputs, got {len(x)}")
        # tanh(w . x + b)
        r = self.b
        for w_i, x_i in zip(self.w, x):
            r = add(r, multiply(w_i, x_i))
        return r.tanh()

    def __call__(self, x: Sequence[Value | float]) -> Value:
        return self.forward(x)

    def parameters(self) -> list[Value]:
        return self.w + [self.b]

    def __repr__(self):
        return f"TanhNeuron({len(self.w)})"

# Mimic the PyTorch API
class Module:
    def zero_grad(self):
        for p in self.parameters():
            p.grad = 0

    def parameters(self) -> list[Value]:
        return []

# A single layer in the neural network
class Layer(Module):
    def __init__(self, n_in: int, n_out: int, rng: np.random.Generator | None = None):
        rng = rng if rng is not None else np.random.default_rng()
        self.neurons = [Neuron(n_in, rng) for _ in range(n_out)]

    def forward(self, x: Sequence[Value | float]) -> list[Value]:
        # every neuron sees the same inputs
        return [n(x) for n in self.neurons]

    def __call__(self, x: Sequence[Value | float]) -> list[Value]:
        return self.forward(x)

    def parameters(self) -> list[Value]:
        return [p for n in self.neurons for p in n.parameters()]

    def __repr__(self):
        return f"Layer of [{', '.join(str(n) for n in self.neurons)}]"

# A multi-layer perceptron
class Network(Module):
    def __init__(self, n_in: int, layer_sizes: Sequence[int], rng: np.random.Generator | None = None):
        # parameters are leaves of the graph current at construction, forward passes are recorded there too
        self.graph = current_graph()
        rng = rng if rng is not None else np.random.default_rng()
        sizes = [n_in] + list(layer_sizes)
        self.layers = [Layer(sizes[i], sizes[i+1], rng) for i in range(len(layer_sizes))]

    def forward(self, x: Sequence[Value | float]) -> list[Value]:
        # plain numbers become leaves of the graph holding the parameters
        x = [x_i if isinstance(x_i, Value) else Value(float(x_i), graph=self.graph) for x_i in x]
        # forward pass
        for layer in self.layers:
            x = layer(x)
        return x

    def __call__(self, x: Sequence[Value | float]) -> list[Value]:
        return self.forward(x)

    def parameters(self) -> list[Value]:
        return [p for layer in self.layers for p in layer.parameters()]

    def __repr__(self):
        return f"MLP of [{', '.join(str(layer) for layer in self.layers)}]"


def squared_error_loss(predictions: Sequence[Value], targets: Sequence[float]) -> Value:
    '''Sum of squared differences between predictions and targets'''
    assert len(predictions) == len(targets), "predictions and targets must have the same length"
    graph = predictions[0].graph if len(predictions) > 0 else current_graph()
    loss = Value(0.0, graph=graph)
    for y_pred, y in zip(predictions, targets):
        loss = add(loss, power(subtract(y_pred, float(y)), 2.0))
    return loss


def train_sgd(model: Network, xs: Sequence[Sequence[float]], ys: Sequence[float], iterations: int = 100, learning_rate: float = 0.1, log_every: int = 1) -> list[float]:
    '''
    Full batch gradient descent on the squared error of a single output network.
    Returns the loss of every iteration (measured before that iteration's update).
    '''
    params = model.parameters()
    graph = model.graph
    # KEY IDEA: everything recorded after this point is one iteration's forward graph, dropped once it has been used
    mark = graph.mark()
    losses: list[float] = []

    # Training loop
    for k in range(iterations):
        # forward pass
        y_pred = [model(x)[0] for x in xs]
        loss = squared_error_loss(y_pred, ys)

        # backward pass
        # KEY IDEA: the grads of the parameters must be reset, backward only ever adds to them
        model.zero_grad()
        loss.backward()

        # Stochastic Gradient Descent
        for p in params:
            p.data -= learning_rate * p.grad

        losses.append(float(loss.data))
        graph.truncate(mark)

        if log_every > 0 and (k+1) % log_every == 0:
            print(f'{datetime.datetime.now().strftime("%d/%m/%Y, %H:%M:%S")} Iteration [{k+1}/{iterations}], Loss: {losses[-1]:.4f}')

    return losses
