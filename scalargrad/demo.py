# Demo: back-propagate through a single neuron by hand, then train a small MLP on a toy dataset
# Run by: python -m scalargrad.demo

from dataclasses import dataclass, field

import numpy as np

from .autograd import Value, format_graph, use_graph
from .nn import Network, train_sgd


@dataclass
class DemoConfig:
    n_inputs: int = 3
    layer_sizes: list[int] = field(default_factory=lambda: [4, 4, 1])
    xs: list[list[float]] = field(default_factory=lambda: [
        [2.0, 3.0, -1.0],
        [3.0, -1.0, 5.0],
        [0.5, 1.0, 1.0],
        [1.0, 1.0, -1.0],
    ])
    ys: list[float] = field(default_factory=lambda: [1.0, -1.0, -1.0, 1.0])
    iterations: int = 100
    learning_rate: float = 0.1
    # None draws fresh weights on every run
    seed: int | None = None


def neuron_example() -> Value:
    ''' o = tanh(x1*w1 + x2*w2 + b), b chosen so that o is 1/sqrt(2) '''
    x1 = Value(2.0, label="x1")
    x2 = Value(0.0, label="x2")
    w1 = Value(-3.0, label="w1")
    w2 = Value(1.0, label="w2")
    b = Value(6.8813735870195432, label="b")
    n = x1 * w1 + x2 * w2 + b
    o = n.tanh()
    o.backward()
    return o


def main(config: DemoConfig | None = None) -> list[float]:
    config = config if config is not None else DemoConfig()

    with use_graph():
        o = neuron_example()
        print("Single neuron:\n")
        print(format_graph(o))

    with use_graph():
        model = Network(config.n_inputs, config.layer_sizes, np.random.default_rng(config.seed))

        print("\nypred before training:\n")
        for x in config.xs:
            print(model(x)[0].data)

        print("\nTraining...")
        losses = train_sgd(model, config.xs, config.ys, iterations=config.iterations, learning_rate=config.learning_rate)

        print("\nypred after training:\n")
        for x in config.xs:
            print(model(x)[0].data)

    return losses


if __name__ == "__main__":
    main()
