# Scalar reverse-mode automatic differentiation and a small MLP built on it

from .autograd import Graph, GraphMismatchError, Op, Value, use_graph
from .nn import InputArityError, Layer, Network, Neuron

__all__ = ["Graph", "GraphMismatchError", "Op", "Value", "use_graph", "InputArityError", "Neuron", "Layer", "Network"]
