from .nn import InputArityError, Layer, Module, Network, Neuron, squared_error_loss, train_sgd

__all__ = ["InputArityError", "Module", "Neuron", "Layer", "Network", "squared_error_loss", "train_sgd"]
