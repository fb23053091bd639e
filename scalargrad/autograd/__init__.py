from .autograd import Graph, GraphMismatchError, Op, Value, add, current_graph, divide, exp, format_graph, multiply, negate, power, subtract, tanh, use_graph

__all__ = [
    "Graph", "GraphMismatchError", "Op", "Value",
    "current_graph", "use_graph",
    "add", "multiply", "power", "exp", "tanh",
    "negate", "subtract", "divide",
    "format_graph",
]
