# Automatic Differentiation Library
# Based on Andrej Karpathy's micrograd, with the nodes stored in an arena

from contextlib import contextmanager
from enum import Enum
from typing import Callable, Iterator

import numpy as np


class Op(Enum):
    '''How the value of a node was derived from its operands'''
    ADD = "+"
    MULTIPLY = "*"
    POWER = "**"
    EXPONENTIAL = "exp"
    HYPERBOLIC_TANGENT = "tanh"


class GraphMismatchError(ValueError):
    '''An operation was given nodes that live in two different graphs'''


class Graph:
    '''
    Arena holding every node of a computation graph.

    A node is a slot index; its value, gradient, operation and operands are
    stored in parallel lists. Operands are stored as indices of earlier slots,
    so the operand relation can never form a cycle, and dropping every slot
    after a mark (truncate) never leaves a dangling operand behind.
    '''

    def __init__(self):
        self.data: list[np.float64] = []
        self.grad: list[np.float64] = []
        self.op: list[Op | None] = []
        # (a, b) for binary operations, (a,) for unary ones, () for leaves
        self.operands: list[tuple[int, ...]] = []
        self.label: list[str] = []

    def __len__(self) -> int:
        return len(self.data)

    def push(self, data, op: Op | None = None, operands: tuple[int, ...] = (), label: str = "") -> int:
        '''Allocate a new node slot and return its index'''
        assert (op is None) == (len(operands) == 0), "operands must be given iff op is set"
        assert all(0 <= i < len(self.data) for i in operands), "operands must already exist in this graph"
        self.data.append(np.float64(data))
        self.grad.append(np.float64(0.0))
        self.op.append(op)
        self.operands.append(operands)
        self.label.append(label)
        return len(self.data) - 1

    def mark(self) -> int:
        '''Current size, to be passed to truncate() later'''
        return len(self.data)

    def truncate(self, mark: int):
        '''
        Drop every node created after `mark`, e.g. the forward graph of a training
        iteration once its gradients have been applied. Handles on dropped nodes
        must not be used afterwards.
        '''
        assert 0 <= mark <= len(self.data), "mark is not a valid graph size"
        del self.data[mark:]
        del self.grad[mark:]
        del self.op[mark:]
        del self.operands[mark:]
        del self.label[mark:]

    def zero_grad(self):
        '''Reset the gradient of every node in the arena'''
        self.grad = [np.float64(0.0)] * len(self.grad)

    def topological_order(self, root: int) -> list[int]:
        '''
        Post-order of the operand closure of `root`: every node comes strictly
        after all of its (transitive) operands, the root comes last.
        '''
        # KEY IDEA: visited is tracked by slot index (node identity), two leaves holding the same number are still two nodes
        # sized to the closure of root, not to the whole arena
        visited: set[int] = set()
        order: list[int] = []
        # iterative DFS, so that long chains (e.g. sum of thousands of terms) do not hit the recursion limit
        stack: list[tuple[int, bool]] = [(root, False)]
        while stack:
            node, expanded = stack.pop()
            if expanded:
                # all operands have been appended by now
                order.append(node)
                continue
            if node in visited:
                continue
            visited.add(node)
            stack.append((node, True))
            # reversed so that the first operand is visited first
            for child in reversed(self.operands[node]):
                if child not in visited:
                    stack.append((child, False))
        return order

    def backward(self, root: int):
        '''Fill in d(root)/d(node) into the gradient of every node reachable from root'''
        order = self.topological_order(root)

        data, grad = self.data, self.grad

        # the derivative of the final output node wrt itself is 1
        grad[root] = np.float64(1.0)

        # KEY IDEA: domain problems (0 ** -1, exp overflow, ...) propagate as inf/nan instead of raising
        with np.errstate(all="ignore"):
            # reverse: start from the output to inputs
            for node in reversed(order):
                op = self.op[node]
                if op is None:
                    continue
                g = grad[node]
                operands = self.operands[node]
                # KEY IDEA: use += to accumulate the gradient if a node is used in multiple operations
                if op is Op.ADD:
                    a, b = operands
                    grad[a] += g
                    grad[b] += g
                elif op is Op.MULTIPLY:
                    a, b = operands
                    grad[a] += data[b] * g
                    grad[b] += data[a] * g
                elif op is Op.POWER:
                    # the exponent is a constant, it does not receive any gradient
                    a, b = operands
                    grad[a] += data[b] * data[a] ** (data[b] - 1) * g
                elif op is Op.EXPONENTIAL:
                    (a,) = operands
                    grad[a] += np.exp(data[a]) * g
                elif op is Op.HYPERBOLIC_TANGENT:
                    # derivative of tanh is (1 - tanh^2)
                    (a,) = operands
                    t = np.tanh(data[a])
                    grad[a] += (1 - t ** 2) * g
                else:
                    raise AssertionError(f"unknown operation {op}")


# Global default graph, new leaves are created here unless use_graph() is active
default_graph = Graph()


@contextmanager
def use_graph(graph: Graph | None = None) -> Iterator[Graph]:
    '''
    Temporarily record new leaves into another (by default a fresh) graph:
        with use_graph():
            ... build computation ...
            y.backward()
    '''
    global default_graph
    prev = default_graph
    try:
        default_graph = graph if graph is not None else Graph()
        yield default_graph
    finally:
        default_graph = prev


def current_graph() -> Graph:
    return default_graph


class Value:
    '''
    A handle on a numeric node of a computation graph
    '''

    __slots__ = ("graph", "index")

    def __init__(self, data: float | int, label: str = "", graph: Graph | None = None):
        assert isinstance(data, (float, int, np.floating, np.integer)) and not isinstance(data, (bool, np.bool_)), f"Value only accepts numbers, got {type(data)}"
        self.graph = graph if graph is not None else default_graph
        self.index = self.graph.push(data, label=label)

    @classmethod
    def _node(cls, graph: Graph, index: int) -> "Value":
        v = cls.__new__(cls)
        v.graph = graph
        v.index = index
        return v

    @property
    def data(self) -> np.float64:
        return self.graph.data[self.index]

    @data.setter
    def data(self, value: float):
        # only leaves (inputs, weights, biases) can be updated, e.g. by an optimizer
        assert self.op is None, "cannot overwrite the value of a derived node"
        self.graph.data[self.index] = np.float64(value)

    @property
    def grad(self) -> np.float64:
        return self.graph.grad[self.index]

    @grad.setter
    def grad(self, value: float):
        self.graph.grad[self.index] = np.float64(value)

    @property
    def op(self) -> Op | None:
        return self.graph.op[self.index]

    @property
    def operands(self) -> tuple["Value", ...]:
        return tuple(Value._node(self.graph, i) for i in self.graph.operands[self.index])

    @property
    def label(self) -> str:
        return self.graph.label[self.index]

    def __repr__(self):
        '''Pretty print the node'''
        label = f"{self.label}: " if self.label != "" else ""
        return f"Value({label}{self.data}, grad={self.grad})"

    def __add__(self, other: "Value | float | int") -> "Value":
        '''Allow adding two nodes with "+" operator'''
        return add(self, other)

    def __radd__(self, left) -> "Value":
        return add(left, self)

    def __sub__(self, other) -> "Value":
        return subtract(self, other)

    def __rsub__(self, left) -> "Value":
        return subtract(left, self)

    def __mul__(self, other: "Value | float | int") -> "Value":
        return multiply(self, other)

    def __rmul__(self, left) -> "Value":
        return multiply(left, self)

    def __truediv__(self, other) -> "Value":
        return divide(self, other)

    def __rtruediv__(self, left) -> "Value":
        return divide(left, self)

    def __pow__(self, exponent: "Value | float | int") -> "Value":
        return power(self, exponent)

    def __neg__(self) -> "Value":
        return negate(self)

    def exp(self) -> "Value":
        return exp(self)

    def tanh(self) -> "Value":
        ''' Tanh activation function '''
        return tanh(self)

    def topological_order(self) -> list[int]:
        return self.graph.topological_order(self.index)

    def backward(self):
        self.graph.backward(self.index)


def _as_value(x: Value | float | int, graph: Graph) -> Value:
    if isinstance(x, Value):
        # an index from another arena would silently route gradients to the wrong slot
        if x.graph is not graph:
            raise GraphMismatchError("cannot combine nodes from different graphs")
        return x
    return Value(x, graph=graph)


def _graph_of(*xs) -> Graph:
    for x in xs:
        if isinstance(x, Value):
            return x.graph
    return default_graph


def _apply(op: Op, f: Callable[..., np.float64], *xs: Value | float | int) -> Value:
    graph = _graph_of(*xs)
    operands = tuple(_as_value(x, graph) for x in xs)
    # values are float64, overflow and invalid domains give inf/nan instead of raising
    with np.errstate(all="ignore"):
        r = f(*(x.data for x in operands))
    return Value._node(graph, graph.push(r, op=op, operands=tuple(x.index for x in operands)))


#############################################################
## Graph construction, every operator creates a new node
#############################################################

def add(a: Value | float | int, b: Value | float | int) -> Value:
    return _apply(Op.ADD, lambda x, y: x + y, a, b)


def multiply(a: Value | float | int, b: Value | float | int) -> Value:
    return _apply(Op.MULTIPLY, lambda x, y: x * y, a, b)


def power(a: Value | float | int, b: Value | float | int) -> Value:
    '''
    a raised to b. Only `a` is differentiated, `b` is treated as a constant
    exponent (typically a leaf such as 2.0 or -1.0) and never gets a gradient.
    '''
    return _apply(Op.POWER, lambda x, y: x ** y, a, b)


def exp(a: Value | float | int) -> Value:
    return _apply(Op.EXPONENTIAL, np.exp, a)


def tanh(a: Value | float | int) -> Value:
    return _apply(Op.HYPERBOLIC_TANGENT, np.tanh, a)


def negate(a: Value | float | int) -> Value:
    return multiply(a, -1.0)


def subtract(a: Value | float | int, b: Value | float | int) -> Value:
    # use plus to implement subtraction
    # a constant b is recorded next to a, not in whatever graph is current
    b = _as_value(b, _graph_of(a, b))
    return add(a, negate(b))


def divide(a: Value | float | int, b: Value | float | int) -> Value:
    # KEY IDEA: division is multiplication by the reciprocal, no dedicated operation needed
    b = _as_value(b, _graph_of(a, b))
    return multiply(a, power(b, -1.0))


def format_graph(root: Value) -> str:
    '''Dump the graph under `root`, one line per node in topological order'''
    graph = root.graph
    lines = []
    for i in root.topological_order():
        op = graph.op[i]
        name = "leaf" if op is None else op.value
        label = f" {graph.label[i]}" if graph.label[i] != "" else ""
        args = ", ".join(f"#{j}" for j in graph.operands[i])
        lines.append(f"#{i}{label} = {name}({args}) data={graph.data[i]:.6g} grad={graph.grad[i]:.6g}")
    return "\n".join(lines)
