# Test by running: pytest scalargrad/autograd/test.py, or python -m scalargrad.autograd.test

import math

import numpy as np
import pytest
import torch

from .autograd import GraphMismatchError, Op, Value, add, current_graph, divide, exp, format_graph, multiply, negate, power, subtract, tanh, use_graph


def check_gradient(f, *xs: float, eps: float = 1e-6, tol: float = 1e-4):
    ''' Compare the analytic gradient of f at xs with a forward finite difference '''
    leaves = [Value(x) for x in xs]
    y = f(*leaves)
    y.backward()
    for i, leaf in enumerate(leaves):
        bumped = list(xs)
        bumped[i] += eps
        numeric = (f(*[Value(x) for x in bumped]).data - y.data) / eps
        assert abs(numeric - leaf.grad) < tol, f"d/dx{i} at {xs}: numeric {numeric}, analytic {leaf.grad}"


def test_arithmetic():
    ''' Test a simple arithmetic, compare with PyTorch '''

    def forward(x):
        z = 2 * x + 2 + x # use x twice
        q = z.tanh() + z * x
        h = (z * z / 10).exp()
        y = h + q + q * x - 1 / (x ** 2)
        y.backward()
        return x, y

    x0 = torch.tensor(-0.5, dtype=torch.float64, requires_grad=True)
    x0, y0 = forward(x0)

    with use_graph():
        x1, y1 = forward(Value(-0.5))

    # forward pass went well
    assert y1.data == pytest.approx(y0.item(), rel=1e-9)
    # backward pass went well
    assert x0.grad is not None
    assert x1.grad == pytest.approx(x0.grad.item(), rel=1e-9)


def test_finite_difference():
    ''' Every operation kind, at negative, fractional and near-zero inputs '''
    with use_graph():
        for a, b in [(2.0, 3.0), (-1.5, 0.6), (0.001, -4.0), (-0.3, -0.7)]:
            check_gradient(add, a, b)
            check_gradient(multiply, a, b)
            check_gradient(subtract, a, b)
            check_gradient(divide, a, b)
            check_gradient(lambda x: negate(x), a)
            check_gradient(lambda x: exp(x), a)
            check_gradient(lambda x: tanh(x), a)
            check_gradient(lambda x: power(x, 2.0), a)
            check_gradient(lambda x: power(x, 3.0), a)
        # negative and fractional exponents need a positive base
        for a in [0.5, 1.7, 4.0]:
            check_gradient(lambda x: power(x, -1.0), a)
            check_gradient(lambda x: power(x, 0.5), a)
        # a composite expression
        check_gradient(lambda x, w, b: tanh(x * w + b) / (1 + exp(-x)), 0.8, -1.2, 0.3)


def test_fan_out():
    ''' A node used as both operands must receive both contributions '''
    with use_graph():
        x = Value(3.0)
        y = multiply(x, x)
        y.backward()
        assert x.grad == 2 * x.data

        # diamond: x feeds two nodes that are multiplied together
        x = Value(-2.0)
        a = x + 1
        b = x * 2
        y = a * b
        y.backward()
        # dy/dx = b + 2a
        assert x.grad == b.data + 2 * a.data


def test_topological_order():
    with use_graph():
        x1, x2, w1, w2 = Value(1.0), Value(-2.0), Value(0.5), Value(0.5)
        h = (x1 * w1 + x2 * w2).tanh()
        y = h * h + h.exp() - x1 / (x2 ** 2)

        order = y.topological_order()
        graph = y.graph
        position = {node: i for i, node in enumerate(order)}

        # each node once, root last
        assert len(position) == len(order)
        assert order[-1] == y.index
        for node in order:
            for operand in graph.operands[node]:
                assert position[operand] < position[node]
        # all leaves are part of the closure
        for leaf in [x1, x2, w1, w2]:
            assert leaf.index in position


def test_deep_chain():
    ''' Much deeper than the interpreter recursion limit '''
    with use_graph():
        x = Value(1.0)
        acc = Value(0.0)
        for _ in range(20000):
            acc = acc + x
        acc.backward()
        assert acc.data == 20000.0
        assert x.grad == 20000.0


def test_equal_leaves_are_distinct_nodes():
    with use_graph():
        a = Value(1.0)
        b = Value(1.0)
        y = a + b
        assert len(y.topological_order()) == 3
        y.backward()
        assert a.grad == 1.0
        assert b.grad == 1.0


def test_zero_grad_isolation():
    with use_graph():
        x = Value(1.5)
        w = Value(-0.5)

        def run():
            y = (x * w + x).tanh()
            y.backward()
            return x.grad, w.grad

        first = run()
        x.grad = 0.0
        w.grad = 0.0
        second = run()
        assert first == second

        # KEY IDEA: accumulation is managed by the caller, without zeroing the grads add up
        third = run()
        assert third[0] == pytest.approx(2 * first[0])
        assert third[1] == pytest.approx(2 * first[1])

        x.graph.zero_grad()
        assert x.grad == 0.0 and w.grad == 0.0


def test_truncate():
    ''' Rewinding the graph drops an iteration's nodes and keeps the leaves before the mark '''
    with use_graph() as graph:
        x = Value(2.0)
        w = Value(-1.0)
        mark = graph.mark()
        assert mark == 2

        for _ in range(5):
            y = (x * w).tanh() + x ** 2
            x.grad = 0.0
            w.grad = 0.0
            y.backward()
            grads = (x.grad, w.grad)
            w.data -= 0.1 * w.grad
            graph.truncate(mark)
            assert len(graph) == 2
            # gradients of the leaves survive the rewind
            assert (x.grad, w.grad) == grads

        # new nodes reuse the freed slots
        z = x * w
        assert z.index == 2
        x.grad = 0.0
        z.backward()
        assert x.grad == pytest.approx(w.data)

        with pytest.raises(AssertionError):
            graph.truncate(10)


def test_neuron_scalar():
    ''' A single tanh neuron, worked out by hand '''
    with use_graph():
        x1 = Value(2.0, label="x1")
        x2 = Value(0.0, label="x2")
        w1 = Value(-3.0, label="w1")
        w2 = Value(1.0, label="w2")
        b = Value(6.8813735870195432, label="b")
        n = x1 * w1 + x2 * w2 + b
        o = n.tanh()
        o.backward()

        assert o.data == pytest.approx(0.7071067811865476)
        local = 1 - o.data ** 2
        assert n.grad == pytest.approx(0.5)
        assert x1.grad == pytest.approx(w1.data * local)
        assert w1.grad == pytest.approx(x1.data * local)
        assert x1.grad == pytest.approx(-1.5)
        assert w1.grad == pytest.approx(1.0)
        assert x2.grad == pytest.approx(0.5)
        assert w2.grad == pytest.approx(0.0)
        assert b.grad == pytest.approx(0.5)


def test_exponent_gets_no_gradient():
    with use_graph():
        x = Value(3.0)
        k = Value(2.0)
        y = power(x, k)
        y.backward()
        assert y.op is Op.POWER
        assert x.grad == 6.0
        assert k.grad == 0.0


def test_unary_ops_have_one_operand():
    with use_graph():
        x = Value(0.3)
        assert len(x.tanh().operands) == 1
        assert len(x.exp().operands) == 1
        assert len((x + 1).operands) == 2
        assert x.operands == ()
        assert x.op is None


def test_domain_errors_propagate():
    ''' Invalid floating point domains give inf/nan, in the value and in the gradient '''
    with use_graph():
        x = Value(0.0)
        y = x ** -1.0
        y.backward()
        assert math.isinf(y.data)
        assert x.grad == -math.inf

        x = Value(1000.0)
        y = x.exp()
        y.backward()
        assert y.data == math.inf
        assert x.grad == math.inf

        # negative base with a fractional exponent contaminates everything downstream
        x = Value(-8.0)
        y = x ** (1 / 3) * 2 + x
        y.backward()
        assert math.isnan(y.data)
        assert math.isnan(x.grad)

        # native tanh saturates instead of overflowing
        x = Value(1000.0)
        y = x.tanh()
        y.backward()
        assert y.data == 1.0
        assert x.grad == 0.0


def test_contract_violations():
    with use_graph() as graph:
        x = Value(1.0)
        y = x + 1
        # leaves can be updated, derived nodes can not
        x.data = 2.0
        assert x.data == 2.0
        with pytest.raises(AssertionError):
            y.data = 5.0
        # no nodes from two different graphs in one operation
        with use_graph():
            z = Value(1.0)
        size = len(graph)
        with pytest.raises(GraphMismatchError):
            x + z
        with pytest.raises(GraphMismatchError):
            multiply(z, x)
        # nothing was recorded for the rejected operations
        assert len(graph) == size
        # leaves hold numbers only
        with pytest.raises(AssertionError):
            Value("1.0") # type: ignore
        with pytest.raises(AssertionError):
            Value(True)
        with pytest.raises(AssertionError):
            Value(np.bool_(False)) # type: ignore


def test_constants_follow_their_operand():
    ''' Plain numbers become leaves of the operand's graph, not of the current one '''
    with use_graph() as graph:
        x = Value(3.0)
    with use_graph() as other:
        y = x - 1.0
        z = x / 2.0
        w = 1.0 - x
        v = 6.0 / x
        assert len(other) == 0
    assert all(n.graph is graph for n in [y, z, w, v])
    assert (y.data, z.data, w.data, v.data) == pytest.approx((2.0, 1.5, -2.0, 2.0))
    (y + z + w + v).backward()
    # 1 + 1/2 - 1 - 6/x^2
    assert x.grad == pytest.approx(0.5 - 6.0 / 9.0)


def test_format_graph():
    with use_graph() as graph:
        assert current_graph() is graph
        x = Value(2.0, label="x")
        y = (x * x).tanh()
        y.backward()
        dump = format_graph(y)
        assert len(graph) == 3
    lines = dump.splitlines()
    assert len(lines) == 3
    assert lines[0].startswith("#0 x = leaf()")
    assert lines[1].startswith("#1 = *(#0, #0)")
    assert lines[2].startswith("#2 = tanh(#1)")
    assert "grad=1" in lines[2]


def test_linear_regression():
    ''' Test linear regression '''

    # prepare data
    # y = a * x + b
    x = np.linspace(-10, 10, 20)
    a0 = 3.0
    b0 = 1.0
    y = a0 * x + b0

    with use_graph():
        # initial values
        a = Value(1.0)
        b = Value(0.0)

        for i in range(1000):
            y_est = [a * float(x_i) + b for x_i in x] # our autograd doesn't support vectorized operations
            loss = [(ye - float(y_i)) ** 2 for ye, y_i in zip(y_est, y)]
            total_loss = sum(loss, Value(0.0))
            avg_loss = total_loss / len(loss)
            a.grad = 0.0
            b.grad = 0.0
            avg_loss.backward()

            lr = 0.01
            a.data -= lr * a.grad
            b.data -= lr * b.grad

    assert abs(a.data - a0) < 1e-5
    assert abs(b.data - b0) < 1e-5


if __name__ == "__main__":
    test_arithmetic()
    test_finite_difference()
    test_fan_out()
    test_topological_order()
    test_deep_chain()
    test_equal_leaves_are_distinct_nodes()
    test_zero_grad_isolation()
    test_truncate()
    test_neuron_scalar()
    test_exponent_gets_no_gradient()
    test_unary_ops_have_one_operand()
    test_domain_errors_propagate()
    test_contract_violations()
    test_constants_follow_their_operand()
    test_format_graph()
    test_linear_regression()
    print("All tests passed")
