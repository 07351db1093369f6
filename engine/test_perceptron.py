import io
import math
import random

import pytest

from activations import (
    constant_initializer,
    identity,
    identity_derivative,
    leaky_relu,
    leaky_relu_derivative,
    sigmoid,
    sigmoid_derivative,
    uniform_initializer,
)
from perceptron import NeuronState, Perceptron


def make_net(arch, seed=7):
    return Perceptron(arch, leaky_relu, leaky_relu_derivative, uniform_initializer(seed=seed))


def bare_net():
    return Perceptron(activation=leaky_relu, activation_derivative=leaky_relu_derivative)


def test_construction_pins_biases():
    arch = [3, 4, 2]
    net = make_net(arch)

    for i, width in enumerate(arch[:-1]):
        layer = net.layer(i)
        assert len(layer) == width + 1
        assert layer[-1].value == 1
    assert len(net.layer(-1)) == arch[-1]
    assert all(state.delta == 0 for i in range(len(arch)) for state in net.layer(i))
    assert net.architecture == (3, 4, 2)


def test_weight_matrix_shapes():
    net = make_net([2, 5, 3, 1])
    weights = net.weights
    assert len(weights) == 3
    for i, matrix in enumerate(weights):
        rows = len(net.layer(i))
        cols = len(net.layer(i + 1)) - (0 if i + 1 == 3 else 1)
        assert len(matrix) == rows
        assert all(len(row) == cols for row in matrix)


def test_initializer_called_once_per_weight_in_row_major_order():
    counter = iter(range(1000))
    net = Perceptron([2, 3, 1], identity, identity_derivative, lambda: float(next(counter)))
    assert net.weights == [
        [[0.0, 1.0, 2.0], [3.0, 4.0, 5.0], [6.0, 7.0, 8.0]],
        [[9.0], [10.0], [11.0], [12.0]],
    ]
    assert next(counter) == 13


def test_forward_pass_values():
    net = Perceptron([2, 2, 1], identity, identity_derivative, constant_initializer(0.5))
    net.get_input().assign([1.0, 2.0])
    net.feed_forward()

    # 0.5 * (1 + 2 + bias)
    assert net.layer(1).values() == [2.0, 2.0, 1]
    assert net.get_output().values() == [2.0 * 0.5 + 2.0 * 0.5 + 0.5]


def test_bias_permanence_through_training():
    net = make_net([3, 4, 2])
    for neuron in net.get_input():
        neuron.value = 1.0
    net.feed_forward()
    assert net.layer(0)[3].value == 1.0
    assert net.layer(1)[4].value == 1.0

    for _ in range(10):
        net.learn([0.0, 0.0], 0.01)
        assert net.layer(0)[3].value == 1.0
        assert net.layer(1)[4].value == 1.0
        net.feed_forward()
        assert net.layer(0)[3].value == 1.0
        assert net.layer(1)[4].value == 1.0


def test_feed_forward_is_deterministic():
    first = make_net([2, 4, 3], seed=3)
    second = make_net([2, 4, 3], seed=3)

    assert first.predict([0.25, -1.5]) == second.predict([0.25, -1.5])
    assert first.predict([0.25, -1.5]) == first.predict([0.25, -1.5])


def test_output_delta_is_raw_residual():
    net = Perceptron([1, 1], sigmoid, sigmoid_derivative, constant_initializer(0.3))
    y = net.predict([2.0])[0]
    net.learn([1.0], 0.1)
    assert net.get_output()[0].delta == pytest.approx(1.0 - y)


def test_learning_step_numerics():
    net = Perceptron([1, 1, 1], identity, identity_derivative, constant_initializer(0.5))
    assert net.predict([2.0]) == [1.25]

    net.learn([2.25], 0.1)

    assert net.get_output()[0].delta == pytest.approx(1.0)
    # hidden delta reads its outgoing weight before it is updated
    assert net.layer(1)[0].delta == pytest.approx(0.5)
    assert net.layer(0)[0].delta == pytest.approx(0.25)
    assert net.weights[1] == [[pytest.approx(0.65)], [pytest.approx(0.6)]]
    assert net.weights[0] == [[pytest.approx(0.6)], [pytest.approx(0.55)]]


def test_learning_increases_weights_on_active_path():
    net = Perceptron([2, 2, 1], identity, identity_derivative, constant_initializer(0.5))
    output = net.predict([1.0, 1.0])[0]
    before = net.weights

    net.learn([output + 1.0], 0.025)
    after = net.weights

    for source in range(2):
        assert any(after[0][source][t] > before[0][source][t] for t in range(2))


def test_sin_regression():
    net = make_net([1, 6, 6, 1], seed=7)
    rng = random.Random(1)
    for _ in range(100000):
        x = rng.uniform(-math.pi, math.pi)
        for neuron in net.get_input():
            neuron.value = x
        net.feed_forward()
        net.learn([math.sin(x)], 0.025)

    probe = math.pi / 4
    y = net.predict([probe])[0]
    assert abs(y - math.sin(probe)) <= 0.15

    net.execute(net.compile_program())
    assert net.get_output()[0].value == y


def test_header_format():
    net = make_net([2, 3, 1])
    tokens = net.dumps().split()
    assert tokens[:4] == ["3", "4", "1", "0"]
    assert len(tokens) == 4 + 3 * 3 + 4 * 1


def test_save_format_uses_single_spaces():
    net = Perceptron([1, 1], identity, identity_derivative, constant_initializer(0.5))
    assert net.dumps() == "2 1 0 0.5 0.5 "
    assert net.dumps(format=lambda w: f"{w:.3f}") == "2 1 0 0.500 0.500 "


def test_save_load_save_is_identical():
    net = make_net([2, 5, 3, 1])
    text = net.dumps()

    restored = bare_net()
    restored.load(io.StringIO(text))

    assert restored.dumps() == text
    assert restored.architecture == (2, 5, 3, 1)


def test_round_trip_forward_equivalence():
    original = make_net([2, 5, 1])
    buffer = io.StringIO()
    original.save(buffer)
    buffer.seek(0)

    restored = bare_net()
    restored.load(buffer)

    y1 = original.predict([1.0, 1.0])[0]
    y2 = restored.predict([1.0, 1.0])[0]
    assert abs(y1 - y2) <= 0.01


def test_load_pins_bias_and_resets_state():
    net = Perceptron.loads("3 3 2 0 " + "0.1 " * (3 * 2 + 3 * 2), leaky_relu, leaky_relu_derivative)

    assert net.architecture == (2, 2, 2)
    assert net.layer(0).values() == [0.0, 0.0, 1]
    assert net.layer(1).values() == [0.0, 0.0, 1]
    assert net.get_output().values() == [0.0, 0.0]


def test_load_reads_tokens_across_lines():
    text = "2\n1\n0\n0.25\n-0.75\n"
    net = Perceptron.loads(text, identity, identity_derivative)
    assert net.weights == [[[0.25], [-0.75]]]
    assert net.predict([2.0]) == [2.0 * 0.25 - 0.75]


def test_load_with_custom_parser():
    from fractions import Fraction

    net = Perceptron.loads("2 1 0 1/2 1/4 ", identity, identity_derivative, parse=Fraction)
    assert net.predict([Fraction(1, 2)]) == [Fraction(1, 2)]
    assert net.dumps() == "2 1 0 1/2 1/4 "


@pytest.mark.parametrize(
    "text",
    [
        "",
        "3 4 1",
        "3 0 ",
        "0 ",
        "3 4 1 0 0.1 0.2",
        "3 1 1 0 " + "0.1 " * 5,
        "3 x 1 0 ",
        "3 -4 1 0 ",
        "3 4.0 1 0 ",
    ],
)
def test_load_rejects_malformed_streams(text):
    with pytest.raises(AssertionError):
        bare_net().load(io.StringIO(text))


def test_load_propagates_stream_errors():
    class BrokenStream:
        def __iter__(self):
            raise OSError("disk gone")

    with pytest.raises(OSError, match="disk gone"):
        bare_net().load(BrokenStream())


@pytest.mark.parametrize("arch", [[], [3], [2, 0, 1], [0, 1]])
def test_invalid_architecture_is_rejected(arch):
    with pytest.raises(AssertionError):
        make_net(arch)


def test_missing_callbacks_are_rejected():
    with pytest.raises(AssertionError):
        Perceptron([1, 1], None, leaky_relu_derivative, constant_initializer(0.1))
    with pytest.raises(AssertionError):
        Perceptron([1, 1], leaky_relu, None, constant_initializer(0.1))
    with pytest.raises(AssertionError):
        Perceptron().load(io.StringIO("2 1 0 0.1 0.1 "))


def test_bare_network_cannot_run():
    net = bare_net()
    assert net.architecture == ()
    with pytest.raises(AssertionError):
        net.feed_forward()
    with pytest.raises(AssertionError):
        net.learn([1.0], 0.1)


def test_learn_rejects_wrong_target_length():
    net = make_net([2, 3, 2])
    net.predict([0.1, 0.2])
    with pytest.raises(AssertionError):
        net.learn([1.0], 0.1)


def test_input_views():
    net = make_net([3, 2, 1])
    inputs = net.get_input()
    assert len(inputs) == 3

    inputs[0] = 0.5
    inputs[-1] = 2.0
    for neuron in list(inputs)[1:2]:
        neuron.value = -1.0

    const_inputs = net.get_const_input()
    assert const_inputs.values() == [0.5, -1.0, 2.0]
    assert const_inputs[1] == NeuronState(-1.0, 0.0)

    with pytest.raises(TypeError):
        const_inputs[0] = 1.0
    with pytest.raises(AttributeError):
        const_inputs[0].value = 1.0
    with pytest.raises(IndexError):
        inputs[3]
    with pytest.raises(AssertionError):
        inputs.assign([1.0, 2.0])


def test_output_view_covers_whole_last_layer():
    net = make_net([2, 3, 4])
    net.predict([1.0, 1.0])
    output = net.get_output()
    assert len(output) == 4
    assert output.values() == net.layer(2).values()


def test_views_are_invalidated_by_load():
    net = make_net([2, 3, 1])
    inputs = net.get_input()
    output = net.get_output()

    net.load(io.StringIO(net.dumps()))

    with pytest.raises(AssertionError):
        list(inputs)
    with pytest.raises(AssertionError):
        output.values()
    assert len(net.get_input()) == 2


def test_weights_property_is_a_copy():
    net = make_net([1, 1])
    weights = net.weights
    weights[0][0][0] = 123.0
    assert net.weights[0][0][0] != 123.0
