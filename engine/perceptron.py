import io
from collections import namedtuple

import program as _program


NeuronState = namedtuple("NeuronState", ["value", "delta"])


class Neuron:
    __slots__ = ("value", "delta")

    def __init__(self, value=0.0, delta=0.0):
        self.value = value
        self.delta = delta

    def __repr__(self):
        return f"Neuron(value={self.value}, delta={self.delta})"


class ConstLayerView:
    """Read-only window over ``layer[start:stop]``. Items are ``NeuronState`` copies."""

    def __init__(self, net, index, start, stop):
        self._net = net
        self._index = index
        self._start = start
        self._stop = stop
        self._generation = net._generation

    def _neurons(self):
        assert self._generation == self._net._generation, "view used after the network was reloaded"
        return self._net._layers[self._index]

    def _position(self, i):
        size = len(self)
        if i < 0:
            i += size
        if not 0 <= i < size:
            raise IndexError("view index out of range")
        return self._start + i

    def __len__(self):
        return self._stop - self._start

    def __getitem__(self, i):
        neuron = self._neurons()[self._position(i)]
        return NeuronState(neuron.value, neuron.delta)

    def __iter__(self):
        neurons = self._neurons()
        for j in range(self._start, self._stop):
            yield NeuronState(neurons[j].value, neurons[j].delta)

    def values(self):
        return [state.value for state in self]

    def __repr__(self):
        return f"{type(self).__name__}({self.values()})"


class LayerView(ConstLayerView):
    """Writable window; iteration yields the live ``Neuron`` objects."""

    def __getitem__(self, i):
        return self._neurons()[self._position(i)]

    def __setitem__(self, i, value):
        self._neurons()[self._position(i)].value = value

    def __iter__(self):
        neurons = self._neurons()
        for j in range(self._start, self._stop):
            yield neurons[j]

    def assign(self, values):
        values = list(values)
        assert len(values) == len(self), f"expected {len(self)} input values, got {len(values)}"
        neurons = self._neurons()
        for j, value in zip(range(self._start, self._stop), values):
            neurons[j].value = value


def _read_tokens(stream):
    for line in stream:
        yield from line.split()


def _build_layers(widths):
    layers = []
    for i, width in enumerate(widths):
        layer = [Neuron() for _ in range(width)]
        if i != len(widths) - 1:
            layer[-1].value = 1  # bias
        layers.append(layer)
    return layers


class Perceptron:
    """Multilayer perceptron with online backpropagation.

    ``Perceptron(arch, activation, activation_derivative, initializer)`` builds a
    net from user widths (biases excluded) and draws every weight from
    ``initializer()``. ``Perceptron(activation=..., activation_derivative=...)``
    creates an empty net meant to be filled by :meth:`load`.

    ``activation_derivative`` receives the post-activation value.
    """

    def __init__(self, arch=None, activation=None, activation_derivative=None, initializer=None):
        self.activation = activation
        self.activation_derivative = activation_derivative
        self._layers = []
        self._weights = []
        self._generation = 0

        if arch is None:
            return

        arch = list(arch)
        assert len(arch) > 1, "a network needs at least an input and an output layer"
        assert all(width > 0 for width in arch), f"layer widths must be positive, got {arch}"
        self._check_callbacks()
        assert callable(initializer), "a weight initializer is required to build from an architecture"

        widths = [width + 1 for width in arch[:-1]] + [arch[-1]]
        self._layers = _build_layers(widths)
        for i in range(1, len(arch)):
            self._weights.append(
                [[initializer() for _ in range(arch[i])] for _ in range(arch[i - 1] + 1)]
            )

    @classmethod
    def loads(cls, text, activation, activation_derivative, parse=float):
        net = cls(activation=activation, activation_derivative=activation_derivative)
        net.load(io.StringIO(text), parse=parse)
        return net

    def __repr__(self):
        return f"Perceptron(architecture={list(self.architecture)})"

    def _check_callbacks(self):
        assert callable(self.activation), "activation callback is not set"
        assert callable(self.activation_derivative), "activation derivative callback is not set"

    def _check_built(self):
        assert len(self._layers) > 1, "network has no layers; construct it from an architecture or load it"
        self._check_callbacks()

    def _target_count(self, i):
        # neurons of layer i + 1 that receive weights
        nxt = self._layers[i + 1]
        return len(nxt) if i + 1 == len(self._layers) - 1 else len(nxt) - 1

    # Accessors ---------------------------------------------------------------

    @property
    def architecture(self):
        """User-visible widths, biases excluded."""
        if not self._layers:
            return ()
        return tuple(len(layer) - 1 for layer in self._layers[:-1]) + (len(self._layers[-1]),)

    @property
    def weights(self):
        return [[list(row) for row in matrix] for matrix in self._weights]

    def layer(self, index):
        """Read-only view over a whole layer, bias included."""
        if index < 0:
            index += len(self._layers)
        if not 0 <= index < len(self._layers):
            raise IndexError("layer index out of range")
        layer = self._layers[index]
        return ConstLayerView(self, index, 0, len(layer))

    def get_input(self):
        self._check_built()
        return LayerView(self, 0, 0, len(self._layers[0]) - 1)

    def get_const_input(self):
        self._check_built()
        return ConstLayerView(self, 0, 0, len(self._layers[0]) - 1)

    def get_output(self):
        self._check_built()
        last = len(self._layers) - 1
        return ConstLayerView(self, last, 0, len(self._layers[last]))

    # Passes ------------------------------------------------------------------

    def feed_forward(self):
        self._check_built()
        activation = self.activation
        for i in range(len(self._layers) - 1):
            current = self._layers[i]
            nxt = self._layers[i + 1]
            weights = self._weights[i]
            for t in range(self._target_count(i)):
                total = 0
                for s, neuron in enumerate(current):
                    total += neuron.value * weights[s][t]
                nxt[t].value = activation(total)

    def predict(self, inputs):
        """Assign ``inputs``, run a forward pass and return the output values."""
        self.get_input().assign(inputs)
        self.feed_forward()
        return [neuron.value for neuron in self._layers[-1]]

    def compile_program(self):
        return _program.compile_program(self)

    def execute(self, program):
        """Run a compiled forward program; same result as :meth:`feed_forward`."""
        _program.execute(self, program)

    def learn(self, targets, learning_rate):
        """One online gradient step towards ``targets`` for the last forward pass.

        The output error is the raw residual ``target - value``; only hidden
        layers multiply by the activation derivative. Deeper weights are
        updated before shallower deltas read them.
        """
        self._check_built()
        output = self._layers[-1]
        targets = list(targets)
        assert len(targets) == len(output), f"expected {len(output)} targets, got {len(targets)}"

        for neuron, target in zip(output, targets):
            neuron.delta = target - neuron.value

        derivative = self.activation_derivative
        for i in range(len(self._layers) - 2, -1, -1):
            current = self._layers[i]
            nxt = self._layers[i + 1]
            weights = self._weights[i]
            count = self._target_count(i)
            for s, neuron in enumerate(current):
                row = weights[s]
                delta = 0
                for t in range(count):
                    delta += nxt[t].delta * row[t]
                neuron.delta = delta * derivative(neuron.value)
                for t in range(count):
                    row[t] += neuron.value * nxt[t].delta * learning_rate

    # Text I/O ----------------------------------------------------------------

    def save(self, stream, format=str):
        """Write ``widths... 0 weights...`` with widths counting biases."""
        assert len(self._layers) > 1, "cannot save a network without layers"
        for layer in self._layers:
            stream.write(f"{len(layer)} ")
        stream.write("0 ")
        for matrix in self._weights:
            for row in matrix:
                for weight in row:
                    stream.write(f"{format(weight)} ")

    def dumps(self, format=str):
        buffer = io.StringIO()
        self.save(buffer, format=format)
        return buffer.getvalue()

    def load(self, stream, parse=float):
        """Replace the whole network with one read from ``stream``.

        Widths in the stream already include biases. Views taken before the
        call are invalidated.
        """
        self._check_callbacks()
        tokens = _read_tokens(stream)

        widths = []
        while True:
            token = next(tokens, None)
            assert token is not None, "stream ended before the layer header sentinel"
            assert token.isdecimal(), f"layer width {token!r} in header is not a non-negative integer"
            width = int(token)
            if width == 0:
                break
            widths.append(width)
        assert len(widths) > 1, f"header describes {len(widths)} layer(s), need at least 2"
        # a hidden layer must hold more than its bias
        assert all(width > 1 for width in widths[:-1]), f"hidden layer without neurons in header {widths}"

        self._generation += 1
        self._layers = _build_layers(widths)
        self._weights = []
        for i in range(1, len(widths)):
            cols = widths[i] - (0 if i == len(widths) - 1 else 1)
            matrix = []
            for _ in range(widths[i - 1]):
                row = []
                for _ in range(cols):
                    token = next(tokens, None)
                    assert token is not None, "stream ended in the middle of the weights"
                    row.append(parse(token))
                matrix.append(row)
            self._weights.append(matrix)
