import math
import random


def leaky_relu(x):
    return x if x > 0 else x * 0.1


def leaky_relu_derivative(y):
    return 1.0 if y > 0 else 0.1


def sigmoid(x):
    return 1 / (1 + math.exp(-x))


def sigmoid_derivative(y):
    return y * (1 - y)


def tanh(x):
    return math.tanh(x)


def tanh_derivative(y):
    return 1.0 - y**2


def identity(x):
    return x


def identity_derivative(y):
    return 1.0


ACTIVATIONS = {
    "leaky_relu": (leaky_relu, leaky_relu_derivative),
    "sigmoid": (sigmoid, sigmoid_derivative),
    "tanh": (tanh, tanh_derivative),
    "identity": (identity, identity_derivative),
}


def get_activation(name):
    """Return the ``(activation, derivative)`` pair registered under ``name``."""
    try:
        return ACTIVATIONS[name]
    except KeyError:
        raise ValueError(
            f"Unknown activation '{name}', expected one of: {', '.join(sorted(ACTIVATIONS))}"
        ) from None


def uniform_initializer(low=-1.0, high=1.0, seed=None):
    """Nullary weight source drawing from ``[low, high]`` with its own RNG."""
    rng = random.Random(seed)

    def initializer():
        return rng.uniform(low, high)

    return initializer


def constant_initializer(value):
    return lambda: value
