"""Forward pass as bytecode. Arguments are 8-byte little-endian unsigned ints.

    ADD n             next[mod] += current[n] * weights[layer][n][mod]
    SET_ZERO          next[mod] = 0
    SET_MOD_NEURON n  mod = n
    ACTIVATE n        next[n] = activation(next[n])
    NEXT_LAYER        layer += 1
"""

import struct

ADD = 0
SET_ZERO = 1
SET_MOD_NEURON = 2
ACTIVATE = 3
NEXT_LAYER = 4

OPCODE_NAMES = {
    ADD: "ADD",
    SET_ZERO: "SET_ZERO",
    SET_MOD_NEURON: "SET_MOD_NEURON",
    ACTIVATE: "ACTIVATE",
    NEXT_LAYER: "NEXT_LAYER",
}

_SIZE = struct.Struct("<Q")
SIZE_WIDTH = _SIZE.size

_HAS_ARGUMENT = {ADD, SET_MOD_NEURON, ACTIVATE}


class Program:
    def __init__(self, widths=()):
        self.widths = tuple(widths)
        self.byte_code = bytearray()

    def __len__(self):
        return len(self.byte_code)

    def __repr__(self):
        return f"Program(widths={list(self.widths)}, size={len(self)})"

    def add_byte(self, b):
        self.byte_code.append(b)

    def add_size(self, s):
        self.byte_code += _SIZE.pack(s)

    def at(self, i):
        return self.byte_code[i]

    def at_size(self, i):
        return _SIZE.unpack_from(self.byte_code, i)[0]

    def instructions(self):
        """Yield ``(opcode, argument)`` pairs; argument is ``None`` for bare opcodes."""
        i = 0
        while i < len(self.byte_code):
            op = self.at(i)
            i += 1
            assert op in OPCODE_NAMES, f"unknown opcode {op} at offset {i - 1}"
            if op in _HAS_ARGUMENT:
                yield op, self.at_size(i)
                i += SIZE_WIDTH
            else:
                yield op, None

    def disassemble(self):
        lines = []
        for op, arg in self.instructions():
            name = OPCODE_NAMES[op]
            lines.append(name if arg is None else f"{name} {arg}")
        return "\n".join(lines)


def compile_program(net):
    """Translate ``net``'s current layout into a forward program."""
    widths = [len(net.layer(i)) for i in range(len(net.architecture))]
    assert len(widths) > 1, "cannot compile a network without layers"

    program = Program(widths)
    last = len(widths) - 1
    for i in range(last):
        targets = widths[i + 1] if i + 1 == last else widths[i + 1] - 1
        for t in range(targets):
            program.add_byte(SET_MOD_NEURON)
            program.add_size(t)
            program.add_byte(SET_ZERO)
            for s in range(widths[i]):
                program.add_byte(ADD)
                program.add_size(s)
            program.add_byte(ACTIVATE)
            program.add_size(t)
        program.add_byte(NEXT_LAYER)
    return program


def execute(net, program):
    """Run ``program`` against ``net``'s layers, writing neuron values in place."""
    net._check_built()
    layers = net._layers
    assert program.widths == tuple(len(layer) for layer in layers), (
        f"program compiled for widths {list(program.widths)}, network has "
        f"{[len(layer) for layer in layers]}"
    )
    activation = net.activation
    weights = net._weights

    layer = 0
    mod = 0
    for op, arg in program.instructions():
        if op == ADD:
            layers[layer + 1][mod].value += layers[layer][arg].value * weights[layer][arg][mod]
        elif op == SET_ZERO:
            layers[layer + 1][mod].value = 0
        elif op == SET_MOD_NEURON:
            mod = arg
        elif op == ACTIVATE:
            neuron = layers[layer + 1][arg]
            neuron.value = activation(neuron.value)
        elif op == NEXT_LAYER:
            layer += 1
