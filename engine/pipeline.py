import argparse
import json
import math
import os
import random
from datetime import datetime, timezone
from pathlib import Path

from activations import ACTIVATIONS, get_activation, uniform_initializer
from perceptron import Perceptron


DEFAULT_ARCHITECTURE = (1, 6, 6, 1)
DEFAULT_ACTIVATION = "leaky_relu"
DEFAULT_LEARNING_RATE = 0.025
DEFAULT_SAMPLES = 100000
DEFAULT_SEED = 7

OUTPUT_DIR = Path(
    os.getenv(
        "NEURONET_OUTPUT_DIR",
        Path(__file__).resolve().parent.parent / "artifacts",
    )
)
MODEL_FILE = "model.txt"
METRICS_FILE = "model_metrics.json"
CARD_FILE = "model_card.json"


def parse_architecture(text):
    """Turn ``"1,6,6,1"`` into a tuple of layer widths."""
    parts = [part.strip() for part in text.split(",") if part.strip()]
    try:
        widths = tuple(int(part) for part in parts)
    except ValueError:
        raise ValueError(f"Architecture '{text}' must be a comma separated list of integers") from None
    if len(widths) < 2:
        raise ValueError("Architecture needs at least an input and an output layer, e.g. 1,6,6,1")
    if any(width < 1 for width in widths):
        raise ValueError(f"Layer widths must be positive, got {text}")
    return widths


def build_model(architecture=DEFAULT_ARCHITECTURE, activation=DEFAULT_ACTIVATION, seed=DEFAULT_SEED):
    fn, derivative = get_activation(activation)
    return Perceptron(architecture, fn, derivative, uniform_initializer(-1.0, 1.0, seed=seed))


def generate_samples(count, seed=DEFAULT_SEED):
    rng = random.Random(seed)
    samples = []
    for _ in range(count):
        x = rng.uniform(-math.pi, math.pi)
        samples.append(([x], [math.sin(x)]))
    return samples


def split_dataset(samples, train_ratio=0.8, seed=DEFAULT_SEED):
    rng = random.Random(seed)
    shuffled = samples[:]
    rng.shuffle(shuffled)
    cutoff = int(len(shuffled) * train_ratio)
    return shuffled[:cutoff], shuffled[cutoff:]


def train_model(net, samples, epochs=1, learning_rate=DEFAULT_LEARNING_RATE, verbose=True):
    """Online training: one forward pass and one learning step per sample."""
    total_steps = epochs * len(samples)
    log_interval = max(1, total_steps // 5)
    step = 0
    running_error = 0.0
    for _ in range(epochs):
        for inputs, targets in samples:
            outputs = net.predict(inputs)
            running_error += sum(abs(t - y) for t, y in zip(targets, outputs))
            net.learn(targets, learning_rate)
            step += 1

            if verbose and step % log_interval == 0:
                print(f"Step {step:06d} | avg abs error {running_error / log_interval:.4f}")
                running_error = 0.0


def evaluate(net, samples):
    errors = []
    for inputs, targets in samples:
        outputs = net.predict(inputs)
        errors.extend(abs(t - y) for t, y in zip(targets, outputs))

    if not errors:
        return {"mae": 0.0, "rmse": 0.0, "max_error": 0.0, "sample_count": 0}

    return {
        "mae": sum(errors) / len(errors),
        "rmse": math.sqrt(sum(e * e for e in errors) / len(errors)),
        "max_error": max(errors),
        "sample_count": len(samples),
    }


def save_model(net, path):
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w") as stream:
        net.save(stream)


def load_model(path, activation=DEFAULT_ACTIVATION):
    fn, derivative = get_activation(activation)
    net = Perceptron(activation=fn, activation_derivative=derivative)
    with Path(path).open() as stream:
        net.load(stream)
    return net


def export_artifacts(net, metrics, config, output_dir=None):
    output_dir = Path(output_dir or OUTPUT_DIR)
    output_dir.mkdir(parents=True, exist_ok=True)

    save_model(net, output_dir / MODEL_FILE)

    model_card = {
        "model": f"MLP ({'x'.join(str(width) for width in net.architecture)})",
        "architecture": list(net.architecture),
        "activation": config["activation"],
        "training": "Online backpropagation, fixed learning rate",
        "task": "sin(x) regression on [-pi, pi]",
        "format": "text: layer widths with biases, 0, weights row-major",
        "trained_at": datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S"),
        "config": config,
    }
    (output_dir / CARD_FILE).write_text(json.dumps(model_card, indent=2))

    metrics_payload = {key: round(value, 4) if isinstance(value, float) else value for key, value in metrics.items()}
    (output_dir / METRICS_FILE).write_text(json.dumps(metrics_payload, indent=2))


def export_reports(metrics, config, output_dir=None):
    report_dir = Path(output_dir or OUTPUT_DIR) / "reports"
    report_dir.mkdir(parents=True, exist_ok=True)

    metrics_csv = ["metric,value"]
    for key, value in metrics.items():
        metrics_csv.append(f"{key},{value:.4f}" if isinstance(value, float) else f"{key},{value}")
    (report_dir / "metrics.csv").write_text("\n".join(metrics_csv))

    report_lines = [
        "# Training Summary",
        "",
        f"Run timestamp (UTC): {datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S')}",
        "",
        "## Configuration",
        f"- Architecture: {', '.join(str(width) for width in config['architecture'])}",
        f"- Activation: {config['activation']}",
        f"- Samples: {config['samples']}",
        f"- Epochs: {config['epochs']}",
        f"- Learning rate: {config['learning_rate']}",
        f"- Seed: {config['seed']}",
        "",
        "## Evaluation",
        f"- MAE: {metrics['mae']:.4f}",
        f"- RMSE: {metrics['rmse']:.4f}",
        f"- Max error: {metrics['max_error']:.4f}",
        f"- Eval samples: {metrics['sample_count']}",
    ]
    (report_dir / "summary.md").write_text("\n".join(report_lines))


def run_training(
    architecture=DEFAULT_ARCHITECTURE,
    samples=DEFAULT_SAMPLES,
    epochs=1,
    learning_rate=DEFAULT_LEARNING_RATE,
    activation=DEFAULT_ACTIVATION,
    seed=DEFAULT_SEED,
    train_ratio=0.8,
    verbose=True,
):
    """Generate data, train, evaluate. Returns ``(net, metrics, config)``."""
    architecture = tuple(architecture)
    if architecture[0] != 1 or architecture[-1] != 1:
        raise ValueError(f"sin regression needs one input and one output, got {list(architecture)}")
    config = {
        "architecture": list(architecture),
        "samples": samples,
        "epochs": epochs,
        "learning_rate": learning_rate,
        "activation": activation,
        "seed": seed,
        "train_ratio": train_ratio,
    }
    records = generate_samples(samples, seed=seed)
    train_records, eval_records = split_dataset(records, train_ratio=train_ratio, seed=seed)

    net = build_model(architecture, activation=activation, seed=seed)
    train_model(net, train_records, epochs=epochs, learning_rate=learning_rate, verbose=verbose)
    metrics = evaluate(net, eval_records)
    return net, metrics, config


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Train a perceptron to approximate sin(x) and export it in the text model format."
    )
    parser.add_argument(
        "--architecture",
        type=parse_architecture,
        default=DEFAULT_ARCHITECTURE,
        help="Comma separated layer widths without biases (default: 1,6,6,1)",
    )
    parser.add_argument(
        "--samples",
        type=int,
        default=DEFAULT_SAMPLES,
        help=f"Number of (x, sin x) samples to generate (default: {DEFAULT_SAMPLES})",
    )
    parser.add_argument(
        "--epochs",
        type=int,
        default=1,
        help="Passes over the training split (default: 1)",
    )
    parser.add_argument(
        "--learning-rate",
        type=float,
        default=DEFAULT_LEARNING_RATE,
        help=f"Fixed learning rate (default: {DEFAULT_LEARNING_RATE})",
    )
    parser.add_argument(
        "--activation",
        default=DEFAULT_ACTIVATION,
        choices=sorted(ACTIVATIONS),
        help=f"Activation function (default: {DEFAULT_ACTIVATION})",
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=DEFAULT_SEED,
        help=f"Random seed for data and weights (default: {DEFAULT_SEED})",
    )
    parser.add_argument(
        "--train-ratio",
        type=float,
        default=1.0,
        help="Fraction of samples used for training, the rest is held out (default: 1.0)",
    )
    parser.add_argument(
        "--output-dir",
        type=Path,
        default=None,
        help="Where to write artifacts (default: $NEURONET_OUTPUT_DIR or ./artifacts)",
    )
    parser.add_argument(
        "--quiet",
        action="store_true",
        help="Suppress training progress output",
    )
    args = parser.parse_args(argv)

    net, metrics, config = run_training(
        architecture=args.architecture,
        samples=args.samples,
        epochs=args.epochs,
        learning_rate=args.learning_rate,
        activation=args.activation,
        seed=args.seed,
        train_ratio=args.train_ratio,
        verbose=not args.quiet,
    )
    if metrics["sample_count"] == 0:
        # nothing held out, score on a fresh draw
        metrics = evaluate(net, generate_samples(1000, seed=args.seed + 1))

    output_dir = args.output_dir or OUTPUT_DIR
    export_artifacts(net, metrics, config, output_dir=output_dir)
    export_reports(metrics, config, output_dir=output_dir)

    probe = math.pi / 4
    print(f"\nModel exported to {Path(output_dir) / MODEL_FILE}")
    print(f"f(pi/4) = {net.predict([probe])[0]:.4f} | sin(pi/4) = {math.sin(probe):.4f}")
    print(f"Eval MAE: {metrics['mae']:.3f} | RMSE: {metrics['rmse']:.3f}")
    return 0


if __name__ == "__main__":
    main()
