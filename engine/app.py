import json
import logging
import os
import threading
from pathlib import Path

from flask import Flask, jsonify, request
from flask_cors import CORS

from activations import ACTIVATIONS
from pipeline import (
    CARD_FILE,
    DEFAULT_ACTIVATION,
    DEFAULT_ARCHITECTURE,
    DEFAULT_LEARNING_RATE,
    DEFAULT_SEED,
    METRICS_FILE,
    MODEL_FILE,
    OUTPUT_DIR,
    export_artifacts,
    export_reports,
    load_model,
    parse_architecture,
    run_training,
)

app = Flask(__name__)
CORS(app)

_training_lock = threading.Lock()


def model_path():
    return Path(OUTPUT_DIR) / MODEL_FILE


def load_model_text():
    path = model_path()
    if not path.exists():
        return None
    return path.read_text()


def load_metrics():
    """Load metrics from model_metrics.json."""
    path = Path(OUTPUT_DIR) / METRICS_FILE
    if not path.exists():
        return {}
    try:
        return json.loads(path.read_text())
    except json.JSONDecodeError:
        logging.exception("Corrupt metrics file %s", path)
        return {}


def load_model_card():
    """Load model card from model_card.json."""
    path = Path(OUTPUT_DIR) / CARD_FILE
    if not path.exists():
        return {}
    try:
        return json.loads(path.read_text())
    except json.JSONDecodeError:
        logging.exception("Corrupt model card %s", path)
        return {}


def _error(message, status):
    return jsonify({"status": "error", "message": message}), status


@app.route("/api/status", methods=["GET"])
def status():
    """Return current model status."""
    return jsonify(
        {
            "model_loaded": model_path().exists(),
            "training": _training_lock.locked(),
            "metrics": load_metrics(),
            "card": load_model_card(),
        }
    )


@app.route("/api/train", methods=["POST"])
def train():
    """Train a new model with specified parameters."""
    payload = request.get_json(silent=True) or {}
    if not isinstance(payload, dict):
        return _error("JSON object body required", 400)
    try:
        architecture = payload.get("architecture", DEFAULT_ARCHITECTURE)
        if isinstance(architecture, str):
            architecture = parse_architecture(architecture)
        else:
            architecture = parse_architecture(",".join(str(width) for width in architecture))
        samples = int(payload.get("samples", 20000))
        epochs = int(payload.get("epochs", 1))
        learning_rate = float(payload.get("learning_rate", DEFAULT_LEARNING_RATE))
        seed = int(payload.get("seed", DEFAULT_SEED))
        train_ratio = float(payload.get("train_ratio", 0.8))
        activation = payload.get("activation", DEFAULT_ACTIVATION)
        if activation not in ACTIVATIONS:
            raise ValueError(f"Unknown activation '{activation}'")
        if samples < 1 or epochs < 1 or not 0.0 < train_ratio <= 1.0:
            raise ValueError("samples and epochs must be positive and train_ratio in (0, 1]")
        if architecture[0] != 1 or architecture[-1] != 1:
            raise ValueError("The sin model needs one input and one output neuron")
    except (TypeError, ValueError) as exc:
        return _error(str(exc), 400)

    if not _training_lock.acquire(blocking=False):
        return _error("A training run is already in progress.", 409)
    try:
        net, metrics, config = run_training(
            architecture=architecture,
            samples=samples,
            epochs=epochs,
            learning_rate=learning_rate,
            activation=activation,
            seed=seed,
            train_ratio=train_ratio,
            verbose=False,
        )
        export_artifacts(net, metrics, config, output_dir=OUTPUT_DIR)
        export_reports(metrics, config, output_dir=OUTPUT_DIR)

        return jsonify(
            {
                "status": "success",
                "message": f"Training complete. MAE: {metrics['mae']:.3f}",
                "metrics": load_metrics(),
                "card": load_model_card(),
            }
        )

    except Exception:
        logging.exception("Error while training model")
        return _error("An internal error occurred while training the model.", 500)
    finally:
        _training_lock.release()


@app.route("/api/infer", methods=["POST"])
def infer():
    """Run a forward pass of the saved model on the provided inputs."""
    payload = request.get_json(silent=True) or {}
    if not isinstance(payload, dict):
        return _error("JSON object body required", 400)
    inputs = payload.get("inputs")
    if inputs is None and "x" in payload:
        inputs = [payload["x"]]
    if not isinstance(inputs, list):
        return _error("'inputs' must be a list of numbers", 400)
    try:
        inputs = [float(value) for value in inputs]
    except (TypeError, ValueError):
        return _error("'inputs' must be a list of numbers", 400)

    if not model_path().exists():
        return _error("No model loaded", 400)

    try:
        activation = load_model_card().get("activation", DEFAULT_ACTIVATION)
        net = load_model(model_path(), activation=activation)
        if len(inputs) != net.architecture[0]:
            return _error(f"Model expects {net.architecture[0]} input(s), got {len(inputs)}", 400)

        outputs = net.predict(inputs)
        return jsonify(
            {
                "status": "success",
                "inputs": inputs,
                "outputs": outputs,
                "architecture": list(net.architecture),
            }
        )

    except Exception:
        logging.exception("Error while running inference")
        return _error("An internal error occurred while running inference.", 500)


@app.route("/api/model", methods=["GET"])
def get_model_data():
    """Return the saved model text plus its metrics and card."""
    return jsonify(
        {
            "model": load_model_text(),
            "metrics": load_metrics(),
            "card": load_model_card(),
        }
    )


if __name__ == "__main__":
    debug = os.environ.get("FLASK_DEBUG", "0") == "1"
    app.run(debug=debug, port=5000, host="127.0.0.1")
