# examples/example_digits_classification.py
"""
Digit Classification with a small ConvNet

Trains a convolutional network built with clear_convnet on the sklearn digits
dataset (8x8 grayscale images of the digits 0-9).

Main steps:
1. Load the sklearn digits dataset and split it into train and test sets
2. Turn every image into an 8x8x1 Vol
3. Describe the network as a list of layer definitions
4. Train one example at a time with plain SGD + momentum, reading the
   parameters and gradients exposed by Net.get_params_and_grads()
5. Evaluate the accuracy on the test set after every epoch
6. Optionally plot the training loss and test accuracy

The update rule lives in this script on purpose: the network only computes
gradients, any trainer can consume them.
"""

import argparse
import logging
import sys
import time
import numpy as np

from clear_convnet import Net, Vol


def load_sklearn_digits(seed):
    try:
        from sklearn.datasets import load_digits
        from sklearn.model_selection import train_test_split
    except ImportError:
        logging.error("scikit-learn is required. pip install scikit-learn")
        sys.exit(1)
    digits = load_digits()
    X, y = digits.data, digits.target
    logging.info(f"Dataset loaded. X shape: {X.shape}, y shape: {y.shape}")
    X_train, X_test, y_train, y_test = train_test_split(
        X, y, test_size=0.2, random_state=seed, stratify=y)
    logging.info(f"Split into Train: {X_train.shape}, Test: {X_test.shape}")
    return (X_train, y_train), (X_test, y_test)


def to_vols(X):
    # Digits pixel values are 0-16
    return [Vol.from_array(x.reshape(8, 8, 1) / 16.0) for x in X]


class MomentumSGD:
    """Minimal trainer: SGD with momentum and L2 weight decay, one example per step."""

    def __init__(self, net, learning_rate=0.01, momentum=0.9, l2_decay=0.001):
        self.net = net
        self.learning_rate = learning_rate
        self.momentum = momentum
        self.l2_decay = l2_decay
        self.velocities = None

    def train(self, x, y):
        self.net.forward(x, is_training=True)
        loss = self.net.backward(y)

        pglist = self.net.get_params_and_grads()
        if self.velocities is None:
            self.velocities = [np.zeros_like(pg['params']) for pg in pglist]

        for pg, v in zip(pglist, self.velocities):
            p, g = pg['params'], pg['grads']
            grad = g + self.l2_decay * pg['l2_decay_mul'] * p
            v *= self.momentum
            v -= self.learning_rate * grad
            p += v      # in place, the network sees the update
            g.fill(0.0)  # parameter gradients accumulate until cleared
        return loss


def evaluate(net, vols, labels):
    correct = 0
    for x, y in zip(vols, labels):
        net.forward(x)
        correct += int(net.get_prediction() == y)
    return correct / len(labels)


def plot_history(train_losses, test_accuracies):
    import matplotlib.pyplot as plt
    fig, (ax1, ax2) = plt.subplots(1, 2, figsize=(10, 4))
    ax1.plot(range(1, len(train_losses) + 1), train_losses, marker='o')
    ax1.set_title("Average Training Loss")
    ax1.set_xlabel("Epoch")
    ax2.plot(range(1, len(test_accuracies) + 1), test_accuracies, marker='o', color='green')
    ax2.set_title("Test Accuracy")
    ax2.set_xlabel("Epoch")
    plt.tight_layout()
    plt.show()


def parse_args():
    parser = argparse.ArgumentParser(description="Train a ConvNet on the sklearn digits dataset.")
    parser.add_argument('--epochs', type=int, default=5)
    parser.add_argument('--learning-rate', type=float, default=0.01)
    parser.add_argument('--momentum', type=float, default=0.9)
    parser.add_argument('--l2-decay', type=float, default=0.001)
    parser.add_argument('--seed', type=int, default=42)
    parser.add_argument('--save', type=str, default=None, help="Write the trained network to this JSON file.")
    parser.add_argument('--plot', action='store_true', help="Plot loss and accuracy with matplotlib.")
    parser.add_argument('--verbose', action='store_true')
    return parser.parse_args()


if __name__ == "__main__":
    args = parse_args()
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format='%(asctime)s - %(levelname)s - %(message)s')

    (X_train_raw, y_train), (X_test_raw, y_test) = load_sklearn_digits(args.seed)
    train_vols, test_vols = to_vols(X_train_raw), to_vols(X_test_raw)

    rng = np.random.default_rng(args.seed)
    layer_defs = [
        {'type': 'input', 'out_sx': 8, 'out_sy': 8, 'out_depth': 1},
        # 8x8x1 -> 8x8x8 (pad 1 keeps the size)
        {'type': 'conv', 'sx': 3, 'filters': 8, 'stride': 1, 'pad': 1, 'activation': 'relu'},
        # 8x8x8 -> 4x4x8
        {'type': 'pool', 'sx': 2, 'stride': 2},
        {'type': 'fc', 'num_neurons': 32, 'activation': 'relu'},
        {'type': 'softmax', 'num_classes': 10},
    ]
    net = Net(layer_defs, rng=rng)
    print(net.summary())

    trainer = MomentumSGD(net, args.learning_rate, args.momentum, args.l2_decay)
    train_losses, test_accuracies = [], []

    for epoch in range(args.epochs):
        start = time.time()
        order = rng.permutation(len(train_vols))
        epoch_loss = 0.0
        for i in order:
            epoch_loss += trainer.train(train_vols[i], int(y_train[i]))
        train_losses.append(epoch_loss / len(order))
        test_accuracies.append(evaluate(net, test_vols, y_test))
        logging.info(f"Epoch {epoch + 1}/{args.epochs} | Loss: {train_losses[-1]:.4f} | "
                     f"Test accuracy: {test_accuracies[-1]:.4f} | {time.time() - start:.1f}s")

    if args.save:
        net.save(args.save)
    if args.plot:
        plot_history(train_losses, test_accuracies)
