"""Plot the Griewank energy landscape over a 2-D slice and its decomposition."""

from pathlib import Path

import matplotlib.pyplot as plt
import numpy as np

from febopy import build_graph, evaluate_batch, load_document, resolve_parameters


doc = load_document(Path(__file__).with_name("griewank.febo.yaml"))
graph = build_graph(doc, resolve_parameters(doc, {"n": 2}))

xs = np.linspace(-10.0, 10.0, 121)
grid = [{"x": [a, b]} for b in xs for a in xs]
results = evaluate_batch(graph, grid)
total = np.array([r.total for r in results]).reshape(xs.size, xs.size)
bowl = np.array([r.audit.hamiltonians["H_bowl"].value for r in results]).reshape(xs.size, xs.size)

fig, (ax0, ax1) = plt.subplots(1, 2, figsize=(10, 4.2))
im = ax0.contourf(xs, xs, total, levels=40, cmap="viridis")
fig.colorbar(im, ax=ax0)
ax0.set_xlabel(r"$x_1$")
ax0.set_ylabel(r"$x_2$")
ax0.set_title(r"$H_{total}$")

mid = xs.size // 2
ax1.plot(xs, total[mid], label="total")
ax1.plot(xs, bowl[mid], label="H_bowl")
ax1.plot(xs, total[mid] - bowl[mid], label="H_oscillation + H_offset")
ax1.set_xlabel(r"$x_1$ at $x_2 = 0$")
ax1.legend()
ax1.grid(alpha=0.3)
fig.tight_layout()
plt.show()
