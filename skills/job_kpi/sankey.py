"""Sankey PNG rendering of the sales funnel."""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from pathlib import Path

from skills.job_kpi.kpi import FunnelFlows


@dataclass(slots=True)
class Node:
    name: str
    x: float
    y: float
    h: float
    color: str


def _setup_matplotlib() -> None:
    tmp_cache = Path(tempfile.gettempdir()) / "mplcache"
    tmp_cache.mkdir(parents=True, exist_ok=True)
    os.environ.setdefault("MPLCONFIGDIR", str(tmp_cache / "matplotlib"))
    os.environ.setdefault("XDG_CACHE_HOME", str(tmp_cache))


def _curve_path(x0: float, x1: float, y0: float, y1: float):
    from matplotlib.path import Path as MplPath

    c = (x1 - x0) * 0.45
    return [
        (MplPath.MOVETO, (x0, y0)),
        (MplPath.CURVE4, (x0 + c, y0)),
        (MplPath.CURVE4, (x1 - c, y1)),
        (MplPath.CURVE4, (x1, y1)),
    ]


def _draw_flow(ax, x0: float, x1: float, y0_top: float, y0_bot: float, y1_top: float, y1_bot: float, color: str, alpha: float = 0.52):
    from matplotlib.path import Path as MplPath
    from matplotlib.patches import PathPatch

    top = _curve_path(x0, x1, y0_top, y1_top)
    bot = _curve_path(x1, x0, y1_bot, y0_bot)

    verts = [pt for _, pt in top] + [pt for _, pt in bot] + [top[0][1]]
    codes = [code for code, _ in top] + [code for code, _ in bot] + [MplPath.CLOSEPOLY]
    ax.add_patch(PathPatch(MplPath(verts, codes), facecolor=color, edgecolor="none", alpha=alpha))


def funnel_flow_list(flows: FunnelFlows) -> list[tuple[str, str, int, str]]:
    """Edges of the chart as (source, target, count, color); zero edges are dropped."""
    edges = [
        ("appointments", "contingencies", flows.appt_to_contingency, "#C9B1D2"),
        ("appointments", "contracts", flows.appt_to_contract, "#A9C1DA"),
        ("appointments", "lost_appt", flows.lost_after_appt, "#F1A8AE"),
        ("contingencies", "contracts", flows.contingency_to_contract, "#B8CCE2"),
        ("contingencies", "lost_contingency", flows.lost_after_contingency, "#F0AAB1"),
        ("contracts", "installs", flows.installs, "#AADAA6"),
        ("contracts", "lost_contract", flows.lost_after_contract, "#F08A96"),
    ]
    return [edge for edge in edges if edge[2] > 0]


def render_funnel_sankey(flows: FunnelFlows, title: str, out_path: str) -> str:
    _setup_matplotlib()
    import matplotlib

    matplotlib.use("Agg")
    import matplotlib.pyplot as plt
    from matplotlib.patches import Rectangle

    plt.rcParams["font.sans-serif"] = ["Inter", "Arial", "DejaVu Sans"]
    plt.rcParams["axes.unicode_minus"] = False

    vals = {
        "appointments": max(flows.appointments, 0),
        "contingencies": max(flows.contingencies, 0),
        "contracts": max(flows.contracts, 0),
        "installs": max(flows.installs, 0),
        "lost_appt": max(flows.lost_after_appt, 0),
        "lost_contingency": max(flows.lost_after_contingency, 0),
        "lost_contract": max(flows.lost_after_contract, 0),
    }

    max_total = max(vals["appointments"], 1)
    scale = 0.56 / max_total

    node_defs = {
        "appointments": Node("Appointments", 0.08, 0.50, vals["appointments"] * scale, "#BDBDBD"),
        "contingencies": Node("Contingency Signed", 0.34, 0.84, vals["contingencies"] * scale, "#A675B0"),
        "lost_appt": Node("Lost (Appt)", 0.34, 0.24, vals["lost_appt"] * scale, "#E15B61"),
        "contracts": Node("Contract Signed", 0.60, 0.62, vals["contracts"] * scale, "#4C79A8"),
        "lost_contingency": Node("Lost (Contingency)", 0.60, 0.94, vals["lost_contingency"] * scale, "#E15B61"),
        "installs": Node("Installed", 0.86, 0.70, vals["installs"] * scale, "#4CAF50"),
        "lost_contract": Node("Lost (Contract)", 0.86, 0.36, vals["lost_contract"] * scale, "#D1495B"),
    }
    # nodes with nothing in them are not drawn
    nodes = {key: node for key, node in node_defs.items() if vals[key] > 0 or key == "appointments"}

    fig, ax = plt.subplots(figsize=(14, 9), dpi=100)
    fig.patch.set_facecolor("#FFFFFF")
    ax.set_facecolor("#FFFFFF")
    ax.set_xlim(0, 1)
    ax.set_ylim(0, 1)
    ax.axis("off")

    node_w = 0.024

    def top(node: Node) -> float:
        return node.y + node.h / 2

    out_cursor = {k: top(v) for k, v in nodes.items()}
    in_cursor = {k: top(v) for k, v in nodes.items()}

    def alloc_out(k: str, v: int) -> tuple[float, float]:
        h = v * scale
        y0 = out_cursor[k]
        y1 = y0 - h
        out_cursor[k] = y1
        return y0, y1

    def alloc_in(k: str, v: int) -> tuple[float, float]:
        h = v * scale
        y0 = in_cursor[k]
        y1 = y0 - h
        in_cursor[k] = y1
        return y0, y1

    for src, dst, val, color in funnel_flow_list(flows):
        if src not in nodes or dst not in nodes:
            continue
        y0t, y0b = alloc_out(src, val)
        y1t, y1b = alloc_in(dst, val)
        _draw_flow(ax, nodes[src].x + node_w / 2, nodes[dst].x - node_w / 2, y0t, y0b, y1t, y1b, color)

    for key, node in nodes.items():
        ax.add_patch(Rectangle((node.x - node_w / 2, node.y - node.h / 2), node_w, node.h, facecolor=node.color, edgecolor="none"))
        ax.text(node.x + 0.038, node.y + 0.018, str(vals[key]), fontsize=28 if key == "appointments" else 24, fontweight="bold", ha="left", va="center")
        ax.text(node.x + 0.038, node.y - 0.018, node.name, fontsize=20 if key == "appointments" else 18, ha="left", va="center")

    ax.text(
        0.5,
        0.06,
        title,
        ha="center",
        va="center",
        fontsize=32,
        fontweight="bold",
        color="#FFFFFF",
        bbox=dict(boxstyle="square,pad=0.45", facecolor="#6E726D", edgecolor="none"),
    )

    output = Path(out_path).expanduser().resolve()
    output.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(output, dpi=160, bbox_inches="tight", facecolor=fig.get_facecolor())
    plt.close(fig)
    return str(output)
