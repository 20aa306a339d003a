from __future__ import annotations

import logging
from pathlib import Path

import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt
import pandas as pd
import seaborn as sns

from .pool import PhaseResult

LOGGER = logging.getLogger("repobench.benchmark.charts")

sns.set_style("whitegrid")
plt.rcParams["figure.dpi"] = 100
plt.rcParams["savefig.dpi"] = 300
plt.rcParams["font.size"] = 10
plt.rcParams["axes.labelsize"] = 11
plt.rcParams["axes.titlesize"] = 13

PHASE_COLORS = {
    "upload": "#2E86AB",
    "read": "#F18F01",
}

CHART_FILENAME = "phase_throughput.png"


def phases_dataframe(phases: list[PhaseResult]) -> pd.DataFrame:
    rows = [
        {
            "phase": phase.phase,
            "processed": phase.processed,
            "succeeded": phase.succeeded,
            "failed": phase.failed,
            "cancelled": phase.cancelled,
            "duration_s": phase.duration_s,
            "throughput_per_second": phase.throughput_per_second,
        }
        for phase in phases
    ]
    return pd.DataFrame(
        rows,
        columns=[
            "phase",
            "processed",
            "succeeded",
            "failed",
            "cancelled",
            "duration_s",
            "throughput_per_second",
        ],
    )


def render_phase_chart(phases_df: pd.DataFrame, output_dir: Path, title: str) -> Path:
    """Render a bar chart of per-phase throughput, annotated with failure counts."""
    chart_path = output_dir / CHART_FILENAME
    fig, ax = plt.subplots(figsize=(8, 5))

    if phases_df.empty:
        LOGGER.warning("No phase data available for throughput chart")
    else:
        sns.barplot(
            data=phases_df,
            x="phase",
            y="throughput_per_second",
            hue="phase",
            palette={p: PHASE_COLORS.get(p, "#808080") for p in phases_df["phase"]},
            legend=False,
            ax=ax,
        )
        for idx, row in enumerate(phases_df.itertuples(index=False)):
            ax.text(
                idx,
                row.throughput_per_second,
                f"{row.throughput_per_second:.1f}/s\nfailed={row.failed}",
                ha="center",
                va="bottom",
                fontweight="semibold",
            )

    ax.set_xlabel("Phase", fontweight="semibold")
    ax.set_ylabel("Throughput (objects/s)", fontweight="semibold")
    ax.set_title(title, fontweight="bold", pad=15)
    ax.grid(True, alpha=0.3, axis="y", linestyle="--")

    plt.tight_layout()
    fig.savefig(chart_path, bbox_inches="tight", facecolor="white")
    plt.close(fig)
    LOGGER.info("Rendering chart %s", chart_path)
    return chart_path
