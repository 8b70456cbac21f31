"""
Consumption charts. Produces an image file or returns data for any frontend.
"""

from pathlib import Path
from typing import List, Tuple

from sipsafe.analytics import AnalyticsResult


def chart_data(result: AnalyticsResult) -> List[Tuple[str, int, float]]:
    """(label, drink_count, pure_alcohol_ml) per bucket, in bucket order."""
    return [(b.label, b.count, round(b.pure_alcohol_ml, 2)) for b in result.buckets]


def save_analytics_chart(
    result: AnalyticsResult,
    output_path: str = "consumption.png",
    title: str = "Drinks logged",
) -> str:
    """
    Bar chart of drinks per bucket, saved to file.
    Returns path to saved file. Requires: pip install matplotlib
    """
    try:
        import matplotlib
        matplotlib.use("Agg")
        import matplotlib.pyplot as plt
    except ImportError:
        raise ImportError("matplotlib is required for save_analytics_chart. pip install matplotlib")

    rows = chart_data(result)
    labels = [r[0] for r in rows]
    counts = [r[1] for r in rows]

    fig, ax = plt.subplots(figsize=(10, 5))
    ax.bar(range(len(rows)), counts, color="#ff4000")
    ax.set_xticks(range(len(rows)))
    ax.set_xticklabels(labels, rotation=45, ha="right", fontsize=8)
    ax.set_ylabel("Drinks")
    ax.set_title(
        f"{title} ({result.range}): {result.total_drinks} total, trend {result.direction}"
    )
    ax.set_ylim(bottom=0)
    ax.grid(True, axis="y", alpha=0.3)
    fig.tight_layout()
    Path(output_path).parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(output_path, dpi=150)
    plt.close(fig)
    return output_path
