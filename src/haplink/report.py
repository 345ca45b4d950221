from __future__ import annotations

import datetime as _dt
import logging
from pathlib import Path
from typing import Any, Dict, List, Sequence

from jinja2 import Template

from .models import Variant

logger = logging.getLogger(__name__)


_REPORT_TEMPLATE = Template(
    """<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <title>HapLink Report</title>
  <style>
    body { font-family: Arial, Helvetica, sans-serif; margin: 24px; }
    code, pre { background: #f6f8fa; padding: 2px 4px; border-radius: 4px; }
    h1, h2, h3 { margin-top: 1.2em; }
    table { border-collapse: collapse; margin-top: 0.6em; }
    th, td { border: 1px solid #ddd; padding: 6px 8px; }
    th { background: #f2f2f2; text-align: left; }
    .grid { display: grid; grid-template-columns: 1fr 1fr; gap: 16px; }
    .card { border: 1px solid #ddd; border-radius: 8px; padding: 12px; }
    .small { color: #666; font-size: 0.9em; }
    img { max-width: 100%; height: auto; border: 1px solid #eee; border-radius: 6px; }
  </style>
</head>
<body>

<h1>HapLink Report</h1>
<p class="small">Generated: {{ generated_at }}</p>

<h2>Run summary</h2>
<div class="grid">
  <div class="card">
    <h3>Inputs</h3>
    <table>
      <tr><th>BAM</th><td><code>{{ bam_path }}</code></td></tr>
      <tr><th>Reference</th><td><code>{{ reference }}</code></td></tr>
      <tr><th>Method</th><td>{{ params.method }}</td></tr>
    </table>
  </div>
  <div class="card">
    <h3>Thresholds</h3>
    <table>
      {% for key, value in params.items() if key != "method" %}
      <tr><th>{{ key }}</th><td>{{ value }}</td></tr>
      {% endfor %}
    </table>
  </div>
</div>

<h2>Variant calling</h2>
<table>
  {% for key, value in caller_stats.items() %}
  <tr><th>{{ key }}</th><td>{{ value }}</td></tr>
  {% endfor %}
</table>

<h3>Variants ({{ variants|length }})</h3>
<table>
  <tr><th>CHROM</th><th>POS</th><th>REF</th><th>ALT</th><th>QUAL</th><th>DP</th><th>AD</th></tr>
  {% for v in variants %}
  <tr><td>{{ v.chromosome }}</td><td>{{ v.position }}</td><td>{{ v.reference_allele }}</td>
      <td>{{ v.alternate_allele }}</td><td>{{ "%.1f"|format(v.quality) }}</td>
      <td>{{ v.total_depth }}</td><td>{{ v.alternate_depth }}</td></tr>
  {% endfor %}
</table>

<h2>Haplotypes ({{ haplotypes|length }})</h2>
<table>
  <tr><th>Haplotype</th><th>&Delta;</th><th>p</th><th>All-alternate</th><th>Resolved</th></tr>
  {% for h in haplotypes %}
  <tr><td><code>{{ h.name }}</code></td><td>{{ "%.4f"|format(h.delta) }}</td>
      <td>{{ "%.3g"|format(h.p) }}</td><td>{{ h.depth }}</td><td>{{ h.total }}</td></tr>
  {% endfor %}
</table>

<h2>Plots</h2>
<div class="grid">
  <div class="card">
    <h3>Variant frequencies</h3>
    <img src="{{ plots.variant_frequencies }}" alt="variant frequencies">
  </div>
  <div class="card">
    <h3>Haplotype occurrences</h3>
    <img src="{{ plots.haplotype_occurrences }}" alt="haplotype occurrences">
  </div>
</div>

<h2>Outputs</h2>
<ul>
  {% for name in outputs %}
  <li><code>{{ name }}</code></li>
  {% endfor %}
</ul>

<h2>Interpretation notes</h2>
<ul>
  <li>Occurrence counts only include observations with a reference or alternate call at every position.</li>
  <li>Linkage significance uses a chi-squared test with one degree of freedom regardless of haplotype size.</li>
</ul>

<hr>
<p class="small">HapLink {{ version }}</p>
</body>
</html>"""
)


def render_report(
    *,
    outdir: str | Path,
    version: str,
    bam_path: str,
    reference: str,
    params: Dict[str, Any],
    caller_stats: Dict[str, int],
    variants: Sequence[Variant],
    haplotypes: List[Dict[str, Any]],
    plots: Dict[str, str],
    outputs: Sequence[str],
) -> Path:
    outdir = Path(outdir)
    outdir.mkdir(parents=True, exist_ok=True)

    html = _REPORT_TEMPLATE.render(
        generated_at=_dt.datetime.now().isoformat(timespec="seconds"),
        version=version,
        bam_path=bam_path,
        reference=reference,
        params=params,
        caller_stats=caller_stats,
        variants=variants,
        haplotypes=haplotypes,
        plots=plots,
        outputs=outputs,
    )

    out_path = outdir / "report.html"
    out_path.write_text(html, encoding="utf-8")
    logger.info("Report written: %s", out_path)
    return out_path
