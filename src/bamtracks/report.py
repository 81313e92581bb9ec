from __future__ import annotations

import datetime as _dt
import logging
import math
from pathlib import Path
from typing import Any, Dict

from jinja2 import Template

logger = logging.getLogger(__name__)


_REPORT_TEMPLATE = Template(
    """<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <title>bamtracks error-rate report</title>
  <style>
    body { font-family: Arial, Helvetica, sans-serif; margin: 24px; }
    code, pre { background: #f6f8fa; padding: 2px 4px; border-radius: 4px; }
    h1, h2, h3 { margin-top: 1.2em; }
    table { border-collapse: collapse; margin-top: 0.6em; }
    th, td { border: 1px solid #ddd; padding: 8px; }
    th { background: #f2f2f2; text-align: left; }
    .grid { display: grid; grid-template-columns: 1fr 1fr; gap: 16px; }
    .card { border: 1px solid #ddd; border-radius: 8px; padding: 12px; }
    .small { color: #666; font-size: 0.9em; }
    img { max-width: 100%; height: auto; border: 1px solid #eee; border-radius: 6px; }
  </style>
</head>
<body>

<h1>Substitution error rates</h1>
<p class="small">Generated: {{ generated_at }}</p>

<h2>Run summary</h2>
<div class="grid">
  <div class="card">
    <h3>Inputs</h3>
    <table>
      <tr><th>Alignment</th><td><code>{{ run.bam_path }}</code></td></tr>
      <tr><th>Reference</th><td><code>{{ run.genome }}</code></td></tr>
      <tr><th>BED</th><td><code>{{ run.bed or "-" }}</code></td></tr>
      <tr><th>VCF</th><td><code>{{ run.vcf or "-" }}</code></td></tr>
      <tr><th>Regions avoided</th><td>{{ run.avoid }}</td></tr>
    </table>
  </div>
  <div class="card">
    <h3>Thresholds</h3>
    <table>
      {% for key, value in settings.items() %}
      <tr><th>{{ key }}</th><td>{{ value }}</td></tr>
      {% endfor %}
      <tr><th>max_allelic_fraction</th><td>{{ run.max_allelic_fraction }}</td></tr>
      <tr><th>max_error_depth</th><td>{{ run.max_error_depth }}</td></tr>
      <tr><th>stranded</th><td>{{ run.stranded }}</td></tr>
    </table>
  </div>
</div>

<h2>Reads and loci</h2>
<div class="grid">
  <table>
    {% for key, value in counts.items() %}
    <tr><th>{{ key }}</th><td>{{ value }}</td></tr>
    {% endfor %}
  </table>
  <table>
    {% for key, value in loci.items() %}
    <tr><th>{{ key }}</th><td>{{ value }}</td></tr>
    {% endfor %}
  </table>
</div>

<h2>Error rates</h2>
<table>
  <tr><th>Ref</th><th>Observed</th><th>Eligible</th><th>Errors</th><th>Rate</th></tr>
  {% for r in rates %}
  <tr><td>{{ r.ref }}</td><td>{{ r.alt }}</td><td>{{ r.eligible }}</td><td>{{ r.errors }}</td><td>{{ r.rate_str }}</td></tr>
  {% endfor %}
</table>

<h2>Plots</h2>
<div class="grid">
  <div class="card">
    <h3>Error-rate matrix</h3>
    <img src="{{ plots.error_heatmap }}" alt="error heatmap">
  </div>
  <div class="card">
    <h3>Locus outcomes</h3>
    <img src="{{ plots.locus_counts }}" alt="locus outcomes">
  </div>
</div>

<h2>Interpretation notes</h2>
<ul>
  <li>Loci with more than max_error_depth alternate bases at an allelic fraction above max_allelic_fraction are treated as variants and excluded.</li>
  {% if run.stranded %}
  <li>Minus-strand bases are counted against the complement of the reference base.</li>
  {% endif %}
</ul>

<hr>
<p class="small">bamtracks {{ version }}</p>
</body>
</html>"""
)


def _fmt_rate(rate: Any) -> str:
    r = float(rate)
    if math.isnan(r):
        return "n/a"
    return f"{r:.3e}"


def render_error_report(
    *,
    outdir: str | Path,
    version: str,
    run: Dict[str, Any],
    plots: Dict[str, str],
) -> Path:
    outdir = Path(outdir)
    outdir.mkdir(parents=True, exist_ok=True)

    rates = [dict(r, rate_str=_fmt_rate(r["rate"])) for r in run.get("rates", [])]

    html = _REPORT_TEMPLATE.render(
        generated_at=_dt.datetime.now().isoformat(timespec="seconds"),
        version=version,
        run=run,
        settings=run.get("settings", {}),
        counts=run.get("counts", {}),
        loci=run.get("loci", {}),
        rates=rates,
        plots=plots,
    )

    out_path = outdir / "report.html"
    out_path.write_text(html, encoding="utf-8")
    return out_path
