#!/usr/bin/env python3
"""
memsize/report.py
═════════════════

Presentation of a finished scan.

Output formats
──────────────
  • Text : right-aligned table, coloured on a terminal (default)
  • JSON : ``Report.to_json()``
  • HTML : ``Report.write_html(path)`` rendered with Jinja2

Every format lists one row per type plus the synthetic ``ALL`` row, sorted
by total size, largest first.

Usage
─────
    from memsize import scan
    from memsize.report import Report

    report = Report(scan(cache))
    print(report.render(top=20))
    report.write_html("memsize.html")
"""

from __future__ import annotations

import json
import os
import sys
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, TextIO

import jinja2
from termcolor import colored

from memsize.sizes import Sizes

ALL_ROW = "ALL"

_UNITS = ("KiB", "MiB", "GiB", "TiB")


def human_size(nbytes: int) -> str:
    """Format a byte count with a binary unit suffix.

    >>> human_size(512)
    '512 B'
    >>> human_size(1536)
    '1.500 KiB'
    """
    if nbytes < 1024:
        return f"{nbytes} B"
    value = float(nbytes)
    unit = _UNITS[0]
    for unit in _UNITS:
        value /= 1024.0
        if value < 1024.0:
            break
    return f"{value:.3f} {unit}"


@dataclass(frozen=True)
class ReportLine:
    """One table row."""
    name: str
    count: int
    total: int

    @property
    def size(self) -> str:
        return human_size(self.total)


class Report:
    """Sorted, formatted view of a :class:`Sizes` result."""

    def __init__(self, sizes: Sizes) -> None:
        self.sizes = sizes

    def lines(self, top: Optional[int] = None) -> List[ReportLine]:
        """Rows sorted by total descending; *top* limits the per-type rows."""
        rows = [
            ReportLine(name, entry["count"], entry["total"])
            for name, entry in self.sizes.as_dict().items()
        ]
        rows.sort(key=lambda line: (-line.total, line.name))
        if top is not None:
            rows = rows[:max(top, 0)]
        rows.insert(0, ReportLine(ALL_ROW, self.sizes.count, self.sizes.total))
        return rows

    # ── text ────────────────────────────────────────────────────────

    def render(
        self,
        colour: Optional[bool] = None,
        top: Optional[int] = None,
        stream: Optional[TextIO] = None,
    ) -> str:
        """Text table.  *colour* defaults to whether *stream* (stdout) is a tty."""
        stream = stream if stream is not None else sys.stdout
        use_colour = colour if colour is not None else hasattr(stream, "isatty") and stream.isatty()
        rows = self.lines(top)
        name_w = max(len(row.name) for row in rows)
        count_w = max(len(str(row.count)) for row in rows)
        size_w = max(len(row.size) for row in rows)

        out: List[str] = []
        for row in rows:
            name = row.name.ljust(name_w)
            count = str(row.count).rjust(count_w)
            size = row.size.rjust(size_w)
            if use_colour:
                if row.name == ALL_ROW:
                    name = colored(name, "white", attrs=["bold"])
                    size = colored(size, "green", attrs=["bold"])
                else:
                    name = colored(name, "cyan")
                    count = colored(count, attrs=["dark"])
            out.append(f"{name}  {count}  {size}")
        return "\n".join(out) + "\n"

    # ── json ────────────────────────────────────────────────────────

    def to_dict(self, top: Optional[int] = None) -> Dict[str, Any]:
        return {
            "total": self.sizes.total,
            "bitmap_size": self.sizes.bitmap_size,
            "bitmap_utilization": self.sizes.bitmap_utilization,
            "types": [asdict(row) for row in self.lines(top)[1:]],
        }

    def to_json(self, top: Optional[int] = None, indent: int = 2) -> str:
        return json.dumps(self.to_dict(top), indent=indent)

    # ── html ────────────────────────────────────────────────────────

    def render_html(
        self,
        top: Optional[int] = None,
        template_path: Optional[str] = None,
    ) -> str:
        env = jinja2.Environment(autoescape=True)
        tmpl = env.from_string(_load_template(template_path))
        return tmpl.render(
            rows=self.lines(top),
            total=human_size(self.sizes.total),
            bitmap_size=human_size(self.sizes.bitmap_size),
            bitmap_utilization=self.sizes.bitmap_utilization,
        )

    def write_html(
        self,
        path: str,
        top: Optional[int] = None,
        template_path: Optional[str] = None,
    ) -> None:
        Path(path).write_text(self.render_html(top, template_path), encoding="utf-8")


def _load_template(template_path: Optional[str]) -> str:
    """Resolve the HTML template: argument, then $MEMSIZE_HTML_TEMPLATE."""
    if template_path:
        return Path(template_path).read_text(encoding="utf-8")
    env_tmpl = os.environ.get("MEMSIZE_HTML_TEMPLATE", "")
    if env_tmpl and Path(env_tmpl).is_file():
        return Path(env_tmpl).read_text(encoding="utf-8")
    return _DEFAULT_HTML_TEMPLATE


_DEFAULT_HTML_TEMPLATE = """\
<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<title>memsize report</title>
<style>
  body { font-family: sans-serif; margin: 2em; }
  table { border-collapse: collapse; }
  th, td { padding: 4px 12px; border-bottom: 1px solid #ddd; }
  td.num { text-align: right; font-family: monospace; }
  tr.all { font-weight: bold; }
</style>
</head>
<body>
<h1>memsize report ({{ total }})</h1>
<table>
  <tr><th>Type</th><th>Count</th><th>Size</th></tr>
  {% for row in rows %}
  <tr{% if loop.first %} class="all"{% endif %}>
    <td>{{ row.name }}</td>
    <td class="num">{{ row.count }}</td>
    <td class="num">{{ row.size }}</td>
  </tr>
  {% endfor %}
</table>
<p>Bitmap: {{ bitmap_size }}, {{ "%.1f"|format(bitmap_utilization * 100) }}% used</p>
</body>
</html>
"""
