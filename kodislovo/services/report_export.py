"""
Report Export
=============
CSV, printable HTML and JSON renderings of the instructor list and of
autocheck reports. CSV uses ';' as the separator so spreadsheet apps in
ru-RU locales open it without an import dialog.
"""

import csv
import io
import json
import logging

from jinja2 import Environment, PackageLoader, select_autoescape

logger = logging.getLogger(__name__)

CSV_DELIMITER = ";"

LIST_COLUMNS = ["fio", "class", "variant", "createdAt", "percent", "mark", "voided", "key"]
REPORT_COLUMNS = ["class", "fio", "variant", "correct", "total", "empty", "points", "maxPoints",
                  "percent", "mark", "key", "error"]

_env = Environment(
    loader=PackageLoader("kodislovo", "templates"),
    autoescape=select_autoescape(["html"]),
)


def _csv_text(columns, rows) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, delimiter=CSV_DELIMITER, lineterminator="\r\n")
    writer.writerow(columns)
    for row in rows:
        writer.writerow(["" if row.get(c) is None else row.get(c) for c in columns])
    return buf.getvalue()


def list_csv(records) -> str:
    """Instructor list as CSV. Accepts SummaryRecord objects or plain dicts."""
    rows = [r.to_dict() if hasattr(r, "to_dict") else r for r in records]
    logger.info("Exporting %d list rows to CSV", len(rows))
    return _csv_text(LIST_COLUMNS, rows)


def reports_csv(reports) -> str:
    """Autocheck reports as CSV, one row per student, plus a per-task answer column each."""
    task_ids = []
    for report in reports:
        for item in report.get("items", []):
            if item["n"] not in task_ids:
                task_ids.append(item["n"])
    task_ids.sort(key=int)

    rows = []
    for report in reports:
        row = dict(report)
        by_task = {item["n"]: item for item in report.get("items", [])}
        for tid in task_ids:
            item = by_task.get(tid)
            if item is None:
                row[f"task_{tid}"] = ""
            else:
                row[f"task_{tid}"] = f"{'+' if item['ok'] else '-'} {item['user']}".strip()
        rows.append(row)

    logger.info("Exporting %d autocheck reports to CSV", len(rows))
    return _csv_text(REPORT_COLUMNS + [f"task_{tid}" for tid in task_ids], rows)


def print_html(reports, summary=None, title="") -> str:
    """Printable HTML report. All student-supplied text is escaped by the template."""
    template = _env.get_template("report.html")
    return template.render(reports=reports, summary=summary or {}, title=title or "Autocheck report")


def json_download(payload) -> str:
    return json.dumps(payload, ensure_ascii=False, indent=2)
