"""
Test: CSV, printable HTML and JSON exports.
"""
import csv
import io
import json

from kodislovo.services.instructor import SummaryRecord
from kodislovo.services.report_export import json_download, list_csv, print_html, reports_csv


def _report(**overrides):
    report = {
        "key": "k1", "createdAt": "2026-03-02T09:30:00.000Z", "variant": "variant_01",
        "fio": "Иванов Иван", "class": "7А", "keyTitle": "Ключ", "total": 2, "correct": 1,
        "empty": 0, "points": 1, "maxPoints": 2, "percent": 50, "mark": "3", "error": None,
        "items": [
            {"n": "1", "user": "ель", "right": ["ель"], "ok": True, "earned": 1, "max": 1},
            {"n": "2", "user": "5", "right": ["4"], "ok": False, "earned": 0, "max": 1},
        ],
    }
    report.update(overrides)
    return report


def _rows(text):
    return list(csv.reader(io.StringIO(text), delimiter=";"))


class TestListCsv:
    def test_header_and_rows(self):
        records = [SummaryRecord.model_validate({"key": "k1", "fio": "Иванов; Иван", "class": "7А",
                                                 "variant": "variant_01", "percent": 75, "mark": "4"})]
        text = list_csv(records)
        assert text.startswith("fio;class;variant;createdAt;percent;mark;voided;key\r\n")
        rows = _rows(text)
        assert rows[1][0] == "Иванов; Иван"
        assert rows[1][-1] == "k1"

    def test_accepts_dicts(self):
        rows = _rows(list_csv([{"key": "k9", "fio": "А"}]))
        assert rows[1][0] == "А"
        assert rows[1][4] == ""


class TestReportsCsv:
    def test_task_columns(self):
        rows = _rows(reports_csv([_report()]))
        header = rows[0]
        assert header[-2:] == ["task_1", "task_2"]
        assert rows[1][-2:] == ["+ ель", "- 5"]

    def test_error_row(self):
        rows = _rows(reports_csv([_report(items=[], error="Not found", percent=0)]))
        assert rows[1][rows[0].index("error")] == "Not found"


class TestPrintHtml:
    def test_escapes_student_text(self):
        html = print_html([_report(fio="<script>alert(1)</script>")], {"count": 1, "averagePercent": 50})
        assert "<script>alert(1)</script>" not in html
        assert "&lt;script&gt;" in html
        assert "Average: 50%" in html

    def test_error_report(self):
        html = print_html([_report(error="Not found")])
        assert "Error: Not found" in html


class TestJsonDownload:
    def test_keeps_cyrillic(self):
        text = json_download({"fio": "Иванов"})
        assert "Иванов" in text
        assert json.loads(text) == {"fio": "Иванов"}
