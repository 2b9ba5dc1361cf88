"""
services/export_service.py

결과 내보내기.
Public API:
  - result_to_pdf(result) -> bytes        : 응시 결과 1건 → PDF (PyMuPDF Story)
  - results_to_excel(results) -> bytes    : 결과 목록 → xlsx (openpyxl)
  - pdf_filename(result) -> str
"""

import html
import io
import re
from typing import Sequence

import fitz  # PyMuPDF
from openpyxl import Workbook

from quiz_exam_cbt.models.session_state import ExamResult

_MISSING = "Không có dữ liệu"
_PAGE_MARGIN = 36  # pt

_CSS = """
* { font-family: sans-serif; }
h1 { font-size: 16pt; margin-bottom: 8pt; }
p.info { font-size: 12pt; margin: 2pt 0; }
p.q { font-size: 10pt; font-weight: bold; margin-top: 8pt; }
p.c { font-size: 10pt; margin: 1pt 0 1pt 14pt; }
"""

EXCEL_HEADERS = [
    "ID", "Họ và tên", "Đối tượng", "Cấp bậc", "Chức vụ", "Đơn vị",
    "Thời gian", "Số câu đúng", "Tổng số câu", "Điểm (/10)",
]


def _e(text: str) -> str:
    return html.escape(text or "")


def _result_html(result: ExamResult) -> str:
    parts = [
        "<h1>KẾT QUẢ THI TRẮC NGHIỆM</h1>",
        f'<p class="info">Họ và tên: {_e(result.username)}</p>',
        f'<p class="info">Đối tượng: {_e(result.category)}</p>',
        f'<p class="info">Cấp bậc: {_e(result.rank or _MISSING)}</p>',
        f'<p class="info">Chức vụ: {_e(result.role or _MISSING)}</p>',
        f'<p class="info">Đơn vị: {_e(result.unit or _MISSING)}</p>',
        f'<p class="info">Thời gian: {_e(result.timestamp)}</p>',
        f'<p class="info">Kết quả: {result.correct}/{result.total} câu</p>',
        f'<p class="info">Điểm: {_e(result.score)}/10</p>',
    ]
    for i, q in enumerate(result.questions):
        user_answer = result.answers[i] if i < len(result.answers) else -1
        parts.append(f'<p class="q">{i + 1}. {_e(q.text)}</p>')
        for j, choice in enumerate(q.choices):
            if j == q.correct_choice_index:
                prefix = "[Đúng] "
            elif j == user_answer:
                prefix = "[Sai] "
            else:
                prefix = ""
            parts.append(f'<p class="c">{_e(prefix + choice)}</p>')
    return "\n".join(parts)


def result_to_pdf(result: ExamResult) -> bytes:
    """페이지 넘김은 Story 배치가 처리한다."""
    story = fitz.Story(html=_result_html(result), user_css=_CSS)
    buffer = io.BytesIO()
    writer = fitz.DocumentWriter(buffer)
    mediabox = fitz.paper_rect("a4")
    where = mediabox + (_PAGE_MARGIN, _PAGE_MARGIN, -_PAGE_MARGIN, -_PAGE_MARGIN)

    more = True
    while more:
        device = writer.begin_page(mediabox)
        more, _ = story.place(where)
        story.draw(device)
        writer.end_page()
    writer.close()
    return buffer.getvalue()


def pdf_filename(result: ExamResult) -> str:
    stamp = re.sub(r"[:,\s/]", "_", result.timestamp)
    return f"KetQuaThi_{stamp}.pdf"


def results_to_excel(results: Sequence[ExamResult]) -> bytes:
    wb = Workbook()
    ws = wb.active
    ws.title = "KetQuaThi"
    ws.append(EXCEL_HEADERS)
    for r in results:
        ws.append([
            r.id or "", r.username, r.category, r.rank, r.role, r.unit,
            r.timestamp, r.correct, r.total, float(r.score),
        ])
    for column, width in zip("ABCDEFGHIJ", (16, 28, 20, 14, 16, 20, 22, 12, 12, 10)):
        ws.column_dimensions[column].width = width

    buffer = io.BytesIO()
    wb.save(buffer)
    return buffer.getvalue()
