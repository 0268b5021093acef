from io import BytesIO

from reportlab.lib.pagesizes import A4
from reportlab.pdfgen import canvas

COLUMNS = [('Code', 50), ('Name', 150), ('Surname', 330)]
TOP = 800
BOTTOM = 50
LINE_HEIGHT = 18


def roster_pdf(exam, assignments):
    """Render the entry codes of an exam's students as a printable table."""
    buffer = BytesIO()
    c = canvas.Canvas(buffer, pagesize=A4)

    def header(y):
        c.setFont("Helvetica-Bold", 12)
        for title, x in COLUMNS:
            c.drawString(x, y, title)
        c.line(50, y - 4, 545, y - 4)
        c.setFont("Helvetica", 12)
        return y - LINE_HEIGHT - 4

    c.setFont("Helvetica-Bold", 18)
    c.drawString(50, TOP, f"{exam.title} - Student codes")
    c.setFont("Helvetica", 11)
    c.drawString(50, TOP - 22, f"Duration: {exam.duration} minutes")
    y = header(TOP - 50)

    for assignment in assignments:
        student = assignment.student
        for value, (_, x) in zip([assignment.student_code, student.name, student.surname], COLUMNS):
            c.drawString(x, y, value)
        y -= LINE_HEIGHT
        if y < BOTTOM:
            c.showPage()
            y = header(TOP)

    c.save()
    return buffer.getvalue()
