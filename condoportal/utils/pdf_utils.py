from datetime import date
from pathlib import Path
from textwrap import wrap
from typing import Any, Iterable, Mapping

from reportlab.lib.pagesizes import A4
from reportlab.pdfgen import canvas

from ..config import settings
from ..constants import MONTH_NAMES
from .currency import format_currency

MARGIN_X = 72  # 1 inch
MARGIN_Y = 72
MAX_CHARS_PER_LINE = 90
LINE_HEIGHT = 14


def _output_path(filename: str) -> Path:
    base = Path(settings.pdf_output_dir)
    base.mkdir(parents=True, exist_ok=True)
    return base / filename


def _write_pdf(filename: str, lines: Iterable[str]) -> str:
    path = _output_path(filename)
    pdf_canvas = canvas.Canvas(str(path), pagesize=A4)
    width, height = A4
    text_stream = pdf_canvas.beginText(MARGIN_X, height - MARGIN_Y)
    text_stream.setFont("Helvetica", 11)

    for line in lines:
        if line is None:
            line = ""
        normalized = str(line)
        chunks = wrap(normalized, MAX_CHARS_PER_LINE) or [""]
        for chunk in chunks:
            if text_stream.getY() < MARGIN_Y:
                pdf_canvas.drawText(text_stream)
                pdf_canvas.showPage()
                text_stream = pdf_canvas.beginText(MARGIN_X, height - MARGIN_Y)
                text_stream.setFont("Helvetica", 11)
            text_stream.textLine(chunk)

    pdf_canvas.drawText(text_stream)
    pdf_canvas.showPage()
    pdf_canvas.save()
    return str(path)


def month_label(value: date) -> str:
    return f"{MONTH_NAMES[value.month - 1].capitalize()} {value.year}"


def generate_payment_receipt_pdf(payment, resident, condominium) -> str:
    currency = payment.currency or condominium.currency
    lines = [
        condominium.name,
        condominium.address,
        "",
        "Recibo de Pagamento",
        "",
        f"Recibo n.º: {payment.id}",
        f"Residente: {resident.display_name}",
        f"Apartamento: {resident.apartment_number}",
        f"Referência: {month_label(payment.reference_month)}",
        f"Descrição: {payment.description}",
        f"Valor: {format_currency(payment.amount, currency)}",
        f"Data de pagamento: {payment.payment_date.isoformat() if payment.payment_date else '-'}",
        "",
        f"Emitido em {date.today().isoformat()}",
    ]
    return _write_pdf(f"receipt_{payment.id}.pdf", lines)


def generate_payslip_pdf(entry, employee, condominium) -> str:
    currency = condominium.currency

    def money(value: Any) -> str:
        return format_currency(value or 0, currency)

    lines = [
        condominium.name,
        "Recibo de Vencimento",
        "",
        f"Funcionário: {employee.name}",
        f"Função: {employee.position}",
        f"Mês de referência: {month_label(entry.reference_month)}",
        "",
        f"Salário base: {money(entry.base_salary)}",
        f"Subsídios: {money(entry.allowances)}",
        f"Horas extra: {entry.overtime_hours} x {money(entry.overtime_rate)} = {money(entry.overtime_amount)}",
        f"Salário bruto: {money(entry.gross_salary)}",
        "",
        f"Segurança social: {money(entry.social_security_deduction)}",
        f"IRT: {money(entry.income_tax_deduction)}",
        f"Outros descontos: {money(entry.other_deductions)}",
        f"Descontos diversos: {money(entry.deductions)}",
        "",
        f"Salário líquido: {money(entry.net_salary)}",
        f"Estado: {entry.payment_status}",
    ]
    return _write_pdf(f"payslip_{entry.id}.pdf", lines)


def generate_campaign_report_pdf(report: Mapping[str, Any], currency: str) -> str:
    campaign = report["campaign"]
    lines = [
        "Relatório de Contribuição Específica",
        "",
        f"Campanha: {campaign['title']}",
        f"Meta: {format_currency(campaign['target_amount'], currency)}",
        f"Estado: {campaign['status']}",
    ]
    if "total_raised" in campaign:
        lines.extend(
            [
                f"Arrecadado: {format_currency(campaign['total_raised'], currency)}",
                f"Pendente: {format_currency(campaign['total_pending'], currency)}",
                f"Progresso: {campaign['progress_percentage']}%",
            ]
        )
    lines.extend(["", "Contribuições:"])
    for contribution in report.get("contributions", []):
        lines.append(
            f"- {contribution.get('resident_name') or '-'} (Apt. {contribution.get('apartment_number') or '-'}): "
            f"{format_currency(contribution['amount'], currency)} [{contribution['status']}]"
        )
    return _write_pdf(f"campaign_{campaign['id']}.pdf", lines)
