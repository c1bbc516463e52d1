# petcare/services/pdf_service.py
import logging
import re
from io import BytesIO

import bleach
from xhtml2pdf import pisa

from .. import models
from ..exceptions import Internal
from ..timeutils import utcnow

logger = logging.getLogger(__name__)

PRESCRIPTION_CSS = """
@page { size: A4; margin: 2cm; }
body { font-family: Helvetica, Arial, sans-serif; font-size: 11pt; color: #222; }
h1 { text-align: center; font-size: 22pt; margin-bottom: 18pt; }
h2 { font-size: 14pt; border-bottom: 1px solid #999; margin-top: 14pt; }
td.label { font-weight: bold; width: 35%; }
p.footer { margin-top: 30pt; font-size: 9pt; color: #666; text-align: center; }
"""


def _text(value, default: str = "Not specified") -> str:
    """Escape a value for the HTML template; nothing user supplied is rendered as markup."""
    if value is None or value == "":
        return default
    return bleach.clean(str(value), tags=set(), strip=True)


def _date(value, default: str = "N/A") -> str:
    return value.strftime("%Y-%m-%d") if value else default


def _rows(pairs) -> str:
    return "".join(
        f'<tr><td class="label">{label}</td><td>{value}</td></tr>' for label, value in pairs
    )


def render_prescription_html(prescription: models.Prescription) -> str:
    pet = prescription.pet
    owner = pet.owner if pet else None
    vet = prescription.created_by_vet
    if vet is None and prescription.medical_record is not None:
        vet = prescription.medical_record.vet

    sections = ["<h1>Veterinary Prescription</h1>"]

    sections.append("<h2>Pet Information</h2><table>" + _rows([
        ("Name", _text(pet.name)),
        ("Species", _text(pet.species)),
        ("Breed", _text(pet.breed)),
        ("Date of Birth", _date(pet.date_of_birth, "Unknown")),
    ]) + "</table>")

    if owner:
        sections.append("<h2>Owner Information</h2><table>" + _rows([
            ("Name", _text(owner.full_name)),
            ("Phone", _text(owner.phone_number, "Not provided")),
            ("Email", _text(owner.email, "Not provided")),
        ]) + "</table>")

    if vet:
        sections.append(f"<p>Issued by: Dr. {_text(vet.full_name)}</p>")

    sections.append("<h2>Prescription Details</h2><table>" + _rows([
        ("Type", _text(prescription.type.value)),
        ("Medication/Vaccine", _text(prescription.medication_name)),
        ("Dosage", _text(prescription.dosage)),
        ("Duration", _text(prescription.duration, "N/A")),
        ("Due Date / Next Booster", _date(prescription.due_date)),
    ]) + "</table>")

    if prescription.instructions:
        sections.append(f"<h2>Instructions</h2><p>{_text(prescription.instructions)}</p>")

    sections.append(f'<p class="footer">Generated on {utcnow().strftime("%Y-%m-%d %H:%M")} UTC</p>')

    return (
        "<html><head><meta charset=\"utf-8\"/>"
        f"<style>{PRESCRIPTION_CSS}</style></head><body>"
        + "".join(sections)
        + "</body></html>"
    )


def render_prescription_pdf(prescription: models.Prescription) -> bytes:
    html = render_prescription_html(prescription)
    pdf_io = BytesIO()
    result = pisa.CreatePDF(src=html, dest=pdf_io, encoding="utf-8")
    if result.err:
        logger.error(f"PDF generation failed for prescription {prescription.id}: {result.err} errors")
        raise Internal("Error generating prescription PDF")
    return pdf_io.getvalue()


def prescription_filename(prescription: models.Prescription) -> str:
    pet_name = re.sub(r"[^A-Za-z0-9]", "_", prescription.pet.name if prescription.pet else "pet")
    medication = re.sub(r"[^A-Za-z0-9]", "_", prescription.medication_name)
    return f"Prescription_{pet_name}_{medication}_{utcnow().strftime('%Y-%m-%d')}.pdf"
