"""
Rental contract rendering with reportlab.

The customer's signature box is drawn where Yousign places its signature
field (page 1, x=100, y=650 from the top, 150x50 points).
"""
from datetime import datetime, timezone
from io import BytesIO

from reportlab.lib.pagesizes import A4
from reportlab.lib.units import mm
from reportlab.pdfgen import canvas

from carbly.models.customer import Customer
from carbly.models.reservation import Reservation
from carbly.models.team import Team
from carbly.models.vehicle import Vehicle
from carbly.services.email_service import format_amount, format_date
from carbly.services.reservation_service import rental_days
from carbly.services.yousign_service import SIGNATURE_FIELD

TERMS = [
    "4.1. Le locataire s'engage à restituer le véhicule dans l'état où il lui a été remis.",
    "4.2. Le locataire est responsable du véhicule pendant toute la durée de la location.",
    "4.3. Le véhicule doit être restitué avec le même niveau de carburant.",
    "4.4. Toute prolongation doit être autorisée par le loueur.",
    "4.5. Le locataire s'engage à respecter le code de la route.",
    "4.6. La caution sera débloquée dans les 7 jours suivant la restitution sans dommage.",
]

FONT = "Helvetica"
FONT_BOLD = "Helvetica-Bold"


def _vehicle_lines(vehicle: Vehicle):
    lines = [("Marque et modèle", f"{vehicle.brand} {vehicle.model}")]
    if vehicle.year:
        lines.append(("Année", str(vehicle.year)))
    lines.append(("Plaque", vehicle.plate))
    if vehicle.vin:
        lines.append(("N° VIN", vehicle.vin))
    if vehicle.mileage is not None:
        lines.append(("Kilométrage", f"{vehicle.mileage} km"))
    if vehicle.fuel_type:
        lines.append(("Carburant", vehicle.fuel_type))
    if vehicle.transmission:
        lines.append(("Transmission", vehicle.transmission))
    return lines


def _price_lines(reservation: Reservation, days: int):
    lines = [(f"Location ({days} jours)", format_amount(reservation.total_amount))]
    if reservation.deposit_amount:
        lines.append(("Acompte versé", format_amount(reservation.deposit_amount)))
    if reservation.include_insurance and reservation.insurance_amount:
        lines.append(("Assurance complémentaire", format_amount(reservation.insurance_amount)))
    if reservation.caution_amount:
        lines.append(("Caution (préautorisée)", format_amount(reservation.caution_amount)))
    return lines


def build_contract_pdf(
    reservation: Reservation,
    vehicle: Vehicle,
    customer: Customer,
    team: Team,
    organization_name: str | None = None,
) -> bytes:
    buf = BytesIO()
    c = canvas.Canvas(buf, pagesize=A4)
    width, height = A4
    days = rental_days(reservation.start_date, reservation.end_date)
    left = 20*mm

    c.setTitle(f"Contrat de location {str(reservation.id)[:8].upper()}")
    c.setFont(FONT_BOLD, 16)
    c.drawCentredString(width / 2, height - 20*mm, "CONTRAT DE LOCATION DE VÉHICULE")
    c.setFont(FONT, 9)
    c.drawCentredString(width / 2, height - 26*mm, f"Contrat N° {str(reservation.id)[:8].upper()}")
    c.drawCentredString(width / 2, height - 31*mm, f"Édité le {format_date(reservation.created_at or datetime.now(timezone.utc))}")

    y = height - 42*mm

    def section(title):
        nonlocal y
        c.setFont(FONT_BOLD, 11)
        c.drawString(left, y, title)
        y -= 6*mm
        c.setFont(FONT, 9)

    def row(label, value):
        nonlocal y
        c.drawString(left, y, f"{label} :")
        c.drawString(left + 45*mm, y, value)
        y -= 5*mm

    section("Entre les soussignés :")
    c.drawString(left, y, "LE LOUEUR :")
    c.drawString(width / 2, y, "LE LOCATAIRE :")
    y -= 5*mm
    lessor = [organization_name, team.name, team.address]
    lessee = [customer.full_name, f"Email : {customer.email}", f"Téléphone : {customer.phone}" if customer.phone else None]
    lessor = [line for line in lessor if line]
    lessee = [line for line in lessee if line]
    for i in range(max(len(lessor), len(lessee))):
        if i < len(lessor):
            c.drawString(left, y, lessor[i])
        if i < len(lessee):
            c.drawString(width / 2, y, lessee[i])
        y -= 5*mm
    y -= 4*mm

    section("Article 1 - Véhicule loué")
    for label, value in _vehicle_lines(vehicle):
        row(label, value)
    y -= 4*mm

    section("Article 2 - Durée de la location")
    row("Date de début", format_date(reservation.start_date))
    row("Date de fin", format_date(reservation.end_date))
    row("Durée", f"{days} jour(s)")
    y -= 4*mm

    section("Article 3 - Prix et conditions de paiement")
    for label, value in _price_lines(reservation, days):
        c.drawString(left, y, label)
        c.drawRightString(width - left, y, value)
        y -= 5*mm
    y -= 4*mm

    section("Article 4 - Conditions générales")
    for term in TERMS:
        c.drawString(left, y, term)
        y -= 5*mm

    # Signature boxes; the customer's one matches the Yousign field
    field = SIGNATURE_FIELD
    box_top = height - field["y"]
    c.setFont(FONT_BOLD, 10)
    c.drawString(field["x"], box_top + 4*mm, "Le Locataire")
    c.rect(field["x"], box_top - field["height"], field["width"], field["height"])
    c.drawString(width - left - field["width"], box_top + 4*mm, "Le Loueur")
    c.rect(width - left - field["width"], box_top - field["height"], field["width"], field["height"])

    c.setFont(FONT, 7)
    c.drawCentredString(
        width / 2, 12*mm,
        f"Document généré électroniquement le {format_date(datetime.now(timezone.utc))} - {organization_name or team.name}",
    )
    c.showPage()
    c.save()
    return buf.getvalue()
