"""
Rental contract text.

The text itself comes from a pluggable generator (a template by default,
possibly an AI service in deployment).  It is stored as-is and never
parsed.
"""
import logging

from flask import current_app

from .mileage import FREE_KM_PER_DAY, OVERAGE_RATE_PER_KM
from .models import Contract, db
from .timeutil import isoformat, utcnow

logger = logging.getLogger(__name__)

EXTENSION_KEY = 'rentdesk.contract_generator'


class ContractGenerator:
    def generate(self, customer, vehicle, start, end, total_price) -> str:
        raise NotImplementedError


class TemplateContractGenerator(ContractGenerator):
    """Plain-text contract filled from a fixed template."""

    template = (
        "VEHICLE RENTAL AGREEMENT\n"
        "\n"
        "Renter: {customer.first_name} {customer.last_name}, email {customer.email}, "
        "phone {customer.phone}, address {customer.address}, "
        "driving licence {customer.driver_license_number}.\n"
        "Vehicle: {vehicle.name}, licence plate {vehicle.license_plate}.\n"
        "Rental period: {start} to {end}.\n"
        "Rental price: {total_price}.\n"
        "The mileage allowance is {free_km} km per day. Each additional km is charged at {rate}.\n"
        "The vehicle is handed over with a full tank and must be returned with a full tank.\n"
    )

    def generate(self, customer, vehicle, start, end, total_price) -> str:
        return self.template.format(
            customer=customer,
            vehicle=vehicle,
            start=isoformat(start),
            end=isoformat(end),
            total_price=total_price,
            free_km=FREE_KM_PER_DAY,
            rate=OVERAGE_RATE_PER_KM,
        )


def get_generator() -> ContractGenerator:
    generator = current_app.extensions.get(EXTENSION_KEY)
    if generator is None:
        generator = current_app.extensions[EXTENSION_KEY] = TemplateContractGenerator()
    return generator


def draft(customer, vehicle, start, end, total_price) -> str:
    """Ask the generator for the text; called before the transaction opens."""
    return get_generator().generate(customer, vehicle, start, end, total_price)


def attach(reservation, customer, vehicle, text) -> Contract:
    contract = Contract(
        reservation_id=reservation.id,
        customer_id=customer.id,
        vehicle_id=vehicle.id,
        generated_at=utcnow(),
        contract_text=text,
    )
    db.session.add(contract)
    return contract


def list_contracts():
    return Contract.query.order_by(Contract.generated_at.desc()).all()
