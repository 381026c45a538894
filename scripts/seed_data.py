#!/usr/bin/env python
"""
Seed script to populate the database with sample data for local development.

Usage:
    python scripts/seed_data.py --residents 5
"""

import argparse
from datetime import date
from decimal import Decimal

from condoportal.auth.jwt import get_password_hash
from condoportal.config import Base, SessionLocal, engine
from condoportal.constants import ROLE_COORDINATOR, ROLE_RESIDENT, ROLE_SUPER_ADMIN
from condoportal.models.models import Condominium, Employee, Profile, Resident, User
from condoportal.services.linking_codes import unique_linking_code
from condoportal.services.payments import generate_monthly_payments

DEFAULT_PASSWORD = "changeme"


def create_account(session, email: str, role: str, first_name: str, last_name: str, condominium=None) -> Profile:
    user = session.query(User).filter(User.email == email).first()
    if user and user.profile:
        return user.profile

    user = User(
        email=email,
        hashed_password=get_password_hash(DEFAULT_PASSWORD),
        user_metadata={"first_name": first_name, "last_name": last_name},
        is_active=True,
    )
    session.add(user)
    session.flush()
    profile = Profile(
        user_id=user.id,
        condominium_id=condominium.id if condominium else None,
        role=role,
        first_name=first_name,
        last_name=last_name,
    )
    session.add(profile)
    session.flush()
    return profile


def create_condominium(session) -> Condominium:
    condominium = session.query(Condominium).filter(Condominium.name == "Condomínio Demo").first()
    if condominium:
        return condominium

    condominium = Condominium(
        name="Condomínio Demo",
        address="Rua Principal 100, Luanda",
        email="demo@example.com",
        currency="AOA",
        current_monthly_fee=Decimal("25000.00"),
        apartment_count=20,
        fee_bank="Banco Demo",
        fee_iban="AO06000000000000000000000",
        fee_beneficiary="Condomínio Demo",
        resident_linking_code=unique_linking_code(session),
    )
    session.add(condominium)
    session.flush()
    return condominium


def create_resident_bundle(session, condominium: Condominium, index: int) -> None:
    apartment = f"{index:02d}A"
    taken = (
        session.query(Resident.id)
        .filter(Resident.condominium_id == condominium.id, Resident.apartment_number == apartment)
        .first()
    )
    if taken:
        return
    profile = create_account(
        session,
        f"resident{index}@example.com",
        ROLE_RESIDENT,
        "Residente",
        str(index),
        condominium,
    )
    profile.apartment_number = apartment
    session.add(
        Resident(
            profile_id=profile.id,
            condominium_id=condominium.id,
            apartment_number=apartment,
            floor=str((index - 1) // 4 + 1),
            is_owner=index % 2 == 0,
        )
    )


def seed_database(residents: int) -> None:
    Base.metadata.create_all(bind=engine)
    with SessionLocal() as session:
        create_account(session, "admin@example.com", ROLE_SUPER_ADMIN, "Super", "Admin")
        condominium = create_condominium(session)
        create_account(session, "coordinator@example.com", ROLE_COORDINATOR, "Coordenador", "Demo", condominium)

        for index in range(1, max(residents, 0) + 1):
            create_resident_bundle(session, condominium, index)

        if not session.query(Employee.id).filter(Employee.condominium_id == condominium.id).first():
            session.add(
                Employee(
                    condominium_id=condominium.id,
                    name="Porteiro Demo",
                    position="Porteiro",
                    base_salary=Decimal("80000.00"),
                    hire_date=date(2023, 1, 1),
                )
            )
        session.commit()

        created = generate_monthly_payments(session, condominium.id, date.today().replace(day=1))
        print(
            f"Seed complete. Linking code {condominium.resident_linking_code}; "
            f"{residents} resident accounts (password: '{DEFAULT_PASSWORD}'); {created} payments generated."
        )


def main():
    parser = argparse.ArgumentParser(description="Seed the condominium database with sample data.")
    parser.add_argument("--residents", type=int, default=5, help="Number of resident accounts to create")
    args = parser.parse_args()
    seed_database(args.residents)


if __name__ == "__main__":
    main()
