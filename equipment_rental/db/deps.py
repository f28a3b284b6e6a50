from collections.abc import Generator


def get_rental_db() -> Generator:
    from equipment_rental.db.session import SessionLocalRental

    db = SessionLocalRental()
    try:
        yield db
    finally:
        db.close()
