from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from equipment_rental.config import database_url


RENTAL_ENGINE_DB_URL = database_url()

engine_rental = create_engine(
    RENTAL_ENGINE_DB_URL,
    pool_pre_ping=True,
    future=True,
)

SessionLocalRental = sessionmaker(
    bind=engine_rental,
    autoflush=False,
    autocommit=False,
    expire_on_commit=False,
    future=True,
)
