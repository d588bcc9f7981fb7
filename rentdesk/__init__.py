"""Vehicle rental desk: reservations, pricing, mileage billing and ledger."""
from .app import create_app, init_db

__all__ = ['create_app', 'init_db']
