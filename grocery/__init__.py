"""Grocery Manager: product catalog and orders with time-limited stock reservations."""
