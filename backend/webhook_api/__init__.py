"""
OrderZap payments webhook API.

Receives Mercado Pago, AppMax and Pagar.me notifications and reconciles them
with tenant orders and subscriptions.
"""

__version__ = "0.1.0"
