"""
Instance unique de l'application, construite par la factory (pme_billing.app_setup.factory).
"""
from pme_billing.app_setup.factory import create_app

app = create_app()
