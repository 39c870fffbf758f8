"""
ASGI entrypoint: expose `app` for process managers / deployments.

- En production, un process manager (ex: gunicorn/uvicorn-workers) importe `pme_billing.asgi:app`.
- Toute la configuration de FastAPI est centralisée dans pme_billing.app_setup.factory,
  ce fichier ne fait qu'exposer l'instance `app`.
- Lancement local: `python -m pme_billing` (voir __main__.py).
"""

from pme_billing.app import app

__all__ = ["app"]
