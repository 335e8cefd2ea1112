"""ASGI entrypoint: ``uvicorn fleetpool.api.app:app``.

Routes are mounted per APP_ROLE (see factory.create_app).
"""

from fleetpool.api.factory import create_app

app = create_app()
