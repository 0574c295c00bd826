"""ASGI entrypoint: uvicorn jengatrack.api.app:app"""

from .factory import create_app

app = create_app()
