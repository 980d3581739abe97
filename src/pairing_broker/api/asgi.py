"""ASGI entrypoint for the pairing broker API."""

from pairing_broker.api.app import create_app
from pairing_broker.containers import build_container

app = create_app(build_container())
