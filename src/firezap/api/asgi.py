"""ASGI entrypoint for the session control plane."""

from firezap.api.app import create_app
from firezap.containers import build_container

app = create_app(build_container())
