"""AWS Lambda entry point.

Mangum translates API Gateway HTTP API (v2) events into ASGI. Lifespan
stays on so the gateway context is built once per warm container.
"""

from mangum import Mangum

from src.main import app

handler = Mangum(app, lifespan="auto")
