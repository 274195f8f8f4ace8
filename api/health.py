"""Health check endpoint."""

from http.server import BaseHTTPRequestHandler
import json

from src.utils.config import MarketplaceConfig


def health_payload() -> dict:
    """Liveness body; does not touch the record store."""
    return {
        "status": "ok",
        "service": MarketplaceConfig.SERVICE_NAME,
        "store_backend": MarketplaceConfig.STORE_BACKEND,
    }


class handler(BaseHTTPRequestHandler):
    """Health check handler for Vercel serverless function."""

    def _write_json(self, status: int, body: dict) -> None:
        self.send_response(status)
        self.send_header('Content-Type', 'application/json')
        self.end_headers()
        self.wfile.write(json.dumps(body).encode('utf-8'))

    def do_GET(self):
        self._write_json(200, health_payload())

    def do_POST(self):
        """Same as GET."""
        self.do_GET()
