from __future__ import annotations

import argparse
import logging

from chart_render_service.api.server import build_server
from chart_render_service.config import SURFACES, load_settings


def main(argv: list[str] | None = None) -> int:
    ap = argparse.ArgumentParser(prog="chart_render_service", description="Serve chart renders over HTTP.")
    ap.add_argument("--port", default=None, help="Port to listen on (default: $CHART_RENDER_PORT or 8000).")
    ap.add_argument("--host", default=None, help="Interface to bind (default: $CHART_RENDER_HOST or 127.0.0.1).")
    ap.add_argument("--debug", action="store_true", default=None, help="Verbose logging.")
    ap.add_argument("--surface", choices=sorted(SURFACES), default=None, help="Where figures are rendered.")
    args = ap.parse_args(argv)

    settings = load_settings().override(port=args.port, host=args.host, debug=args.debug, surface=args.surface)
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    build_server(settings).run()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
