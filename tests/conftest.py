from pathlib import Path

from housemap.observability.log import configure_logging

# Send structlog output through stdlib handlers on stderr; CLI tests parse stdout.
configure_logging(Path(__file__).resolve().parents[1] / "config" / "logging.yaml")
