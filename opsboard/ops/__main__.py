from __future__ import annotations

import argparse
import asyncio
import sys

from opsboard.config import get_settings
from opsboard.db.session import get_engine
from opsboard.observability.logging import configure_logging
from opsboard.ops.checks import build_aggregator


def main() -> None:
    parser = argparse.ArgumentParser(description="Probe the configured dependencies once and print the report")
    parser.add_argument("--overall-timeout-ms", type=int, default=None, help="Override OPS_OVERALL_TIMEOUT_MS")
    parser.add_argument("--indent", type=int, default=2, help="JSON indentation")
    parser.add_argument("--fail-on-unready", action="store_true", help="Exit 1 when the report is not ok")
    args = parser.parse_args()

    settings = get_settings()
    configure_logging(settings.log_level)

    aggregator = build_aggregator(settings, get_engine())
    report = asyncio.run(aggregator.run(overall_timeout_ms=args.overall_timeout_ms))
    print(report.model_dump_json(by_alias=True, indent=args.indent))

    if args.fail_on_unready and not report.ok:
        sys.exit(1)


if __name__ == "__main__":
    main()
