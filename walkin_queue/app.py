from __future__ import annotations

# Single entrypoint.
#
#   python -m walkin_queue.app manager --services services.json
#   python -m walkin_queue.app counter --counter-id C1 --service-id 1
#   python -m walkin_queue.app ticket  --user-id u1 --service-id 1
#   python -m walkin_queue.app cancel  --user-id u1 --ticket-id <id>
#
# Each subcommand forwards to the `main()` of the module that implements it.

import argparse
import sys
from typing import Callable

from .config import add_mqtt_args


def main() -> None:
    parser = argparse.ArgumentParser(description="Walk-in Queue System (MQTT) - main entrypoint")
    sub = parser.add_subparsers(dest="cmd", required=True)

    p_mgr = sub.add_parser("manager", help="Start the queue manager")
    add_mqtt_args(p_mgr)
    p_mgr.add_argument("--services", required=True, help="JSON service catalog")
    p_mgr.add_argument("--timezone", default="UTC")
    p_mgr.add_argument("--default-service-minutes", type=int, default=5)
    p_mgr.add_argument("--maintenance", default=None, metavar="MESSAGE")

    p_cnt = sub.add_parser("counter", help="Start a staffed counter agent")
    add_mqtt_args(p_cnt)
    p_cnt.add_argument("--counter-id", required=True)
    p_cnt.add_argument("--service-id", required=True)
    p_cnt.add_argument("--counter-number", type=int, default=1)
    p_cnt.add_argument("--serve-seconds", type=float, default=2.0)

    p_tkt = sub.add_parser("ticket", help="Take a ticket for a service")
    add_mqtt_args(p_tkt)
    p_tkt.add_argument("--user-id", required=True)
    p_tkt.add_argument("--service-id", required=True)

    p_cnl = sub.add_parser("cancel", help="Cancel one of your tickets")
    add_mqtt_args(p_cnl)
    p_cnl.add_argument("--user-id", required=True)
    p_cnl.add_argument("--ticket-id", required=True)

    args = parser.parse_args()
    common = [
        "--mqtt-host",
        args.mqtt_host,
        "--mqtt-port",
        str(args.mqtt_port),
        "--namespace",
        args.namespace,
        "--log-level",
        args.log_level,
    ]

    if args.cmd == "manager":
        from .manager import main as run

        run_args = [
            *common,
            "--services",
            args.services,
            "--timezone",
            args.timezone,
            "--default-service-minutes",
            str(args.default_service_minutes),
        ]
        if args.maintenance is not None:
            run_args += ["--maintenance", args.maintenance]
        _dispatch_to_module_main(run, run_args)
        return

    if args.cmd == "counter":
        from .counter_agent import main as run

        run_args = [
            *common,
            "--counter-id",
            args.counter_id,
            "--service-id",
            args.service_id,
            "--counter-number",
            str(args.counter_number),
            "--serve-seconds",
            str(args.serve_seconds),
        ]
        _dispatch_to_module_main(run, run_args)
        return

    from .ticket_client import main as run

    if args.cmd == "ticket":
        _dispatch_to_module_main(run, [*common, "--user-id", args.user_id, "--service-id", args.service_id])
    else:
        _dispatch_to_module_main(run, [*common, "--user-id", args.user_id, "--cancel", args.ticket_id])


def _dispatch_to_module_main(module_main: Callable[[], None], argv: list[str]) -> None:
    old_argv = sys.argv[:]
    try:
        sys.argv = [old_argv[0], *argv]
        module_main()
    finally:
        sys.argv = old_argv


if __name__ == "__main__":
    main()
