"""Send a batch of notifications through the binary APNs gateway.

Submits one alert per device token, shuts down gracefully and prints
whatever could not be resolved. With ``--feedback`` it instead lists
the devices the feedback service reports as gone.

    pip install apns-stream[crypto]

    python examples/send_notifications.py --cert push.pem --sandbox \\
        --message "Hello" <token-hex> [<token-hex> ...]

    python examples/send_notifications.py --cert push.p12 --feedback
"""

import argparse
import asyncio
import logging
import signal

from apns_stream import TLSTransport, connect, fetch_feedback
from apns_stream.constants import FEEDBACK_HOST, FEEDBACK_PORT, FEEDBACK_SANDBOX_HOST


async def send(args: argparse.Namespace) -> None:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    async with connect(
        certfile=args.cert, password=args.password, sandbox=args.sandbox
    ) as client:

        @client.on_failed_notification
        def failed(notification, status):
            print(f"rejected {notification.token.hex()} (status {status})")

        @client.on_unsent_notifications
        def unsent(notifications):
            for n in notifications:
                print(f"unsent {n.token.hex()}")

        for token in args.tokens:
            client.submit_message(token, {"aps": {"alert": args.message}})
        print(f"Submitted {len(args.tokens)} notifications")

        # Give the server a moment to report failures before closing
        try:
            await asyncio.wait_for(stop.wait(), timeout=args.linger)
        except asyncio.TimeoutError:
            pass

    print(client.get_stats())


async def feedback(args: argparse.Namespace) -> None:
    transport = TLSTransport(
        FEEDBACK_SANDBOX_HOST if args.sandbox else FEEDBACK_HOST,
        FEEDBACK_PORT,
        certfile=args.cert,
        password=args.password,
    )
    for item in await fetch_feedback(transport):
        print(f"{item.timestamp.isoformat()} {item.token_hex}")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="APNs binary gateway client")
    parser.add_argument("--cert", required=True, help="PEM or PKCS#12 certificate")
    parser.add_argument("--password", default=None)
    parser.add_argument("--sandbox", action="store_true")
    parser.add_argument("--message", default="Hello from apns-stream")
    parser.add_argument(
        "--linger",
        type=float,
        default=2.0,
        help="Seconds to wait for error responses before shutting down",
    )
    parser.add_argument("--feedback", action="store_true")
    parser.add_argument("--verbose", "-v", action="store_true")
    parser.add_argument("tokens", nargs="*")
    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)
    asyncio.run(feedback(args) if args.feedback else send(args))
