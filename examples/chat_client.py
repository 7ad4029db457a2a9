"""Terminal chat client for a FishCrewConnect backend.

Signs in, joins the user's room, prints incoming notifications and the
open conversation, and sends each line typed on stdin.

    pip install fishcrew-client

    # Chat with user 42
    python examples/chat_client.py --email skipper@example.com --password secret --to 42

    # Point at another backend
    FISHCREW_API_URL=https://api.example.com python examples/chat_client.py ...
"""

import argparse
import asyncio
import logging
import signal

from fishcrew_client import ClientConfig, FishCrewClient, FishCrewError


def print_notifications(snapshot):
    if snapshot.notifications:
        latest = snapshot.notifications[0]
        print(f"[notification] {latest.message} (unread: {snapshot.unread_count})")


async def main(email: str, password: str, counterpart: int):
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    async with FishCrewClient(ClientConfig.from_env()) as client:
        user = await client.sign_in(email, password)
        print(f"Signed in as {user.name} ({user.role})")

        client.notifications.subscribe(print_notifications)
        client.supervisor.on_offline(lambda error: print(f"[offline] {error}"))
        client.messages.subscribe(
            lambda snap: snap.messages and print(f"[{snap.messages[-1].sender_id}] {snap.messages[-1].text}")
        )

        await client.messages.load_history(None, counterpart)
        for group in client.messages.groups():
            print(f"--- {group.label} ---")
            for message in group.messages:
                print(f"[{message.sender_id}] {message.text}")

        print("Type a message and press Enter (Ctrl+C to stop)\n")
        while not stop.is_set():
            line = await loop.run_in_executor(None, input)
            if not line.strip():
                continue
            try:
                await client.messages.send(None, counterpart, line)
            except FishCrewError as exc:
                print(f"[error] {exc}")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="FishCrew chat client")
    parser.add_argument("--email", required=True)
    parser.add_argument("--password", required=True)
    parser.add_argument("--to", type=int, required=True, help="Counterpart user id")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)
    asyncio.run(main(args.email, args.password, args.to))
