#!/usr/bin/env python
"""Submit demo chat messages to a running chatwal server via the SDK.

Usage:
    python scripts/load_demo_messages.py \
        --base-url http://localhost:8000 \
        --rooms 3 --per-room 5 \
        --process-now

    python scripts/load_demo_messages.py --data-file data/demo_messages.ndjson
"""
from __future__ import annotations

import argparse
import json
from collections import defaultdict
from pathlib import Path

from chatwal_client import ClientConfig, ChatWalClient, models as M
from chatwal_client.exceptions import ChatWalError, Conflict


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Submit demo chat messages to chatwal."
    )
    parser.add_argument(
        "--base-url",
        default="http://localhost:8000",
        help="chatwal API base URL (default: %(default)s)",
    )
    parser.add_argument(
        "--data-file",
        default=None,
        help="NDJSON file of submit payloads; generated messages are used when omitted",
    )
    parser.add_argument(
        "--rooms",
        type=int,
        default=3,
        help="Rooms to generate when no data file is given (default: %(default)s)",
    )
    parser.add_argument(
        "--per-room",
        type=int,
        default=5,
        help="Messages per generated room (default: %(default)s)",
    )
    parser.add_argument(
        "--escrow-amount",
        type=float,
        default=0.0,
        help="Attach a pending escrow of this amount to the last message of each room",
    )
    parser.add_argument(
        "--process-now",
        action="store_true",
        help="Trigger a batch run after submitting",
    )
    return parser.parse_args()


def load_dataset(path: Path) -> list[dict]:
    if not path.exists():
        raise FileNotFoundError(f"Data file not found: {path}")

    rows: list[dict] = []
    with path.open("r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            rows.append(json.loads(line))
    return rows


def generate_rows(rooms: int, per_room: int, escrow_amount: float) -> list[dict]:
    rows: list[dict] = []
    for r in range(rooms):
        buyer, seller = f"buyer{r}", f"seller{r}"
        for i in range(per_room):
            sender, receiver = (buyer, seller) if i % 2 == 0 else (seller, buyer)
            row = {
                "room_id": f"demo-room-{r}",
                "message": f"demo message {i} in room {r}",
                "sender_id": sender,
                "sender_email": f"{sender}@example.com",
                "receiver_id": receiver,
                "receiver_email": f"{receiver}@example.com",
                "product_id": f"demo-product-{r}",
                "product_title": f"Demo product {r}",
            }
            if escrow_amount > 0 and i == per_room - 1:
                row["content_type"] = "escrow_request"
                row["escrow"] = {"amount": escrow_amount, "status": "pending"}
            rows.append(row)
    return rows


def main() -> None:
    args = parse_args()
    if args.data_file:
        rows = load_dataset(Path(args.data_file))
    else:
        rows = generate_rows(args.rooms, args.per_room, args.escrow_amount)
    if not rows:
        raise RuntimeError("No messages to submit")

    cli = ChatWalClient(ClientConfig(base_url=args.base_url))
    per_room: defaultdict[str, int] = defaultdict(int)

    for row in rows:
        try:
            out = cli.submit_message(M.SubmitMessageIn(**row))
        except ChatWalError as exc:
            raise SystemExit(f"Failed to submit message for room {row.get('room_id')}: {exc}") from exc
        per_room[out.room_id] += 1

    print(
        f"[info] Submitted {sum(per_room.values())} messages across {len(per_room)} rooms"
    )

    if args.process_now:
        try:
            result = cli.process_now()
        except Conflict:
            print("[info] A batch run is already in progress; messages will be committed by it or the next run")
            return
        print(
            f"[info] Batch {result.batch_id}: processed={result.processed} "
            f"duplicates={result.duplicates} errors={result.errors}"
        )


if __name__ == "__main__":
    main()
