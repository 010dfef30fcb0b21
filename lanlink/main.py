from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from typing import Optional

from .config import REPLACE_POLICIES, SessionConfig
from .errors import LanLinkError
from .logging_config import setup_logging
from .rtc.connection import ConnectionState, SessionCallbacks
from .rtc.session import LanSession


logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
	parser = argparse.ArgumentParser(description="lanlink: peer-to-peer chat over a WebRTC data channel")
	parser.add_argument(
		"role",
		choices=("host", "join"),
		help="host creates the offer; join answers an offer pasted from the host",
	)
	parser.add_argument(
		"--log-level",
		default=None,
		help="Logging level (debug, info, warning, error). Can also use LANLINK_LOG_LEVEL.",
	)
	parser.add_argument(
		"--ice-server",
		action="append",
		default=None,
		help="STUN/TURN URL hint; repeat for several. Defaults to LANLINK_ICE_SERVERS or none.",
	)
	parser.add_argument(
		"--label",
		default=None,
		help="Data channel label (host only)",
	)
	parser.add_argument(
		"--gathering-timeout",
		type=float,
		default=None,
		help="Seconds to wait for candidate gathering before giving up",
	)
	parser.add_argument(
		"--replace-policy",
		choices=REPLACE_POLICIES,
		default=None,
		help="What to do when a new negotiation starts while one is in progress",
	)
	parser.add_argument(
		"--open-timeout",
		type=float,
		default=float(os.environ.get("LANLINK_OPEN_TIMEOUT", "60")),
		help="Seconds to wait for the data channel to open",
	)
	return parser


def config_from_args(args: argparse.Namespace) -> SessionConfig:
	cfg = SessionConfig.from_env()
	if args.ice_server:
		cfg.ice_servers = list(args.ice_server)
	if args.label:
		cfg.channel_label = args.label
	if args.gathering_timeout is not None:
		cfg.gathering_timeout = args.gathering_timeout
	if args.replace_policy:
		cfg.replace_policy = args.replace_policy
	return cfg


async def _read_line(prompt: str = "") -> Optional[str]:
	if prompt:
		print(prompt, end="", file=sys.stderr, flush=True)
	loop = asyncio.get_running_loop()
	line = await loop.run_in_executor(None, sys.stdin.readline)
	if not line:
		return None
	return line.rstrip("\r\n")


async def run(role: str, cfg: SessionConfig, open_timeout: float) -> int:
	opened = asyncio.Event()
	failed = asyncio.Event()

	async def on_state(session_id: str, state: ConnectionState) -> None:
		logger.debug("cli session=%s state=%s", session_id, state.value)
		if state is ConnectionState.CHANNEL_OPEN:
			opened.set()
		elif state is ConnectionState.FAILED:
			failed.set()

	async def on_error(error: LanLinkError) -> None:
		print(f"! {error}", file=sys.stderr, flush=True)

	session = LanSession(cfg, callbacks=SessionCallbacks(on_state=on_state, on_error=on_error))
	session.on_message_received(lambda message: print(f"< {message}", flush=True))

	try:
		if role == "host":
			offer = await session.start_host()
			print("Offer (give this to the joiner):", file=sys.stderr)
			print(offer, flush=True)
			answer = await _read_line("Paste answer: ")
			if answer is None:
				return 1
			await session.set_answer(answer)
		else:
			offer = await _read_line("Paste offer: ")
			if offer is None:
				return 1
			answer = await session.join_host(offer)
			print("Answer (give this to the host):", file=sys.stderr)
			print(answer, flush=True)

		waiters = [asyncio.create_task(opened.wait()), asyncio.create_task(failed.wait())]
		_, pending = await asyncio.wait(waiters, timeout=open_timeout, return_when=asyncio.FIRST_COMPLETED)
		for task in pending:
			task.cancel()
		if not opened.is_set():
			logger.error("data channel did not open state=%s", session.state.value)
			return 1

		print("Connected. Type messages, Ctrl-D to quit.", file=sys.stderr, flush=True)
		while True:
			line = await _read_line()
			if line is None:
				break
			await session.send_message(line)
	except LanLinkError as e:
		logger.error("negotiation failed: %s", e)
		return 1
	except asyncio.TimeoutError:
		logger.error("candidate gathering timed out after %ss", cfg.gathering_timeout)
		return 1
	finally:
		await session.close()
	return 0


def main(argv: list[str] | None = None) -> int:
	parser = build_parser()
	args = parser.parse_args(argv)

	setup_logging(args.log_level)

	try:
		cfg = config_from_args(args)
	except ValueError as e:
		print(f"Invalid configuration: {e}", file=sys.stderr)
		return 2

	try:
		return asyncio.run(run(args.role, cfg, args.open_timeout))
	except KeyboardInterrupt:
		return 130


if __name__ == "__main__":
	raise SystemExit(main(sys.argv[1:]))
