# SPDX-License-Identifier: GPL-3.0-or-later
"""
goal: main launcher for PersistWatch: scores the current persistence inventory, starts the change monitor
and optionally the AI loop. uses an event bus to fan-out events from the monitor, the notifier and the AI
loop to every subscriber (here, the console printer). the terminal shows a banner and one line per event
while the watchers run in background threads.
"""

from __future__ import annotations  # lets us use string annotations before classes are defined

import argparse  # for parsing command line arguments
import dataclasses  # for overriding config values from flags
import logging  # for console log output
import queue  # for event bus message queues
import threading  # for the event printer thread
import time  # for keeping the main thread alive
from dataclasses import dataclass  # for the runtime bundle
from typing import Any  # type hint for flexible dictionary values

from colorama import Fore, Style  # terminal colors
from colorama import init as _colorama_init  # strips ANSI codes when output is not a terminal
from dotenv import load_dotenv  # loads PERSISTWATCH_* from a .env file

from agent.baseline import JsonBaselineStore  # per-category baseline on disk
from agent.errors import ScanError  # unreadable discovery export
from agent.history import JsonHistoryStore  # change history on disk
from agent.inventory import ItemInventory  # current scored items
from agent.monitor import PersistenceMonitor  # watch -> debounce -> diff -> alert loop
from agent.notifier import ConsoleNotifier  # colored terminal alerts
from agent.policy import NotificationPolicy  # cooldown and per-type toggles
from agent.scanner import SnapshotScanner  # reads the discovery export
from agent.watcher import DirectoryWatcher  # polling directory watcher
from algorithm.models import PersistenceItem  # for the inventory table
from algorithm.risk_engine import RiskEngine, tier_for_score  # scoring
from app.config import Config, apply_preset, load_config  # settings
from escalation.ai_loop import AIMonitoringLoop  # periodic whole-inventory analysis
from escalation.api_client import AnalystClient  # remote analyst transport
from escalation.classifier import build_classifier  # local threshold or remote analyst

log = logging.getLogger("persistwatch.console")

_TIER_COLORS = {
    "low": Fore.GREEN,
    "medium": Fore.YELLOW,
    "high": Fore.RED,
    "critical": Fore.RED + Style.BRIGHT,
}


class ColoredLevelFormatter(logging.Formatter):
    """prefixes each record with a colored level tag and keeps the rest of the line plain"""

    _LEVEL_COLORS = {
        logging.DEBUG: Style.DIM,
        logging.INFO: Fore.CYAN,
        logging.WARNING: Fore.YELLOW,
        logging.ERROR: Fore.RED,
        logging.CRITICAL: Fore.RED + Style.BRIGHT,
    }

    def __init__(self, *args, use_color: bool = True, **kwargs):
        super().__init__(*args, **kwargs)
        self.use_color = use_color

    def format(self, record):
        msg = super().format(record)
        if not self.use_color:
            return f"[{record.levelname.lower()}] {msg}"
        color = self._LEVEL_COLORS.get(record.levelno, "")
        return f"{color}[{record.levelname.lower()}]{Style.RESET_ALL} {msg}"


def setup_logging(verbose: bool = False, use_color: bool = True) -> None:
    # root stays quiet unless --verbose; persistwatch.* loggers carry the interesting lines
    handler = logging.StreamHandler()
    handler.setFormatter(ColoredLevelFormatter("%(name)s: %(message)s", use_color=use_color))
    logging.basicConfig(level=logging.DEBUG if verbose else logging.WARNING, handlers=[handler], force=True)
    logging.getLogger("persistwatch").setLevel(logging.DEBUG if verbose else logging.INFO)
    logging.getLogger("urllib3").setLevel(logging.WARNING)  # requests' transport chatter


# --- banner ---
def print_banner() -> None:
    cyan, mag, dim, bold, reset = Fore.CYAN, Fore.MAGENTA, Style.DIM, Style.BRIGHT, Style.RESET_ALL
    banner = f"""
{dim}┌────────────────────────────────────────────────────────────┐{reset}
{dim}│{reset}{cyan}{bold}              P e r s i s t W a t c h{reset}{dim}                         │{reset}
{dim}├────────────────────────────────────────────────────────────┤{reset}
{mag}   launch daemons · agents · helpers · extensions · login items{reset}
{cyan}        Risk scoring and change alerts for macOS persistence  {reset}
{dim}├────────────────────────────────────────────────────────────┤{reset}
{dim}│{reset}  Tip: press {cyan}Ctrl+C{reset} to quit.                                 {dim}│{reset}
{dim}└────────────────────────────────────────────────────────────┘{reset}
"""
    print(banner)


# --- end banner ---


# fan-out EventBus
class EventBus:
    """pub/sub fan-out: each subscriber gets every event."""

    def __init__(self) -> None:
        self._subs: list[queue.Queue] = []  # list of subscriber queues
        self._lock = threading.Lock()  # lock to protect the subscribers list from race conditions

    def publish(self, event: dict[str, Any]) -> None:
        # send an event to all subscribers (fan-out pattern)
        with self._lock:  # acquire lock to safely read the subscribers list
            subs = list(self._subs)  # copy so we can iterate without holding the lock
        for q in subs:  # loop through each subscriber queue
            try:
                q.put_nowait(event)  # try to put the event in the queue without blocking
            except queue.Full:  # if the queue is full
                pass  # drop the event to avoid backpressure (better to lose events than block)

    def subscribe(self):
        # create a new subscription and return an iterator that yields events
        q: queue.Queue = queue.Queue(maxsize=1000)  # create a queue with max 1000 events
        with self._lock:  # acquire lock to safely add to subscribers list
            self._subs.append(q)  # add this queue to the list of subscribers

        def _iter():
            # generator function that yields events from the queue
            while True:  # loop forever
                try:
                    yield q.get(timeout=0.5)  # wait up to 0.5 seconds for an event, yield it if found
                except queue.Empty:  # if no event arrived within the timeout
                    yield None  # yield None to keep the iterator alive

        return _iter()  # return the generator iterator


def format_event(event: dict[str, Any]) -> str | None:
    """one console line per bus event; alerts are already printed by the notifier so they are skipped"""
    source = event.get("source")
    kind = event.get("kind")
    if source == "monitor" and kind == "state":
        return f"{Fore.MAGENTA}⬩{Style.RESET_ALL} {event.get('status', event.get('state'))}"
    if source == "monitor" and kind == "change":
        return (
            f"{Fore.MAGENTA}⬩{Style.RESET_ALL} {event.get('change_type')}: {event.get('name')} "
            f"[{event.get('category')}] relevance {event.get('relevance')}"
        )
    if source == "ai" and kind == "analysis":
        return f"{Fore.MAGENTA}⬩{Style.RESET_ALL} AI analysis ({event.get('severity')}): {event.get('summary')}"
    return None


def _print_events(events, stop: threading.Event) -> None:
    for ev in events:
        if stop.is_set():
            return
        if ev is None:  # keep-alive tick
            continue
        line = format_event(ev)
        if line:
            print(line, flush=True)


@dataclass
class Runtime:
    config: Config
    engine: RiskEngine
    scanner: SnapshotScanner
    inventory: ItemInventory
    notifier: ConsoleNotifier
    monitor: PersistenceMonitor
    ai_loop: AIMonitoringLoop | None


def build_runtime(cfg: Config, bus: EventBus | None = None) -> Runtime:
    """wire every collaborator from config; nothing starts here"""
    publish = bus.publish if bus is not None else None
    engine = RiskEngine(weights_path=str(cfg.risk_weights_path))
    scanner = SnapshotScanner(cfg.items_path, engine=engine)
    inventory = ItemInventory()
    notifier = ConsoleNotifier()
    client = AnalystClient.from_config(cfg) if cfg.is_ai_active else None
    monitor = PersistenceMonitor(
        scanner=scanner,
        baseline=JsonBaselineStore(cfg.baseline_path),
        history=JsonHistoryStore(cfg.history_path),
        notifier=notifier,
        watcher=DirectoryWatcher(interval_sec=cfg.watch_interval_sec),
        inventory=inventory,
        config=cfg,
        policy=NotificationPolicy.from_config(cfg),
        classifier=build_classifier(cfg, client),
        publish=publish,
    )
    ai_loop = AIMonitoringLoop(client, inventory, notifier, cfg, publish=publish) if client is not None else None
    return Runtime(cfg, engine, scanner, inventory, notifier, monitor, ai_loop)


def render_inventory(items: list[PersistenceItem]) -> str:
    """scored inventory, riskiest first"""
    if not items:
        return "No persistence items found."
    rows = sorted(items, key=lambda it: (-(it.risk_score or 0), it.identifier))
    lines = [f"{'RISK':>4}  {'TIER':<8}  {'CATEGORY':<22}  NAME"]
    for it in rows:
        score = it.risk_score or 0
        tier = tier_for_score(score).value
        color = _TIER_COLORS.get(tier, "")
        lines.append(f"{score:>4}  {color}{tier:<8}{Style.RESET_ALL}  {it.category.display_name:<22}  {it.name}")
        for f in it.risk_details or []:
            lines.append(f"{'':>16}{Style.DIM}{f.describe()}{Style.RESET_ALL}")
    return "\n".join(lines)


def run_once(rt: Runtime) -> list[PersistenceItem]:
    items = rt.scanner.scan_all()
    rt.inventory.replace_all(items)
    print(render_inventory(items))
    return items


def main(argv: list[str] | None = None) -> int:
    # main entry point that sets up and starts all components
    load_dotenv()  # load .env file if it exists (PERSISTWATCH_API_KEY lives there)
    _colorama_init()  # plain text when piped to a file

    parser = argparse.ArgumentParser(description="PersistWatch")
    parser.add_argument("--items", help="path to the discovery export (JSON)")
    parser.add_argument("--once", action="store_true", help="score the inventory once and exit")
    parser.add_argument("--ai", action="store_true", help="enable remote AI analysis (needs PERSISTWATCH_API_KEY)")
    parser.add_argument("--preset", choices=("minimal", "balanced", "paranoid"), help="monitoring preset")
    parser.add_argument("--verbose", action="store_true", help="debug logging")
    args = parser.parse_args(argv)

    setup_logging(args.verbose)
    cfg = load_config()
    if args.items:
        cfg = dataclasses.replace(cfg, items_path=cfg.base_dir / args.items)
    if args.ai:
        cfg = dataclasses.replace(cfg, use_ai=True)
        if not cfg.is_api_key_valid:
            log.warning("--ai given but no valid API key, falling back to relevance scoring")
    if args.preset:
        cfg = apply_preset(cfg, args.preset)

    if args.once:
        rt = build_runtime(cfg)
        try:
            run_once(rt)
        except ScanError as exc:
            print(f"{Fore.RED}➢{Style.RESET_ALL} {exc}")
            return 1
        return 0

    bus = EventBus()  # create the event bus that will distribute events to all subscribers
    rt = build_runtime(cfg, bus)
    print_banner()

    stop = threading.Event()
    threading.Thread(target=_print_events, args=(bus.subscribe(), stop), name="event-printer", daemon=True).start()

    try:
        rt.inventory.replace_all(rt.scanner.scan_all())  # score before watching so the baseline is scored
    except ScanError as exc:
        log.warning("initial scan failed: %s", exc)
    if not rt.monitor.start().result():
        print(f"{Fore.RED}➢{Style.RESET_ALL} {rt.monitor.status_description}")
        return 1
    if rt.ai_loop is not None:
        rt.ai_loop.start()
    print(f"{Fore.CYAN}➢{Style.RESET_ALL} Baseline: {rt.monitor.baseline_description}\n")

    try:
        while True:  # keep the main thread alive, the work happens on watcher/timer threads
            time.sleep(0.5)
    except KeyboardInterrupt:  # Ctrl+C
        print(f"\n{Fore.MAGENTA}⬩{Style.RESET_ALL}{Fore.CYAN}➢ {Style.RESET_ALL} Shutting down PersistWatch...\n")
    finally:
        stop.set()
        if rt.ai_loop is not None:
            rt.ai_loop.stop()
        rt.monitor.shutdown()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
