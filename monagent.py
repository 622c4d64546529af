#!/usr/bin/env python3
# ------------------------------------------------------------------------------
# monagent - Lightweight host metrics reporter over WebSocket
#
# License: GNU GPL v3 (non-commercial use only)
#
# This software is licensed under the terms of the GNU General Public License
# version 3 (GPLv3) as published by the Free Software Foundation, for
# non-commercial use only.
#
# Special CLI modes:
#   --once     - connect, send a single sample and exit
#   --dry-run  - collect a single sample and print its JSON without connecting
# ------------------------------------------------------------------------------

AGENT_VERSION = "1.0.0"

import os, sys, json, math, time, yaml, signal, logging, argparse, functools
from dotenv import load_dotenv
from websockets.sync.client import connect
from websockets.exceptions import WebSocketException

from metrics import system, top_processes
from metrics.sample import DEFAULT_PROFILE, get_profile, serialize, to_payload

CONFIG_PATH = "/etc/monagent/monagent.yaml"
DEFAULT_URL = "ws://localhost:8000/api/v1/public/monitoring"
KEY_HEADER = "X-Agent-Key"
TENANT_HEADER = "X-TENANT-ID"
MIN_INTERVAL = 1
REDACTED = "***"

DEFAULTS = {
    "url": DEFAULT_URL,
    "interval_seconds": 5,
    "profile": DEFAULT_PROFILE,
    "send_key_in_payload": None,
    "process_limit": top_processes.DEFAULT_LIMIT,
    "log_level": "INFO",
    "log_file": None,
    "open_timeout": 10,
}

EXIT_CONFIG = 1
EXIT_NO_KEY = 2
EXIT_NO_CONTAINER = 3
EXIT_HANDSHAKE = 4
EXIT_NO_TENANT = 5
EXIT_SEND_FAILED = 6

def print_info(msg):
    """Prints an informational message in cyan color."""
    print(f"\033[96m[INFO]\033[0m {msg}")

def print_ok(msg):
    """Prints a success message in green color."""
    print(f"\033[92m[OK]\033[0m {msg}")

def print_error(msg):
    """Prints an error message in red color."""
    print(f"\033[91m[ERROR]\033[0m {msg}")

def fail(msg, code):
    """
    Reports a fatal startup condition and exits with its dedicated code.
    """
    print_error(msg)
    sys.exit(code)

def setup_logger(level_str="INFO", log_file=None):
    """
    Sets up logging for stdout (with colors) and, optionally, a plain log file.
    """
    class ColorFormatter(logging.Formatter):
        COLORS = {
            'DEBUG': "\033[37m",    # White
            'INFO': "\033[96m",     # Cyan
            'WARNING': "\033[93m",  # Yellow
            'ERROR': "\033[91m",    # Red
            'CRITICAL': "\033[95m"  # Magenta
        }
        RESET = "\033[0m"
        def format(self, record):
            color = self.COLORS.get(record.levelname, "")
            msg = logging.Formatter.format(self, record)
            return f"{color}{msg}{self.RESET}"
    fmt = "%(asctime)s [%(levelname)s] %(message)s"
    stream = logging.StreamHandler(sys.stdout)
    stream.setFormatter(ColorFormatter(fmt))
    handlers = [stream]
    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(logging.Formatter(fmt))
        handlers.append(file_handler)
    logging.basicConfig(level=getattr(logging, str(level_str).upper(), logging.INFO),
                        handlers=handlers)

def load_config(path=None):
    """
    Loads the agent configuration from the YAML config file on top of DEFAULTS.
    A missing default file means defaults only; a missing explicit path is fatal.
    """
    cfg = dict(DEFAULTS)
    explicit = path is not None
    path = path or CONFIG_PATH
    if not os.path.exists(path):
        if explicit:
            fail(f"Config file not found: {path}", EXIT_CONFIG)
        return cfg
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        fail(f"Config read failed: {e}", EXIT_CONFIG)
    if not isinstance(data, dict):
        fail(f"Config file {path} must contain a mapping.", EXIT_CONFIG)
    cfg.update(data)
    try:
        interval = float(cfg["interval_seconds"])
        cfg["process_limit"] = int(cfg["process_limit"])
        cfg["open_timeout"] = float(cfg["open_timeout"])
    except (TypeError, ValueError) as e:
        fail(f"Invalid value in {path}: {e}", EXIT_CONFIG)
    for name, value in (("interval_seconds", interval), ("open_timeout", cfg["open_timeout"])):
        if not math.isfinite(value):
            fail(f"Invalid value in {path}: {name} must be a finite number, got {value}", EXIT_CONFIG)
    cfg["interval_seconds"] = max(interval, MIN_INTERVAL)
    return cfg

def load_credentials(profile):
    """
    Reads SERVER_API_KEY and CONTAINERID from the environment.
    Exits the agent if the key, or a container id the profile needs, is missing.
    """
    key = os.getenv("SERVER_API_KEY")
    if not key:
        fail("SERVER_API_KEY is not set (environment or .env file).", EXIT_NO_KEY)
    container_id = os.getenv("CONTAINERID") or None
    if profile.requires_container and not container_id:
        fail(f"CONTAINERID is not set but profile '{profile.name}' requires it.", EXIT_NO_CONTAINER)
    return key, container_id

def open_channel(url, key, open_timeout=10):
    """
    Opens the WebSocket to the monitoring endpoint, sending the key as a
    handshake header. Any handshake failure is fatal; there is no retry.
    """
    try:
        conn = connect(url, additional_headers={KEY_HEADER: key}, open_timeout=open_timeout)
    except (OSError, TimeoutError, WebSocketException) as e:
        fail(f"WebSocket connection to {url} failed: {e}", EXIT_HANDSHAKE)
    logging.info(f"Connected to {url}")
    return conn

def tenant_from(conn):
    """Returns the server-assigned tenant id from the handshake response, if any."""
    response = getattr(conn, "response", None)
    if response is None:
        return None
    return response.headers.get(TENANT_HEADER) or None

def send_sample(channel, collect, profile, include_key=None):
    """
    One sample -> serialize -> send attempt. Failures are logged and reported
    as False; nothing is raised to the loop.
    """
    try:
        sample = collect()
    except Exception:
        logging.exception("Metrics collection failed")
        return False
    try:
        data = to_payload(sample, profile, include_key)
        payload = json.dumps(data, ensure_ascii=False)
    except (TypeError, ValueError) as e:
        logging.error(f"Serialization failed: {e}")
        return False
    try:
        channel.send(payload)
    except (OSError, WebSocketException) as e:
        logging.error(f"Send failed: {e}")
        return False
    if "key" in data:
        data = {**data, "key": REDACTED}
    logging.info(f"Sent: {json.dumps(data, ensure_ascii=False)}")
    return True

def run(channel, collect, profile, include_key=None, interval=5, iterations=None,
        sleep=time.sleep, clock=time.monotonic):
    """
    Drives send_sample() on a fixed-interval ticker. Each attempt starts no
    earlier than one interval after the previous one started, whatever its
    outcome. Runs forever unless `iterations` is given; returns the number of
    samples sent.
    """
    attempts = 0
    sent = 0
    next_tick = None
    while iterations is None or attempts < iterations:
        if next_tick is not None:
            delay = next_tick - clock()
            if delay > 0:
                sleep(delay)
        next_tick = clock() + interval
        attempts += 1
        if send_sample(channel, collect, profile, include_key):
            sent += 1
    return sent

def _terminate(signum, frame):
    sys.exit(0)

def parse_args(argv=None):
    parser = argparse.ArgumentParser(prog="monagent", description="Host metrics reporter over WebSocket.")
    parser.add_argument("--config", help=f"YAML config file (default: {CONFIG_PATH})")
    parser.add_argument("--once", action="store_true", help="send a single sample and exit")
    parser.add_argument("--dry-run", action="store_true", help="print a single sample without connecting")
    parser.add_argument("--version", action="version", version=f"%(prog)s {AGENT_VERSION}")
    return parser.parse_args(argv)

def main(argv=None):
    """
    Command Line Interface (CLI) entrypoint.
    Loads config and credentials, opens the channel and runs the reporting loop.
    """
    args = parse_args(argv)
    load_dotenv()
    cfg = load_config(args.config)
    try:
        profile = get_profile(cfg["profile"])
    except KeyError as e:
        fail(str(e.args[0]), EXIT_CONFIG)
    except TypeError:
        fail(f"Invalid profile {cfg['profile']!r}: expected a name.", EXIT_CONFIG)
    try:
        setup_logger(cfg["log_level"], cfg["log_file"])
    except OSError as e:
        fail(f"Cannot open log file: {e}", EXIT_CONFIG)
    include_key = cfg["send_key_in_payload"]

    if args.dry_run:
        sample = system.collect_sample(os.getenv("SERVER_API_KEY", ""), None, os.getenv("CONTAINERID") or None,
                                       profile.with_processes, cfg["process_limit"])
        print(serialize(sample, profile, include_key))
        return 0

    key, container_id = load_credentials(profile)
    signal.signal(signal.SIGTERM, _terminate)
    conn = open_channel(cfg["url"], key, cfg["open_timeout"])
    with conn:
        tenant_id = tenant_from(conn)
        if profile.requires_tenant and not tenant_id:
            fail(f"Handshake response carries no {TENANT_HEADER} header.", EXIT_NO_TENANT)
        print_ok(f"Reporting every {cfg['interval_seconds']:g}s with profile '{profile.name}'.")
        collect = functools.partial(system.collect_sample, key, tenant_id, container_id,
                                    profile.with_processes, cfg["process_limit"])
        try:
            sent = run(conn, collect, profile, include_key, cfg["interval_seconds"],
                       iterations=1 if args.once else None)
        except KeyboardInterrupt:
            print_info("Interrupted, closing connection.")
            return 0
    if args.once and not sent:
        return EXIT_SEND_FAILED
    return 0

# --- CLI entrypoint ---
if __name__ == "__main__":
    sys.exit(main())
