import os
import re
import json
import logging
import threading
from pathlib import Path
from typing import Optional
from flask import Flask, Response

# Linux file locking (the shared volume is mounted on Linux nodes)
import fcntl
from contextlib import ExitStack, contextmanager


LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(level=LOG_LEVEL, format="%(message)s")
logger = logging.getLogger("counter-service")

def env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")

COUNTER_FILE = os.getenv("COUNTER_FILE", "/data/counter.txt")
COUNTER_LOCK = env_flag("COUNTER_LOCK")
APP_VERSION = os.getenv("APP_VERSION", "dev")
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "8080"))

COUNTER_MODE = 0o644
COUNTER_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]
_DECIMAL = re.compile(rb"[+-]?[0-9]+")

app = Flask(__name__)

def log_json(level_func, payload: dict) -> None:
    payload = {
        **payload,
        "pid": os.getpid(),
        "tid": threading.get_ident(),
    }
    level_func(json.dumps(payload, ensure_ascii=False))


class CounterStoreError(Exception):
    """Storage failure on the counter file, carrying the path and the cause."""

    def __init__(self, path: Path, error: OSError):
        super().__init__(f"{path}: {error}")
        self.path = path
        self.error = error


class CounterReadError(CounterStoreError):
    pass


class CounterWriteError(CounterStoreError):
    pass


class CounterLockError(CounterStoreError):
    pass


class FileCounterStore:
    """Counter persisted as decimal text in a single file.

    Nothing here guards the read-modify-write cycle. Callers that want
    increments serialized take ``lock()`` around it.
    """

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> Optional[int]:
        """Return the stored value, or None when the content is not an integer.

        The content must be exactly a signed run of ASCII digits; surrounding
        whitespace or undecodable bytes make it unparseable.
        Raises CounterReadError when the file cannot be read at all.
        """
        try:
            data = self.path.read_bytes()
        except OSError as e:
            raise CounterReadError(self.path, e) from e

        if not _DECIMAL.fullmatch(data):
            return None
        return int(data)

    def save(self, value: int) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, COUNTER_MODE)
            with os.fdopen(fd, "w", encoding="utf-8") as file:
                file.write(str(value))
        except OSError as e:
            raise CounterWriteError(self.path, e) from e

    @contextmanager
    def lock(self):
        """Hold an exclusive flock on the ``.lock`` sibling.

        Raises CounterLockError when the lock cannot be taken.
        """
        lock_path = self.path.with_suffix(".lock")
        try:
            lock_path.parent.mkdir(parents=True, exist_ok=True)
            lock_f = lock_path.open("w")
        except OSError as e:
            raise CounterLockError(lock_path, e) from e

        try:
            try:
                fcntl.flock(lock_f, fcntl.LOCK_EX)
            except OSError as e:
                raise CounterLockError(lock_path, e) from e
            try:
                yield
            finally:
                fcntl.flock(lock_f, fcntl.LOCK_UN)
        finally:
            lock_f.close()


store = FileCounterStore(Path(COUNTER_FILE))


def increment_counter(counter_store: FileCounterStore, serialize: bool = False) -> int:
    """Load, bump by one and save the counter, returning the new value.

    Storage failures never escape: an unreadable file counts as zero, a
    failed write is dropped and a lock that cannot be taken is skipped.
    Without ``serialize`` concurrent callers can read the same value and
    lose increments.
    """
    with ExitStack() as stack:
        if serialize:
            try:
                stack.enter_context(counter_store.lock())
            except CounterLockError as e:
                log_json(logger.warning, {"event": "lock_failed", "path": str(e.path), "error": str(e.error)})

        try:
            current = counter_store.load()
        except CounterReadError as e:
            log_json(logger.warning, {"event": "read_failed", "path": str(e.path), "error": str(e.error)})
            current = 0

        if current is None:
            current = 0
        current += 1

        try:
            counter_store.save(current)
        except CounterWriteError as e:
            log_json(logger.debug, {"event": "write_failed", "path": str(e.path), "error": str(e.error)})

    log_json(logger.debug, {"event": "increment", "counter": current})
    return current

@app.get("/healthz")
def healthz():
    return {"status": "ok"}, 200

@app.get("/version")
def version():
    return {"version": APP_VERSION}, 200

@app.route("/", defaults={"path": ""}, methods=COUNTER_METHODS)
@app.route("/<path:path>", methods=COUNTER_METHODS)
def index(path):
    current = increment_counter(store, serialize=COUNTER_LOCK)
    hostname = os.getenv("HOSTNAME", "")
    return Response(f"running on {hostname}, counter = {current}", status=200, mimetype="text/plain")


def main() -> None:
    from waitress import serve

    log_json(logger.info, {"event": "listening", "host": HOST, "port": PORT, "counter_file": COUNTER_FILE, "lock": COUNTER_LOCK})
    try:
        serve(app, host=HOST, port=PORT)
    except OSError as e:
        log_json(logger.critical, {"event": "listen_failed", "host": HOST, "port": PORT, "error": str(e)})
        raise SystemExit(1) from e


if __name__ == "__main__":
    main()
