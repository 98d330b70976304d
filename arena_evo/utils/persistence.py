# arena_evo/utils/persistence.py
from __future__ import annotations
from dataclasses import dataclass
from multiprocessing import Process, Queue
from pathlib import Path
from typing import Dict, Any, Optional, List
import os, json, csv, datetime, queue

from .. import config
from ..errors import PersistenceError
from .logger import logger

log = logger.bind(component="checkpoint")


# ---- Atomic document I/O ----
def atomic_json_dump(obj: Dict[str, Any], path: str | os.PathLike) -> None:
    """Write JSON next to `path` and swap it in, so readers never see half a file."""
    path = Path(path)
    tmp = path.with_suffix(path.suffix + ".tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with tmp.open("w", encoding="utf-8") as f:
            json.dump(obj, f, ensure_ascii=False, indent=2)
        os.replace(tmp, path)
    except (OSError, TypeError, ValueError) as e:
        raise PersistenceError(f"could not write {path}: {e}") from e
    finally:
        if tmp.exists():
            tmp.unlink()


def read_json(path: str | os.PathLike) -> Dict[str, Any]:
    path = Path(path)
    if not path.is_file():
        raise PersistenceError(f"file not found: {path}")
    try:
        with path.open("r", encoding="utf-8") as f:
            doc = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise PersistenceError(f"malformed document {path}: {e}") from e
    if not isinstance(doc, dict):
        raise PersistenceError(f"malformed document {path}: top level is {type(doc).__name__}")
    return doc


def timestamp_dir(base: str | os.PathLike, prefix: str = "autosave") -> Path:
    """
    Reserve a fresh `<prefix>_<date>_<time>_<ms>` folder under `base`.
    The folder is created here, so two saves in the same millisecond get `_1`, `_2`, ... suffixes
    even when the writes themselves are queued.
    """
    now = datetime.datetime.now()
    stem = now.strftime(f"{prefix}_%Y-%m-%d_%H-%M-%S") + f"_{now.microsecond // 1000:03d}"
    base = Path(base)
    try:
        base.mkdir(parents=True, exist_ok=True)
        folder, n = base / stem, 0
        while True:
            try:
                folder.mkdir()
                return folder
            except FileExistsError:
                n += 1
                folder = base / f"{stem}_{n}"
    except OSError as e:
        raise PersistenceError(f"could not create folder under {base}: {e}") from e


# ---- Messages for the writer process ----
@dataclass
class _MsgInit:
    run_dir: str
    config_obj: Dict[str, Any]

@dataclass
class _MsgGenerationRow:
    row: Dict[str, float]

@dataclass
class _MsgSaveDocument:
    path: str
    document: Dict[str, Any]

class _MsgClose: pass


class _WriterState:
    """Owns the open CSV handle; shared by the background loop and the synchronous path."""
    def __init__(self) -> None:
        self.run_dir: Optional[str] = None
        self.gen_fp = None
        self.gen_writer: Optional[csv.DictWriter] = None

    def handle(self, msg) -> bool:
        if isinstance(msg, _MsgInit):
            self.run_dir = msg.run_dir
            os.makedirs(self.run_dir, exist_ok=True)
            atomic_json_dump(msg.config_obj, os.path.join(self.run_dir, "config.json"))
            self.gen_fp = open(os.path.join(self.run_dir, "generations.csv"), "w", newline="", encoding="utf-8")
            self.gen_writer = None

        elif isinstance(msg, _MsgGenerationRow):
            if self.gen_fp is None:
                return True
            if self.gen_writer is None:
                self.gen_writer = csv.DictWriter(self.gen_fp, fieldnames=list(msg.row.keys()))
                self.gen_writer.writeheader()
            self.gen_writer.writerow(msg.row)
            self.gen_fp.flush()

        elif isinstance(msg, _MsgSaveDocument):
            try:
                atomic_json_dump(msg.document, msg.path)
            except PersistenceError as e:
                log.error(f"save failed: {e}")

        elif isinstance(msg, _MsgClose):
            return False
        return True

    def close(self) -> None:
        if self.gen_fp is not None:
            self.gen_fp.close()
            self.gen_fp = None


# ---- Background writer ----
def _writer_loop(q: Queue):
    state = _WriterState()
    try:
        while True:
            try:
                msg = q.get(timeout=0.2)
            except queue.Empty:
                continue
            if not state.handle(msg):
                break
    finally:
        state.close()


# ---- Public API ----
class CheckpointWriter:
    """
    Best-effort checkpoint sink.

    After start(background=True) every call is a non-blocking queue put served by a
    daemon process; a full queue drops the request with a warning. Without a
    background process the same work happens inline. Neither path raises: a failed
    save is logged and the simulation carries on.
    """
    def __init__(self, queue_size: Optional[int] = None) -> None:
        self.queue_size = int(queue_size if queue_size is not None else getattr(config, "WRITER_QUEUE_SIZE", 256))
        self.q: Optional[Queue] = None
        self.p: Optional[Process] = None
        self.run_dir: Optional[str] = None
        self._inline = _WriterState()

    def start(self, config_obj: Dict[str, Any], run_dir: Optional[str] = None,
              background: bool = True) -> str:
        self.run_dir = str(run_dir or timestamp_dir(getattr(config, "SAVE_DIR", "saved_models"), prefix="run"))
        init = _MsgInit(run_dir=self.run_dir, config_obj=config_obj)
        if background:
            self.q = Queue(maxsize=self.queue_size)
            self.p = Process(target=_writer_loop, args=(self.q,), daemon=True)
            self.p.start()
            self.q.put(init)
        else:
            self._dispatch(init)
        return self.run_dir

    @property
    def background(self) -> bool:
        return self.p is not None

    def _dispatch(self, msg) -> None:
        if self.p is not None and self.q is not None:
            try:
                self.q.put_nowait(msg)
            except queue.Full:
                log.warning(f"writer queue full, dropped {type(msg).__name__.lstrip('_')}")
            return
        try:
            self._inline.handle(msg)
        except (OSError, PersistenceError) as e:
            log.error(f"checkpoint write failed: {e}")

    def save_document(self, path: str | os.PathLike, document: Dict[str, Any]) -> None:
        self._dispatch(_MsgSaveDocument(path=str(path), document=document))

    def write_generation(self, row: Dict[str, float]) -> None:
        self._dispatch(_MsgGenerationRow(row=row))

    def save_many(self, documents: List[tuple]) -> None:
        for path, doc in documents:
            self.save_document(path, doc)

    def close(self) -> None:
        if self.p is None:
            self._inline.close()
            return
        try:
            self.q.put(_MsgClose())
            self.p.join(timeout=5.0)
        finally:
            if self.p.is_alive():
                self.p.terminate()
            self.p = None
            self.q = None

    def __enter__(self) -> "CheckpointWriter":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
