from __future__ import annotations

import json
import logging
import os
import subprocess
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO, Dict, List, Optional, cast

from ..errors import ExecutionError
from .command import fmt_argv
from .salt_log import INITIAL, log_event, transition
from .salt_results import EXIT_KILLED, ExecutionResult, classify, log_summary

logger = logging.getLogger(__name__)
salt_logger = logging.getLogger("cast_installer.saltstack")

_WATCH_INTERVAL = 0.2


@dataclass
class SaltRunner:
    """Runs ``salt-call state.apply`` locally against an extracted file root."""

    binary: str
    config_dir: Path
    file_root: Path
    state: str
    log_file: Path
    results_file: Path
    log_level: str = "info"
    pillars: Dict[str, str] = field(default_factory=dict)
    test: bool = False

    def build_argv(self) -> List[str]:
        argv = [self.binary]
        if not os.path.basename(self.binary).endswith("-call"):
            argv.append("call")
        argv += [
            "--config-dir",
            str(self.config_dir),
            "--local",
            "--retcode-passthrough",
            "-l",
            self.log_level,
            "--out",
            "yaml",
            "--file-root",
            str(self.file_root),
            "--no-color",
            "state.apply",
            self.state,
            "pillar=" + json.dumps(self.pillars, sort_keys=True),
        ]
        if self.test:
            argv.append("test=True")
        return argv

    def run(self, cancel: Optional[threading.Event] = None) -> ExecutionResult:
        cancel = cancel or threading.Event()
        argv = self.build_argv()
        logger.info("CMD %s", fmt_argv(argv))

        self.log_file.parent.mkdir(parents=True, exist_ok=True)
        self.results_file.parent.mkdir(parents=True, exist_ok=True)

        try:
            proc = subprocess.Popen(
                argv,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                errors="replace",
            )
        except OSError as e:
            raise ExecutionError(f"unable to start {self.binary}: {e}") from e

        stdout_chunks: List[str] = []
        finished = threading.Event()
        kill_errors: List[OSError] = []

        def drain(stream: IO[str]) -> None:
            for chunk in iter(lambda: stream.read(8192), ""):
                stdout_chunks.append(chunk)

        def watch() -> None:
            while not finished.is_set():
                if cancel.wait(_WATCH_INTERVAL):
                    if finished.is_set():
                        return
                    logger.warning("Cancellation requested; killing salt-call (pid=%s)", proc.pid)
                    try:
                        proc.kill()
                    except ProcessLookupError:
                        pass
                    except OSError as e:
                        kill_errors.append(e)
                    return

        drainer = threading.Thread(target=drain, args=(proc.stdout,), name="salt-stdout", daemon=True)
        watcher = threading.Thread(target=watch, name="salt-cancel-watch", daemon=True)
        drainer.start()
        watcher.start()

        try:
            with open(self.log_file, "w", encoding="utf-8") as log:
                state = INITIAL
                stderr = cast(IO[str], proc.stderr)
                for line in stderr:
                    log.write(line)
                    state, event = transition(state, line)
                    log_event(salt_logger, event)
                stderr.close()
                drainer.join()
                returncode = proc.wait()
                stdout = "".join(stdout_chunks)
                log.write(stdout)
        finally:
            finished.set()
            watcher.join()
            if proc.poll() is None:
                proc.kill()
                proc.wait()
            if proc.stdout is not None:
                proc.stdout.close()

        if kill_errors:
            raise ExecutionError(f"unable to kill salt-call: {kill_errors[0]}")

        try:
            self.results_file.write_text(stdout, encoding="utf-8")
        except OSError as e:
            logger.error("Unable to write results file %s: %s", self.results_file, e)
        logger.info("Log file location %s", self.log_file)
        logger.info("Results file location %s", self.results_file)

        exit_code = EXIT_KILLED if returncode < 0 else returncode
        logger.info("salt-call exited with %s", returncode)
        result = classify(exit_code, stdout)
        log_summary(result)
        return result
